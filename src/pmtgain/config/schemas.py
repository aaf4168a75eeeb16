from __future__ import annotations
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, List, Union

class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    # Execution: 0 = single-process, N = process pool over channels
    workers: Union[int, Literal["auto"]] = 0

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

    @field_validator("workers")
    def _workers_nonneg(cls, v):
        if isinstance(v, int) and v < 0:
            raise ValueError("workers must be >= 0 or 'auto'")
        return v

class IOCfg(BaseModel):
    """
    I/O locations and file naming.

    Every template is formatted with ``group`` (the channel-group identifier);
    the plot template also receives ``channel``.

    TOML:

    [io]
    input_dir  = "data"
    output_dir = "out"
    """

    input_dir: str = "."
    output_dir: str = "."

    input_template: str = "{group}.txt"
    table_template: str = "{group}_gainvsvoltage.txt"
    container_template: str = "{group}_gainvsvoltage.h5"
    plot_template: str = "{group}_{channel}_gainvsvoltage.pdf"

class ChannelsCfg(BaseModel):
    """
    Fixed channel set and per-point constants of the measurement.

    TOML:

    [channels]
    count = 10
    valid_sizes = [3, 6]
    voltage_error_V = 2.0   # no voltage-error column in the input
    gain_scale = 1e7        # raw gain column is in units of 1e7
    """

    count: int = 10
    valid_sizes: List[int] = [3, 6]
    voltage_error_V: float = 2.0
    gain_scale: float = 1e7

    @field_validator("count")
    def _count_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("channels.count must be >= 1")
        return v

    @field_validator("valid_sizes")
    def _sizes_fit_two_params(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("channels.valid_sizes must not be empty")
        if any(n < 2 for n in v):
            raise ValueError("every valid sample size must be >= 2 (two free parameters)")
        return v

class FitCfg(BaseModel):
    """
    Log-log power-law fit controls.

    seed         : starting (constant, exponent) for the first pass
    refit_passes : extra passes, each re-seeded from the previous result
    begin_V/end_V: advisory voltage window (power-curve overlay range)
    nonfinite_policy:
        "write" -> non-converged fits are reported with NaN fields
        "skip"  -> non-converged fits become skipped channels
    """

    seed: List[float] = [-30.0, 7.0]
    refit_passes: int = 9
    begin_V: float = 1000.0
    end_V: float = 2000.0
    nonfinite_policy: Literal["write", "skip"] = "write"

    @field_validator("seed")
    def _seed_len(cls, v: List[float]) -> List[float]:
        if len(v) != 2:
            raise ValueError("fit.seed must be [constant, exponent]")
        return v

    @field_validator("refit_passes")
    def _passes_nonneg(cls, v: int) -> int:
        if v < 0:
            raise ValueError("fit.refit_passes must be >= 0")
        return v

    @model_validator(mode="after")
    def _window_ordered(self) -> "FitCfg":
        if not self.begin_V < self.end_V:
            raise ValueError("fit.begin_V must be < fit.end_V")
        return self

class TableCfg(BaseModel):
    """
    Fit-table layout: per channel, ``placeholder_lines`` dash rows then the data row.

    skipped_rows:
        "placeholder" -> skipped channels still occupy a full block of dash rows
        "omit"        -> skipped channels write nothing (older consumers count data rows only)
    """

    placeholder: str = "--"
    placeholder_lines: int = 2
    skipped_rows: Literal["placeholder", "omit"] = "placeholder"
    delimiter: str = ","

class VisCfg(BaseModel):
    export_pdf: bool = True
    export_container: bool = True


class Config(BaseModel):
    """
    Top-level TOML configuration. All sections are optional.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg = Field(default_factory=IOCfg)
    channels: ChannelsCfg = Field(default_factory=ChannelsCfg)
    fit: FitCfg = Field(default_factory=FitCfg)
    table: TableCfg = Field(default_factory=TableCfg)
    vis: VisCfg = Field(default_factory=VisCfg)
