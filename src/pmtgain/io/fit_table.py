from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Literal, Mapping, Sequence, Union

from pmtgain.physics.powerlaw import ChannelOutcome, FitResult, SkippedChannel

N_FIELDS = 7  # constant, err, exponent, err, chi2, ndf, prob

SkippedRows = Literal["placeholder", "omit"]


def order_outcomes(
    outcomes: Union[Mapping[int, ChannelOutcome], Iterable[ChannelOutcome]],
    n_channels: int,
) -> List[ChannelOutcome]:
    """
    Return outcomes as a list indexed by channel_id - 1.

    Accepts either a {channel_id: outcome} mapping or any iterable of outcomes
    (e.g. in completion order). Every channel 1..n_channels must appear once.
    """
    items = outcomes.values() if isinstance(outcomes, Mapping) else outcomes
    slots: List[ChannelOutcome | None] = [None] * n_channels
    for oc in items:
        ch = int(oc.channel_id)
        if not 1 <= ch <= n_channels:
            raise ValueError(f"channel_id {ch} outside 1..{n_channels}")
        if slots[ch - 1] is not None:
            raise ValueError(f"duplicate outcome for channel {ch}")
        slots[ch - 1] = oc
    missing = [i + 1 for i, oc in enumerate(slots) if oc is None]
    if missing:
        raise ValueError(f"missing outcomes for channels {missing}")
    return slots  # type: ignore[return-value]


def _fmt(x: float) -> str:
    # same rendering as a default-precision C++ stream (6 significant digits)
    return f"{x:g}"


def format_fit_row(result: FitResult, delimiter: str = ",") -> str:
    fields = [
        _fmt(result.constant),
        _fmt(result.constant_error),
        _fmt(result.exponent),
        _fmt(result.exponent_error),
        _fmt(result.chi_square),
        str(int(result.degrees_of_freedom)),
        _fmt(result.fit_probability),
    ]
    return delimiter.join(fields)


def format_fit_table(
    outcomes: Sequence[ChannelOutcome],
    placeholder: str = "--",
    placeholder_lines: int = 2,
    skipped_rows: SkippedRows = "placeholder",
    delimiter: str = ",",
) -> List[str]:
    """
    Render channel-ordered outcomes as fit-table lines (no trailing newlines).

    Each fitted channel is ``placeholder_lines`` dash rows followed by its data
    row. A skipped channel is a block of dash rows only ("placeholder") or
    nothing at all ("omit").
    """
    dash = delimiter.join([placeholder] * N_FIELDS)
    lines: List[str] = []
    for oc in outcomes:
        if isinstance(oc, SkippedChannel):
            if skipped_rows == "placeholder":
                lines.extend([dash] * (placeholder_lines + 1))
            continue
        lines.extend([dash] * placeholder_lines)
        lines.append(format_fit_row(oc, delimiter))
    return lines


def write_fit_table(
    path: str | Path,
    outcomes: Union[Mapping[int, ChannelOutcome], Iterable[ChannelOutcome]],
    n_channels: int,
    table_cfg=None,
) -> Path:
    """
    Write the comma-separated fit table in increasing channel order.

    ``table_cfg`` is a pmtgain.config.schemas.TableCfg (defaults when None).
    """
    ordered = order_outcomes(outcomes, n_channels)
    kw = {}
    if table_cfg is not None:
        kw = dict(
            placeholder=table_cfg.placeholder,
            placeholder_lines=table_cfg.placeholder_lines,
            skipped_rows=table_cfg.skipped_rows,
            delimiter=table_cfg.delimiter,
        )
    lines = format_fit_table(ordered, **kw)
    out = Path(path)
    with out.open("w", newline="\n") as fh:
        for ln in lines:
            fh.write(ln + "\n")
    return out
