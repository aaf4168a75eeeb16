from __future__ import annotations

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import typer

from pmtgain.config.load import load_config
from pmtgain.config.schemas import Config
from pmtgain.filters.channels import (
    ChannelDiagnostics,
    InvalidChannelSampleSize,
    build_channel_sample,
    to_log_sample,
)
from pmtgain.io.adapters import partition_by_channel, read_measurements
from pmtgain.io.fit_store import write_channel, write_fit_summary, write_init
from pmtgain.io.fit_table import order_outcomes, write_fit_table
from pmtgain.physics.measurements import ChannelSample, Measurement
from pmtgain.physics.powerlaw import ChannelOutcome, FitResult, SkippedChannel, fit_power_law
from pmtgain.vis.plots import save_channel_pdf

NONCONVERGED_REASON = "fit did not converge"


@dataclass
class PipelineResult:
    outcomes: List[ChannelOutcome]
    table_path: Path
    container_path: Optional[Path] = None
    plot_paths: Dict[int, Path] = field(default_factory=dict)
    diagnostics: ChannelDiagnostics = field(default_factory=ChannelDiagnostics)


def _fit_channel(
    channel_id: int,
    rows: Sequence[Measurement],
    cfg: Config,
) -> Tuple[Optional[ChannelSample], ChannelOutcome]:
    """
    Preprocess and fit one channel. Never raises for per-channel problems:
    invalid sample sizes (and, by policy, failed fits) become SkippedChannel.
    """
    try:
        sample = build_channel_sample(
            rows,
            channel_id,
            voltage_error=cfg.channels.voltage_error_V,
            valid_sizes=cfg.channels.valid_sizes,
        )
    except InvalidChannelSampleSize as exc:
        return None, SkippedChannel(channel_id=channel_id, reason=str(exc))

    if cfg.run.diagnostics_level >= 1:
        print(f"[fit] Fitting {channel_id}")
    result = fit_power_law(
        to_log_sample(sample),
        seed=cfg.fit.seed,
        refit_passes=cfg.fit.refit_passes,
        verbose=cfg.run.diagnostics_level >= 2,
    )
    if not result.is_finite() and cfg.fit.nonfinite_policy == "skip":
        return sample, SkippedChannel(channel_id=channel_id, reason=NONCONVERGED_REASON)
    return sample, result


def _resolve_workers(workers: int | str) -> int:
    if workers == "auto":
        return max(1, os.cpu_count() or 1)
    return max(0, int(workers))


def fit_channels(
    partition: Dict[int, List[Measurement]],
    cfg: Config,
) -> Dict[int, Tuple[Optional[ChannelSample], ChannelOutcome]]:
    """
    Fit every channel of ``partition``; results are keyed by channel id.

    Channels are independent, so with workers > 0 they are fitted in a process
    pool. Completion order is irrelevant: callers reorder by channel id.
    """
    workers = _resolve_workers(cfg.run.workers)
    results: Dict[int, Tuple[Optional[ChannelSample], ChannelOutcome]] = {}

    # Single-process path (also good for debugging)
    if workers == 0 or len(partition) < 2:
        for ch in sorted(partition):
            results[ch] = _fit_channel(ch, partition[ch], cfg)
        return results

    with ProcessPoolExecutor(max_workers=workers) as ex:
        futs = {ex.submit(_fit_channel, ch, partition[ch], cfg): ch for ch in partition}
        for fut in as_completed(futs):
            results[futs[fut]] = fut.result()
    return results


def run_pipeline(
    group: str,
    cfg_path: Optional[str] = None,
    *,
    input_dir: Optional[str] = None,
    output_dir: Optional[str] = None,
    cfg: Optional[Config] = None,
) -> PipelineResult:
    """
    Fit every configured PMT of one channel group and write the outputs.

    Parameters
    ----------
    group : str
        Channel-group identifier; seeds the input and every output file name.
    cfg_path : str, optional
        TOML configuration; defaults are the historical detector constants.
    input_dir, output_dir : str, optional
        Override [io].input_dir / [io].output_dir.
    cfg : Config, optional
        Pre-built configuration (takes precedence over cfg_path).

    Returns
    -------
    PipelineResult with outcomes in channel order and the written paths.
    """
    if cfg is None:
        cfg = load_config(cfg_path)
    else:
        cfg = cfg.model_copy(deep=True)

    # ---- apply overrides on top of TOML ----
    if input_dir is not None:
        cfg.io.input_dir = input_dir
    if output_dir is not None:
        cfg.io.output_dir = output_dir

    diag_level = cfg.run.diagnostics_level
    n_channels = cfg.channels.count

    in_path = Path(cfg.io.input_dir) / cfg.io.input_template.format(group=group)
    out_dir = Path(cfg.io.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    if diag_level >= 1:
        print(f"[run] group={group} channels=1..{n_channels}")
        print(f"[run] input={in_path} -> output_dir={out_dir}")

    # Load
    measurements = read_measurements(in_path, gain_scale=cfg.channels.gain_scale)
    partition = partition_by_channel(measurements, range(1, n_channels + 1))
    if diag_level >= 1:
        print(f"[load] Read {len(measurements)} records")
    if diag_level >= 2:
        for ch, rows in partition.items():
            print(f"[load] PMT {ch}: {len(rows)} records")

    # Fit
    fitted = fit_channels(partition, cfg)
    outcomes = order_outcomes({ch: oc for ch, (_, oc) in fitted.items()}, n_channels)

    diag = ChannelDiagnostics(total_channels=n_channels)
    for oc in outcomes:
        if isinstance(oc, SkippedChannel):
            diag.skipped += 1
            diag.inc(oc.reason)
            if oc.reason == NONCONVERGED_REASON:
                print(f"Fit did not converge for PMT {oc.channel_id}. SKIPPING")
            else:
                print(f"Improper number of data points for PMT {oc.channel_id}. SKIPPING")
            continue
        diag.fitted += 1
        if not oc.is_finite() and diag_level >= 1:
            print(f"[fit] PMT {oc.channel_id}: fit did not converge; writing non-finite values")
        if diag_level >= 1:
            print(f"[fit] PMT {oc.channel_id}: constant={oc.constant:.6g} exponent={oc.exponent:.6g} "
                  f"chi2/ndf={oc.chi_square:.4g}/{oc.degrees_of_freedom}")

    # Fit table
    table_path = out_dir / cfg.io.table_template.format(group=group)
    write_fit_table(table_path, outcomes, n_channels, cfg.table)
    if diag_level >= 1:
        print(f"[table] Wrote {table_path}")

    result = PipelineResult(outcomes=outcomes, table_path=table_path, diagnostics=diag)

    # Aggregate container
    if cfg.vis.export_container:
        container_path = out_dir / cfg.io.container_template.format(group=group)
        f = write_init(str(container_path), group, cfg)
        try:
            for ch in range(1, n_channels + 1):
                sample, oc = fitted[ch]
                write_channel(f, ch, sample, oc)
            write_fit_summary(f, outcomes)
        finally:
            f.close()
        result.container_path = container_path
        if diag_level >= 1:
            print(f"[h5] Wrote {container_path}")

    # Plots (after all fits; failures never abort the run)
    if cfg.vis.export_pdf:
        for ch in range(1, n_channels + 1):
            sample, oc = fitted[ch]
            if sample is None or not isinstance(oc, FitResult):
                continue
            out_pdf = out_dir / cfg.io.plot_template.format(group=group, channel=ch)
            try:
                save_channel_pdf(sample, oc, group, str(out_pdf),
                                 v_begin=cfg.fit.begin_V, v_end=cfg.fit.end_V)
                result.plot_paths[ch] = out_pdf
            except Exception as e:
                if diag_level >= 1:
                    print(f"[plots] PDF export failed for PMT {ch}: {e!r}")
        if diag_level >= 1:
            print(f"[plots] Wrote {len(result.plot_paths)} PDF files")

    return result


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="PMT gain-vs-voltage power-law fits (pmtgain.pipelines.core)")


@app.command()
def main(
    group: str = typer.Argument(
        ...,
        help="Channel-group identifier; reads <group>.txt and names every output",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Optional TOML config overriding the default constants",
    ),
):
    """
    Fit gain vs voltage for every PMT of one channel group.
    """
    try:
        result = run_pipeline(group, config)
    except OSError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(str(result.table_path))


if __name__ == "__main__":
    app()
