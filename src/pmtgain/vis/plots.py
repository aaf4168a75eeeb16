import h5py
import numpy as np
import matplotlib.pyplot as plt
from pathlib import Path

from pmtgain.filters.channels import to_log_sample
from pmtgain.io.fit_store import read_channel
from pmtgain.physics.measurements import ChannelSample
from pmtgain.physics.powerlaw import FitResult


def _fit_stats_text(result: FitResult) -> str:
    return "\n".join([
        f"$\\chi^2$ / ndf = {result.chi_square:.4g} / {result.degrees_of_freedom}",
        f"Prob = {result.fit_probability:.4g}",
        f"Constant = {result.constant:.4g} $\\pm$ {result.constant_error:.3g}",
        f"Exponent = {result.exponent:.4g} $\\pm$ {result.exponent_error:.3g}",
    ])


def render_channel(
    sample: ChannelSample,
    result: FitResult,
    group: str,
    v_begin: float = 1000.0,
    v_end: float = 2000.0,
):
    """
    Build the two-panel figure for one channel.

    Top: ln(gain) vs ln(V) with the fitted line.
    Bottom: gain vs V with the power curve amplitude * V**exponent over [v_begin, v_end].
    """
    log_sample = to_log_sample(sample)
    label = f"{group}_{sample.channel_id}"

    fig, (ax_log, ax_lin) = plt.subplots(2, 1, figsize=(6, 7))

    ax_log.errorbar(
        log_sample.log_voltages, log_sample.log_gains,
        xerr=log_sample.log_voltage_errors, yerr=log_sample.log_gain_errors,
        fmt="s", mfc="none", color="k", capsize=2,
    )
    x = np.linspace(log_sample.log_voltages.min(), log_sample.log_voltages.max(), 100)
    ax_log.plot(x, result.log_line(x), color="r")
    ax_log.set_title(f"PMT {label} gain vs voltage (log)")
    ax_log.set_xlabel("log(voltage [V])")
    ax_log.set_ylabel("log(gain)")
    ax_log.grid(True)
    ax_log.text(
        0.03, 0.97, _fit_stats_text(result), transform=ax_log.transAxes,
        va="top", ha="left", fontsize=8,
        bbox=dict(boxstyle="square", facecolor="white", alpha=0.8),
    )

    ax_lin.errorbar(
        sample.voltages, sample.gains,
        xerr=sample.voltage_errors, yerr=sample.gain_errors,
        fmt="s", mfc="none", color="k", capsize=2,
    )
    v = np.linspace(v_begin, v_end, 200)
    ax_lin.plot(v, result.power_curve(v), color="r")
    ax_lin.set_title(f"PMT {label} gain vs voltage (linear)")
    ax_lin.set_xlabel("voltage [V]")
    ax_lin.set_ylabel("gain")
    ax_lin.grid(True)

    fig.tight_layout()
    return fig


def save_channel_pdf(
    sample: ChannelSample,
    result: FitResult,
    group: str,
    out_pdf: str,
    v_begin: float = 1000.0,
    v_end: float = 2000.0,
) -> str:
    fig = render_channel(sample, result, group, v_begin=v_begin, v_end=v_end)
    try:
        fig.savefig(out_pdf, format="pdf")
    finally:
        plt.close(fig)
    return out_pdf


def save_channel_pdf_from_h5(h5_path: str, channel_id: int, out_pdf: str | None = None) -> str:
    """Re-render one channel's figure from the aggregate HDF5 container."""
    sample, outcome = read_channel(h5_path, channel_id)
    if sample is None or not isinstance(outcome, FitResult):
        raise ValueError(f"channel {channel_id} in {h5_path} was skipped; nothing to render")

    with h5py.File(h5_path, "r") as f:
        group = str(f.attrs.get("group", Path(h5_path).stem))
        v_begin = float(f.attrs.get("fit.begin_V", 1000.0))
        v_end = float(f.attrs.get("fit.end_V", 2000.0))

    if out_pdf is None:
        out_pdf = str(Path(h5_path).with_name(f"{group}_{channel_id}_gainvsvoltage.pdf"))
    return save_channel_pdf(sample, outcome, group, out_pdf, v_begin=v_begin, v_end=v_end)
