from __future__ import annotations
import numpy as np
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from ..io.adapters import GAIN_SCALE

VOLTAGES_6 = (1000.0, 1200.0, 1400.0, 1600.0, 1800.0, 2000.0)
VOLTAGES_3 = (1200.0, 1500.0, 1800.0)


def power_law_gain(voltages: Sequence[float], amplitude: float, exponent: float) -> np.ndarray:
    return amplitude * np.power(np.asarray(voltages, dtype=np.float64), exponent)

def amplitude_for_gain(gain: float, voltage: float, exponent: float) -> float:
    """Amplitude A such that A * voltage**exponent == gain."""
    return gain / voltage**exponent

def synth_channel_lines(
    channel_id: int,
    voltages: Sequence[float],
    amplitude: float,
    exponent: float,
    rel_error: float = 0.02,
    noise: float = 0.0,
    gain_scale: float = GAIN_SCALE,
    rng: np.random.Generator | None = None,
) -> List[str]:
    """
    Measurement lines "PMT# V gain gain_err" for one channel.

    Gains follow amplitude * V**exponent, optionally smeared by a relative
    Gaussian ``noise``; errors are ``rel_error`` of the true gain. Gain columns
    are written in raw units (divided by ``gain_scale``).
    """
    rng = rng or np.random.default_rng()
    g_true = power_law_gain(voltages, amplitude, exponent)
    g = g_true * (1.0 + noise * rng.standard_normal(g_true.size)) if noise > 0 else g_true
    ge = rel_error * g_true
    return [
        f"{channel_id} {v:.6g} {gi / gain_scale:.10g} {gei / gain_scale:.10g}"
        for v, gi, gei in zip(voltages, g, ge)
    ]

def synth_group_lines(
    channels: Dict[int, Sequence[float]],
    exponent: float = 7.0,
    gain_at_1500V: float = 1e7,
    rel_error: float = 0.02,
    noise: float = 0.0,
    seed: int | None = 0,
) -> List[str]:
    """
    Lines for several channels, each {channel_id: voltages}; channel k gets
    exponent + 0.1*(k-1) so fits are distinguishable.
    """
    rng = np.random.default_rng(seed)
    lines: List[str] = []
    for ch, volts in channels.items():
        k = exponent + 0.1 * (ch - 1)
        A = amplitude_for_gain(gain_at_1500V, 1500.0, k)
        lines.extend(synth_channel_lines(ch, volts, A, k, rel_error=rel_error, noise=noise, rng=rng))
    return lines

def write_synth_input(path: str | Path, lines: Iterable[str]) -> Path:
    p = Path(path)
    p.write_text("".join(ln + "\n" for ln in lines))
    return p
