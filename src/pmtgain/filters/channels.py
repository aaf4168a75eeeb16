# src/pmtgain/filters/channels.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

import numpy as np

from pmtgain.physics.measurements import ChannelSample, LogChannelSample, Measurement

VALID_SIZES = (3, 6)
VOLTAGE_ERROR_V = 2.0  # fixed absolute supply-voltage uncertainty per point


class InvalidChannelSampleSize(ValueError):
    """A channel has a record count outside the accepted sample sizes."""

    def __init__(self, channel_id: int, count: int, valid_sizes: Sequence[int] = VALID_SIZES):
        self.channel_id = channel_id
        self.count = count
        self.valid_sizes = tuple(valid_sizes)
        super().__init__(
            f"channel {channel_id}: {count} data points "
            f"(expected one of {', '.join(str(n) for n in self.valid_sizes)})"
        )


@dataclass
class ChannelDiagnostics:
    total_channels: int = 0
    fitted: int = 0
    skipped: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


def select_channel(measurements: Iterable[Measurement], channel_id: int) -> List[Measurement]:
    return [m for m in measurements if m.channel_id == channel_id]


def build_channel_sample(
    measurements: Iterable[Measurement],
    channel_id: int,
    voltage_error: float = VOLTAGE_ERROR_V,
    valid_sizes: Sequence[int] = VALID_SIZES,
) -> ChannelSample:
    """
    Select one channel's records and pack them into a ChannelSample.

    Only sample sizes in ``valid_sizes`` are accepted; anything else raises
    InvalidChannelSampleSize so the caller can skip the channel.
    The input has no voltage-error column, so every point gets the same
    absolute ``voltage_error``.
    """
    rows = select_channel(measurements, channel_id)
    if len(rows) not in valid_sizes:
        raise InvalidChannelSampleSize(channel_id, len(rows), valid_sizes)

    voltages = np.array([m.voltage for m in rows], dtype=np.float64)
    return ChannelSample(
        channel_id=channel_id,
        voltages=voltages,
        voltage_errors=np.full(voltages.size, float(voltage_error)),
        gains=np.array([m.gain for m in rows], dtype=np.float64),
        gain_errors=np.array([m.gain_error for m in rows], dtype=np.float64),
    )


def to_log_sample(sample: ChannelSample) -> LogChannelSample:
    """
    Linearize gain = A * V**k into ln(gain) = ln(A) + k * ln(V).

    Errors follow sigma_ln(x) = sigma_x / x.
    """
    v = sample.voltages
    g = sample.gains
    with np.errstate(divide="ignore", invalid="ignore"):
        return LogChannelSample(
            channel_id=sample.channel_id,
            log_voltages=np.log(v),
            log_voltage_errors=sample.voltage_errors / v,
            log_gains=np.log(g),
            log_gain_errors=sample.gain_errors / g,
        )
