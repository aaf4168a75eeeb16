# src/pmtgain/physics/measurements.py
from __future__ import annotations
from dataclasses import dataclass

import numpy as np


def _frozen_array(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float64).reshape(-1)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, slots=True)
class Measurement:
    """
    One parsed input record.

    channel_id: 1-based PMT number
    voltage: supply voltage [V]
    gain, gain_error: physical gain (raw column already multiplied by the gain scale)
    """
    channel_id: int
    voltage: float
    gain: float
    gain_error: float


@dataclass(frozen=True, slots=True)
class ChannelSample:
    """
    All measurements of one channel, in input order.

    The four arrays are read-only and always the same length.
    """
    channel_id: int
    voltages: np.ndarray
    voltage_errors: np.ndarray
    gains: np.ndarray
    gain_errors: np.ndarray

    def __post_init__(self) -> None:
        for name in ("voltages", "voltage_errors", "gains", "gain_errors"):
            object.__setattr__(self, name, _frozen_array(getattr(self, name)))
        self.validate()

    def __len__(self) -> int:
        return int(self.voltages.size)

    def validate(self) -> None:
        """
        Raise ValueError if the per-point arrays disagree in length.
        """
        n = self.voltages.size
        sizes = (n, self.voltage_errors.size, self.gains.size, self.gain_errors.size)
        if len(set(sizes)) != 1:
            raise ValueError(
                f"ChannelSample length mismatch for channel {self.channel_id}: "
                f"voltages/voltage_errors/gains/gain_errors = {sizes}"
            )


@dataclass(frozen=True, slots=True)
class LogChannelSample:
    """
    Log-space view of a ChannelSample, used as the regression input.

    log_voltage_errors and log_gain_errors are relative errors (sigma/x).
    """
    channel_id: int
    log_voltages: np.ndarray
    log_voltage_errors: np.ndarray
    log_gains: np.ndarray
    log_gain_errors: np.ndarray

    def __post_init__(self) -> None:
        for name in ("log_voltages", "log_voltage_errors", "log_gains", "log_gain_errors"):
            object.__setattr__(self, name, _frozen_array(getattr(self, name)))
        sizes = {
            self.log_voltages.size,
            self.log_voltage_errors.size,
            self.log_gains.size,
            self.log_gain_errors.size,
        }
        if len(sizes) != 1:
            raise ValueError(f"LogChannelSample length mismatch for channel {self.channel_id}")

    def __len__(self) -> int:
        return int(self.log_voltages.size)
