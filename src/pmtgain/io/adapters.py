"""
pmtgain.io.adapters

Reader that turns a gain-vs-voltage measurement table into
physics-layer Measurement records (pmtgain.physics.measurements.Measurement).

Input format
------------
One record per line, four whitespace-separated numbers:

    PMT#  Voltage  Gain  GainError

Gain and GainError are stored in units of 1e7; they are scaled to physical
gain on ingest. Channel ids need not be sorted or contiguous.

Tolerance
---------
- Blank lines and comment lines ('#', '*', '!') are ignored.
- A line that is not exactly four numeric tokens (including a partial
  trailing record) is dropped silently.
- A non-integral channel id never matches a PMT and is dropped.
- No domain validation happens here; sample-size checks belong to
  pmtgain.filters.channels.

An unreadable file raises OSError; that is fatal for the run.
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from pmtgain.physics.measurements import Measurement

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

COLUMNS = ("channel_id", "voltage", "gain", "gain_error")
GAIN_SCALE = 1e7

_COMMENT_PREFIXES = ("#", "*", "!")


def _tokenize(lines: Iterable[str]) -> List[List[str]]:
    rows: List[List[str]] = []
    for ln in lines:
        s = ln.strip()
        if not s or s.startswith(_COMMENT_PREFIXES):
            continue
        tokens = s.split()
        if len(tokens) != len(COLUMNS):
            continue
        rows.append(tokens)
    return rows


def _rows_to_frame(rows: Sequence[Sequence[str]]) -> pd.DataFrame:
    """
    Coerce string tokens to numbers; rows with any unparseable field are dropped.
    Integral channel ids are kept as int64, input order is preserved.
    """
    df = pd.DataFrame(list(rows), columns=list(COLUMNS), dtype=object)
    df = df.apply(pd.to_numeric, errors="coerce").dropna()
    ch = df["channel_id"].to_numpy(dtype=np.float64)
    df = df[np.isfinite(ch) & (ch == np.round(ch))]
    df = df.astype({"channel_id": np.int64})
    return df.reset_index(drop=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_measurement_line(line: str, gain_scale: float = GAIN_SCALE) -> Optional[Measurement]:
    """
    Parse one input line; returns None for anything that is not a record.
    """
    rows = _tokenize([line])
    if not rows:
        return None
    df = _rows_to_frame(rows)
    if df.empty:
        return None
    return next(iter(_frame_to_measurements(df, gain_scale)))


def _frame_to_measurements(df: pd.DataFrame, gain_scale: float) -> List[Measurement]:
    return [
        Measurement(
            channel_id=int(r.channel_id),
            voltage=float(r.voltage),
            gain=float(r.gain) * gain_scale,
            gain_error=float(r.gain_error) * gain_scale,
        )
        for r in df.itertuples(index=False)
    ]


def read_measurements(path: str | Path, gain_scale: float = GAIN_SCALE) -> List[Measurement]:
    """
    Read all parseable records from a measurement table, in file order.

    Parameters
    ----------
    path : str | Path
        Text table (usually "<group>.txt").
    gain_scale : float
        Multiplier turning the raw Gain/GainError columns into physical gain.

    Returns
    -------
    list[Measurement]
    """
    p = Path(path)
    text = p.read_text(encoding="utf-8", errors="ignore")
    rows = _tokenize(text.splitlines())
    if not rows:
        return []
    return _frame_to_measurements(_rows_to_frame(rows), gain_scale)


def partition_by_channel(
    measurements: Iterable[Measurement],
    channels: Iterable[int],
) -> Dict[int, List[Measurement]]:
    """
    Group measurements by channel id for the configured channels.

    Every requested channel gets an entry (possibly empty); measurements of
    other channels are ignored. Input order is preserved within a channel.
    """
    out: Dict[int, List[Measurement]] = {int(c): [] for c in channels}
    for m in measurements:
        bucket = out.get(m.channel_id)
        if bucket is not None:
            bucket.append(m)
    return out
