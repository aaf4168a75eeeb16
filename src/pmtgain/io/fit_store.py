from __future__ import annotations
from typing import Dict, Optional, Sequence, Tuple
import h5py
import numpy as np
from datetime import datetime, timezone
from pathlib import Path
from pmtgain.config.schemas import Config
from pmtgain.config.load import snapshot_config_json
from pmtgain.physics.measurements import ChannelSample
from pmtgain.physics.powerlaw import ChannelOutcome, FitResult, SkippedChannel

FORMAT_VERSION = "1.0"
SOFTWARE = "pmtgain 0.1.0"

_FIT_FIELDS = (
    "constant",
    "constant_error",
    "exponent",
    "exponent_error",
    "chi_square",
    "fit_probability",
)


def _channel_key(channel_id: int) -> str:
    return f"{int(channel_id):02d}"


def write_init(path: str, group: str, cfg: Config) -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = SOFTWARE
    f.attrs["group"] = group
    f.attrs["config_json"] = snapshot_config_json(cfg)
    f.attrs["fit.begin_V"] = cfg.fit.begin_V
    f.attrs["fit.end_V"] = cfg.fit.end_V
    f.require_group("channels")
    return f


def write_channel(
    f: h5py.File,
    channel_id: int,
    sample: Optional[ChannelSample],
    outcome: ChannelOutcome,
) -> None:
    """
    Store one channel's renderable data and fit outcome under /channels/<NN>.

    Layout:

    /channels/NN/voltage_V        (N,) float64
    /channels/NN/voltage_error_V  (N,) float64
    /channels/NN/gain             (N,) float64   physical gain
    /channels/NN/gain_error       (N,) float64
    attrs: channel_id, status ("fitted" | "skipped"), FitResult fields or reason

    ``sample`` may be None for skipped channels; the datasets are then empty.
    """
    grp = f.require_group("channels")
    key = _channel_key(channel_id)
    if key in grp:
        del grp[key]
    g = grp.create_group(key)
    g.attrs["channel_id"] = int(channel_id)

    if sample is not None:
        cols = {
            "voltage_V": sample.voltages,
            "voltage_error_V": sample.voltage_errors,
            "gain": sample.gains,
            "gain_error": sample.gain_errors,
        }
    else:
        cols = {k: np.zeros(0) for k in ("voltage_V", "voltage_error_V", "gain", "gain_error")}
    for name, arr in cols.items():
        g.create_dataset(name, data=np.asarray(arr, dtype=np.float64))

    if isinstance(outcome, SkippedChannel):
        g.attrs["status"] = "skipped"
        g.attrs["reason"] = outcome.reason
        return

    g.attrs["status"] = "fitted"
    for name in _FIT_FIELDS:
        g.attrs[name] = float(getattr(outcome, name))
    g.attrs["degrees_of_freedom"] = int(outcome.degrees_of_freedom)
    g.attrs["n_points"] = int(outcome.n_points)
    g.attrs["n_passes"] = int(outcome.n_passes)
    g.attrs["converged"] = bool(outcome.converged)


def write_fit_summary(f: h5py.File, outcomes: Sequence[ChannelOutcome]) -> None:
    """
    Store one row per channel under /fits (column datasets, channel order).

    Skipped channels carry NaN fit values, ndf = -1 and status = 0.
    """
    n = len(outcomes)
    cols: Dict[str, np.ndarray] = {name: np.full(n, np.nan) for name in _FIT_FIELDS}
    channel_id = np.zeros(n, dtype=np.int32)
    ndf = np.full(n, -1, dtype=np.int32)
    status = np.zeros(n, dtype=np.uint8)  # 1=fitted, 0=skipped

    for i, oc in enumerate(outcomes):
        channel_id[i] = oc.channel_id
        if isinstance(oc, FitResult):
            status[i] = 1
            ndf[i] = oc.degrees_of_freedom
            for name in _FIT_FIELDS:
                cols[name][i] = getattr(oc, name)

    grp = f.require_group("fits")

    def _replace_or_create(name: str, data: np.ndarray):
        if name in grp:
            del grp[name]
        grp.create_dataset(name, data=data)

    _replace_or_create("channel_id", channel_id)
    for name, arr in cols.items():
        _replace_or_create(name, arr)
    _replace_or_create("ndf", ndf)
    _replace_or_create("status", status)


def read_channel(path: str | Path, channel_id: int) -> Tuple[Optional[ChannelSample], ChannelOutcome]:
    path = str(path)
    with h5py.File(path, "r") as f:
        key = _channel_key(channel_id)
        if "channels" not in f or key not in f["channels"]:
            raise KeyError(f"channel {channel_id} not found in /channels of {path}")
        g = f["channels"][key]
        v = np.array(g["voltage_V"], dtype=np.float64)
        sample: Optional[ChannelSample] = None
        if v.size:
            sample = ChannelSample(
                channel_id=int(channel_id),
                voltages=v,
                voltage_errors=np.array(g["voltage_error_V"], dtype=np.float64),
                gains=np.array(g["gain"], dtype=np.float64),
                gain_errors=np.array(g["gain_error"], dtype=np.float64),
            )
        attrs = dict(g.attrs)

    status = str(attrs["status"])
    if status == "skipped":
        return sample, SkippedChannel(channel_id=int(channel_id), reason=str(attrs.get("reason", "")))

    outcome = FitResult(
        channel_id=int(channel_id),
        degrees_of_freedom=int(attrs["degrees_of_freedom"]),
        n_points=int(attrs.get("n_points", 0)),
        n_passes=int(attrs.get("n_passes", 0)),
        converged=bool(attrs.get("converged", True)),
        **{name: float(attrs[name]) for name in _FIT_FIELDS},
    )
    return sample, outcome


def read_fit_summary(path: str | Path) -> Dict[str, np.ndarray]:
    path = str(path)
    with h5py.File(path, "r") as f:
        if "fits" not in f:
            raise KeyError(f"/fits not found in {path}")
        return {name: np.array(dset) for name, dset in f["fits"].items()}
