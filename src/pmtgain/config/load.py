from __future__ import annotations
from .schemas import Config
from pathlib import Path
from typing import Optional
import json
import tomllib

def load_config(path: Optional[str | Path] = None) -> Config:
    """Load a TOML config; with no path, every section takes its defaults."""
    if path is None:
        return Config()
    p = Path(path)
    data = tomllib.loads(p.read_text())
    return Config(**data)

def snapshot_config_json(cfg: Config) -> str:
    """Return the effective config as compact JSON for embedding in HDF5 metadata."""
    return json_dumps(cfg.model_dump())

def json_dumps(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
