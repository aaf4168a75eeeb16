from pathlib import Path

import pytest
from pydantic import ValidationError

from pmtgain.config.load import load_config
from pmtgain.config.schemas import Config


def test_defaults_match_historical_constants():
    cfg = load_config()
    assert cfg.channels.count == 10
    assert cfg.channels.valid_sizes == [3, 6]
    assert cfg.channels.voltage_error_V == 2.0
    assert cfg.channels.gain_scale == 1e7
    assert cfg.fit.seed == [-30.0, 7.0]
    assert cfg.fit.refit_passes == 9
    assert (cfg.fit.begin_V, cfg.fit.end_V) == (1000.0, 2000.0)
    assert cfg.table.placeholder == "--"
    assert cfg.io.table_template.format(group="CHIMNEY") == "CHIMNEY_gainvsvoltage.txt"


def test_load_partial_toml(tmp_path: Path):
    p = tmp_path / "run.toml"
    p.write_text(
        "[fit]\n"
        "seed = [-25.0, 6.5]\n"
        "refit_passes = 3\n"
        "\n"
        "[channels]\n"
        "count = 4\n"
    )
    cfg = load_config(p)
    assert cfg.fit.seed == [-25.0, 6.5]
    assert cfg.fit.refit_passes == 3
    assert cfg.channels.count == 4
    assert cfg.run.workers == 0


@pytest.mark.parametrize(
    "data",
    [
        {"run": {"diagnostics_level": 3}},
        {"run": {"workers": -1}},
        {"channels": {"count": 0}},
        {"channels": {"valid_sizes": [1, 3]}},
        {"fit": {"seed": [1.0]}},
        {"fit": {"refit_passes": -2}},
        {"fit": {"nonfinite_policy": "raise"}},
        {"fit": {"begin_V": 2000.0, "end_V": 1000.0}},
        {"table": {"skipped_rows": "blank"}},
    ],
)
def test_invalid_config_rejected(data):
    with pytest.raises(ValidationError):
        Config(**data)
