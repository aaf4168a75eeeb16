from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
from typer.testing import CliRunner

from pmtgain.config.schemas import Config
from pmtgain.pipelines.core import app, run_pipeline
from pmtgain.physics.powerlaw import FitResult, SkippedChannel
from pmtgain.sim.synth import VOLTAGES_3, VOLTAGES_6, synth_group_lines, write_synth_input

DASH = "--,--,--,--,--,--,--"


def _cfg(tmp_path: Path, **vis) -> Config:
    cfg = Config()
    cfg.io.input_dir = str(tmp_path)
    cfg.io.output_dir = str(tmp_path / "out")
    cfg.run.diagnostics_level = 0
    cfg.vis.export_pdf = vis.get("pdf", False)
    cfg.vis.export_container = vis.get("h5", False)
    return cfg


def _channels(skip=(), four=()):
    chans = {}
    for ch in range(1, 11):
        if ch in skip:
            continue
        if ch in four:
            chans[ch] = VOLTAGES_6[:4]
        else:
            chans[ch] = VOLTAGES_3 if ch % 2 else VOLTAGES_6
    return chans


def _data_rows(table: Path):
    return [ln for ln in table.read_text().splitlines() if ln != DASH]


def test_all_channels_fitted_in_order(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(), noise=0.003, seed=4))
    res = run_pipeline("G", cfg=_cfg(tmp_path))

    assert [oc.channel_id for oc in res.outcomes] == list(range(1, 11))
    assert all(isinstance(oc, FitResult) for oc in res.outcomes)
    assert res.table_path == tmp_path / "out" / "G_gainvsvoltage.txt"

    lines = res.table_path.read_text().splitlines()
    assert len(lines) == 30
    exponents = [float(ln.split(",")[2]) for ln in _data_rows(res.table_path)]
    np.testing.assert_allclose(exponents, 7.0 + 0.1 * np.arange(10), atol=0.1)
    assert res.diagnostics.fitted == 10 and res.diagnostics.skipped == 0


def test_channel_without_rows_is_skipped(tmp_path: Path, capsys):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(skip=(5,)), seed=1))
    res = run_pipeline("G", cfg=_cfg(tmp_path))

    assert isinstance(res.outcomes[4], SkippedChannel)
    assert all(isinstance(oc, FitResult) for i, oc in enumerate(res.outcomes) if i != 4)
    lines = res.table_path.read_text().splitlines()
    assert len(lines) == 30
    assert lines[12:15] == [DASH, DASH, DASH]
    assert "Improper number of data points for PMT 5. SKIPPING" in capsys.readouterr().out


def test_four_rows_always_skip(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(four=(2,)), seed=1))
    res = run_pipeline("G", cfg=_cfg(tmp_path))
    assert isinstance(res.outcomes[1], SkippedChannel)
    assert "4 data points" in res.outcomes[1].reason
    assert res.diagnostics.skipped == 1


def test_omit_layout_drops_skipped_blocks(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(skip=(1, 10)), seed=1))
    cfg = _cfg(tmp_path)
    cfg.table.skipped_rows = "omit"
    res = run_pipeline("G", cfg=cfg)
    assert len(res.table_path.read_text().splitlines()) == 24


def test_output_order_independent_of_row_order(tmp_path: Path):
    lines = synth_group_lines(_channels(), noise=0.003, seed=9)
    perm = np.random.default_rng(0).permutation(len(lines))
    write_synth_input(tmp_path / "A.txt", lines)
    write_synth_input(tmp_path / "B.txt", [lines[i] for i in perm])

    a = run_pipeline("A", cfg=_cfg(tmp_path))
    b = run_pipeline("B", cfg=_cfg(tmp_path))
    assert [oc.channel_id for oc in b.outcomes] == list(range(1, 11))
    ea = [float(r.split(",")[2]) for r in _data_rows(a.table_path)]
    eb = [float(r.split(",")[2]) for r in _data_rows(b.table_path)]
    np.testing.assert_allclose(ea, eb, rtol=1e-4)


def test_rerun_is_bit_identical(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(four=(3,)), noise=0.01, seed=2))
    cfg1 = _cfg(tmp_path)
    cfg2 = _cfg(tmp_path)
    cfg2.io.output_dir = str(tmp_path / "out2")
    t1 = run_pipeline("G", cfg=cfg1).table_path.read_bytes()
    t2 = run_pipeline("G", cfg=cfg2).table_path.read_bytes()
    assert t1 == t2


def test_parallel_matches_sequential(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(skip=(7,)), noise=0.01, seed=3))
    seq = _cfg(tmp_path)
    par = _cfg(tmp_path)
    par.io.output_dir = str(tmp_path / "par")
    par.run.workers = 2
    assert run_pipeline("G", cfg=seq).outcomes == run_pipeline("G", cfg=par).outcomes


def test_nonconverged_fit_written_or_skipped(tmp_path: Path):
    lines = synth_group_lines({ch: VOLTAGES_3 for ch in range(1, 11)}, seed=1)
    # zero gain errors on channel 4, together with zero voltage errors, leave no weights
    lines = [" ".join(ln.split()[:3] + ["0"]) if ln.startswith("4 ") else ln for ln in lines]
    write_synth_input(tmp_path / "G.txt", lines)

    cfg = _cfg(tmp_path)
    cfg.channels.voltage_error_V = 0.0
    res = run_pipeline("G", cfg=cfg)
    oc = res.outcomes[3]
    assert isinstance(oc, FitResult) and not oc.converged
    assert _data_rows(res.table_path)[3].startswith("nan,nan,nan,nan,nan,1,nan")

    cfg = _cfg(tmp_path)
    cfg.channels.voltage_error_V = 0.0
    cfg.fit.nonfinite_policy = "skip"
    res = run_pipeline("G", cfg=cfg)
    assert isinstance(res.outcomes[3], SkippedChannel)
    assert res.outcomes[3].reason == "fit did not converge"


def test_pdf_and_container_outputs(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(skip=(2,)), noise=0.01, seed=6))
    res = run_pipeline("G", cfg=_cfg(tmp_path, pdf=True, h5=True))

    out = tmp_path / "out"
    assert res.container_path == out / "G_gainvsvoltage.h5"
    assert res.container_path.exists()
    assert sorted(res.plot_paths) == [1, 3, 4, 5, 6, 7, 8, 9, 10]
    assert (out / "G_1_gainvsvoltage.pdf").read_bytes().startswith(b"%PDF")
    assert not (out / "G_2_gainvsvoltage.pdf").exists()


def test_cli_runs_and_reports_missing_input(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(), seed=1))
    toml = tmp_path / "cfg.toml"
    toml.write_text(
        f'[run]\ndiagnostics_level = 0\n\n'
        f'[io]\ninput_dir = "{tmp_path.as_posix()}"\noutput_dir = "{(tmp_path / "cli").as_posix()}"\n\n'
        f'[vis]\nexport_pdf = false\nexport_container = false\n'
    )
    runner = CliRunner()
    ok = runner.invoke(app, ["G", "--config", str(toml)])
    assert ok.exit_code == 0, ok.output
    assert (tmp_path / "cli" / "G_gainvsvoltage.txt").exists()

    missing = runner.invoke(app, ["NOPE", "--config", str(toml)])
    assert missing.exit_code == 1


def test_viz_cli_rerenders_from_container(tmp_path: Path):
    from pmtgain.cli.viz import app as viz_app

    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(skip=(2,)), noise=0.01, seed=6))
    res = run_pipeline("G", cfg=_cfg(tmp_path, h5=True))
    runner = CliRunner()

    out_pdf = tmp_path / "ch3.pdf"
    ok = runner.invoke(viz_app, ["h5-to-pdf", str(res.container_path), "3", "--out", str(out_pdf)])
    assert ok.exit_code == 0, ok.output
    assert out_pdf.read_bytes().startswith(b"%PDF")

    skipped = runner.invoke(viz_app, ["h5-to-pdf", str(res.container_path), "2"])
    assert skipped.exit_code == 1

    summary = runner.invoke(viz_app, ["summary", str(res.container_path)])
    assert summary.exit_code == 0
    assert "  2  skipped" in summary.output


def test_cli_reports_unwritable_output_dir(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(), seed=1))
    (tmp_path / "blocker").write_text("not a directory\n")
    toml = tmp_path / "cfg.toml"
    toml.write_text(
        f'[run]\ndiagnostics_level = 0\n\n'
        f'[io]\ninput_dir = "{tmp_path.as_posix()}"\noutput_dir = "{(tmp_path / "blocker" / "o").as_posix()}"\n'
    )
    res = CliRunner().invoke(app, ["G", "--config", str(toml)])
    assert res.exit_code == 1
    assert "error:" in res.output


def test_overrides_leave_caller_config_untouched(tmp_path: Path):
    write_synth_input(tmp_path / "G.txt", synth_group_lines(_channels(), seed=1))
    cfg = _cfg(tmp_path)
    cfg.io.input_dir = str(tmp_path / "elsewhere")
    res = run_pipeline("G", input_dir=str(tmp_path), output_dir=str(tmp_path / "ov"), cfg=cfg)
    assert res.table_path == tmp_path / "ov" / "G_gainvsvoltage.txt"
    assert cfg.io.input_dir == str(tmp_path / "elsewhere")
    assert cfg.io.output_dir == str(tmp_path / "out")
