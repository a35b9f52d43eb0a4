import json
from pathlib import Path

import pytest

from fdvproc import cli


def _run(capsys, argv):
    rc = cli.main(argv)
    return rc, json.loads(capsys.readouterr().out)


def test_cli_r3(capsys):
    rc, data = _run(capsys, ["r3", "--width", "600", "--height", "900", "--form", "1"])
    assert rc == 0
    assert data["ok"] is True
    assert data["value"] == pytest.approx(900.0)


def test_cli_encode(capsys, combination_csv, tmp_path: Path):
    out = tmp_path / "MH101.fdv"
    rc, data = _run(capsys, [
        "encode", str(combination_csv),
        "--out", str(out),
        "--shape", "Circular",
        "--dims", "300",
        "--site-name", "Mill Lane",
        "--start", "2024-01-01T00:10",
    ])
    assert rc == 0, data
    assert data["value"]["records"] == 10
    text = out.read_text()
    assert "\nMill Lane\n" in text


def test_cli_classify_bad_file(capsys, tmp_path: Path):
    bad = tmp_path / "empty.csv"
    bad.write_text("")
    rc, data = _run(capsys, ["classify", str(bad)])
    assert rc == 1
    assert data["error_kind"] == "FormatError.EmptyOrMalformed"
    assert data["diagnostics"][-1]["level"] == "error"


def test_cli_batch_manifest(capsys, combination_csv, rainfall_csv, tmp_path: Path):
    manifest = tmp_path / "batch.json"
    manifest.write_text(json.dumps([
        {"file": combination_csv.name, "shape": "Rectangular", "dimensions": [1000, 500]},
        {"file": rainfall_csv.name, "shape": "Circular", "dimensions": [300]},
    ]))
    rc, data = _run(capsys, ["batch", str(manifest), "--out-dir", str(tmp_path / "out"), "--bundle"])
    assert rc == 0
    assert data["value"]["succeeded"] == 2
    assert (tmp_path / "out" / "processed_files.zip").exists()


def test_cli_missing_manifest(capsys, tmp_path: Path):
    rc, data = _run(capsys, ["batch", str(tmp_path / "nope.json"), "--out-dir", str(tmp_path / "out")])
    assert rc == 1
    assert data["error_kind"] == "FileIOError.ReadFailed"


def test_cli_bad_config(capsys, tmp_path: Path):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"records_per_page": 3}))
    rc, data = _run(capsys, ["--config", str(cfg), "r3", "--width", "600", "--height", "900"])
    assert rc == 1
    assert data["error_kind"] == "ValidationError.InvalidArgument"
