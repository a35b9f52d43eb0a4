import threading
import zipfile

import pytest

from conftest import combination_rows, write_logger_csv
from fdvproc import batch
from fdvproc.batch import NameReserver, batch_item_from_dict, run_batch, safe_stem
from fdvproc.diagnostics import DiagnosticsChannel
from fdvproc.errors import FileIOError
from fdvproc.geometry import Circular
from fdvproc.models import BatchItem

HEADERS = ["Timestamp", "Depth (mm)", "Velocity (m/s)", "Battery"]


def _site(path):
    return write_logger_csv(path, HEADERS, combination_rows())


def test_failures_are_isolated(tmp_path):
    good1 = _site(tmp_path / "in" / "MH101.csv")
    good2 = _site(tmp_path / "in" / "MH102.csv")
    bad = tmp_path / "in" / "broken.csv"
    bad.write_text("")
    diag = DiagnosticsChannel()
    items = [BatchItem(p, Circular(300)) for p in (good1, bad, good2)]
    summary = run_batch(items, tmp_path / "out", diagnostics=diag, max_workers=3)

    assert [r.status for r in summary.items] == ["succeeded", "failed", "succeeded"]
    assert summary.items[1].error_kind == "FormatError.EmptyOrMalformed"
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["MH101.fdv", "MH102.fdv"]
    messages = [e.message for e in diag.drain()]
    assert any("started MH101.csv" in m for m in messages)
    assert any("failed broken.csv" in m for m in messages)
    assert messages[-1].startswith("Batch finished: 2 succeeded, 1 failed")


def test_same_site_twice_gets_distinct_names(tmp_path):
    a = _site(tmp_path / "a" / "MH101.csv")
    b = _site(tmp_path / "b" / "MH101.csv")
    summary = run_batch([BatchItem(a, Circular(300)), BatchItem(b, Circular(300))], tmp_path / "out")
    names = sorted(r.output_path.name for r in summary.succeeded)
    assert names == ["MH101.fdv", "MH101_1.fdv"]


def test_failed_item_releases_its_name(tmp_path):
    a = _site(tmp_path / "a" / "MH1.csv")
    b = _site(tmp_path / "b" / "MH1.csv")
    items = [
        BatchItem(a, Circular(300), depth_channel="nope"),
        BatchItem(b, Circular(300)),
    ]
    summary = run_batch(items, tmp_path / "out", max_workers=1)
    assert [r.status for r in summary.items] == ["failed", "succeeded"]
    assert summary.items[0].error_kind == "ValidationError.UnknownChannel"
    assert summary.items[1].output_path.name == "MH1.fdv"


def test_release_frees_reserved_name(tmp_path):
    reserver = NameReserver(tmp_path)
    first = reserver.reserve("MH1", ".fdv")
    reserver.release(first)
    assert reserver.reserve("MH1", ".fdv") == first


def test_existing_output_is_not_overwritten(tmp_path):
    src = _site(tmp_path / "MH101.csv")
    out = tmp_path / "out"
    out.mkdir()
    (out / "MH101.fdv").write_text("keep me")
    summary = run_batch([BatchItem(src, Circular(300))], out)
    assert summary.items[0].output_path.name == "MH101_1.fdv"
    assert (out / "MH101.fdv").read_text() == "keep me"


def test_unwritable_output_dir(tmp_path):
    src = _site(tmp_path / "MH101.csv")
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("")
    with pytest.raises(FileIOError) as exc:
        run_batch([BatchItem(src, Circular(300))], blocker)
    assert exc.value.kind == "OutputDirUnwritable"


def test_cancelled_before_start(tmp_path):
    src = _site(tmp_path / "MH101.csv")
    cancel = threading.Event()
    cancel.set()
    summary = run_batch([BatchItem(src, Circular(300))] * 3, tmp_path / "out", cancel_event=cancel)
    assert [r.status for r in summary.items] == ["cancelled"] * 3
    assert list((tmp_path / "out").iterdir()) == []


def test_rainfall_logger_goes_to_r_file(tmp_path, rainfall_csv):
    summary = run_batch([BatchItem(rainfall_csv, Circular(300))], tmp_path / "out")
    assert summary.items[0].output_path.name == "RG7.r"


def test_bundle(tmp_path):
    src = _site(tmp_path / "MH101.csv")
    summary = run_batch([BatchItem(src, Circular(300))], tmp_path / "out", bundle=True)
    assert summary.bundle_path.name == "processed_files.zip"
    with zipfile.ZipFile(summary.bundle_path) as zf:
        assert zf.namelist() == ["MH101.fdv"]


def test_unexpected_errors_are_recorded(tmp_path, monkeypatch):
    src = _site(tmp_path / "MH101.csv")

    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(batch, "classify", explode)
    summary = run_batch([BatchItem(src, Circular(300))], tmp_path / "out")
    assert summary.items[0].error_kind == "InternalError"
    assert summary.items[0].message == "boom"


def test_manifest_entries(tmp_path):
    item = batch_item_from_dict({"file": "MH1.csv", "shape": "Circular", "dimensions": [450]}, tmp_path)
    assert item.file_path == tmp_path / "MH1.csv"
    assert item.geometry == Circular(450)
    assert item.depth_channel is None


def test_safe_stem_and_reserver(tmp_path):
    assert safe_stem("MH 1/2") == "MH_1_2"
    assert safe_stem("  ") == "Unknown"
    r = NameReserver(tmp_path)
    assert r.reserve("X", ".fdv").name == "X.fdv"
    assert r.reserve("x", ".fdv").name == "x_1.fdv"
