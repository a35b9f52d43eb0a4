from datetime import datetime

import pytest

from fdvproc import io as fdv_io
from fdvproc.classify import classify
from fdvproc.diagnostics import DiagnosticsChannel
from fdvproc.errors import FileIOError, ValidationError
from fdvproc.fdv import encode, identifier, read_fdv, read_fdv_header
from fdvproc.geometry import Circular, EggType1, Rectangular
from fdvproc.session import Session


@pytest.fixture
def classified(combination_csv):
    return classify(combination_csv)


def test_header_block(classified, tmp_path):
    out = tmp_path / "MH101.fdv"
    encode(classified, "Depth (mm)", "Velocity (m/s)", Circular(300), out)
    lines = out.read_text().split("\n")
    keys = [line[:25].rstrip() for line in lines[:11]]
    assert keys == [
        "**DATA_FORMAT:",
        "**IDENTIFIER:",
        "**FIELD:",
        "**UNITS:",
        "**FORMAT:",
        "**RECORD_LENGTH:",
        "**CONSTANTS:",
        "*+",
        "**C_UNITS:",
        "**C_FORMAT:",
        "*CSTART",
    ]
    assert lines[0][25:] == "1,ASCII"
    assert lines[1][25:] == "1,MH101"
    assert lines[2][25:] == "3,FLOW,DEPTH,VELOCITY"
    assert lines[3][25:] == "3,L/S,MM,M/S"
    assert lines[4][25:] == "3,2I5,F5,[5]"
    assert lines[11:16] == [
        "  300  0.20 MH101",
        "MH101",
        f"{'CIRCULAR':<20} 300",
        "202401010000 202401010055   5",
        "*CEND",
    ]


def test_records_and_missing_markers(classified, tmp_path):
    out = tmp_path / "MH101.fdv"
    res = encode(classified, "Depth (mm)", "Velocity (m/s)", Circular(300), out)
    assert res.records == 12
    assert res.missing_depth == 1
    assert res.missing_velocity == 2
    lines = out.read_text().split("\n")
    records = lines[16:19]
    assert [len(r) for r in records] == [75, 75, 30]
    assert records[0][:15] == "   10  100 0.50"
    assert records[0][45:60] == "   -1  130-1.00"
    assert records[1][15:30] == "   -1   -1-1.00"
    assert lines[19:] == ["", "*END", ""]


def test_round_trip_header(classified, tmp_path):
    out = tmp_path / "MH101.fdv"
    s = Session()
    s.load(classified)
    s.update_site_name("Long Site Name For Header")
    encode(classified, "Depth (mm)", "Velocity (m/s)", EggType1(600, 900), out)
    hdr = read_fdv_header(out)
    assert hdr.site_id == "MH101"
    assert hdr.site_name == "Long Site Name For Header"
    assert hdr.identifier == "LONG SITE NAME"
    assert hdr.geometry == EggType1(600, 900).resolved()
    assert hdr.height_mm == 900
    assert hdr.start == datetime(2024, 1, 1, 0, 0)
    assert hdr.interval_minutes == 5
    assert hdr.fields == ["FLOW", "DEPTH", "VELOCITY"]


def test_read_back_records(classified, tmp_path):
    out = tmp_path / "MH101.fdv"
    encode(classified, "Depth (mm)", "Velocity (m/s)", Rectangular(1000, 500), out)
    _, df = read_fdv(out)
    assert len(df) == 12
    assert df["depth"].iloc[1] == 110
    assert df["flow"].iloc[1] == 55
    assert df["velocity"].iloc[6] == -1.0


def test_identifier_truncates_and_uppercases():
    assert identifier("Very Long Site Name Here") == "VERY LONG SITE "
    assert identifier("mh1") == "MH1"


def test_depth_only(classified, tmp_path):
    out = tmp_path / "depth.fdv"
    res = encode(classified, "Depth (mm)", "none", Circular(300), out)
    assert res.fields == ["DEPTH"]
    lines = out.read_text().split("\n")
    assert lines[2][25:] == "1,DEPTH"
    assert lines[4][25:] == "1,I5,[15]"
    assert lines[16] == "  100  110  120  130  140  150   -1  170  180  190  200  210"


def test_narrowed_window(classified, tmp_path):
    s = Session()
    s.load(classified)
    s.update_timestamps("2024-01-01 00:10:00", "2024-01-01 00:30:00")
    out = tmp_path / "narrow.fdv"
    res = encode(classified, "Depth (mm)", None, Circular(300), out)
    assert res.records == 5
    assert read_fdv_header(out).start == datetime(2024, 1, 1, 0, 10)
    assert read_fdv_header(out).end == datetime(2024, 1, 1, 0, 30)


def test_unknown_channel_writes_nothing(classified, tmp_path):
    out = tmp_path / "bad.fdv"
    with pytest.raises(ValidationError) as exc:
        encode(classified, "Level", "Velocity (m/s)", Circular(300), out)
    assert exc.value.kind == "UnknownChannel"
    assert "Depth (mm)" in exc.value.message
    assert not out.exists()


def test_failed_write_leaves_target_untouched(classified, tmp_path, monkeypatch):
    out = tmp_path / "MH101.fdv"
    out.write_text("previous")

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(fdv_io.os, "replace", boom)
    with pytest.raises(FileIOError) as exc:
        encode(classified, "Depth (mm)", "Velocity (m/s)", Circular(300), out)
    assert exc.value.kind == "WriteFailed"
    assert out.read_text() == "previous"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["MH101.csv", "MH101.fdv"]


def test_encode_reports_progress(classified, tmp_path):
    diag = DiagnosticsChannel()
    encode(classified, "Depth (mm)", "Velocity (m/s)", Circular(300), tmp_path / "x.fdv", diagnostics=diag)
    assert diag.drain()[-1].message.startswith("Wrote x.fdv: 12 records")
