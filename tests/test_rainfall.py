import math

import numpy as np
import pandas as pd
import pytest
from openpyxl import load_workbook

from conftest import START, stamps, write_logger_csv
from fdvproc.classify import classify
from fdvproc.errors import ValidationError
from fdvproc.rainfall import extract, rainfall_totals, spread_tips, totalize, write_rainfall_totals
from fdvproc.session import Session


@pytest.fixture
def rain(rainfall_csv):
    return classify(rainfall_csv)


def test_spread_over_preceding_dry_slots():
    assert spread_tips([0, 0, 0, 4]).tolist() == [1, 1, 1, 1]


def test_spread_caps_large_tips():
    assert spread_tips([0, 0, 8]).tolist() == [3, 3, 2]


def test_spread_reaches_back_at_most_max_zeros():
    out = spread_tips([0, 0, 0, 0, 0, 0, 5], max_zeros=4)
    assert out.tolist() == [0, 0, 1, 1, 1, 1, 1]


def test_missing_readings_stop_spreading():
    out = spread_tips([np.nan, 0, 4])
    assert math.isnan(out[0])
    assert out[1:].tolist() == [2, 2]


def test_wet_run_left_alone():
    assert spread_tips([0.5, 1.0, 0.2]).tolist() == [0.5, 1.0, 0.2]


def test_rainfall_file_classified(rain):
    assert rain.monitor_type.value == "Rainfall"
    assert rain.sample_interval_seconds == 3600
    assert len(rain.frame) == 72


def test_extract_writes_intensity_records(rain, tmp_path):
    out = tmp_path / "RG7.r"
    res = extract(rain, None, out)
    assert res.records == 72
    assert res.missing == 24
    assert res.total_mm == pytest.approx(9.6)
    lines = out.read_text().split("\n")
    assert lines[0][25:] == "1,ASCII"
    assert lines[1][25:] == "1,RG7"
    assert lines[2][25:] == "1,INTENSITY"
    assert lines[3][25:] == "1,MM/HR"
    cstart = lines.index("*CSTART")
    assert lines[cstart + 1].startswith("RG7")
    assert lines[cstart + 4] == "202401010000 202401032300   60"
    records = lines[cstart + 6:]
    assert records[0] == "            0.2" * 5
    # 2 Jan (slots 24..47) was never logged; line 4 holds slots 20..24
    assert records[4] == "            0.2" * 4 + "           -1.0"
    assert records[-2:] == ["*END", ""]


def test_extract_writes_sample_depths_unscaled(tmp_path):
    rows = [[ts, "0.5"] for ts in stamps(START, 8, 2)]
    path = write_logger_csv(tmp_path / "RG2.csv", ["Timestamp", "Rain (mm)"], rows)
    out = tmp_path / "RG2.r"
    extract(classify(path), "Rain (mm)", out)
    lines = out.read_text().split("\n")
    first = lines[lines.index("*CEND") + 1]
    assert first == "            0.5" * 5


def test_extract_from_accented_file_name(tmp_path):
    rows = [[ts, "0.2"] for ts in stamps(START, 5, 60)]
    path = write_logger_csv(tmp_path / "Pluviómetro.csv", ["Timestamp", "Rain (mm)"], rows)
    out = tmp_path / "rain.r"
    extract(classify(path), None, out)
    assert "1,PLUVIOMETRO" in out.read_text(encoding="ascii")


def test_extract_rejects_non_ascii_site_name(rain, tmp_path):
    s = Session()
    s.load(rain)
    s.update_site_name("Pluviómetro Norte")
    out = tmp_path / "rain.r"
    with pytest.raises(ValidationError) as exc:
        extract(s.classified, None, out)
    assert exc.value.kind == "InvalidArgument"
    assert not out.exists()


def test_extract_requires_rainfall_channel(combination_csv, tmp_path):
    with pytest.raises(ValidationError) as exc:
        extract(classify(combination_csv), None, tmp_path / "x.r")
    assert exc.value.kind == "NoRainfallData"


def test_extract_unknown_rainfall_channel(rain, tmp_path):
    with pytest.raises(ValidationError) as exc:
        extract(rain, "Rain Gauge 2", tmp_path / "x.r")
    assert exc.value.kind == "UnknownChannel"


def test_daily_totals_include_dry_days(rain):
    table = rainfall_totals(rain, "daily")
    assert list(table["Period Start"]) == ["2024-01-01 00:00:00", "2024-01-02 00:00:00", "2024-01-03 00:00:00"]
    assert list(table["Samples"]) == [24, 0, 24]
    assert table["Total (mm)"].tolist() == pytest.approx([4.8, 0.0, 4.8])


def test_totals_are_anchored_on_window_start(rain):
    s = Session()
    s.load(rain)
    s.update_timestamps("2024-01-01 12:00:00", "2024-01-03 23:00:00")
    table = rainfall_totals(rain, "1D")
    assert table["Period Start"].iloc[0] == "2024-01-01 12:00:00"
    assert table["Total (mm)"].tolist() == pytest.approx([2.4, 2.4, 2.4])


def test_totalize_writes_csv(rain, tmp_path):
    out = tmp_path / "totals.csv"
    res = totalize(rain, out, "1D")
    assert res.periods == 3
    assert res.total_mm == pytest.approx(9.6)
    df = pd.read_csv(out)
    assert list(df.columns) == ["Period Start", "Period End", "Samples", "Total (mm)"]


def test_bad_period(rain, tmp_path):
    with pytest.raises(ValidationError) as exc:
        totalize(rain, tmp_path / "t.csv", "fortnightly")
    assert exc.value.kind == "InvalidArgument"


def test_rainfall_totals_workbook(rain, tmp_path):
    out = tmp_path / "RG7_totals.xlsx"
    write_rainfall_totals(rain, out)
    wb = load_workbook(out, read_only=True)
    assert wb.sheetnames == ["Daily Rainfall Totals", "Weekly Rainfall Totals"]
    daily = pd.read_excel(out, sheet_name="Daily Rainfall Totals", engine="openpyxl")
    weekly = pd.read_excel(out, sheet_name="Weekly Rainfall Totals", engine="openpyxl")
    wb.close()
    assert len(daily) == 3
    assert len(weekly) == 1
    assert weekly["Total (mm)"].iloc[0] == pytest.approx(9.6)


def test_rainfall_totals_workbook_needs_xlsx(rain, tmp_path):
    with pytest.raises(ValidationError):
        write_rainfall_totals(rain, tmp_path / "totals.csv")
