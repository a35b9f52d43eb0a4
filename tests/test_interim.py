import pandas as pd
import pytest
from openpyxl import load_workbook

from fdvproc.classify import classify
from fdvproc.errors import ValidationError
from fdvproc.interim import interim_tables, write_interim_report


def test_interim_tables(combination_csv):
    summaries, daily, complete = interim_tables(classify(combination_csv))
    assert list(summaries["Interim"]) == ["Interim 1", "Grand Total"]
    assert summaries["Date Range"].iloc[0] == "01/01/2024 - 01/01/2024"
    row = summaries.iloc[-1]
    # 11 of 12 depth readings present: mean 1700 / 11 mm
    assert row["Average Level(m)"] == pytest.approx(1700 / 11 / 1000)
    assert row["Max Level(m)"] == pytest.approx(0.21)
    assert row["Average Velocity(m/s)"] == pytest.approx(0.5)
    assert "Total Flow(m3)" not in summaries.columns
    assert list(daily["Date"]) == ["01/01/2024"]
    assert list(complete.columns)[0] == "Timestamp"
    assert len(complete) == 12


def test_rainfall_interim(rainfall_csv):
    summaries, daily, _ = interim_tables(classify(rainfall_csv))
    assert summaries.iloc[-1]["Total Rainfall(mm)"] == pytest.approx(9.6)
    assert list(daily["Date"]) == ["01/01/2024", "03/01/2024"]


def test_xlsx_report(combination_csv, tmp_path):
    out = tmp_path / "interim.xlsx"
    write_interim_report(classify(combination_csv), out)
    wb = load_workbook(out, read_only=True)
    assert wb.sheetnames == ["Summaries", "Complete Data", "Daily Summary"]
    wb.close()
    df = pd.read_excel(out, sheet_name="Summaries", engine="openpyxl")
    assert df["Interim"].iloc[-1] == "Grand Total"


def test_pdf_report(combination_csv, tmp_path):
    out = tmp_path / "interim.pdf"
    write_interim_report(classify(combination_csv), out)
    assert out.read_bytes()[:4] == b"%PDF"


def test_unsupported_report_type(combination_csv, tmp_path):
    with pytest.raises(ValidationError) as exc:
        write_interim_report(classify(combination_csv), tmp_path / "interim.txt")
    assert exc.value.kind == "InvalidArgument"
    assert not (tmp_path / "interim.txt").exists()
