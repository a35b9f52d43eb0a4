import csv
from datetime import datetime, timedelta
from pathlib import Path

import pytest


def write_logger_csv(path: Path, headers, rows) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as fh:
        w = csv.writer(fh)
        w.writerow(headers)
        for r in rows:
            w.writerow(r)
    return path


def stamps(start: datetime, n: int, step_min: int, fmt: str = "%Y-%m-%d %H:%M:%S"):
    return [(start + timedelta(minutes=i * step_min)).strftime(fmt) for i in range(n)]


START = datetime(2024, 1, 1, 0, 0)


def combination_rows():
    """12 five-minute slots; slot 6 absent, slot 3 missing velocity."""
    rows = []
    for i, ts in enumerate(stamps(START, 12, 5)):
        if i == 6:
            continue
        vel = "" if i == 3 else "0.5"
        rows.append([ts, str(100 + 10 * i), vel, "12.6"])
    return rows


@pytest.fixture
def combination_csv(tmp_path):
    return write_logger_csv(
        tmp_path / "MH101.csv",
        ["Timestamp", "Depth (mm)", "Velocity (m/s)", "Battery"],
        combination_rows(),
    )


@pytest.fixture
def rainfall_csv(tmp_path):
    """Hourly 0.2 mm readings on 1 Jan and 3 Jan; nothing logged on 2 Jan."""
    day1 = stamps(START, 24, 60)
    day3 = stamps(START + timedelta(days=2), 24, 60)
    rows = [[ts, "0.2"] for ts in day1 + day3]
    return write_logger_csv(tmp_path / "RG7.csv", ["Date Time", "Rainfall (mm)"], rows)
