"""Rainfall extraction (FDV intensity file) and period totals."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import logging
import math

import numpy as np
import pandas as pd

from .config import EngineConfig
from .diagnostics import DiagnosticsChannel, emit
from .errors import ValidationError
from .fdv import STAMP_FMT, identifier, _cont, _hdr
from .io import atomic_write_text, atomic_write_with
from .models import ChannelDescriptor, ChannelGroup, ClassifiedFile
from .session import window_frame

logger = logging.getLogger(__name__)

# Below this a bucket reading counts as dry.
DRY_THRESHOLD = 1.0e-5

PERIOD_ALIASES = {"hourly": "1h", "daily": "1D", "day": "1D", "weekly": "7D", "week": "7D"}

TOTALS_COLUMNS = ["Period Start", "Period End", "Samples", "Total (mm)"]


def rainfall_channel(classified: ClassifiedFile, name: Optional[str] = None) -> ChannelDescriptor:
    chans = classified.channels(ChannelGroup.RAINFALL)
    if not chans:
        raise ValidationError("NoRainfallData", f"{classified.site_id}: file has no rainfall channel")
    if name is None or str(name).strip() == "":
        return chans[0]
    for ch in chans:
        if ch.name == name:
            return ch
    available = ", ".join(c.name for c in chans)
    raise ValidationError("UnknownChannel", f"Rainfall channel {name!r} not in file (available: {available})")


def spread_tips(values, max_zeros: int = 4, cap_mm: float = 6.0) -> np.ndarray:
    """Spread each wet reading back over up to ``max_zeros`` preceding dry slots.

    Tipping-bucket loggers record a tip only when the bucket fills, so rain
    that fell over several intervals lands on one sample.  A reading above
    ``cap_mm`` after dry slots spreads only ``cap_mm`` and keeps the rest.
    ``NaN`` (missing) is never treated as dry and stops the spreading.
    """
    out = np.asarray(values, dtype=float).copy()
    for i, sample in enumerate(out):
        if math.isnan(sample) or sample <= DRY_THRESHOLD:
            continue
        j = i - 1
        count = 0
        while j >= 0 and count < max_zeros and out[j] < DRY_THRESHOLD:
            count += 1
            j -= 1
        if count == 0:
            continue
        if sample > cap_mm:
            out[i - count:i] = cap_mm / count
            out[i] = sample - cap_mm
        else:
            out[i - count:i + 1] = sample / (count + 1)
    return out


@dataclass
class RainfallResult:
    output_path: Path
    records: int
    missing: int
    total_mm: float

    def to_dict(self) -> dict:
        return {
            "output_path": str(self.output_path),
            "records": self.records,
            "missing": self.missing,
            "total_mm": self.total_mm,
        }


def rainfall_header_lines(site_name: str, location: str, start, end, interval_minutes: int, cfg: EngineConfig) -> List[str]:
    ants = [f"{i}_ANT_RAIN" for i in range(31)]
    rows = [ants[i:i + 4] for i in range(3, 31, 4)]
    blank = " ".join(["-1.0"] * 15) + " "
    return [
        _hdr("DATA_FORMAT", "1,ASCII"),
        _hdr("IDENTIFIER", f"1,{identifier(site_name, cfg.identifier_max_len)}"),
        _hdr("FIELD", "1,INTENSITY"),
        _hdr("UNITS", "1,MM/HR"),
        _hdr("FORMAT", f"2,F15.1,[{cfg.records_per_line}]"),
        _hdr("RECORD_LENGTH", "I2,75"),
        _hdr("CONSTANTS", "35,LOCATION," + ",".join(ants[:3]) + ","),
        *[_cont(",".join(r) + ",") for r in rows],
        _cont("START,END,INTERVAL"),
        _hdr("C_UNITS", "35, ," + "MM," * 10),
        _hdr("C_UNITS", "MM," * 11),
        _hdr("C_UNITS", "MM," * 10 + "GMT,GMT,MIN"),
        _hdr("C_FORMAT", "8,A20,F7.2/15F5.1/15F5.1/D10,2X,D10,I4"),
        "*CSTART",
        f"{location.strip()[:20].upper():<20}{-1.0:6.1f} ",
        blank,
        blank,
        f"{start.strftime(STAMP_FMT)} {end.strftime(STAMP_FMT)}   {interval_minutes}",
        "*CEND",
    ]


def extract(
    classified: ClassifiedFile,
    rainfall_channel_name: Optional[str],
    output_path: Path | str,
    *,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> RainfallResult:
    """Write the FDV rainfall-intensity file for the session window."""
    cfg = config or EngineConfig()
    output_path = Path(output_path)
    ch = rainfall_channel(classified, rainfall_channel_name)
    frame = window_frame(classified)
    depth_mm = frame[ch.name].to_numpy(dtype=float)
    spread = spread_tips(depth_mm, cfg.rain_spread_max_zeros, cfg.rain_spread_cap_mm)
    # records carry the spread sample depths as logged, not rescaled
    cells = [f"{(cfg.missing_marker if math.isnan(v) else v):15.1f}" for v in spread]
    start, end = classified.start_timestamp, classified.end_timestamp
    if len(frame):
        start, end = frame.index[0].to_pydatetime(), frame.index[-1].to_pydatetime()
    lines = rainfall_header_lines(
        classified.site_name, classified.site_id, start, end, classified.interval_minutes, cfg
    )
    per_line = cfg.records_per_line
    lines.extend("".join(cells[i:i + per_line]) for i in range(0, len(cells), per_line))
    lines.extend(["", "*END"])
    text = "\n".join(lines) + "\n"
    try:
        text.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValidationError("InvalidArgument", f"Site id/name must be ASCII for FDV output: {exc}") from exc
    atomic_write_text(output_path, text)

    missing = int(np.isnan(depth_mm).sum())
    result = RainfallResult(output_path, len(cells), missing, float(np.nansum(depth_mm)))
    emit(
        diagnostics,
        "info",
        f"Wrote {output_path.name}: {result.records} rainfall records, {result.total_mm:.1f} mm total, {missing} missing",
        logger,
    )
    return result


def _period(period: str) -> pd.Timedelta:
    text = PERIOD_ALIASES.get(str(period).strip().lower(), str(period).strip())
    try:
        step = pd.Timedelta(text)
    except ValueError as exc:
        raise ValidationError("InvalidArgument", f"Unrecognised totals period: {period!r}") from exc
    if step <= pd.Timedelta(0):
        raise ValidationError("InvalidArgument", f"Totals period must be positive: {period!r}")
    return step


def rainfall_totals(
    classified: ClassifiedFile,
    period: str = "1D",
    rainfall_channel_name: Optional[str] = None,
    *,
    align: str = "start",
) -> pd.DataFrame:
    """Sum rainfall into contiguous periods; empty periods total ``0.0``.

    ``align="start"`` anchors periods on the window start, ``"midnight"`` on
    midnight of the first day.
    """
    ch = rainfall_channel(classified, rainfall_channel_name)
    step = _period(period)
    series = window_frame(classified)[ch.name]
    origin = pd.Timestamp(classified.start_timestamp)
    if align == "midnight":
        origin = origin.normalize()
    end = pd.Timestamp(classified.end_timestamp)
    n = int((end - origin) // step) + 1
    valid = series.dropna()
    bins = ((valid.index - origin) // step).astype(int)
    totals = valid.groupby(bins).sum().reindex(range(n), fill_value=0.0)
    counts = valid.groupby(bins).count().reindex(range(n), fill_value=0)
    starts = [origin + i * step for i in range(n)]
    return pd.DataFrame(
        {
            "Period Start": [s.strftime("%Y-%m-%d %H:%M:%S") for s in starts],
            "Period End": [(s + step).strftime("%Y-%m-%d %H:%M:%S") for s in starts],
            "Samples": counts.to_numpy(dtype=int),
            "Total (mm)": totals.to_numpy(dtype=float).round(3),
        },
        columns=TOTALS_COLUMNS,
    )


@dataclass
class TotalsResult:
    output_path: Path
    periods: int
    total_mm: float

    def to_dict(self) -> dict:
        return {"output_path": str(self.output_path), "periods": self.periods, "total_mm": self.total_mm}


def _write_table(df: pd.DataFrame, path: Path, sheet: str = "Rainfall Totals") -> None:
    if path.suffix.lower() in (".xlsx", ".xlsm"):
        atomic_write_with(path, lambda tmp: df.to_excel(tmp, sheet_name=sheet, index=False, engine="openpyxl"))
    else:
        atomic_write_with(path, lambda tmp: df.to_csv(tmp, index=False))


def totalize(
    classified: ClassifiedFile,
    output_path: Path | str,
    period: str = "1D",
    rainfall_channel_name: Optional[str] = None,
    *,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> TotalsResult:
    output_path = Path(output_path)
    table = rainfall_totals(classified, period, rainfall_channel_name)
    _write_table(table, output_path)
    result = TotalsResult(output_path, len(table), float(table["Total (mm)"].sum()))
    emit(diagnostics, "info", f"Wrote {output_path.name}: {result.periods} period(s) of {period}", logger)
    return result


def rainfall_totals_tables(classified: ClassifiedFile, rainfall_channel_name: Optional[str] = None):
    """Daily and weekly totals on calendar-day boundaries."""
    daily = rainfall_totals(classified, "1D", rainfall_channel_name, align="midnight")
    weekly = rainfall_totals(classified, "7D", rainfall_channel_name, align="midnight")
    return daily, weekly


def write_rainfall_totals(
    classified: ClassifiedFile,
    output_path: Path | str,
    rainfall_channel_name: Optional[str] = None,
    *,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> Path:
    """Workbook with ``Daily Rainfall Totals`` and ``Weekly Rainfall Totals`` sheets."""
    output_path = Path(output_path)
    daily, weekly = rainfall_totals_tables(classified, rainfall_channel_name)

    def _write(tmp: Path) -> None:
        with pd.ExcelWriter(tmp, engine="openpyxl") as xw:
            daily.to_excel(xw, sheet_name="Daily Rainfall Totals", index=False)
            weekly.to_excel(xw, sheet_name="Weekly Rainfall Totals", index=False)

    if output_path.suffix.lower() not in (".xlsx", ".xlsm"):
        raise ValidationError("InvalidArgument", f"Rainfall totals report must be .xlsx: {output_path.name}")
    atomic_write_with(output_path, _write)
    emit(diagnostics, "info", f"Wrote {output_path.name}: {len(daily)} day(s), {len(weekly)} week(s)", logger)
    return output_path


__all__ = [
    "RainfallResult",
    "TotalsResult",
    "extract",
    "rainfall_channel",
    "rainfall_totals",
    "rainfall_totals_tables",
    "spread_tips",
    "totalize",
    "write_rainfall_totals",
]
