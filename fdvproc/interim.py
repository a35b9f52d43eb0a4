"""Interim (weekly) and daily summaries of a loaded logger file."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from matplotlib.backends.backend_pdf import PdfPages
from matplotlib.figure import Figure

from .channel_rules import unit_factor
from .diagnostics import DiagnosticsChannel, emit
from .errors import ValidationError
from .io import atomic_write_with
from .models import ChannelGroup, ClassifiedFile
from .session import window_frame

logger = logging.getLogger(__name__)

STYLE = {
    "accent": "#0F766E",
    "muted": "#6B7280",
    "grid": "#E5E7EB",
    "font": "DejaVu Sans",
}

DATE_FMT = "%d/%m/%Y"


def _metric_series(classified: ClassifiedFile) -> Dict[str, pd.Series]:
    """Working series per quantity: flow l/s, level m, velocity m/s, rainfall mm."""
    frame = window_frame(classified)
    out: Dict[str, pd.Series] = {}
    flows = [c for c in classified.channels(ChannelGroup.OTHER) if c.qualifier == "flow" or "flow" in c.name.lower()]
    if flows:
        ch = flows[0]
        scale = 1000.0 if (ch.unit or "").lower() == "m3/s" else 1.0
        out["flow"] = frame[ch.name] * scale
    depth = classified.channels(ChannelGroup.DEPTH)
    if depth:
        ch = depth[0]
        out["level"] = frame[ch.name] * unit_factor("depth", ch.unit) / 1000.0
    vel = classified.channels(ChannelGroup.VELOCITY)
    if vel:
        ch = vel[0]
        out["velocity"] = frame[ch.name] * unit_factor("velocity", ch.unit)
    rain = classified.channels(ChannelGroup.RAINFALL)
    if rain:
        out["rainfall"] = frame[rain[0].name] * unit_factor("rainfall", rain[0].unit)
    return out


def _summarise(series: Dict[str, pd.Series], interval_s: int) -> Dict[str, float]:
    row: Dict[str, float] = {}
    if "flow" in series:
        s = series["flow"].dropna()
        row["Total Flow(m3)"] = float((s * interval_s / 1000.0).sum())
        row["Max Flow(l/s)"] = float(s.max()) if len(s) else np.nan
        row["Min Flow(l/s)"] = float(s.min()) if len(s) else np.nan
    if "level" in series:
        s = series["level"].dropna()
        row["Average Level(m)"] = float(s.mean()) if len(s) else np.nan
        row["Max Level(m)"] = float(s.max()) if len(s) else np.nan
        row["Min Level(m)"] = float(s.min()) if len(s) else np.nan
    if "velocity" in series:
        s = series["velocity"].dropna()
        row["Average Velocity(m/s)"] = float(s.mean()) if len(s) else np.nan
        row["Max Velocity(m/s)"] = float(s.max()) if len(s) else np.nan
        row["Min Velocity(m/s)"] = float(s.min()) if len(s) else np.nan
    if "rainfall" in series:
        s = series["rainfall"].dropna()
        row["Total Rainfall(mm)"] = float(s.sum())
        row["Max Rainfall(mm)"] = float(s.max()) if len(s) else np.nan
        row["Min Rainfall(mm)"] = float(s.min()) if len(s) else np.nan
    return row


def interim_tables(classified: ClassifiedFile) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """``(summaries, daily, complete)`` for the session window.

    Summaries cover seven-day periods from midnight of the first day; weeks
    without readings are skipped.  A ``Grand Total`` row closes the table.
    """
    series = _metric_series(classified)
    if not series:
        raise ValidationError("InvalidArgument", f"{classified.site_id}: no flow, level, velocity or rainfall channel to report")
    interval_s = classified.sample_interval_seconds
    data = pd.DataFrame(series)

    rows: List[dict] = []
    origin = pd.Timestamp(classified.start_timestamp).normalize()
    week = pd.Timedelta(days=7)
    if len(data):
        n_weeks = int((data.index[-1] - origin) // week) + 1
        for i in range(n_weeks):
            lo, hi = origin + i * week, origin + (i + 1) * week
            chunk = data[(data.index >= lo) & (data.index < hi)]
            if chunk.dropna(how="all").empty:
                continue
            last = min(hi - pd.Timedelta(days=1), data.index[-1].normalize())
            rows.append({
                "Interim": f"Interim {len(rows) + 1}",
                "Date Range": f"{lo.strftime(DATE_FMT)} - {last.strftime(DATE_FMT)}",
                **_summarise({k: chunk[k] for k in chunk.columns}, interval_s),
            })
    if rows:
        rows.append({
            "Interim": "Grand Total",
            "Date Range": f"{data.index[0].strftime(DATE_FMT)} - {data.index[-1].strftime(DATE_FMT)}",
            **_summarise(series, interval_s),
        })
    summaries = pd.DataFrame(rows)

    daily_rows = []
    for day, chunk in data.groupby(data.index.normalize()):
        if chunk.dropna(how="all").empty:
            continue
        daily_rows.append({"Date": day.strftime(DATE_FMT), **_summarise({k: chunk[k] for k in chunk.columns}, interval_s)})
    daily = pd.DataFrame(daily_rows)

    complete = window_frame(classified).reset_index()
    complete["timestamp"] = complete["timestamp"].dt.strftime("%Y-%m-%d %H:%M:%S")
    complete = complete.rename(columns={"timestamp": classified.timestamp_column or "Timestamp"})
    return summaries, daily, complete


def _pdf_pages(classified: ClassifiedFile, summaries: pd.DataFrame, path: Path) -> None:
    with PdfPages(path) as pdf:
        fig = Figure(figsize=(11.69, 8.27))  # A4 landscape
        ax = fig.add_subplot(111)
        ax.axis("off")
        ax.set_title(f"Interim report: {classified.site_name} ({classified.site_id})", loc="left",
                     color=STYLE["accent"], fontweight="bold")
        if not summaries.empty:
            shown = summaries.copy()
            for col in shown.columns[2:]:
                shown[col] = shown[col].map(lambda v: "" if pd.isna(v) else f"{v:.3f}")
            tbl = ax.table(cellText=shown.values, colLabels=list(shown.columns), loc="upper left")
            tbl.auto_set_font_size(False)
            tbl.set_fontsize(7)
            tbl.scale(1.0, 1.3)
        pdf.savefig(fig)

        series = _metric_series(classified)
        fig = Figure(figsize=(11.69, 8.27))
        axes = fig.subplots(len(series), 1, sharex=True, squeeze=False)[:, 0]
        for ax, (name, s) in zip(axes, series.items()):
            ax.plot(s.index, s.values, color=STYLE["accent"], linewidth=0.8)
            ax.set_ylabel(name)
            ax.grid(True, color=STYLE["grid"])
        axes[0].set_title("Complete data", loc="left", color=STYLE["muted"])
        fig.autofmt_xdate()
        pdf.savefig(fig)


def write_interim_report(
    classified: ClassifiedFile,
    output_path: Path | str,
    *,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> Path:
    """Write the interim report as ``.xlsx`` (three sheets) or ``.pdf``."""
    output_path = Path(output_path)
    summaries, daily, complete = interim_tables(classified)
    suffix = output_path.suffix.lower()
    if suffix in (".xlsx", ".xlsm"):
        def _write(tmp: Path) -> None:
            with pd.ExcelWriter(tmp, engine="openpyxl") as xw:
                summaries.to_excel(xw, sheet_name="Summaries", index=False)
                complete.to_excel(xw, sheet_name="Complete Data", index=False)
                daily.to_excel(xw, sheet_name="Daily Summary", index=False)
        atomic_write_with(output_path, _write)
    elif suffix == ".pdf":
        atomic_write_with(output_path, lambda tmp: _pdf_pages(classified, summaries, tmp))
    else:
        raise ValidationError("InvalidArgument", f"Interim report must be .xlsx or .pdf: {output_path.name}")
    periods = max(0, len(summaries) - 1)
    emit(diagnostics, "info", f"Wrote {output_path.name}: {periods} interim period(s), {len(daily)} day(s)", logger)
    return output_path


__all__ = ["interim_tables", "write_interim_report"]
