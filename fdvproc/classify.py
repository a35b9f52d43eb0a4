"""Turn a raw logger export into a :class:`~fdvproc.models.ClassifiedFile`.

Steps: locate the timestamp column, detect its layout, derive the sampling
interval (modal delta), assign every other column to a channel group through
:mod:`fdvproc.channel_rules`, and place the samples on a regular time grid.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging
import re
import unicodedata

import numpy as np
import pandas as pd
from openpyxl.utils.datetime import from_excel

from .channel_rules import ChannelRule, match_header
from .config import EngineConfig
from .diagnostics import DiagnosticsChannel, emit
from .errors import ClassificationError, FormatError
from .models import ChannelDescriptor, ChannelGroup, ClassifiedFile, MonitorType, SELECTABLE_GROUPS
from .parsers.logger_export import RawTable, read_logger_export

logger = logging.getLogger(__name__)

_GROUP_ORDER = [ChannelGroup.DEPTH, ChannelGroup.VELOCITY, ChannelGroup.RAINFALL, ChannelGroup.OTHER, ChannelGroup.UNCLASSIFIED]

# Excel serial day range accepted as a timestamp (1900-01-01 .. 9999-12-31).
_EXCEL_SERIAL_RANGE = (1.0, 2958465.0)


def find_timestamp_column(headers: List[str], keywords: List[str]) -> Optional[int]:
    """Index of the first header containing one of ``keywords``."""
    for idx, h in enumerate(headers):
        text = str(h).strip().lower()
        if text and any(k in text for k in keywords):
            return idx
    return None


def detect_timestamp_format(values: pd.Series, formats: List[str], probe_rows: int = 100) -> Optional[str]:
    """Format parsing the most of the first ``probe_rows`` non-blank values."""
    text = values.astype(str).str.strip()
    probe = text[text != ""].head(probe_rows)
    best_fmt, best_hits = None, 0
    for fmt in formats:
        hits = int(pd.to_datetime(probe, format=fmt, errors="coerce").notna().sum())
        if hits > best_hits:
            best_fmt, best_hits = fmt, hits
    return best_fmt


def _excel_serial(v) -> pd.Timestamp:
    try:
        x = float(v)
    except (TypeError, ValueError):
        return pd.NaT
    if not (_EXCEL_SERIAL_RANGE[0] <= x <= _EXCEL_SERIAL_RANGE[1]):
        return pd.NaT
    return pd.Timestamp(from_excel(x)).round("s")


def parse_timestamps(values: pd.Series, cfg: EngineConfig) -> Tuple[pd.Series, str]:
    """Parse the timestamp column; returns ``(datetimes, format_label)``.

    Unparsable cells become ``NaT``.  Falls back to Excel serial day numbers
    when no textual layout matches.
    """
    fmt = detect_timestamp_format(values, cfg.timestamp_formats, cfg.format_probe_rows)
    if fmt is not None:
        text = values.astype(str).str.strip()
        return pd.to_datetime(text, format=fmt, errors="coerce"), fmt
    serial = pd.to_datetime(values.map(_excel_serial), errors="coerce")
    if serial.notna().any():
        return serial, "excel-serial"
    raise FormatError("EmptyOrMalformed", "No recognised timestamp layout in the timestamp column")


def sampling_interval(index: pd.DatetimeIndex, min_share: float = 0.5) -> int:
    """Modal spacing of ``index`` in whole seconds.

    The mode (not the mean) tolerates a minority of logger dropouts.  It must
    occur at least twice and cover ``min_share`` of all deltas.
    """
    if len(index) < 2:
        raise ClassificationError("InconsistentInterval", "Need at least two timestamps to derive an interval")
    deltas = np.diff(index.values).astype("timedelta64[s]").astype(np.int64)
    deltas = deltas[deltas > 0]
    if deltas.size == 0:
        raise ClassificationError("InconsistentInterval", "All timestamps are identical")
    vals, counts = np.unique(deltas, return_counts=True)
    i = int(np.argmax(counts))
    share = counts[i] / deltas.size
    if counts[i] < 2 or share < min_share:
        raise ClassificationError(
            "InconsistentInterval",
            f"No sampling interval recurs often enough (modal {int(vals[i])} s covers {share:.0%} of deltas)",
        )
    return int(vals[i])


def classify_columns(
    headers: List[str],
    timestamp_index: int,
    rules: Optional[List[ChannelRule]] = None,
) -> Dict[ChannelGroup, List[ChannelDescriptor]]:
    """Assign each non-timestamp column to a group; pure over header text."""
    groups: Dict[ChannelGroup, List[ChannelDescriptor]] = {}
    seen: Dict[str, Tuple[int, str]] = {}
    for idx, raw in enumerate(headers):
        if idx == timestamp_index:
            continue
        name = str(raw).strip()
        if not name:
            continue
        key = name.lower()
        if key in seen:
            first_idx, first_name = seen[key]
            raise ClassificationError(
                "AmbiguousColumns",
                f"Columns {first_idx + 1} ('{first_name}') and {idx + 1} ('{name}') resolve to the same channel",
            )
        seen[key] = (idx, name)
        matches = match_header(name, rules)
        hit_groups = sorted({m.group.value for m in matches})
        if len(hit_groups) > 1:
            raise ClassificationError(
                "AmbiguousColumns",
                f"Column {idx + 1} ('{name}') matches {' and '.join(hit_groups)} equally",
            )
        if not matches:
            desc = ChannelDescriptor(name, idx)
            groups.setdefault(ChannelGroup.UNCLASSIFIED, []).append(desc)
            continue
        m = matches[0]
        groups.setdefault(m.group, []).append(ChannelDescriptor(name, idx, m.unit, m.qualifier))
    return {g: groups[g] for g in _GROUP_ORDER if groups.get(g)}


def derive_monitor_type(groups: Dict[ChannelGroup, List[ChannelDescriptor]]) -> MonitorType:
    has = {g for g, chans in groups.items() if chans}
    if ChannelGroup.DEPTH in has and ChannelGroup.VELOCITY in has:
        return MonitorType.COMBINATION
    if ChannelGroup.DEPTH in has:
        return MonitorType.DEPTH
    if ChannelGroup.VELOCITY in has:
        return MonitorType.VELOCITY
    if ChannelGroup.RAINFALL in has:
        return MonitorType.RAINFALL
    return MonitorType.UNKNOWN


def ascii_label(text: str) -> str:
    """``text`` with accents folded and other non-ASCII characters replaced by ``_``."""
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(c for c in folded if not unicodedata.combining(c))
    return re.sub(r"[^\x20-\x7e]", "_", folded).strip()


def derive_site_identity(source_path: Optional[Path], groups: Dict[ChannelGroup, List[ChannelDescriptor]]) -> Tuple[str, str]:
    """Site id/name from the file stem, else the logger's channel tag."""
    stem = ascii_label(source_path.stem) if source_path else ""
    if re.fullmatch(r"[A-Za-z]+\d+", stem):
        return stem, stem
    site_id = ""
    if re.fullmatch(r"\d+", stem):
        site_id = stem
    else:
        for g in SELECTABLE_GROUPS:
            for ch in groups.get(g, []):
                if ch.qualifier and re.fullmatch(r"\d+_\d+", ch.qualifier):
                    site_id = ch.qualifier.split("_", 1)[0]
                    break
            if site_id:
                break
    if not site_id:
        site_id = stem or "Unknown"
    return site_id, site_id


def grid_phase(index: pd.DatetimeIndex, interval_s: int) -> pd.Timestamp:
    """First timestamp on the logger's dominant sampling phase.

    The phase is the most common offset of the samples modulo the interval,
    so a stray first reading does not shift the grid off the real samples.
    """
    step = pd.Timedelta(seconds=interval_s)
    offsets = ((index - index[0]) % step).values
    values, counts = np.unique(offsets, return_counts=True)
    phase = index[0] + pd.Timedelta(values[np.argmax(counts)])
    on_phase = np.asarray((index - phase) % step == pd.Timedelta(0))
    return index[on_phase][0]


def _regular_grid(frame: pd.DataFrame, interval_s: int) -> Tuple[pd.DataFrame, int, int]:
    step = pd.Timedelta(seconds=interval_s)
    anchor = grid_phase(frame.index, interval_s)
    on_grid = np.asarray((frame.index - anchor) % step == pd.Timedelta(0))
    kept = frame.index[on_grid]
    grid = pd.date_range(kept[0], kept[-1], freq=step, name="timestamp")
    regular = frame[on_grid].reindex(grid)
    gaps = int(len(grid) - on_grid.sum())
    off_grid = int((~on_grid).sum())
    return regular, gaps, off_grid


def classify_table(
    raw: RawTable,
    *,
    source_path: Optional[Path] = None,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> ClassifiedFile:
    cfg = config or EngineConfig()
    label = source_path.name if source_path else "<table>"
    headers = list(raw.headers)
    if not any(str(h).strip() for h in headers):
        raise FormatError("EmptyOrMalformed", f"{label}: missing header row")
    ts_idx = find_timestamp_column(headers, cfg.timestamp_keywords)
    if ts_idx is None:
        raise FormatError("EmptyOrMalformed", f"{label}: no timestamp column in header")
    if raw.frame.empty or ts_idx not in raw.frame.columns:
        raise FormatError("EmptyOrMalformed", f"{label}: no data rows")

    stamps, fmt = parse_timestamps(raw.frame[ts_idx], cfg)
    bad = int(stamps.isna().sum())
    if bad == len(stamps):
        raise FormatError("EmptyOrMalformed", f"{label}: no parsable timestamps")
    if bad:
        emit(diagnostics, "warn", f"{label}: dropped {bad} row(s) with unparsable timestamps", logger)

    groups = classify_columns(headers, ts_idx)
    for ch in groups.get(ChannelGroup.UNCLASSIFIED, []):
        emit(diagnostics, "warn", f"{label}: column '{ch.name}' not recognised; excluded from selection", logger)

    data = {}
    for g in SELECTABLE_GROUPS:
        for ch in groups.get(g, []):
            col = raw.frame[ch.column_index] if ch.column_index in raw.frame.columns else pd.Series(dtype=object)
            data[ch.name] = pd.to_numeric(col, errors="coerce").astype(float)
    frame = pd.DataFrame(data, index=raw.frame.index)
    frame.index = pd.DatetimeIndex(stamps, name="timestamp")
    frame = frame[frame.index.notna()]
    frame = frame.sort_index(kind="mergesort")
    dupes = int(frame.index.duplicated(keep="last").sum())
    if dupes:
        frame = frame[~frame.index.duplicated(keep="last")]
        emit(diagnostics, "warn", f"{label}: {dupes} duplicate timestamp(s); kept the last reading", logger)

    interval = sampling_interval(frame.index, cfg.min_interval_share)
    frame, gaps, off_grid = _regular_grid(frame, interval)
    if off_grid:
        emit(diagnostics, "warn", f"{label}: dropped {off_grid} sample(s) off the {interval} s grid", logger)
    if gaps:
        emit(diagnostics, "info", f"{label}: filled {gaps} missing interval(s)", logger)

    site_id, site_name = derive_site_identity(source_path, groups)
    classified = ClassifiedFile(
        channel_groups=groups,
        monitor_type=derive_monitor_type(groups),
        start_timestamp=frame.index[0].to_pydatetime(),
        end_timestamp=frame.index[-1].to_pydatetime(),
        sample_interval_seconds=interval,
        site_id=site_id,
        site_name=site_name,
        frame=frame,
        source_path=source_path,
        timestamp_column=str(headers[ts_idx]).strip(),
        gaps_filled=gaps,
    )
    emit(
        diagnostics,
        "info",
        f"{label}: {classified.monitor_type.value} monitor, site {site_id}, "
        f"{len(frame)} samples every {interval} s ({fmt})",
        logger,
    )
    return classified


def classify(
    path: Path | str,
    *,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> ClassifiedFile:
    """Read and classify one logger export."""
    path = Path(path)
    raw = read_logger_export(path)
    return classify_table(raw, source_path=path, config=config, diagnostics=diagnostics)


__all__ = [
    "ascii_label",
    "classify",
    "classify_table",
    "classify_columns",
    "derive_monitor_type",
    "derive_site_identity",
    "detect_timestamp_format",
    "find_timestamp_column",
    "grid_phase",
    "parse_timestamps",
    "sampling_interval",
]
