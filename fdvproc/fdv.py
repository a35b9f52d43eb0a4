"""FDV flow-data writer and header reader.

File layout (ASCII, ``\\n`` line endings)::

    **DATA_FORMAT / IDENTIFIER / FIELD / UNITS / FORMAT / RECORD_LENGTH
    **CONSTANTS, C_UNITS, C_FORMAT
    *CSTART
    <constants block>
    *CEND
    <fixed-width records, several per line>

    *END

Records carry no timestamp: sample ``n`` is at ``START + n * INTERVAL``.  A
missing reading is written as the missing marker (``-1``) so the record count
always equals the number of grid slots in the window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional
import logging
import math

import numpy as np
import pandas as pd

from .channel_rules import unit_factor
from .config import EngineConfig
from .diagnostics import DiagnosticsChannel, emit
from .errors import FileIOError, FormatError, GeometryError, ValidationError
from .geometry import GeometryDescriptor, coerce_geometry, geometry_from_code
from .io import atomic_write_text
from .models import ChannelDescriptor, ClassifiedFile
from .session import window_frame

logger = logging.getLogger(__name__)

STAMP_FMT = "%Y%m%d%H%M"
FIELD_WIDTH = 5
NONE_SENTINELS = {"", "none"}

_HEADER_KEY_WIDTH = 25


def _hdr(key: str, value: str) -> str:
    return f"**{key}:".ljust(_HEADER_KEY_WIDTH) + value


def _cont(value: str) -> str:
    return "*+".ljust(_HEADER_KEY_WIDTH) + value


def format_dimension(v: float) -> str:
    # repr round-trips floats exactly; whole numbers stay short
    return str(int(v)) if float(v).is_integer() else repr(float(v))


def identifier(site_name: str, max_len: int = 15) -> str:
    return site_name.strip()[:max_len].upper()


@dataclass
class EncodeResult:
    output_path: Path
    records: int
    missing_depth: int
    missing_velocity: int
    geometry: GeometryDescriptor
    fields: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "output_path": str(self.output_path),
            "records": self.records,
            "missing_depth": self.missing_depth,
            "missing_velocity": self.missing_velocity,
            "geometry": self.geometry.to_dict(),
            "fields": list(self.fields),
        }


def _resolve_channel(classified: ClassifiedFile, name: Optional[str], role: str) -> ChannelDescriptor:
    ch = classified.find_channel(str(name)) if name is not None else None
    if ch is None:
        available = ", ".join(c.name for c in classified.selectable_channels()) or "none"
        raise ValidationError("UnknownChannel", f"{role} channel {name!r} not in file (available: {available})")
    return ch


def _quantity(classified: ClassifiedFile, ch: ChannelDescriptor, default: str) -> str:
    group = classified.group_of(ch.name)
    if group is not None and group.value in ("depth", "velocity", "rainfall"):
        return group.value
    return default


def header_lines(
    site_id: str,
    site_name: str,
    geometry: GeometryDescriptor,
    start: datetime,
    end: datetime,
    interval_minutes: int,
    *,
    with_velocity: bool = True,
    cfg: Optional[EngineConfig] = None,
) -> List[str]:
    cfg = cfg or EngineConfig()
    if with_velocity:
        fields_ = [
            _hdr("FIELD", "3,FLOW,DEPTH,VELOCITY"),
            _hdr("UNITS", "3,L/S,MM,M/S"),
            _hdr("FORMAT", f"3,2I5,F5,[{cfg.records_per_line}]"),
        ]
    else:
        fields_ = [
            _hdr("FIELD", "1,DEPTH"),
            _hdr("UNITS", "1,MM"),
            _hdr("FORMAT", f"1,I5,[{cfg.depth_records_per_line}]"),
        ]
    dims = "/".join(format_dimension(d) for d in geometry.dimensions())
    return [
        _hdr("DATA_FORMAT", "1,ASCII"),
        _hdr("IDENTIFIER", f"1,{identifier(site_name, cfg.identifier_max_len)}"),
        *fields_,
        _hdr("RECORD_LENGTH", "I2,75"),
        _hdr("CONSTANTS", "9,HEIGHT,MIN_VEL,MANHOLE_NO,SITE_NAME,SHAPE,"),
        _cont("DIMENSIONS,START,END,INTERVAL"),
        _hdr("C_UNITS", "9,MM,M/S,,,,MM,GMT,GMT,MIN"),
        _hdr("C_FORMAT", "9,I5,1X,F5,1X,A20/A40/A20,1X,A40/D10,1X,D10,3X,I2"),
        "*CSTART",
        f"{int(round(geometry.height_mm)):5d} {cfg.min_velocity:5.2f} {site_id}",
        site_name,
        f"{geometry.code:<20} {dims}",
        f"{start.strftime(STAMP_FMT)} {end.strftime(STAMP_FMT)}   {interval_minutes}",
        "*CEND",
    ]


def _record_lines(cells: List[str], per_line: int) -> List[str]:
    return ["".join(cells[i:i + per_line]) for i in range(0, len(cells), per_line)]


def render_fdv(
    classified: ClassifiedFile,
    depth: ChannelDescriptor,
    velocity: Optional[ChannelDescriptor],
    geometry: GeometryDescriptor,
    cfg: EngineConfig,
) -> tuple[str, dict]:
    frame = window_frame(classified)
    d_factor = unit_factor(_quantity(classified, depth, "depth"), depth.unit)
    depth_mm = frame[depth.name].to_numpy(dtype=float) * d_factor
    miss = cfg.missing_marker
    stats = {"records": len(frame), "missing_depth": int(np.isnan(depth_mm).sum()), "missing_velocity": 0}

    cells: List[str] = []
    if velocity is not None:
        v_factor = unit_factor(_quantity(classified, velocity, "velocity"), velocity.unit)
        vel = frame[velocity.name].to_numpy(dtype=float) * v_factor
        stats["missing_velocity"] = int(np.isnan(vel).sum())
        for d, v in zip(depth_mm, vel):
            if math.isnan(d) or math.isnan(v):
                q = miss
            else:
                q = geometry.flow(d, v)
            d_out = miss if math.isnan(d) else d
            v_out = miss if math.isnan(v) else v
            cells.append(f"{q:5.0f}{d_out:5.0f}{v_out:5.2f}")
        per_line = cfg.records_per_line
    else:
        for d in depth_mm:
            cells.append(f"{(miss if math.isnan(d) else d):5.0f}")
        per_line = cfg.depth_records_per_line

    # START/END name the first and last record slots
    start, end = classified.start_timestamp, classified.end_timestamp
    if len(frame):
        start, end = frame.index[0].to_pydatetime(), frame.index[-1].to_pydatetime()
    lines = header_lines(
        classified.site_id,
        classified.site_name,
        geometry,
        start,
        end,
        classified.interval_minutes,
        with_velocity=velocity is not None,
        cfg=cfg,
    )
    lines.extend(_record_lines(cells, per_line))
    lines.extend(["", "*END"])
    return "\n".join(lines) + "\n", stats


def encode(
    classified: ClassifiedFile,
    depth_channel: str,
    velocity_channel: Optional[str],
    geometry,
    output_path: Path | str,
    *,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[DiagnosticsChannel] = None,
) -> EncodeResult:
    """Write the FDV flow file for ``classified`` to ``output_path``."""
    cfg = config or EngineConfig()
    output_path = Path(output_path)
    depth = _resolve_channel(classified, depth_channel, "Depth")
    velocity = None
    if velocity_channel is not None and str(velocity_channel).strip().lower() not in NONE_SENTINELS:
        velocity = _resolve_channel(classified, velocity_channel, "Velocity")
    geom = coerce_geometry(geometry).resolved()
    if classified.sample_interval_seconds % 60:
        emit(
            diagnostics,
            "warn",
            f"{classified.site_id}: interval {classified.sample_interval_seconds} s is not whole minutes; "
            f"header states {classified.interval_minutes} min",
            logger,
        )

    text, stats = render_fdv(classified, depth, velocity, geom, cfg)
    try:
        text.encode("ascii")
    except UnicodeEncodeError as exc:
        raise ValidationError("InvalidArgument", f"Site id/name must be ASCII for FDV output: {exc}") from exc
    atomic_write_text(output_path, text)

    result = EncodeResult(
        output_path=output_path,
        records=stats["records"],
        missing_depth=stats["missing_depth"],
        missing_velocity=stats["missing_velocity"],
        geometry=geom,
        fields=["FLOW", "DEPTH", "VELOCITY"] if velocity is not None else ["DEPTH"],
    )
    emit(
        diagnostics,
        "info",
        f"Wrote {output_path.name}: {result.records} records "
        f"({result.missing_depth} missing depth, {result.missing_velocity} missing velocity)",
        logger,
    )
    return result


@dataclass
class FdvHeader:
    identifier: str
    fields: List[str]
    units: List[str]
    height_mm: int
    min_velocity: float
    site_id: str
    site_name: str
    geometry: GeometryDescriptor
    start: datetime
    end: datetime
    interval_minutes: int


def _header_value(line: str) -> str:
    return line.split(":", 1)[1].strip()


def parse_fdv_header(lines: List[str]) -> tuple[FdvHeader, int]:
    """Parse header lines; returns the header and the index of the first record line."""
    info = {}
    try:
        for i, line in enumerate(lines):
            if line.startswith("**IDENTIFIER:"):
                info["identifier"] = _header_value(line).split(",", 1)[1]
            elif line.startswith("**FIELD:"):
                info["fields"] = _header_value(line).split(",")[1:]
            elif line.startswith("**UNITS:"):
                info["units"] = _header_value(line).split(",")[1:]
            elif line.strip() == "*CSTART":
                cstart = i
                break
        else:
            raise FormatError("EmptyOrMalformed", "FDV header has no *CSTART")
        block = lines[cstart + 1:cstart + 5]
        if len(block) < 4 or lines[cstart + 5].strip() != "*CEND":
            raise FormatError("EmptyOrMalformed", "FDV constants block is incomplete")
        height, min_vel, site_id = block[0].split(None, 2)
        code, dims = block[2].split(None, 1)
        start, end, interval = block[3].split()
        header = FdvHeader(
            identifier=info.get("identifier", ""),
            fields=info.get("fields", []),
            units=info.get("units", []),
            height_mm=int(height),
            min_velocity=float(min_vel),
            site_id=site_id.strip(),
            site_name=block[1].strip(),
            geometry=geometry_from_code(code, [float(x) for x in dims.split("/")]),
            start=datetime.strptime(start, STAMP_FMT),
            end=datetime.strptime(end, STAMP_FMT),
            interval_minutes=int(interval),
        )
    except (ValueError, IndexError, GeometryError) as exc:
        raise FormatError("EmptyOrMalformed", f"Cannot parse FDV header: {exc}") from exc
    return header, cstart + 6


def read_fdv(path: Path | str) -> tuple[FdvHeader, pd.DataFrame]:
    """Read an FDV flow file back into its header and a timestamped record table."""
    path = Path(path)
    try:
        lines = path.read_text(encoding="ascii").splitlines()
    except OSError as exc:
        raise FileIOError("ReadFailed", f"Cannot read {path}: {exc}") from exc
    header, first = parse_fdv_header(lines)
    cells: List[float] = []
    for line in lines[first:]:
        if line.strip() == "*END":
            break
        for i in range(0, len(line.rstrip("\n")), FIELD_WIDTH):
            chunk = line[i:i + FIELD_WIDTH]
            if chunk.strip():
                cells.append(float(chunk))
    width = max(1, len(header.fields))
    rows = [cells[i:i + width] for i in range(0, len(cells) - len(cells) % width, width)]
    idx = pd.date_range(header.start, periods=len(rows), freq=pd.Timedelta(minutes=header.interval_minutes), name="timestamp")
    names = [f.lower() for f in header.fields] or ["value"]
    return header, pd.DataFrame(rows, columns=names, index=idx)


def read_fdv_header(path: Path | str) -> FdvHeader:
    return read_fdv(path)[0]


__all__ = [
    "EncodeResult",
    "FdvHeader",
    "encode",
    "header_lines",
    "identifier",
    "parse_fdv_header",
    "read_fdv",
    "read_fdv_header",
    "render_fdv",
]
