"""
fdvproc - logger export classification and FDV flow/rainfall file conversion.
"""

__version__ = "0.1.0"

from .errors import (
    FdvError,
    FormatError,
    ClassificationError,
    ValidationError,
    GeometryError,
    FileIOError,
)
from .config import EngineConfig, load_config
from .diagnostics import DiagnosticsChannel, DiagnosticsHandler, LogEvent
from .models import (
    BatchItem,
    ChannelDescriptor,
    ChannelGroup,
    ClassifiedFile,
    MonitorType,
    SiteIdentity,
)
from .classify import classify, classify_table
from .session import Session
from .r3 import R3Result, solve_r3, solve_r3_detailed
from .geometry import (
    Circular,
    Rectangular,
    EggType1,
    EggType2,
    EggType2A,
    TwoCircleAndRectangle,
    geometry_from_dimensions,
)
from .fdv import encode, read_fdv, read_fdv_header
from .rainfall import extract, totalize, write_rainfall_totals
from .interim import write_interim_report
from .batch import BatchSummary, run_batch
from .commands import CommandHandler, CommandResult

__all__ = [
    "__version__",
    "FdvError", "FormatError", "ClassificationError", "ValidationError", "GeometryError", "FileIOError",
    "EngineConfig", "load_config",
    "DiagnosticsChannel", "DiagnosticsHandler", "LogEvent",
    "BatchItem", "ChannelDescriptor", "ChannelGroup", "ClassifiedFile", "MonitorType", "SiteIdentity",
    "classify", "classify_table",
    "Session",
    "R3Result", "solve_r3", "solve_r3_detailed",
    "Circular", "Rectangular", "EggType1", "EggType2", "EggType2A", "TwoCircleAndRectangle",
    "geometry_from_dimensions",
    "encode", "read_fdv", "read_fdv_header",
    "extract", "totalize", "write_rainfall_totals",
    "write_interim_report",
    "BatchSummary", "run_batch",
    "CommandHandler", "CommandResult",
]
