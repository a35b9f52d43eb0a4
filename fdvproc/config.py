from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
import json

from .errors import FileIOError, ValidationError


DEFAULT_TIMESTAMP_KEYWORDS = ["timestamp", "time stamp", "datetime", "time", "date"]

# Candidate layouts seen in logger exports; order breaks ties.
DEFAULT_TIMESTAMP_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%m/%d/%Y %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%Y%m%d%H%M%S",
    "%Y-%m-%dT%H:%M:%S",
]


@dataclass
class EngineConfig:
    """Tunables for classification and output encoding.

    Defaults reproduce the behaviour downstream hydraulic tools expect; a JSON
    file passed to ``fdvproc --config`` may override any field.
    """

    timestamp_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_TIMESTAMP_KEYWORDS))
    timestamp_formats: List[str] = field(default_factory=lambda: list(DEFAULT_TIMESTAMP_FORMATS))
    format_probe_rows: int = 100
    # share of deltas the modal interval must cover
    min_interval_share: float = 0.5
    missing_marker: float = -1.0
    min_velocity: float = 0.2
    identifier_max_len: int = 15
    records_per_line: int = 5
    depth_records_per_line: int = 15
    rain_spread_max_zeros: int = 4
    rain_spread_cap_mm: float = 6.0
    totals_period: str = "1D"
    max_workers: Optional[int] = None
    bundle_name: str = "processed_files.zip"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Optional[Path | str] = None, **overrides: Any) -> EngineConfig:
    """Build an :class:`EngineConfig` from an optional JSON file plus overrides."""
    cfg_dict: Dict[str, Any] = {}
    if path:
        try:
            with open(path) as fh:
                cfg_dict = json.load(fh)
        except OSError as exc:
            raise FileIOError("ReadFailed", f"Cannot read config {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ValidationError("InvalidArgument", f"Config {path} is not valid JSON: {exc}") from exc
        if not isinstance(cfg_dict, dict):
            raise ValidationError("InvalidArgument", f"Config {path} must hold a JSON object")
    cfg_dict.update(overrides)
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(cfg_dict) - known)
    if unknown:
        raise ValidationError("InvalidArgument", f"Unknown config fields: {', '.join(unknown)}")
    return EngineConfig(**cfg_dict)


__all__ = ["EngineConfig", "load_config", "DEFAULT_TIMESTAMP_FORMATS", "DEFAULT_TIMESTAMP_KEYWORDS"]
