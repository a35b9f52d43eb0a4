from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

import pandas as pd

if TYPE_CHECKING:
    from .geometry import GeometryDescriptor


class ChannelGroup(str, Enum):
    DEPTH = "depth"
    VELOCITY = "velocity"
    RAINFALL = "rainfall"
    OTHER = "other"
    UNCLASSIFIED = "unclassified"


# Groups whose channels may be picked for encoding/extraction.
SELECTABLE_GROUPS = (ChannelGroup.DEPTH, ChannelGroup.VELOCITY, ChannelGroup.RAINFALL, ChannelGroup.OTHER)


class MonitorType(str, Enum):
    DEPTH = "Depth"
    VELOCITY = "Velocity"
    RAINFALL = "Rainfall"
    COMBINATION = "Combination"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ChannelDescriptor:
    name: str
    column_index: int
    unit: Optional[str] = None
    qualifier: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "column_index": self.column_index,
            "unit": self.unit,
            "qualifier": self.qualifier,
        }


@dataclass
class ClassifiedFile:
    """One logger export after classification.

    ``frame`` holds the samples on a regular ``DatetimeIndex`` (one float
    column per classified channel, ``NaN`` where the logger had no reading).
    Only the site id/name and start/end fields change after creation, and only
    through :class:`fdvproc.session.Session`.
    """

    channel_groups: Dict[ChannelGroup, List[ChannelDescriptor]]
    monitor_type: MonitorType
    start_timestamp: datetime
    end_timestamp: datetime
    sample_interval_seconds: int
    site_id: str
    site_name: str
    frame: pd.DataFrame = field(default_factory=pd.DataFrame, compare=False, repr=False)
    source_path: Optional[Path] = None
    timestamp_column: Optional[str] = None
    gaps_filled: int = 0

    @property
    def unclassified(self) -> List[ChannelDescriptor]:
        return self.channels(ChannelGroup.UNCLASSIFIED)

    def channels(self, group: ChannelGroup) -> List[ChannelDescriptor]:
        return list(self.channel_groups.get(group, []))

    def selectable_channels(self) -> List[ChannelDescriptor]:
        out: List[ChannelDescriptor] = []
        for g in SELECTABLE_GROUPS:
            out.extend(self.channel_groups.get(g, []))
        return out

    def find_channel(self, name: str, group: Optional[ChannelGroup] = None) -> Optional[ChannelDescriptor]:
        groups = [group] if group is not None else list(SELECTABLE_GROUPS)
        for g in groups:
            for ch in self.channel_groups.get(g, []):
                if ch.name == name:
                    return ch
        return None

    def group_of(self, name: str) -> Optional[ChannelGroup]:
        for g, chans in self.channel_groups.items():
            if any(ch.name == name for ch in chans):
                return g
        return None

    @property
    def interval_minutes(self) -> int:
        return max(1, int(round(self.sample_interval_seconds / 60)))

    def to_dict(self) -> dict:
        return {
            "channel_groups": {g.value: [c.to_dict() for c in chans] for g, chans in self.channel_groups.items()},
            "monitor_type": self.monitor_type.value,
            "start_timestamp": self.start_timestamp.isoformat(sep=" "),
            "end_timestamp": self.end_timestamp.isoformat(sep=" "),
            "sample_interval_seconds": self.sample_interval_seconds,
            "site_id": self.site_id,
            "site_name": self.site_name,
            "source_path": str(self.source_path) if self.source_path else None,
            "timestamp_column": self.timestamp_column,
            "gaps_filled": self.gaps_filled,
            "unclassified": [c.to_dict() for c in self.unclassified],
            "samples": int(len(self.frame)),
        }


@dataclass(frozen=True)
class SiteIdentity:
    site_id: str
    site_name: str
    start_timestamp: datetime
    end_timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "site_id": self.site_id,
            "site_name": self.site_name,
            "start_timestamp": self.start_timestamp.isoformat(sep=" "),
            "end_timestamp": self.end_timestamp.isoformat(sep=" "),
        }


@dataclass(frozen=True)
class BatchItem:
    file_path: Path
    geometry: "GeometryDescriptor"
    depth_channel: Optional[str] = None
    velocity_channel: Optional[str] = None


__all__ = [
    "ChannelGroup",
    "MonitorType",
    "ChannelDescriptor",
    "ClassifiedFile",
    "SiteIdentity",
    "BatchItem",
    "SELECTABLE_GROUPS",
]
