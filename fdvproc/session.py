from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional, Union
import logging

import pandas as pd

from .classify import grid_phase
from .diagnostics import DiagnosticsChannel, emit
from .errors import ValidationError
from .models import ClassifiedFile, SiteIdentity

logger = logging.getLogger(__name__)

TIMESTAMP_INPUT_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M")

TimestampLike = Union[datetime, str]


def parse_user_timestamp(value: TimestampLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    text = str(value).strip()
    for fmt in TIMESTAMP_INPUT_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValidationError("InvalidTimestamp", f"Unrecognised timestamp: {value!r}")


class Session:
    """State of the currently loaded file: one classified file, one site identity.

    Only the update methods here change the site identity; each update is
    mirrored into the classified file so both stay in step.
    """

    def __init__(self, diagnostics: Optional[DiagnosticsChannel] = None):
        self.diagnostics = diagnostics
        self._classified: Optional[ClassifiedFile] = None
        self._identity: Optional[SiteIdentity] = None

    # -- state -------------------------------------------------------------
    @property
    def loaded(self) -> bool:
        return self._classified is not None

    @property
    def classified(self) -> ClassifiedFile:
        if self._classified is None:
            raise ValidationError("NoFileLoaded", "No file has been classified in this session")
        return self._classified

    @property
    def identity(self) -> SiteIdentity:
        if self._identity is None:
            raise ValidationError("NoFileLoaded", "No file has been classified in this session")
        return self._identity

    def load(self, classified: ClassifiedFile) -> SiteIdentity:
        self.reset()
        self._classified = classified
        self._identity = SiteIdentity(
            classified.site_id,
            classified.site_name,
            classified.start_timestamp,
            classified.end_timestamp,
        )
        return self._identity

    def reset(self) -> None:
        self._classified = None
        self._identity = None

    # -- updates -----------------------------------------------------------
    def _apply(self, identity: SiteIdentity) -> SiteIdentity:
        cf = self.classified
        cf.site_id = identity.site_id
        cf.site_name = identity.site_name
        cf.start_timestamp = identity.start_timestamp
        cf.end_timestamp = identity.end_timestamp
        self._identity = identity
        return identity

    @staticmethod
    def _required(value, field_name: str) -> str:
        text = "" if value is None else str(value).strip()
        if not text:
            raise ValidationError("EmptyField", f"{field_name} must not be empty")
        return text

    def update_site_id(self, site_id: str) -> SiteIdentity:
        site_id = self._required(site_id, "Site id")
        return self._apply(replace(self.identity, site_id=site_id))

    def update_site_name(self, site_name: str) -> SiteIdentity:
        site_name = self._required(site_name, "Site name")
        return self._apply(replace(self.identity, site_name=site_name))

    def update_timestamps(self, start: TimestampLike, end: TimestampLike) -> SiteIdentity:
        ident = self.identity
        start_dt = parse_user_timestamp(start)
        end_dt = parse_user_timestamp(end)
        if start_dt > end_dt:
            raise ValidationError("InvalidTimeRange", f"Start {start_dt} is after end {end_dt}")
        frame = self.classified.frame
        if len(frame):
            lo, hi = frame.index[0].to_pydatetime(), frame.index[-1].to_pydatetime()
            if start_dt < lo or end_dt > hi:
                emit(
                    self.diagnostics,
                    "warn",
                    f"Time window {start_dt} .. {end_dt} extends beyond the loaded data ({lo} .. {hi})",
                    logger,
                )
        return self._apply(replace(ident, start_timestamp=start_dt, end_timestamp=end_dt))

    # -- derived data --------------------------------------------------------
    def window_frame(self) -> pd.DataFrame:
        """Samples on the regular grid spanning the session's time window."""
        return window_frame(self.classified)


def window_frame(classified: ClassifiedFile) -> pd.DataFrame:
    """Re-index ``classified.frame`` onto ``start..end`` at the sample interval.

    The grid shares the phase classification placed the samples on, so
    user-narrowed windows keep real readings aligned; slots without data are
    ``NaN``.
    """
    frame = classified.frame
    step = pd.Timedelta(seconds=classified.sample_interval_seconds)
    start = pd.Timestamp(classified.start_timestamp)
    end = pd.Timestamp(classified.end_timestamp)
    if len(frame):
        anchor = grid_phase(frame.index, classified.sample_interval_seconds)
        # snap the window start up onto the data grid
        k = -((anchor - start) // step)
        start = anchor + k * step
    grid = pd.date_range(start, end, freq=step, name="timestamp")
    return frame.reindex(grid)


__all__ = ["Session", "SiteIdentity", "parse_user_timestamp", "window_frame"]
