"""Append-only diagnostics log with pull (``drain``) and push (``subscribe``) access.

Producers call :meth:`DiagnosticsChannel.append` from any thread.  Each
subscriber owns an unbounded :class:`queue.Queue`, so a slow consumer never
blocks a producer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
import logging
import queue
import threading
import time

logger = logging.getLogger(__name__)

LEVELS = ("info", "warn", "error")

_PY_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


@dataclass(frozen=True)
class LogEvent:
    level: str
    message: str
    sequence_number: int
    timestamp: float = field(default=0.0, compare=False)
    source: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "message": self.message,
            "sequence_number": self.sequence_number,
            "timestamp": self.timestamp,
            "source": self.source,
        }


class Subscription:
    """Live cursor over events appended after it was created."""

    _CLOSED = object()

    def __init__(self, channel: "DiagnosticsChannel"):
        self._channel = channel
        self._queue: "queue.Queue" = queue.Queue()
        self.closed = False

    def _put(self, event: LogEvent) -> None:
        self._queue.put_nowait(event)

    def get(self, timeout: Optional[float] = None) -> Optional[LogEvent]:
        """Next event, or ``None`` on timeout or after :meth:`close`."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            self.closed = True
            return None
        return item

    def get_nowait(self) -> List[LogEvent]:
        out: List[LogEvent] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return out
            if item is self._CLOSED:
                self.closed = True
                return out
            out.append(item)

    def close(self) -> None:
        self._channel._unsubscribe(self)
        self._queue.put_nowait(self._CLOSED)

    def __iter__(self):
        return self

    def __next__(self) -> LogEvent:
        if self.closed:
            raise StopIteration
        event = self.get()
        if event is None:
            raise StopIteration
        return event


class DiagnosticsChannel:
    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[LogEvent] = []
        self._subscribers: List[Subscription] = []
        self._next_seq = 1

    def append(self, level: str, message: str, source: Optional[str] = None) -> LogEvent:
        if level not in LEVELS:
            raise ValueError(f"Unknown diagnostics level: {level!r}")
        with self._lock:
            event = LogEvent(level, str(message), self._next_seq, time.time(), source)
            self._next_seq += 1
            self._events.append(event)
            for sub in self._subscribers:
                sub._put(event)
        return event

    def drain(self) -> List[LogEvent]:
        """All retained events in sequence order (non-destructive)."""
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        # sequence numbers keep increasing across clears
        with self._lock:
            self._events.clear()

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class DiagnosticsHandler(logging.Handler):
    """Mirror ``logging`` records into a :class:`DiagnosticsChannel`."""

    def __init__(self, channel: DiagnosticsChannel, level: int = logging.INFO):
        super().__init__(level)
        self.channel = channel

    def emit(self, record: logging.LogRecord) -> None:
        if getattr(record, "fdv_mirrored", False):
            return
        if record.levelno >= logging.ERROR:
            lvl = "error"
        elif record.levelno >= logging.WARNING:
            lvl = "warn"
        else:
            lvl = "info"
        try:
            self.channel.append(lvl, record.getMessage(), record.name)
        except Exception:
            self.handleError(record)


def emit(
    channel: Optional[DiagnosticsChannel],
    level: str,
    message: str,
    log: Optional[logging.Logger] = None,
) -> Optional[LogEvent]:
    """Record ``message`` on ``channel`` (if any) and on the Python logger."""
    log = log or logger
    # flag stops a DiagnosticsHandler on the same logger from appending twice
    log.log(_PY_LEVELS[level], "%s", message, extra={"fdv_mirrored": channel is not None})
    if channel is None:
        return None
    return channel.append(level, message, log.name)


__all__ = ["LogEvent", "DiagnosticsChannel", "DiagnosticsHandler", "Subscription", "emit", "LEVELS"]
