"""Command surface used by a presentation layer.

Every command returns a :class:`CommandResult`; engine errors never escape and
are mirrored onto the diagnostics channel at ``error`` level.  Long commands
can be handed to :meth:`CommandHandler.submit`, which runs them on a private
worker thread and returns a :class:`concurrent.futures.Future`.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional
import logging
import re
import threading

from . import batch as batch_mod
from .classify import classify
from . import fdv, interim, rainfall
from .config import EngineConfig
from .diagnostics import DiagnosticsChannel, LogEvent, Subscription, emit
from .errors import FdvError, ValidationError
from .geometry import coerce_geometry
from .models import BatchItem
from .r3 import solve_r3_detailed
from .session import Session

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    ok: bool
    value: Any = None
    error_kind: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        elif isinstance(value, list):
            value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
        elif isinstance(value, Path):
            value = str(value)
        return {"ok": self.ok, "value": value, "error_kind": self.error_kind, "message": self.message}


def egg_form_value(egg_form):
    """Egg form from a number (passed through as given) or a label such as ``"Egg Type 1"``."""
    if isinstance(egg_form, (int, float)) and not isinstance(egg_form, bool):
        return egg_form
    m = re.search(r"\d+", str(egg_form))
    if not m:
        raise ValidationError("InvalidArgument", f"Unrecognised egg form: {egg_form!r}")
    return int(m.group(0))


class CommandHandler:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        diagnostics: Optional[DiagnosticsChannel] = None,
    ):
        self.config = config or EngineConfig()
        self.diagnostics = diagnostics or DiagnosticsChannel()
        self.session = Session(self.diagnostics)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._cancel = threading.Event()

    # -- plumbing ------------------------------------------------------------
    def _run(self, name: str, fn: Callable[[], Any]) -> CommandResult:
        try:
            return CommandResult(True, fn())
        except FdvError as exc:
            emit(self.diagnostics, "error", f"{name}: {exc.error_kind}: {exc.message}", logger)
            return CommandResult(False, None, exc.error_kind, exc.message)
        except Exception as exc:
            logger.exception("Command %s failed", name)
            emit(self.diagnostics, "error", f"{name}: InternalError: {exc}", logger)
            return CommandResult(False, None, "InternalError", str(exc))

    def submit(self, command: str, *args, **kwargs) -> "Future[CommandResult]":
        """Run ``command`` off the caller's thread; commands execute one at a time."""
        fn = getattr(self, command, None)
        if command.startswith("_") or command in ("submit", "close") or not callable(fn):
            raise AttributeError(f"Unknown command: {command}")
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fdv-command")
            return self._executor.submit(fn, *args, **kwargs)

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def __enter__(self) -> "CommandHandler":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- session -------------------------------------------------------------
    def classify_file(self, path: Path | str) -> CommandResult:
        def _do():
            classified = classify(path, config=self.config, diagnostics=self.diagnostics)
            self.session.load(classified)
            return classified
        return self._run("classify_file", _do)

    def update_site_id(self, site_id: str) -> CommandResult:
        return self._run("update_site_id", lambda: self.session.update_site_id(site_id))

    def update_site_name(self, site_name: str) -> CommandResult:
        return self._run("update_site_name", lambda: self.session.update_site_name(site_name))

    def update_timestamps(self, start, end) -> CommandResult:
        return self._run("update_timestamps", lambda: self.session.update_timestamps(start, end))

    def reset_session(self) -> CommandResult:
        def _do():
            self.session.reset()
            emit(self.diagnostics, "info", "Session reset", logger)
        return self._run("reset_session", _do)

    # -- outputs -------------------------------------------------------------
    def encode_fdv(self, output_path, depth_channel, velocity_channel, geometry) -> CommandResult:
        return self._run(
            "encode_fdv",
            lambda: fdv.encode(
                self.session.classified,
                depth_channel,
                velocity_channel,
                coerce_geometry(geometry),
                output_path,
                config=self.config,
                diagnostics=self.diagnostics,
            ),
        )

    def extract_rainfall(self, output_path, rainfall_channel=None) -> CommandResult:
        return self._run(
            "extract_rainfall",
            lambda: rainfall.extract(
                self.session.classified, rainfall_channel, output_path,
                config=self.config, diagnostics=self.diagnostics,
            ),
        )

    def totalize_rainfall(self, output_path, period: Optional[str] = None, rainfall_channel=None) -> CommandResult:
        return self._run(
            "totalize_rainfall",
            lambda: rainfall.totalize(
                self.session.classified, output_path, period or self.config.totals_period,
                rainfall_channel, diagnostics=self.diagnostics,
            ),
        )

    def generate_rainfall_totals(self, output_path) -> CommandResult:
        return self._run(
            "generate_rainfall_totals",
            lambda: rainfall.write_rainfall_totals(self.session.classified, output_path, diagnostics=self.diagnostics),
        )

    def generate_interim_report(self, output_path) -> CommandResult:
        return self._run(
            "generate_interim_report",
            lambda: interim.write_interim_report(self.session.classified, output_path, diagnostics=self.diagnostics),
        )

    def solve_r3(self, width, height, egg_form) -> CommandResult:
        def _do():
            res = solve_r3_detailed(width, height, egg_form_value(egg_form))
            if not res.converged:
                emit(self.diagnostics, "warn", f"R3 solver returned -1 for {width}x{height}: {res.reason}", logger)
            return res.value
        return self._run("solve_r3", _do)

    def run_batch(self, items: Iterable, output_dir, *, bundle: bool = False, base_dir=None) -> CommandResult:
        def _do():
            parsed: List[BatchItem] = [
                i if isinstance(i, BatchItem) else batch_mod.batch_item_from_dict(i, base_dir) for i in items
            ]
            self._cancel.clear()
            return batch_mod.run_batch(
                parsed,
                output_dir,
                config=self.config,
                diagnostics=self.diagnostics,
                cancel_event=self._cancel,
                bundle=bundle,
            )
        return self._run("run_batch", _do)

    def cancel_batch(self) -> CommandResult:
        self._cancel.set()
        emit(self.diagnostics, "warn", "Batch cancellation requested", logger)
        return CommandResult(True)

    # -- diagnostics ---------------------------------------------------------
    def drain_recent_logs(self) -> List[LogEvent]:
        return self.diagnostics.drain()

    def subscribe_logs(self) -> Subscription:
        return self.diagnostics.subscribe()


__all__ = ["CommandHandler", "CommandResult", "egg_form_value"]
