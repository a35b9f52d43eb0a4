"""Run classify → encode over many logger files into one output directory."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set
import logging
import os
import re
import threading
import zipfile

from .classify import classify
from .config import EngineConfig
from .diagnostics import DiagnosticsChannel, emit
from .errors import FdvError, ValidationError
from .fdv import encode
from .geometry import coerce_geometry
from .io import ensure_writable_dir
from .models import BatchItem, ChannelGroup, MonitorType
from .rainfall import extract

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELLED = "cancelled"


@dataclass
class BatchItemResult:
    index: int
    file_path: Path
    status: str
    output_path: Optional[Path] = None
    site_id: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCEEDED

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "file_path": str(self.file_path),
            "status": self.status,
            "output_path": str(self.output_path) if self.output_path else None,
            "site_id": self.site_id,
            "error_kind": self.error_kind,
            "message": self.message,
        }


@dataclass
class BatchSummary:
    output_dir: Path
    items: List[BatchItemResult] = field(default_factory=list)
    bundle_path: Optional[Path] = None

    @property
    def succeeded(self) -> List[BatchItemResult]:
        return [r for r in self.items if r.status == SUCCEEDED]

    @property
    def failed(self) -> List[BatchItemResult]:
        return [r for r in self.items if r.status == FAILED]

    @property
    def cancelled(self) -> List[BatchItemResult]:
        return [r for r in self.items if r.status == CANCELLED]

    def to_dict(self) -> dict:
        return {
            "output_dir": str(self.output_dir),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "cancelled": len(self.cancelled),
            "bundle_path": str(self.bundle_path) if self.bundle_path else None,
            "items": [r.to_dict() for r in self.items],
        }


def safe_stem(site_id: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", site_id.strip()).strip("._")
    return stem or "Unknown"


class NameReserver:
    """Hand out unique output names in one directory.

    A name is free when no other worker reserved it and no file exists on
    disk; otherwise ``_1``, ``_2``, ... is appended to the stem.
    """

    def __init__(self, directory: Path):
        self.directory = directory
        self._lock = threading.Lock()
        self._taken: Set[str] = set()

    def reserve(self, stem: str, suffix: str) -> Path:
        with self._lock:
            n = 0
            while True:
                name = f"{stem}{suffix}" if n == 0 else f"{stem}_{n}{suffix}"
                if name.lower() not in self._taken and not (self.directory / name).exists():
                    self._taken.add(name.lower())
                    return self.directory / name
                n += 1

    def release(self, path: Path) -> None:
        """Free a reserved name whose file was never written."""
        with self._lock:
            self._taken.discard(path.name.lower())


def _process_item(
    index: int,
    item: BatchItem,
    reserver: NameReserver,
    cfg: EngineConfig,
    diagnostics: Optional[DiagnosticsChannel],
) -> BatchItemResult:
    path = Path(item.file_path)
    classified = classify(path, config=cfg, diagnostics=diagnostics)
    stem = safe_stem(classified.site_id)
    if classified.monitor_type is MonitorType.RAINFALL:
        out = reserver.reserve(stem, ".r")
        try:
            extract(classified, None, out, config=cfg, diagnostics=diagnostics)
        except Exception:
            reserver.release(out)
            raise
    else:
        depth = item.depth_channel
        if depth is None:
            chans = classified.channels(ChannelGroup.DEPTH)
            if not chans:
                raise ValidationError(
                    "UnknownChannel",
                    f"{path.name}: no depth channel ({classified.monitor_type.value} monitor)",
                )
            depth = chans[0].name
        velocity = item.velocity_channel
        if velocity is None:
            vel = classified.channels(ChannelGroup.VELOCITY)
            velocity = vel[0].name if vel else None
        geom = coerce_geometry(item.geometry)
        out = reserver.reserve(stem, ".fdv")
        try:
            encode(classified, depth, velocity, geom, out, config=cfg, diagnostics=diagnostics)
        except Exception:
            reserver.release(out)
            raise
    return BatchItemResult(index, path, SUCCEEDED, output_path=out, site_id=classified.site_id)


def _bundle(summary: BatchSummary, name: str) -> Path:
    bundle = summary.output_dir / name
    with zipfile.ZipFile(bundle, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for r in summary.succeeded:
            zf.write(r.output_path, arcname=r.output_path.name)
    return bundle


def batch_item_from_dict(entry: dict, base_dir: Optional[Path] = None) -> BatchItem:
    """Build a :class:`BatchItem` from a manifest entry.

    ``{"file": "...", "shape": "EggType1", "dimensions": [600, 900], "depth": ..., "velocity": ...}``;
    relative paths resolve against ``base_dir``.
    """
    if not isinstance(entry, dict):
        raise ValidationError("InvalidArgument", f"Batch entry must be an object: {entry!r}")
    raw = entry.get("file") or entry.get("file_path")
    if not raw:
        raise ValidationError("InvalidArgument", f"Batch entry has no file: {entry!r}")
    path = Path(raw)
    if base_dir is not None and not path.is_absolute():
        path = Path(base_dir) / path
    geom = entry.get("geometry") or {"shape": entry.get("shape"), "dimensions": entry.get("dimensions", [])}
    return BatchItem(
        file_path=path,
        geometry=coerce_geometry(geom),
        depth_channel=entry.get("depth") or entry.get("depth_channel"),
        velocity_channel=entry.get("velocity") or entry.get("velocity_channel"),
    )


def run_batch(
    items: Sequence[BatchItem],
    output_dir: Path | str,
    *,
    config: Optional[EngineConfig] = None,
    diagnostics: Optional[DiagnosticsChannel] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    bundle: bool = False,
) -> BatchSummary:
    """Convert every item; per-item failures are recorded, never raised.

    Raises :class:`~fdvproc.errors.FileIOError` (``OutputDirUnwritable``)
    before touching any item when ``output_dir`` cannot take new files.
    """
    cfg = config or EngineConfig()
    out_dir = ensure_writable_dir(output_dir)
    items = list(items)
    summary = BatchSummary(out_dir)
    if not items:
        emit(diagnostics, "info", "Batch: nothing to process", logger)
        return summary

    reserver = NameReserver(out_dir)
    cancel = cancel_event or threading.Event()
    results: Dict[int, BatchItemResult] = {}
    workers = max(1, min(max_workers or cfg.max_workers or os.cpu_count() or 1, len(items)))
    emit(diagnostics, "info", f"Batch: {len(items)} item(s) into {out_dir} with {workers} worker(s)", logger)

    def run_one(index: int, item: BatchItem) -> None:
        path = Path(item.file_path)
        if cancel.is_set():
            results[index] = BatchItemResult(index, path, CANCELLED, message="Batch cancelled before start")
            return
        emit(diagnostics, "info", f"[{index + 1}/{len(items)}] started {path.name}", logger)
        try:
            res = _process_item(index, item, reserver, cfg, diagnostics)
        except FdvError as exc:
            res = BatchItemResult(index, path, FAILED, error_kind=exc.error_kind, message=exc.message)
        except Exception as exc:  # unexpected, recorded per item
            logger.exception("Batch item %s failed unexpectedly", path)
            res = BatchItemResult(index, path, FAILED, error_kind="InternalError", message=str(exc))
        results[index] = res
        if res.ok:
            emit(diagnostics, "info", f"[{index + 1}/{len(items)}] succeeded {path.name} -> {res.output_path.name}", logger)
        else:
            emit(diagnostics, "error", f"[{index + 1}/{len(items)}] failed {path.name}: {res.error_kind}: {res.message}", logger)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fdv-batch") as pool:
        futures = [pool.submit(run_one, i, item) for i, item in enumerate(items)]
        for fut in futures:
            fut.result()

    summary.items = [results[i] for i in range(len(items))]
    if bundle and summary.succeeded:
        summary.bundle_path = _bundle(summary, cfg.bundle_name)
    emit(
        diagnostics,
        "info" if not summary.failed else "warn",
        f"Batch finished: {len(summary.succeeded)} succeeded, {len(summary.failed)} failed, "
        f"{len(summary.cancelled)} cancelled",
        logger,
    )
    return summary


__all__ = ["BatchItemResult", "BatchSummary", "NameReserver", "batch_item_from_dict", "run_batch", "safe_stem"]
