from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator
import os
import tempfile
import uuid

from .errors import FileIOError


@contextmanager
def atomic_path(target: Path | str, suffix: str | None = None) -> Iterator[Path]:
    """Yield a temporary path next to ``target``; move it into place on success.

    The temporary file lives in the same directory so ``os.replace`` stays on
    one filesystem.  On any failure the temporary file is removed and the
    original ``target`` (if any) is left untouched.
    """
    target = Path(target)
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=suffix or ".tmp", dir=str(target.parent)
        )
        os.close(fd)
    except OSError as exc:
        raise FileIOError("WriteFailed", f"Cannot create temporary file for {target}: {exc}") from exc
    tmp = Path(tmp_name)
    try:
        yield tmp
        os.replace(tmp, target)
    except OSError as exc:
        raise FileIOError("WriteFailed", f"Writing {target} failed: {exc}") from exc
    finally:
        if tmp.exists():
            tmp.unlink()


def atomic_write_text(target: Path | str, text: str) -> Path:
    target = Path(target)
    with atomic_path(target) as tmp:
        with open(tmp, "w", encoding="ascii", newline="\n") as fh:
            fh.write(text)
    return target


def atomic_write_with(target: Path | str, writer: Callable[[Path], None]) -> Path:
    """Call ``writer(tmp_path)`` and atomically publish the result at ``target``."""
    target = Path(target)
    with atomic_path(target, suffix=target.suffix) as tmp:
        writer(tmp)
    return target


def ensure_writable_dir(path: Path | str) -> Path:
    """Create ``path`` if needed and prove it accepts new files."""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FileIOError("OutputDirUnwritable", f"Cannot create output directory {path}: {exc}") from exc
    if not path.is_dir() or not os.access(path, os.W_OK | os.X_OK):
        raise FileIOError("OutputDirUnwritable", f"Output directory is not writable: {path}")
    probe = path / f".fdvproc-probe-{uuid.uuid4().hex}"
    try:
        probe.write_bytes(b"")
        probe.unlink()
    except OSError as exc:
        raise FileIOError("OutputDirUnwritable", f"Output directory is not writable: {path}: {exc}") from exc
    return path


__all__ = ["atomic_path", "atomic_write_text", "atomic_write_with", "ensure_writable_dir"]
