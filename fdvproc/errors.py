"""Error taxonomy shared by every engine component.

Each error carries a ``kind`` string naming the specific failure so callers
(and the command surface) can report ``"<Class>.<kind>"`` without parsing
messages.
"""

from __future__ import annotations


class FdvError(Exception):
    """Base class for all engine failures."""

    kinds: tuple[str, ...] = ()

    def __init__(self, kind: str, message: str = ""):
        if self.kinds and kind not in self.kinds:
            raise ValueError(f"{type(self).__name__} has no kind {kind!r}")
        self.kind = kind
        self.message = message or kind
        super().__init__(self.message)

    @property
    def error_kind(self) -> str:
        return f"{type(self).__name__}.{self.kind}"

    def __str__(self) -> str:
        return f"{self.error_kind}: {self.message}"


class FormatError(FdvError):
    """Input could not be read as a tabular logger export."""

    kinds = ("EmptyOrMalformed", "UnsupportedFormat")


class ClassificationError(FdvError):
    """Columns or timestamps could not be classified unambiguously."""

    kinds = ("InconsistentInterval", "AmbiguousColumns")


class ValidationError(FdvError):
    kinds = (
        "EmptyField",
        "InvalidTimestamp",
        "InvalidTimeRange",
        "UnknownChannel",
        "NoRainfallData",
        "NoFileLoaded",
        "InvalidArgument",
    )


class GeometryError(FdvError):
    kinds = ("InvalidDescriptor", "SolverFailed")


class FileIOError(FdvError):
    # Named to avoid shadowing the builtin ``IOError`` alias of ``OSError``.
    kinds = ("ReadFailed", "WriteFailed", "OutputDirUnwritable")


__all__ = [
    "FdvError",
    "FormatError",
    "ClassificationError",
    "ValidationError",
    "GeometryError",
    "FileIOError",
]
