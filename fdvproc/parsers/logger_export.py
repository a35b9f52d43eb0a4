from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, date, time
from pathlib import Path
from typing import List
import logging

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import FileIOError, FormatError

logger = logging.getLogger(__name__)

CSV_SUFFIXES = {".csv", ".txt"}
XLSX_SUFFIXES = {".xlsx", ".xlsm"}


@dataclass
class RawTable:
    """Header row plus data rows of a logger export, cells left unparsed.

    ``frame`` columns are positional (0..n-1); CSV cells are strings, XLSX
    cells keep numbers as numbers so Excel serial dates can be recognised.
    """

    headers: List[str]
    frame: pd.DataFrame


def _cell_text(v):
    if v is None:
        return ""
    if isinstance(v, datetime):
        return v.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(v, date):
        return datetime.combine(v, time()).strftime("%Y-%m-%d %H:%M:%S")
    return v


def _read_csv(path: Path) -> RawTable:
    try:
        df = pd.read_csv(
            path,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
            encoding_errors="replace",
        )
    except pd.errors.EmptyDataError as exc:
        raise FormatError("EmptyOrMalformed", f"{path.name}: file is empty") from exc
    except pd.errors.ParserError as exc:
        raise FormatError("EmptyOrMalformed", f"{path.name}: cannot parse CSV: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise FormatError("EmptyOrMalformed", f"{path.name}: not a text file: {exc}") from exc
    if df.empty:
        raise FormatError("EmptyOrMalformed", f"{path.name}: no header row")
    headers = [str(h).strip() for h in df.iloc[0].tolist()]
    data = df.iloc[1:].reset_index(drop=True)
    data.columns = range(data.shape[1])
    return RawTable(headers, data)


def _read_sheet_as_df(ws) -> pd.DataFrame:
    rows = [[_cell_text(v) for v in r] for r in ws.iter_rows(values_only=True)]
    # read-only sheets report ragged rows; pad to the widest
    width = max((len(r) for r in rows), default=0)
    return pd.DataFrame([r + [""] * (width - len(r)) for r in rows])


def _read_xlsx(path: Path) -> RawTable:
    try:
        wb = load_workbook(path, data_only=True, read_only=True)
    except (InvalidFileException, KeyError, ValueError, OSError) as exc:
        raise FormatError("EmptyOrMalformed", f"{path.name}: cannot open workbook: {exc}") from exc
    try:
        ws = wb.worksheets[0] if wb.worksheets else None
        if ws is None:
            raise FormatError("EmptyOrMalformed", f"{path.name}: workbook has no sheets")
        df = _read_sheet_as_df(ws)
    finally:
        wb.close()
    # drop fully blank rows (trailing formatting is common)
    if not df.empty:
        blank = df.apply(lambda r: all(str(v).strip() == "" for v in r), axis=1)
        df = df[~blank]
    if df.empty:
        raise FormatError("EmptyOrMalformed", f"{path.name}: no header row")
    headers = [str(h).strip() for h in df.iloc[0].tolist()]
    data = df.iloc[1:].reset_index(drop=True)
    data.columns = range(data.shape[1])
    return RawTable(headers, data)


def read_logger_export(path: Path | str) -> RawTable:
    """Read a CSV or XLSX logger export into a :class:`RawTable`."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in CSV_SUFFIXES | XLSX_SUFFIXES:
        raise FormatError("UnsupportedFormat", f"{path.name}: unsupported file type {suffix or '(none)'}")
    if not path.is_file():
        raise FileIOError("ReadFailed", f"Input file not found: {path}")
    logger.debug("Reading logger export %s", path)
    try:
        if suffix in XLSX_SUFFIXES:
            return _read_xlsx(path)
        return _read_csv(path)
    except PermissionError as exc:
        raise FileIOError("ReadFailed", f"Cannot read {path}: {exc}") from exc


__all__ = ["RawTable", "read_logger_export"]
