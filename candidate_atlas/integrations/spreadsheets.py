"""
Streaming row reader for candidate spreadsheets.

Workbooks are opened with openpyxl in read-only mode so rows are parsed
lazily from the underlying XML instead of materializing the whole document.
CSV files are streamed with the csv module. Either way the caller receives a
single-pass sequence of events: one HeaderEvent per sheet, followed by one
RowEvent per non-blank data row.
"""
from __future__ import annotations

import csv
import logging
import os
import zipfile
import zlib
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Set, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from candidate_atlas.core.exceptions import InputError, RowStreamError

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
CSV_EXTENSIONS = (".csv",)
SPREADSHEET_EXTENSIONS = EXCEL_EXTENSIONS + CSV_EXTENSIONS


@dataclass
class HeaderEvent:
    sheet_name: str
    header: List[str]
    kind: str = field(default="header", init=False)


@dataclass
class RowEvent:
    sheet_name: str
    row_number: int
    record: Dict[str, Any]
    kind: str = field(default="row", init=False)


RowStreamEvent = Union[HeaderEvent, RowEvent]


def normalize_header_cell(value: Any, index: int) -> str:
    """Trimmed header text, or col_<n> (1-based) for a blank cell."""
    text = cell_to_text(value)
    return text if text else f"col_{index + 1}"


def normalize_header_row(values: Sequence[Any]) -> List[str]:
    """
    Build unique header names for a row.

    Blank cells become col_<n>; repeats get a numeric suffix so no column is lost:
        ["Name", "", "Name"] -> ["Name", "col_2", "Name__2"]
    """
    header = [normalize_header_cell(value, i) for i, value in enumerate(values)]

    used: Set[str] = set()
    counts: Dict[str, int] = {}
    for i, key in enumerate(header):
        name = key
        count = counts.get(key, 1)
        # A generated suffix may collide with a real header such as "Name__2".
        while name in used:
            count += 1
            name = f"{key}__{count}"
        counts[key] = count
        used.add(name)
        header[i] = name
    return header


def cell_to_text(value: Any) -> str:
    """Visible text of a cell, used for header cells."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value).strip()


def normalize_cell_value(value: Any) -> Any:
    """
    Reduce a cell to a JSON-friendly primitive.

    Strings are trimmed (blank becomes None), dates become ISO strings, numbers
    and booleans pass through, and rich-text objects are flattened to their text.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _is_blank_row(values: Sequence[Any]) -> bool:
    return all(normalize_cell_value(value) is None for value in values)


def _record_for(header: List[str], values: Sequence[Any]) -> Dict[str, Any]:
    return {
        name: normalize_cell_value(values[i]) if i < len(values) else None
        for i, name in enumerate(header)
    }


class RowStream:
    """
    Single-pass iterator over header and row events.

    Iterating a second time raises RowStreamError; reopen the file instead.
    """

    def __init__(self, file_path: str, generate: Callable[[], Iterator[RowStreamEvent]], close: Callable[[], None]):
        self.file_path = file_path
        self._generate = generate
        self._close = close
        self._consumed = False
        self._closed = False

    def __iter__(self) -> Iterator[RowStreamEvent]:
        if self._consumed:
            raise RowStreamError(f"Row stream for {self.file_path} was already consumed; reopen the file", self.file_path)
        self._consumed = True
        return self._iterate()

    def _iterate(self) -> Iterator[RowStreamEvent]:
        try:
            yield from self._generate()
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close()

    def __enter__(self) -> "RowStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RowStreamReader(Protocol):
    def open(self, file_path: str, sheet_name: Optional[str] = None) -> RowStream: ...


class SpreadsheetReader:
    """Opens .xlsx/.xlsm workbooks (openpyxl, read-only) and .csv files as row streams."""

    def __init__(self, csv_encoding: str = "utf-8-sig"):
        self.csv_encoding = csv_encoding

    def open(self, file_path: str, sheet_name: Optional[str] = None) -> RowStream:
        """
        Open a spreadsheet for streaming.

        Fails immediately, before any event is produced, when the file is
        missing, unreadable, of an unsupported type, or lacks the requested sheet.
        """
        path = Path(file_path)
        if not path.is_file() or not os.access(path, os.R_OK):
            raise InputError(f"Spreadsheet file not found or not readable: {file_path}", str(file_path))

        extension = path.suffix.lower()
        if extension in EXCEL_EXTENSIONS:
            return self._open_workbook(path, sheet_name)
        if extension in CSV_EXTENSIONS:
            return self._open_csv(path, sheet_name)
        raise InputError(
            f"Unsupported spreadsheet type '{extension or '(none)'}' for {file_path}; "
            f"expected one of {', '.join(SPREADSHEET_EXTENSIONS)}",
            str(file_path),
        )

    # ------------------------------------------------------------------
    # Excel
    # ------------------------------------------------------------------
    def _open_workbook(self, path: Path, sheet_name: Optional[str]) -> RowStream:
        try:
            workbook = load_workbook(filename=str(path), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
            raise InputError(f"Failed to open workbook {path}: {exc}", str(path)) from exc

        if sheet_name is not None and sheet_name not in workbook.sheetnames:
            workbook.close()
            raise InputError(
                f"Sheet '{sheet_name}' not found in {path}; available sheets: {', '.join(workbook.sheetnames)}",
                str(path),
            )
        if not workbook.sheetnames:
            workbook.close()
            raise InputError(f"No sheets found in {path}", str(path))

        sheet_names = [sheet_name] if sheet_name is not None else list(workbook.sheetnames)

        def generate() -> Iterator[RowStreamEvent]:
            for name in sheet_names:
                worksheet = workbook[name]
                # Truncated sheet XML raises a SyntaxError subclass (ElementTree or lxml ParseError).
                try:
                    rows = worksheet.iter_rows(min_row=1, values_only=True)
                    yield from self._events_for_rows(name, enumerate(rows, start=1))
                except (zipfile.BadZipFile, zlib.error, EOFError, SyntaxError, KeyError, ValueError, TypeError, OSError) as exc:
                    raise RowStreamError(f"Failed reading sheet '{name}' of {path}: {exc}", str(path)) from exc

        return RowStream(str(path), generate, workbook.close)

    # ------------------------------------------------------------------
    # CSV
    # ------------------------------------------------------------------
    def _open_csv(self, path: Path, sheet_name: Optional[str]) -> RowStream:
        csv_sheet_name = path.stem
        if sheet_name is not None and sheet_name != csv_sheet_name:
            raise InputError(f"Sheet '{sheet_name}' not found in {path}; CSV files expose only '{csv_sheet_name}'", str(path))

        try:
            handle = open(path, "r", encoding=self.csv_encoding, newline="")
        except OSError as exc:
            raise InputError(f"Failed to open CSV file {path}: {exc}", str(path)) from exc

        def generate() -> Iterator[RowStreamEvent]:
            try:
                yield from self._events_for_rows(csv_sheet_name, enumerate(csv.reader(handle), start=1))
            except (csv.Error, UnicodeDecodeError) as exc:
                raise RowStreamError(f"Failed reading CSV file {path}: {exc}", str(path)) from exc

        return RowStream(str(path), generate, handle.close)

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------
    @staticmethod
    def _events_for_rows(sheet_name: str, numbered_rows) -> Iterator[RowStreamEvent]:
        header: Optional[List[str]] = None
        for row_number, values in numbered_rows:
            values = list(values or ())
            if _is_blank_row(values):
                continue

            if header is None:
                # Padding cells past the last titled column are not columns.
                while normalize_cell_value(values[-1]) is None:
                    values.pop()
                header = normalize_header_row(values)
                yield HeaderEvent(sheet_name=sheet_name, header=header)
                continue

            yield RowEvent(sheet_name=sheet_name, row_number=row_number, record=_record_for(header, values))

        if header is None:
            logger.warning(f"Sheet '{sheet_name}' has no header row; skipping")


def create_row_stream_reader() -> SpreadsheetReader:
    return SpreadsheetReader()
