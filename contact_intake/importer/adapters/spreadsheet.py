"""Spreadsheet adapter for bulk contact uploads.

Streams row maps out of ``.csv``, ``.xlsx`` and ``.xls`` files. The first row
of the first sheet names the columns; blank rows are skipped and empty cells
are dropped from the row map so downstream steps only see provided values.
Columns that look like the core contact fields (``Phone Number``,
``E-mail``...) are mapped onto their canonical names; every other column keeps
its header text and ends up in contact metadata or group field values.
"""

from __future__ import annotations

import csv
import math
import re
from dataclasses import dataclass
from datetime import datetime, time
from pathlib import Path
from typing import Any, Iterator, Sequence

import openpyxl
import xlrd

SUPPORTED_EXTENSIONS: tuple[str, ...] = ("csv", "xlsx", "xls")

CORE_COLUMN_ALIASES: dict[str, str] = {
    "phone": "phone",
    "phone_number": "phone",
    "phonenumber": "phone",
    "mobile": "phone",
    "mobile_number": "phone",
    "email": "email",
    "email_address": "email",
    "e_mail": "email",
    "first_name": "first_name",
    "firstname": "first_name",
    "given_name": "first_name",
    "last_name": "last_name",
    "lastname": "last_name",
    "surname": "last_name",
    "family_name": "last_name",
}


class SpreadsheetError(Exception):
    """Base exception for spreadsheet adapter failures."""


class UnsupportedSpreadsheetError(SpreadsheetError):
    """Raised for file extensions the adapter cannot read."""


class SpreadsheetHeaderError(SpreadsheetError):
    """Raised when the header row is missing or ambiguous."""

    def __init__(self, *, duplicates: Sequence[str] | None = None, empty: bool = False) -> None:
        if empty:
            message = "Spreadsheet header validation failed. The first row must contain column names."
        else:
            message = (
                "Spreadsheet header validation failed. Duplicate columns detected: "
                + ", ".join(sorted(duplicates or ()))
                + ". Ensure each column appears only once."
            )
        super().__init__(message)
        self.duplicates = tuple(duplicates or ())


@dataclass(frozen=True)
class SpreadsheetRow:
    """
    A non-blank data row.

    ``sequence_number`` counts data rows from 1 with blank rows excluded, so
    ``row_number`` (sequence + 1, accounting for the header) is the row a user
    sees when the sheet is opened without its blank lines.
    """

    sequence_number: int
    source_line: int
    values: dict[str, Any]

    @property
    def row_number(self) -> int:
        return self.sequence_number + 1


@dataclass
class SpreadsheetStatistics:
    rows_read: int = 0
    rows_skipped_blank: int = 0


def normalize_header(header: str) -> str:
    return re.sub(r"[^0-9a-z]+", "_", header.lower()).strip("_")


def _sanitize_header(header: Any) -> str:
    if header is None:
        return ""
    token = _clean_cell(header)
    token = "" if token is None else str(token)
    return token.strip().lstrip("\ufeff").strip()


def _clean_cell(value: Any) -> Any:
    """Trim strings and turn whole-number floats back into ints."""

    if isinstance(value, str):
        token = value.strip()
        return token or None
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return value


def _resolve_columns(raw_headers: Sequence[Any]) -> list[str | None]:
    """Return one column name per position (``None`` for unnamed columns)."""

    columns: list[str | None] = []
    seen: set[str] = set()
    duplicates: list[str] = []
    for header in raw_headers:
        token = _sanitize_header(header)
        if not token:
            columns.append(None)
            continue
        name = CORE_COLUMN_ALIASES.get(normalize_header(token), token)
        if name in seen:
            duplicates.append(name)
        seen.add(name)
        columns.append(name)
    if duplicates:
        raise SpreadsheetHeaderError(duplicates=duplicates)
    if not seen:
        raise SpreadsheetHeaderError(empty=True)
    return columns


class SpreadsheetReader:
    """
    Streaming reader over the first sheet of an uploaded file.

    Every call to ``iter_rows`` re-opens the file, so the reader can count rows
    before processing them without holding the sheet in memory.
    """

    def __init__(self, path: Path | str, *, skip_blank_rows: bool = True) -> None:
        self.path = Path(path)
        self.extension = self.path.suffix.lower().lstrip(".")
        if self.extension not in SUPPORTED_EXTENSIONS:
            raise UnsupportedSpreadsheetError(
                f"Unsupported file format '.{self.extension}'. Please upload Excel or CSV file"
            )
        self.skip_blank_rows = skip_blank_rows
        self.columns: tuple[str | None, ...] = ()
        self.statistics = SpreadsheetStatistics()

    def count_rows(self) -> int:
        return sum(1 for _ in self._iter_values())

    def iter_rows(self) -> Iterator[SpreadsheetRow]:
        self.statistics = SpreadsheetStatistics()
        for sequence_number, (source_line, values) in enumerate(self._iter_values(track=True), start=1):
            self.statistics.rows_read += 1
            yield SpreadsheetRow(sequence_number=sequence_number, source_line=source_line, values=values)

    def _iter_values(self, *, track: bool = False) -> Iterator[tuple[int, dict[str, Any]]]:
        raw_rows = self._iter_raw_rows()
        header = next(raw_rows, None)
        if header is None:
            raise SpreadsheetHeaderError(empty=True)
        columns = _resolve_columns(header)
        self.columns = tuple(columns)

        for source_line, cells in enumerate(raw_rows, start=2):
            values: dict[str, Any] = {}
            for column, cell in zip(columns, cells):
                if column is None:
                    continue
                cleaned = _clean_cell(cell)
                if cleaned is not None:
                    values[column] = cleaned
            if not values and self.skip_blank_rows:
                if track:
                    self.statistics.rows_skipped_blank += 1
                continue
            yield source_line, values

    def _iter_raw_rows(self) -> Iterator[Sequence[Any]]:
        if self.extension == "csv":
            yield from self._iter_csv()
        elif self.extension == "xlsx":
            yield from self._iter_xlsx()
        else:
            yield from self._iter_xls()

    def _iter_csv(self) -> Iterator[Sequence[Any]]:
        with self.path.open("r", encoding="utf-8-sig", newline="") as handle:
            yield from csv.reader(handle)

    def _iter_xlsx(self) -> Iterator[Sequence[Any]]:
        try:
            workbook = openpyxl.load_workbook(self.path, read_only=True, data_only=True)
        except Exception as exc:
            raise SpreadsheetError(f"Unable to read Excel workbook: {exc}") from exc
        try:
            worksheet = workbook.worksheets[0]
            for row in worksheet.iter_rows(values_only=True):
                yield [_normalize_temporal(cell) for cell in row]
        finally:
            workbook.close()

    def _iter_xls(self) -> Iterator[Sequence[Any]]:
        try:
            book = xlrd.open_workbook(str(self.path), on_demand=True)
        except xlrd.XLRDError as exc:
            raise SpreadsheetError(f"Unable to read Excel workbook: {exc}") from exc
        try:
            sheet = book.sheet_by_index(0)
            for index in range(sheet.nrows):
                row = []
                for cell in sheet.row(index):
                    if cell.ctype == xlrd.XL_CELL_DATE:
                        row.append(_normalize_temporal(xlrd.xldate_as_datetime(cell.value, book.datemode)))
                    elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                        row.append(bool(cell.value))
                    elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                        row.append(None)
                    else:
                        row.append(cell.value)
                yield row
        finally:
            book.release_resources()


def _normalize_temporal(value: Any) -> Any:
    """Midnight datetimes from Excel date cells become plain dates."""

    if isinstance(value, datetime) and value.time() == time(0, 0):
        return value.date()
    return value


def open_spreadsheet(path: Path | str) -> SpreadsheetReader:
    return SpreadsheetReader(path)
