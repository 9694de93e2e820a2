"""Tabular decoder: spreadsheet or CSV bytes -> grid of string cells.

The first row of a grid is the header row. Rows whose cells are all blank
are dropped wherever they occur, but every kept row remembers the record
number it had in the source file so that errors can point back at it.
"""
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from app.core.errors import EmptyFile, UnsupportedFormat

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({"xlsx", "xls", "csv"})
DELIMITED_EXTENSIONS = frozenset({"csv"})

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


@dataclass
class Grid:
    rows: list[list[str]] = field(default_factory=list)
    # 1-based record number of each row in the source file, parallel to ``rows``.
    line_numbers: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def headers(self) -> list[str]:
        return [h.strip() for h in self.rows[0]] if self.rows else []

    @property
    def data_rows(self) -> list[list[str]]:
        return self.rows[1:]

    def row_number(self, data_index: int) -> int:
        """Row number of the ``data_index``-th data row, counted from the header (header excluded)."""
        return self.line_numbers[data_index + 1] - self.line_numbers[0]

    def numbered_rows(self) -> list[tuple[int, list[str]]]:
        return [(self.row_number(i), row) for i, row in enumerate(self.data_rows)]


def normalize_extension(filename_or_ext: str) -> str:
    ext = filename_or_ext.rsplit(".", 1)[-1] if "." in filename_or_ext else filename_or_ext
    return ext.strip().lower()


def decode(data: bytes, declared_extension: str, allowed_extensions: frozenset[str] = SUPPORTED_EXTENSIONS) -> Grid:
    """Decode file bytes into a grid.

    Raises:
        UnsupportedFormat: the extension is not accepted.
        EmptyFile: nothing but blank rows (or nothing at all) was found.
    """
    ext = normalize_extension(declared_extension)
    if ext not in allowed_extensions or ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(
            f"File type .{ext} is not supported. Allowed types: {', '.join(sorted(allowed_extensions))}"
        )

    grid = _decode_spreadsheet(data)
    if not grid.rows and ext in DELIMITED_EXTENSIONS:
        grid = _build_grid(parse_csv(_decode_text(data)))

    if not grid.rows:
        raise EmptyFile("File has no data.")
    return grid


# ─── Spreadsheet formats ───

def _decode_spreadsheet(data: bytes) -> Grid:
    """Best-effort workbook read; an unreadable workbook yields an empty grid."""
    if data.startswith(_ZIP_MAGIC):
        return _build_grid(_read_xlsx(data))
    if data.startswith(_OLE_MAGIC):
        return _build_grid(_read_xls(data))
    return Grid()


def _read_xlsx(data: bytes) -> list[tuple[int, list[str]]]:
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        logger.info("Workbook could not be opened as xlsx: %s", exc)
        return []
    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        return [
            (index, [_cell_to_str(value) for value in values])
            for index, values in enumerate(sheet.iter_rows(values_only=True), start=1)
        ]
    finally:
        workbook.close()


def _read_xls(data: bytes) -> list[tuple[int, list[str]]]:
    try:
        book = xlrd.open_workbook(file_contents=data)
    except (xlrd.XLRDError, zipfile.BadZipFile, ValueError, OSError) as exc:
        logger.info("Workbook could not be opened as xls: %s", exc)
        return []
    if book.nsheets == 0:
        return []
    sheet = book.sheet_by_index(0)
    records: list[tuple[int, list[str]]] = []
    for r in range(sheet.nrows):
        cells = []
        for c in range(sheet.ncols):
            cell = sheet.cell(r, c)
            if cell.ctype == xlrd.XL_CELL_DATE:
                cells.append(_cell_to_str(xlrd.xldate_as_datetime(cell.value, book.datemode)))
            else:
                cells.append(_cell_to_str(cell.value))
        records.append((r + 1, cells))
    return records


def _cell_to_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ─── Delimited text ───

def _decode_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def parse_csv(text: str) -> list[tuple[int, list[str]]]:
    """Split CSV text into (record number, cells) pairs.

    Quoted fields may contain commas, line breaks and doubled quotes. Outside
    quotes, ``\\n``, ``\\r`` and ``\\r\\n`` each end one record.
    """
    records: list[tuple[int, list[str]]] = []
    row: list[str] = []
    cell: list[str] = []
    in_quotes = False
    record_number = 1
    i = 0
    n = len(text)

    while i < n:
        char = text[i]
        if in_quotes:
            if char == '"':
                if i + 1 < n and text[i + 1] == '"':
                    cell.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                cell.append(char)
            i += 1
            continue

        if char == '"':
            in_quotes = True
        elif char == ",":
            row.append("".join(cell))
            cell = []
        elif char in "\r\n":
            if char == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            row.append("".join(cell))
            records.append((record_number, row))
            record_number += 1
            row = []
            cell = []
        else:
            cell.append(char)
        i += 1

    if cell or row:
        row.append("".join(cell))
        records.append((record_number, row))

    return records


def _build_grid(records: list[tuple[int, list[str]]]) -> Grid:
    kept = [(number, cells) for number, cells in records if not _is_blank(cells)]
    width = max((len(cells) for _, cells in kept), default=0)
    return Grid(
        rows=[cells + [""] * (width - len(cells)) for _, cells in kept],
        line_numbers=[number for number, _ in kept],
    )


def _is_blank(cells: list[str]) -> bool:
    return all(not c.strip() for c in cells)
