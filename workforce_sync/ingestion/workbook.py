"""
Workbook access and cell value conversion.

Workbooks are opened with openpyxl in normal (not read-only) mode because
hyperlinks and merged ranges are only available there. ``SheetGrid`` wraps a
worksheet and answers cell lookups with merged ranges resolved to their
top-left value.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import IO, Any, Optional, Union

import openpyxl
from openpyxl.utils.datetime import from_excel
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

WorkbookSource = Union[str, Path, bytes, bytearray, IO[bytes]]

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DOTTED_DATE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2}|\d{4})$")
_YY_WW = re.compile(r"^(?:KW\s*)?(\d{2})\s*/\s*(\d{2})$", re.IGNORECASE)
_KW_YEAR = re.compile(r"^KW\s*(\d{1,2})\s*\(\s*(\d{4})\s*\)$", re.IGNORECASE)

_TRUE_TOKENS = {"1", "true", "ja", "yes", "x", "wahr"}
_FALSE_TOKENS = {"", "0", "false", "nein", "no", "falsch"}


def load_workbook(source: WorkbookSource) -> Workbook:
    """Open a workbook from a path, raw bytes or a binary file object."""
    if isinstance(source, (bytes, bytearray)):
        source = BytesIO(bytes(source))
    elif isinstance(source, Path):
        source = str(source)
    return openpyxl.load_workbook(source, data_only=True)


def source_name(source: WorkbookSource) -> Optional[str]:
    """File name of a workbook source, when it has one."""
    if isinstance(source, (str, Path)):
        return Path(source).name
    name = getattr(source, "name", None)
    return Path(name).name if isinstance(name, str) else None


def select_sheet(workbook: Workbook, name: Optional[str]) -> Worksheet:
    """The named sheet, or the first sheet when the name is absent."""
    if name and name in workbook.sheetnames:
        return workbook[name]
    return workbook.worksheets[0]


class SheetGrid:
    """1-based cell access with merged ranges resolved."""

    def __init__(self, worksheet: Worksheet, epoch: Any = None):
        self.worksheet = worksheet
        self.epoch = epoch
        self.title = worksheet.title
        self.max_row = worksheet.max_row
        self.max_column = worksheet.max_column
        self._merged_origin: dict[tuple[int, int], tuple[int, int]] = {}
        for merged in worksheet.merged_cells.ranges:
            origin = (merged.min_row, merged.min_col)
            for row in range(merged.min_row, merged.max_row + 1):
                for col in range(merged.min_col, merged.max_col + 1):
                    self._merged_origin[(row, col)] = origin

    @classmethod
    def from_workbook(cls, workbook: Workbook, sheet: Optional[str]) -> "SheetGrid":
        return cls(select_sheet(workbook, sheet), epoch=getattr(workbook, "epoch", None))

    def cell(self, row: int, col: int):
        row, col = self._merged_origin.get((row, col), (row, col))
        return self.worksheet.cell(row=row, column=col)

    def value(self, row: int, col: Optional[int]) -> Any:
        if col is None or row < 1 or col < 1:
            return None
        return self.cell(row, col).value

    def text(self, row: int, col: Optional[int]) -> str:
        return cell_text(self.value(row, col))

    def number_format(self, row: int, col: Optional[int]) -> str:
        if col is None:
            return "General"
        return self.cell(row, col).number_format or "General"

    def value_above(self, row: int, col: int, max_up: int) -> Any:
        """First non-empty value at ``row`` or up to ``max_up`` rows above it."""
        for up in range(max_up + 1):
            if row - up < 1:
                break
            value = self.value(row - up, col)
            if cell_text(value):
                return value
        return None

    def hyperlink(self, row: int, col: Optional[int]) -> str:
        """Target of the cell's hyperlink; the displayed text is ignored."""
        if col is None:
            return ""
        link = self.cell(row, col).hyperlink
        if link is None:
            return ""
        return str(link.target or link.location or "")

    def row_is_blank(self, row: int) -> bool:
        return not any(
            cell_text(self.worksheet.cell(row=row, column=col).value)
            for col in range(1, self.max_column + 1)
        )

    def header_labels(self, row: int) -> list[tuple[int, str]]:
        return [(col, self.text(row, col)) for col in range(1, self.max_column + 1)]


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def to_iso_date(value: Any, epoch: Any = None) -> Optional[str]:
    """
    Date cell, date serial or date text to ``YYYY-MM-DD``.

    Serial numbers honor the workbook epoch (1900 or 1904 calendar).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value) or value <= 0:
            return None
        converted = from_excel(value, epoch) if epoch is not None else from_excel(value)
        if isinstance(converted, datetime):
            return converted.date().isoformat()
        return None

    text = str(value).strip()
    match = _ISO_DATE.match(text)
    if match:
        return _safe_iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    match = _DOTTED_DATE.match(text)
    if match:
        day, month, year = match.groups()
        full_year = 2000 + int(year) if len(year) == 2 else int(year)
        return _safe_iso(full_year, int(month), int(day))
    return None


def _safe_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def to_number(value: Any) -> Optional[float]:
    """Numeric cell or numeric text (decimal comma allowed); ``None`` otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    text = str(value).strip().rstrip("%").strip().replace(",", ".")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def is_percent_format(number_format: Optional[str]) -> bool:
    return bool(number_format) and "%" in number_format


def to_percent(value: Any, number_format: Optional[str] = None) -> Optional[float]:
    """
    Utilization cell to a percentage.

    ``%``-formatted cells hold fractions and are always scaled. Text with a
    trailing ``%`` is already a percentage. Unmarked numbers in (0, 1] are
    fractions, anything else is taken as-is.
    """
    number = to_number(value)
    if number is None:
        return None
    if isinstance(value, str):
        if value.strip().endswith("%"):
            return _tidy(number)
    elif is_percent_format(number_format):
        return _tidy(number * 100)
    if 0 < number <= 1:
        return _tidy(number * 100)
    return _tidy(number)


def to_plain_percent(value: Any, number_format: Optional[str] = None) -> Optional[float]:
    """Percentage without the fraction heuristic; only ``%``-formatted cells are scaled."""
    number = to_number(value)
    if number is None:
        return None
    if not isinstance(value, str) and is_percent_format(number_format):
        return _tidy(number * 100)
    return _tidy(number)


def _tidy(number: float) -> float:
    # 0.57 * 100 would otherwise be stored as 56.99999999999999
    return round(number, 6)


def to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    token = cell_text(value).lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return None


def normalize_week_label(value: Any) -> Optional[str]:
    """
    Week header to ``YY/WW``.

        "25/01"       -> "25/01"
        "KW 25/01"    -> "25/01"
        "KW34(2025)"  -> "25/34"

    The label has to be the whole cell. Titles such as
    ``"Auslastung 2025/01 - Export"`` are not week labels.
    """
    text = cell_text(value)
    if not text:
        return None
    match = _YY_WW.match(text)
    if match:
        return f"{match.group(1)}/{match.group(2)}"
    match = _KW_YEAR.match(text)
    if match:
        week, year = match.groups()
        return f"{year[-2:]}/{int(week):02d}"
    return None
