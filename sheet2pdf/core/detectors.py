"""
Anomaly detectors run over worksheet text.

Detectors work on a SheetGrid: the display text of a capped rectangle of a
worksheet plus a lookup of merged ranges. Cells covered by a merge but not
its top-left cell are never reported.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from openpyxl.worksheet.cell_range import CellRange

from .styles import format_cell_value
from ..models import DateRange, FormulaError, InvoiceNumber, LabeledDate

FORMULA_ERROR_MARKER = "#NAME?"

_DATE_LABELS_EXACT = {"INVOICE_DATE", "INVOICE  DATE", "INVOICE DATE", "INVOICEDATE"}
_DATE_LABELS_CONTAINED = ("INVOICE DATE", "INVOICEDATE")

_INVOICE_LABELS_EXACT = {
    "invoice number", "invoice no", "invoice no.", "invoiceno",
    "invoice_no", "inv no", "inv. no", "inv no.", "inv. no.",
}
_INVOICE_LABELS_CONTAINED = (
    "invoice number", "invoice no", "invoiceno", "invoice_no", "inv no", "inv. no",
)
# Tried in order when a single cell carries both label and number.
_INLINE_SEPARATORS = (":", "：", "-", " ", "\t")
_VALUE_SEPARATORS = {":", "：", "-", "–"}

_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_NUMERIC_DATE = re.compile(r"\d{1,2}[-/]\d{1,2}[-/]\d{2,4}")
_DAY_MONTH = re.compile(rf"\d{{1,2}}\s+({_MONTHS})", re.IGNORECASE)
_NOT_A_DATE_WORDS = ("invoice", "date", "no", "number")

_DATE_RANGE_PATTERNS = [
    re.compile(r"\b\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\s+To\s+\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}\s+[A-Za-z]+\s+\d{4}\s+To\s+\d{1,2}\s+[A-Za-z]+\s+\d{4}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}-[A-Za-z]{3}-\d{4}\s+To\s+\d{1,2}-[A-Za-z]{3}-\d{4}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/[A-Za-z]{3}/\d{4}\s+To\s+\d{1,2}/[A-Za-z]{3}/\d{4}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\s+TO\s+\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\b"),
    re.compile(r"\b\d{1,2}-\d{1,2}-\d{4}\s+To\s+\d{1,2}-\d{1,2}-\d{4}\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\s+To\s+\d{1,2}/\d{1,2}/\d{4}\b", re.IGNORECASE),
]


class SheetGrid:
    """Display text of the top-left `max_rows` x `max_columns` block of a worksheet."""

    def __init__(self, worksheet: Any, max_rows: int, max_columns: int):
        self.title = worksheet.title
        self.max_row = min(worksheet.max_row, max_rows)
        self.max_column = min(worksheet.max_column, max_columns)
        self._texts: Dict[Tuple[int, int], str] = {}
        self._merges: Dict[Tuple[int, int], CellRange] = {}

        for row in worksheet.iter_rows(min_row=1, max_row=self.max_row,
                                       min_col=1, max_col=self.max_column):
            for cell in row:
                text = format_cell_value(cell.value)
                if text:
                    self._texts[(cell.row, cell.column)] = text

        for merged in worksheet.merged_cells.ranges:
            if merged.min_row > self.max_row or merged.min_col > self.max_column:
                continue
            for r in range(merged.min_row, min(merged.max_row, self.max_row) + 1):
                for c in range(merged.min_col, min(merged.max_col, self.max_column) + 1):
                    self._merges[(r, c)] = merged

    def text(self, row: int, column: int) -> str:
        return self._texts.get((row, column), "")

    def merge_at(self, row: int, column: int) -> Optional[CellRange]:
        return self._merges.get((row, column))

    def is_merge_follower(self, row: int, column: int) -> bool:
        merged = self._merges.get((row, column))
        return merged is not None and (merged.min_row, merged.min_col) != (row, column)

    def all_cells(self):
        """Yield (row, column, text) for every non-empty cell, merge followers included."""
        for (row, column), text in sorted(self._texts.items()):
            yield row, column, text

    def cells(self):
        """Yield (row, column, text) for non-empty cells that are not merge followers."""
        for (row, column), text in sorted(self._texts.items()):
            if self.is_merge_follower(row, column):
                continue
            yield row, column, text


def find_formula_errors(grid: SheetGrid) -> List[FormulaError]:
    return [
        FormulaError(sheet=grid.title, row=row, column=column)
        for row, column, text in grid.all_cells()
        if FORMULA_ERROR_MARKER in text
    ]


def is_invoice_date_label(text: str) -> bool:
    normalized = text.strip().upper()
    if normalized in _DATE_LABELS_EXACT:
        return True
    return any(label in normalized for label in _DATE_LABELS_CONTAINED)


def looks_like_date(text: str) -> bool:
    """Loose test for text that reads like a date value rather than a label."""
    text = text.strip()
    if not text:
        return False
    if "," in text and " " in text:
        return True
    if _NUMERIC_DATE.search(text):
        return True
    if _DAY_MONTH.search(text):
        return True
    lowered = text.lower()
    return len(text) > 3 and not any(word in lowered for word in _NOT_A_DATE_WORDS)


def _date_candidates(grid: SheetGrid, row: int, column: int) -> List[Tuple[int, int]]:
    candidates: List[Tuple[int, int]] = []
    merged = grid.merge_at(row, column)
    if merged is not None:
        start = merged.max_col + 1
        candidates.extend((row, c) for c in range(start, start + 4))
    candidates.append((row, column + 1))
    candidates.append((row, column + 2))
    candidates.append((row + 1, column))
    return candidates


def find_date_near_label(grid: SheetGrid, row: int, column: int) -> Optional[str]:
    """Return the first candidate cell text near a date label that looks like a date."""
    for r, c in _date_candidates(grid, row, column):
        text = grid.text(r, c).strip()
        if text and looks_like_date(text):
            return text
    return None


def find_labeled_dates(grid: SheetGrid) -> List[LabeledDate]:
    found: List[LabeledDate] = []
    for row, column, text in grid.cells():
        if not is_invoice_date_label(text):
            continue
        value = find_date_near_label(grid, row, column)
        if value is not None:
            found.append(LabeledDate(sheet=grid.title, row=row, column=column,
                                     label=text.strip(), value=value))
    return found


def is_invoice_number_label(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _INVOICE_LABELS_EXACT:
        return True
    return any(label in lowered for label in _INVOICE_LABELS_CONTAINED)


def split_inline_invoice_number(text: str) -> Optional[Tuple[str, str]]:
    """
    Split `Invoice No.: SSJ/1194` style text into (label, number).

    Separators are tried in order; the part before one must be an
    invoice-number label and the rest must be non-empty.
    """
    for separator in _INLINE_SEPARATORS:
        if separator not in text:
            continue
        label, _, number = text.partition(separator)
        label = label.strip()
        number = number.strip()
        if is_invoice_number_label(label) and number:
            return label, number
    return None


def _is_number_value(text: str) -> bool:
    return text not in _VALUE_SEPARATORS and len(text) > 2


def find_invoice_numbers(grid: SheetGrid) -> List[InvoiceNumber]:
    found: List[InvoiceNumber] = []
    for row, column, text in grid.cells():
        inline = split_inline_invoice_number(text.strip())
        if inline is not None:
            label, number = inline
            found.append(InvoiceNumber(sheet=grid.title, row=row, column=column,
                                       label=label, number=number))
            continue

        if not is_invoice_number_label(text):
            continue

        merged = grid.merge_at(row, column)
        start = merged.max_col + 1 if merged is not None else column + 1
        for c in range(start, start + 2):
            candidate = grid.text(row, c).strip()
            if candidate and _is_number_value(candidate):
                found.append(InvoiceNumber(sheet=grid.title, row=row, column=column,
                                           label=text.strip(), number=candidate))
                break
    return found


def find_date_ranges(grid: SheetGrid) -> List[DateRange]:
    found: List[DateRange] = []
    for row, column, text in grid.cells():
        for pattern in _DATE_RANGE_PATTERNS:
            match = pattern.search(text)
            if match:
                found.append(DateRange(sheet=grid.title, row=row, column=column,
                                       text=match.group(0)))
                break
    return found
