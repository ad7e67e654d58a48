"""
Workbook inspection using openpyxl.

Features:
- Per-sheet metadata and a styled, merge-aware preview grid
- Anomaly scans: #NAME? formula errors, labeled invoice dates,
  labeled invoice numbers and billing date ranges
- Embedded picture extraction
- Orientation hint from the sheet's used width and height
"""

import fnmatch
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional, Union

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from .detectors import (
    SheetGrid, find_date_ranges, find_formula_errors,
    find_invoice_numbers, find_labeled_dates,
)
from .images import extract_sheet_images
from .styles import fill_color, format_cell_value, horizontal_alignment, is_bold, text_color
from ..config import InspectorSettings
from ..errors import WorkbookReadError
from ..models import (
    CellPreview, OrientationHint, SheetPreview, ValidationResult,
    WorkbookPreview, LANDSCAPE, PORTRAIT,
)
from ..utils.logger import logger

WorkbookSource = Union[bytes, Path, str]

# Excel's default column is 8.43 characters, about 48pt wide; rows default to 15pt.
DEFAULT_COLUMN_WIDTH = 8.43
POINTS_PER_CHARACTER = 48 / 8.43
DEFAULT_ROW_HEIGHT = 15.0
# A4 portrait width less default print margins.
PORTRAIT_PRINTABLE_WIDTH = 515.0


class WorkbookInspector:
    """Reads workbooks and produces previews and validation reports."""

    def __init__(self, settings: Optional[InspectorSettings] = None):
        self.settings = settings or InspectorSettings()

    def inspect(self, source: WorkbookSource, filename: Optional[str] = None,
                session_id: str = "") -> WorkbookPreview:
        """
        Build a preview of every sheet that has a used range.

        Args:
            source: Workbook bytes or a path to the workbook.
            filename: Original file name; defaults to the path's name.
            session_id: Identifier of the request the preview belongs to.

        Raises:
            WorkbookReadError: If the workbook cannot be opened.
        """
        filename = filename or (Path(source).name if not isinstance(source, bytes) else "workbook.xlsx")
        workbook = self._load(source, filename)
        preview = WorkbookPreview(file_name=Path(filename).stem, session_id=session_id)

        try:
            for index, name in enumerate(workbook.sheetnames, start=1):
                sheet = workbook[name]
                if not isinstance(sheet, Worksheet):
                    logger.debug(f"Skipping chartsheet '{name}'")
                    continue
                if not _has_used_range(sheet):
                    logger.debug(f"Skipping empty sheet '{name}'")
                    continue
                preview.sheets.append(self._preview_sheet(sheet, index))
        finally:
            workbook.close()

        logger.info(f"Inspected '{filename}': {len(preview.sheets)} sheet(s), "
                    f"{len(preview.formula_errors)} formula error(s)")
        return preview

    def quick_validate(self, source: WorkbookSource, filename: Optional[str] = None) -> ValidationResult:
        """
        Light anomaly scan used at upload time. Never raises: read failures
        are logged and reported in `ValidationResult.error`.
        """
        filename = filename or (Path(source).name if not isinstance(source, bytes) else "workbook.xlsx")
        result = ValidationResult(file_name=filename)
        try:
            workbook = self._load(source, filename)
        except WorkbookReadError as e:
            logger.error(f"Quick validation could not read '{filename}': {e}")
            result.error = str(e)
            return result

        try:
            for sheet in workbook.worksheets:
                if not _has_used_range(sheet) or self._skip_anomalies(sheet.title):
                    continue
                grid = SheetGrid(sheet, self.settings.scan_rows, self.settings.scan_columns)
                result.formula_errors.extend(find_formula_errors(grid))
                result.labeled_dates.extend(find_labeled_dates(grid))
                result.invoice_numbers.extend(find_invoice_numbers(grid))
                result.date_ranges.extend(find_date_ranges(grid))
        except Exception as e:
            logger.error(f"Quick validation failed on '{filename}': {e}")
            result.error = str(e)
        finally:
            workbook.close()

        return result

    def _load(self, source: WorkbookSource, filename: str) -> Any:
        try:
            handle = BytesIO(source) if isinstance(source, bytes) else str(source)
            return load_workbook(handle, data_only=True)
        except Exception as e:
            raise WorkbookReadError(f"Cannot read workbook '{filename}': {e}") from e

    def _skip_anomalies(self, sheet_name: str) -> bool:
        name = sheet_name.lower()
        return any(fnmatch.fnmatchcase(name, pattern.lower())
                   for pattern in self.settings.skip_anomaly_sheets)

    def _preview_sheet(self, sheet: Any, index: int) -> SheetPreview:
        preview_grid = SheetGrid(sheet, self.settings.preview_rows, self.settings.preview_columns)
        preview = SheetPreview(
            name=sheet.title,
            index=index,
            total_rows=preview_grid.max_row,
            total_columns=preview_grid.max_column,
            rows=self._build_rows(sheet, preview_grid),
            images=extract_sheet_images(sheet),
            orientation_hint=suggest_orientation(sheet),
        )

        if self._skip_anomalies(sheet.title):
            logger.debug(f"Anomaly scan skipped for '{sheet.title}'")
            return preview

        scan_grid = SheetGrid(sheet, self.settings.scan_rows, self.settings.scan_columns)
        preview.formula_errors = find_formula_errors(preview_grid)
        preview.labeled_dates = find_labeled_dates(scan_grid)
        preview.invoice_numbers = find_invoice_numbers(scan_grid)
        preview.date_ranges = find_date_ranges(scan_grid)
        return preview

    def _build_rows(self, sheet: Any, grid: SheetGrid) -> List[List[CellPreview]]:
        rows: List[List[CellPreview]] = []
        for row in range(1, grid.max_row + 1):
            cells: List[CellPreview] = []
            for column in range(1, grid.max_column + 1):
                if grid.is_merge_follower(row, column):
                    continue
                cell = sheet.cell(row=row, column=column)
                preview = CellPreview(
                    row=row,
                    column=column,
                    value=format_cell_value(cell.value),
                    fill_color=fill_color(cell),
                    text_color=text_color(cell),
                    bold=is_bold(cell),
                    alignment=horizontal_alignment(cell),
                )
                merged = grid.merge_at(row, column)
                if merged is not None:
                    preview.colspan = merged.max_col - merged.min_col + 1
                    preview.rowspan = merged.max_row - merged.min_row + 1
                cells.append(preview)
            rows.append(cells)
        return rows


def _has_used_range(sheet: Any) -> bool:
    if sheet.max_row > 1 or sheet.max_column > 1:
        return True
    return sheet["A1"].value is not None or bool(sheet._images)


def suggest_orientation(sheet: Any) -> OrientationHint:
    """Landscape when the used range is wider than tall or wider than a portrait page."""
    columns = sheet.max_column
    width = 0.0
    for column in range(1, columns + 1):
        dimension = sheet.column_dimensions.get(get_column_letter(column))
        if dimension is not None and dimension.hidden:
            continue
        chars = dimension.width if dimension is not None and dimension.width else DEFAULT_COLUMN_WIDTH
        width += chars * POINTS_PER_CHARACTER

    height = 0.0
    for row in range(1, sheet.max_row + 1):
        dimension = sheet.row_dimensions.get(row)
        if dimension is not None and dimension.hidden:
            continue
        height += dimension.ht if dimension is not None and dimension.ht else DEFAULT_ROW_HEIGHT

    wide = width > height or width > PORTRAIT_PRINTABLE_WIDTH
    return OrientationHint(
        orientation=LANDSCAPE if wide else PORTRAIT,
        width_points=round(width, 2),
        height_points=round(height, 2),
        column_count=columns,
    )
