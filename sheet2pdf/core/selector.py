"""
Sheet selection and reordering.

openpyxl cannot copy a worksheet between workbooks, so the selection is
produced by loading a private copy of the source, dropping every unselected
sheet and moving the rest into place. The source file is never written.
"""

from pathlib import Path
from typing import List, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from ..errors import SheetSelectionError, WorkbookReadError
from ..utils.files import unique_path
from ..utils.logger import logger

MACRO_ENABLED_SUFFIXES = {".xlsm"}


def plan_sheet_order(source_names: Sequence[str], keep_names: Sequence[str],
                     ordered_names: Sequence[str]) -> List[str]:
    """
    Compute the sheet order of the rebuilt workbook.

    Sheets in `ordered_names` come first, in that order; kept sheets missing
    from it follow in their original relative order. Only sheets present in
    both `source_names` and `keep_names` are included, each once.
    """
    available = set(source_names)
    keep = set(keep_names)
    plan: List[str] = []

    for name in ordered_names:
        if name in keep and name in available and name not in plan:
            plan.append(name)

    for name in source_names:
        if name in keep and name not in plan:
            plan.append(name)

    return plan


class SheetSelector:
    """Builds a new workbook holding only the chosen sheets, in the chosen order."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else None

    def rebuild(self, source_path: Path, keep_names: Sequence[str],
                ordered_names: Optional[Sequence[str]] = None) -> Path:
        """
        Write the selected sheets to a new workbook next to the source.

        Args:
            source_path: Workbook to select from. Never modified.
            keep_names: Sheets to keep.
            ordered_names: Desired order; defaults to the order of `keep_names`.

        Returns:
            Path to the new workbook.

        Raises:
            WorkbookReadError: If the source cannot be opened by openpyxl.
            SheetSelectionError: If no requested sheet exists in the source.
        """
        source_path = Path(source_path)
        ordered_names = list(ordered_names) if ordered_names is not None else list(keep_names)

        try:
            workbook = load_workbook(
                str(source_path),
                keep_vba=source_path.suffix.lower() in MACRO_ENABLED_SUFFIXES,
            )
        except Exception as e:
            raise WorkbookReadError(f"Cannot open '{source_path.name}' for sheet selection: {e}") from e

        try:
            source_names = list(workbook.sheetnames)
            for name in set(keep_names) | set(ordered_names):
                if name not in source_names:
                    logger.warning(f"Requested sheet '{name}' not found in '{source_path.name}', ignoring")

            plan = plan_sheet_order(source_names, keep_names, ordered_names)
            if not plan:
                raise SheetSelectionError(
                    f"None of the requested sheets exist in '{source_path.name}'"
                )

            for name in source_names:
                if name not in plan:
                    workbook.remove(workbook[name])

            for position, name in enumerate(plan):
                current = workbook.sheetnames.index(name)
                if current != position:
                    workbook.move_sheet(name, offset=position - current)

            self._reset_selection(workbook)

            target_dir = self.output_dir or source_path.parent
            target_dir.mkdir(parents=True, exist_ok=True)
            target = unique_path(target_dir, "processed", source_path.suffix.lower())
            workbook.save(str(target))
        finally:
            workbook.close()

        logger.success(f"Rebuilt workbook with {len(plan)} sheet(s): {', '.join(plan)}")
        return target

    @staticmethod
    def _reset_selection(workbook) -> None:
        """Make every kept sheet printable and the first one the only selected tab."""
        for sheet in workbook.worksheets:
            sheet.sheet_state = "visible"
            sheet.sheet_view.tabSelected = False
        for sheet in workbook.chartsheets:
            sheet.sheet_state = "visible"
        workbook.active = 0
        if isinstance(workbook.active, Worksheet):
            workbook.active.sheet_view.tabSelected = True
