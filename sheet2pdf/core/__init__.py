"""Core conversion stages."""
from .inspector import WorkbookInspector
from .selector import SheetSelector, plan_sheet_order
from .renderer import LibreOfficeRenderer
from .layout import PageLayoutEngine, build_sheet_page_specs, compute_placement
from .assembler import DocumentAssembler, count_pages
from .retention import RetentionSweeper, purge_expired
from .compression import compress_if_large

__all__ = [
    "WorkbookInspector", "SheetSelector", "plan_sheet_order", "LibreOfficeRenderer",
    "PageLayoutEngine", "build_sheet_page_specs", "compute_placement",
    "DocumentAssembler", "count_pages", "RetentionSweeper", "purge_expired",
    "compress_if_large",
]
