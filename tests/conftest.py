import pytest
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

from openpyxl import Workbook
from pypdf import PdfWriter
from pypdf.generic import DecodedStreamObject
from loguru import logger


def write_pdf(path: Path, pages: int = 1, size: Tuple[float, float] = (595, 842),
              content: Optional[bytes] = None) -> Path:
    """Write a PDF whose pages are filled with one black rectangle (or `content`)."""
    writer = PdfWriter()
    width, height = size
    for _ in range(pages):
        page = writer.add_blank_page(width=width, height=height)
        stream = DecodedStreamObject()
        stream.set_data(content if content is not None else f"0 0 0 rg 0 0 {width} {height} re f".encode())
        page.replace_contents(stream)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        writer.write(f)
    return path


def write_workbook(path: Path, sheets: Sequence[str] = ("A", "B", "C"),
                   rows: Iterable[Sequence] = (("value",),)) -> Path:
    """Write a workbook with the given sheets, each holding `rows` plus its own name."""
    wb = Workbook()
    wb.remove(wb.active)
    for name in sheets:
        ws = wb.create_sheet(name)
        ws["A1"] = name
        for r, row in enumerate(rows, start=2):
            for c, value in enumerate(row, start=1):
                ws.cell(row=r, column=c, value=value)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path


@pytest.fixture
def make_pdf():
    return write_pdf


@pytest.fixture
def make_workbook():
    return write_workbook


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep test output free of loguru's default stderr sink."""
    logger.remove()
    yield
