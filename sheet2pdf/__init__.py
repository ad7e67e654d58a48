"""sheet2pdf - turn spreadsheet workbooks into merged, print-ready PDFs."""
from .version import __version__

__all__ = ["__version__"]
