from typing import Protocol, Optional
from pathlib import Path
from ..models import ConversionResult


class Renderer(Protocol):
    """
    Protocol for spreadsheet to PDF renderers.
    """
    def render(self, input_path: Path, output_dir: Path, output_name: Optional[str] = None) -> ConversionResult:
        """
        Render a workbook to PDF.

        Args:
            input_path: Path to the source workbook.
            output_dir: Directory the PDF is written to.
            output_name: Optional display name for the resulting PDF.

        Returns:
            ConversionResult; failures are reported in the result, never raised.
        """
        ...


class ImageSource(Protocol):
    """
    Uniform access to the encoded bytes of an embedded picture, whatever
    representation the workbook reader handed us.
    """
    def raw_bytes(self) -> bytes:
        ...
