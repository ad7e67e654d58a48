"""Exception hierarchy shared by the conversion stages."""


class Sheet2PdfError(Exception):
    """Base class for all sheet2pdf errors."""
    pass


class UploadValidationError(Sheet2PdfError):
    """Raised when an uploaded file is rejected before any processing."""
    pass


class WorkbookReadError(Sheet2PdfError):
    """Raised when a workbook cannot be opened or parsed."""
    pass


class SheetSelectionError(Sheet2PdfError):
    """Raised when a sheet selection cannot produce a workbook."""
    pass


class ConverterNotFoundError(Sheet2PdfError):
    """Raised when no LibreOffice executable can be located."""
    pass


class RenderError(Sheet2PdfError):
    """Raised when the external renderer fails to produce a PDF."""
    pass
