import base64
import uuid
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl.utils import get_column_letter

PORTRAIT = "Portrait"
LANDSCAPE = "Landscape"


def normalize_orientation(value: Optional[str]) -> str:
    """Map any casing of portrait/landscape to its canonical form."""
    if value and value.strip().lower() == "landscape":
        return LANDSCAPE
    return PORTRAIT


@dataclass
class CellPreview:
    row: int
    column: int
    value: str = ""
    fill_color: str = "FFFFFF"
    text_color: str = "000000"
    bold: bool = False
    alignment: str = "general"
    colspan: int = 1
    rowspan: int = 1

    @property
    def column_letter(self) -> str:
        return get_column_letter(self.column)


@dataclass
class FormulaError:
    sheet: str
    row: int
    column: int

    @property
    def column_letter(self) -> str:
        return get_column_letter(self.column)

    @property
    def location(self) -> str:
        return f"{self.column_letter}{self.row}"


@dataclass
class LabeledDate:
    sheet: str
    row: int
    column: int
    label: str
    value: str


@dataclass
class InvoiceNumber:
    sheet: str
    row: int
    column: int
    label: str
    number: str


@dataclass
class DateRange:
    sheet: str
    row: int
    column: int
    text: str


@dataclass
class SheetImage:
    name: str
    data: bytes
    format: str = "png"
    row: int = 1
    column: int = 1

    @property
    def mime_type(self) -> str:
        return f"image/{self.format}"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass
class OrientationHint:
    orientation: str = PORTRAIT
    width_points: float = 0.0
    height_points: float = 0.0
    column_count: int = 0

    @property
    def aspect_ratio(self) -> float:
        return self.width_points / self.height_points if self.height_points else 0.0


@dataclass
class SheetPreview:
    name: str
    index: int
    total_rows: int = 0
    total_columns: int = 0
    rows: List[List[CellPreview]] = field(default_factory=list)
    formula_errors: List[FormulaError] = field(default_factory=list)
    labeled_dates: List[LabeledDate] = field(default_factory=list)
    invoice_numbers: List[InvoiceNumber] = field(default_factory=list)
    date_ranges: List[DateRange] = field(default_factory=list)
    images: List[SheetImage] = field(default_factory=list)
    orientation_hint: OrientationHint = field(default_factory=OrientationHint)


@dataclass
class WorkbookPreview:
    file_name: str
    session_id: str = ""
    sheets: List[SheetPreview] = field(default_factory=list)

    @property
    def sheet_names(self) -> List[str]:
        return [sheet.name for sheet in self.sheets]

    @property
    def formula_errors(self) -> List[FormulaError]:
        return [e for sheet in self.sheets for e in sheet.formula_errors]

    @property
    def labeled_dates(self) -> List[LabeledDate]:
        return [d for sheet in self.sheets for d in sheet.labeled_dates]

    @property
    def invoice_numbers(self) -> List[InvoiceNumber]:
        return [n for sheet in self.sheets for n in sheet.invoice_numbers]

    @property
    def date_ranges(self) -> List[DateRange]:
        return [r for sheet in self.sheets for r in sheet.date_ranges]

    @property
    def suggested_orientations(self) -> Dict[str, str]:
        return {sheet.name: sheet.orientation_hint.orientation for sheet in self.sheets}


@dataclass
class ValidationResult:
    file_name: str
    formula_errors: List[FormulaError] = field(default_factory=list)
    labeled_dates: List[LabeledDate] = field(default_factory=list)
    invoice_numbers: List[InvoiceNumber] = field(default_factory=list)
    date_ranges: List[DateRange] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_anomalies(self) -> bool:
        return bool(self.formula_errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SelectionPlan:
    """
    The user's sheet choice.

    `sheet_names` is the selection in submission order; `ranks` (when given
    and parallel to it) decides the final order. Sheets not listed are dropped.
    """
    sheet_names: List[str] = field(default_factory=list)
    ranks: List[int] = field(default_factory=list)
    orientations: Dict[str, str] = field(default_factory=dict)

    def ordered_names(self) -> List[str]:
        names: List[str] = []
        if self.ranks and len(self.ranks) == len(self.sheet_names):
            pairs = sorted(zip(self.ranks, range(len(self.sheet_names))))
            candidates = [self.sheet_names[i] for _, i in pairs]
        else:
            candidates = list(self.sheet_names)
        for name in candidates:
            if name not in names:
                names.append(name)
        return names

    def orientation_for(self, sheet_name: str) -> Optional[str]:
        value = self.orientations.get(sheet_name)
        return normalize_orientation(value) if value else None


@dataclass
class PageSpec:
    """One output page. `orientation` None keeps the source page's natural orientation."""
    source_page: int
    orientation: Optional[str] = None
    rotation: int = 0
    visible: bool = True
    display_order: int = 0


@dataclass
class ConversionResult:
    success: bool
    message: str = ""
    output_path: Optional[Path] = None
    file_name: str = ""
    total_pages: int = 0


@dataclass
class RequestContext:
    """
    Per-request state: identity, the directories artifacts are written to and
    the user PDFs attached to the request.
    Artifacts are written under unique names, so concurrent requests never
    share a file.
    """
    session_id: str
    original_filename: str
    workbook_path: Path
    temp_dir: Path
    output_dir: Path
    attachments: List[Path] = field(default_factory=list)

    @classmethod
    def create(cls, workbook_path: Path, temp_dir: Path, output_dir: Path,
               original_filename: Optional[str] = None,
               session_id: Optional[str] = None) -> "RequestContext":
        temp_dir = Path(temp_dir)
        output_dir = Path(output_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        output_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            session_id=session_id or uuid.uuid4().hex,
            original_filename=original_filename or Path(workbook_path).name,
            workbook_path=Path(workbook_path),
            temp_dir=temp_dir,
            output_dir=output_dir,
        )

    @classmethod
    def from_upload(cls, data: bytes, filename: str, temp_dir: Path,
                    output_dir: Path) -> "RequestContext":
        """Persist uploaded bytes under a unique temp name and build a context for them."""
        temp_dir = Path(temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        suffix = Path(filename).suffix.lower()
        stored = temp_dir / f"{uuid.uuid4().hex}{suffix}"
        stored.write_bytes(data)
        return cls.create(stored, temp_dir, output_dir, original_filename=filename)

    @property
    def stem(self) -> str:
        return Path(self.original_filename).stem
