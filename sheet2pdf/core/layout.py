"""
Page layout engine using pypdf and pdfminer.six.

Features:
- Scale-to-fit onto a reference page size with a uniform margin
- Centering, with rotation about the content's own center
- Per-sheet orientation through PageSpec lists and an OrientationPolicy
- Optional whitespace trim: pdfminer content bounds become the source box
- Parallel content bounds detection for larger PDFs
"""

import math
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from pypdf import PdfReader, PdfWriter, Transformation
from pdfminer.high_level import extract_pages
from pdfminer.layout import LTPage, LTTextContainer, LTImage, LTFigure, LTRect, LTLine, LTCurve

from ..config import LayoutSettings, OrientationPolicy, PAGE_SIZES
from ..models import PageSpec, LANDSCAPE, normalize_orientation
from ..utils.files import unique_path
from ..utils.logger import logger

Box = Tuple[float, float, float, float]

_DEFAULT_WORKERS = min(8, (os.cpu_count() or 4))


@dataclass
class Placement:
    """Where scaled source content lands on a target page."""
    target_width: float
    target_height: float
    scale: float
    scaled_width: float
    scaled_height: float
    x_offset: float
    y_offset: float
    rotation: int = 0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x_offset + self.scaled_width / 2, self.y_offset + self.scaled_height / 2)


def target_page_size(orientation: Optional[str], reference: Tuple[float, float] = PAGE_SIZES["A4"],
                     source_size: Optional[Tuple[float, float]] = None) -> Tuple[float, float]:
    """
    Target page dimensions for an orientation.

    `orientation` None picks landscape when the source page is wider than tall.
    """
    short, long = sorted(reference)
    if orientation is None:
        landscape = source_size is not None and source_size[0] > source_size[1]
    else:
        landscape = normalize_orientation(orientation) == LANDSCAPE
    return (long, short) if landscape else (short, long)


def compute_placement(source_width: float, source_height: float,
                      target_width: float, target_height: float,
                      rotation: int = 0, margin: float = 20.0) -> Placement:
    """
    Scale-to-fit and centering math for one page.

    The scale is the tighter of the two available/source ratios. With a
    non-zero rotation it is computed against the bounding box of the
    rotated source rectangle so the rotated content still fits.

    Raises:
        ValueError: On a degenerate source page or a margin that leaves no room.
    """
    if source_width <= 0 or source_height <= 0:
        raise ValueError(f"Degenerate source page {source_width}x{source_height}")

    available_width = target_width - 2 * margin
    available_height = target_height - 2 * margin
    if available_width <= 0 or available_height <= 0:
        raise ValueError(f"Margin {margin} leaves no room on a {target_width}x{target_height} page")

    fit_width, fit_height = source_width, source_height
    if rotation % 360:
        theta = math.radians(rotation)
        cos_t, sin_t = abs(math.cos(theta)), abs(math.sin(theta))
        fit_width = source_width * cos_t + source_height * sin_t
        fit_height = source_width * sin_t + source_height * cos_t

    scale = min(available_width / fit_width, available_height / fit_height)
    scaled_width = source_width * scale
    scaled_height = source_height * scale

    return Placement(
        target_width=target_width,
        target_height=target_height,
        scale=scale,
        scaled_width=scaled_width,
        scaled_height=scaled_height,
        x_offset=margin + (available_width - scaled_width) / 2,
        y_offset=margin + (available_height - scaled_height) / 2,
        rotation=rotation,
    )


def placement_transform(placement: Placement, origin_x: float = 0.0, origin_y: float = 0.0) -> Transformation:
    """
    Compose the content transform for a placement.

    Operations apply in call order: move the source box to the origin,
    scale, move the scaled content's center to the origin, rotate, then
    move it to the placement center.
    """
    center_x, center_y = placement.center
    return (
        Transformation()
        .translate(-origin_x, -origin_y)
        .scale(placement.scale, placement.scale)
        .translate(-placement.scaled_width / 2, -placement.scaled_height / 2)
        .rotate(placement.rotation)
        .translate(center_x, center_y)
    )


def resolve_orientation(sheet_name: str, orientations: Optional[Dict[str, str]] = None,
                        policy: Optional[OrientationPolicy] = None) -> Tuple[Optional[str], int]:
    """
    Orientation and rotation for a sheet's pages.

    An explicit user choice wins and never rotates; otherwise the policy
    may force an orientation and rotation; otherwise the page keeps its
    natural orientation.
    """
    explicit = (orientations or {}).get(sheet_name)
    if explicit:
        return normalize_orientation(explicit), 0

    if policy is not None:
        override = policy.resolve(sheet_name)
        if override is not None:
            return normalize_orientation(override.orientation), override.rotation

    return None, 0


def build_sheet_page_specs(sheet_names: Sequence[str], total_pages: int,
                           orientations: Optional[Dict[str, str]] = None,
                           policy: Optional[OrientationPolicy] = None) -> List[PageSpec]:
    """
    Map sheets to rendered pages and attach each sheet's orientation.

    The renderer does not report where one sheet's pages end, so pages are
    divided equally: ceil(total_pages / sheets) consecutive pages per sheet,
    the last sheet taking the remainder. This is an approximation.
    """
    if total_pages <= 0:
        return []
    if not sheet_names:
        return [PageSpec(source_page=p, display_order=p) for p in range(1, total_pages + 1)]

    pages_per_sheet = math.ceil(total_pages / len(sheet_names))
    specs: List[PageSpec] = []
    for index, name in enumerate(sheet_names):
        first = index * pages_per_sheet + 1
        if first > total_pages:
            break
        last = min(first + pages_per_sheet - 1, total_pages)
        orientation, rotation = resolve_orientation(name, orientations, policy)
        for page in range(first, last + 1):
            specs.append(PageSpec(
                source_page=page,
                orientation=orientation,
                rotation=rotation,
                display_order=page,
            ))
        logger.debug(f"Sheet '{name}' -> pages {first}-{last} ({orientation or 'natural'}, {rotation} deg)")
    return specs


class PageLayoutEngine:
    """Re-flows PDF pages onto a reference page size."""

    def __init__(self, settings: Optional[LayoutSettings] = None,
                 output_dir: Optional[Path] = None, max_workers: Optional[int] = None):
        self.settings = settings or LayoutSettings()
        self.output_dir = Path(output_dir) if output_dir else None
        self.max_workers = max_workers or _DEFAULT_WORKERS

    def layout(self, source_pdf: Path, page_specs: Sequence[PageSpec],
               output_path: Optional[Path] = None) -> Path:
        """
        Produce a new PDF with one page per visible PageSpec, in display order.

        Args:
            source_pdf: PDF to lay out. Never modified.
            page_specs: Output pages; invisible specs are dropped and source
                        pages out of range are skipped.
            output_path: Optional output path; a unique name is used otherwise.

        Returns:
            Path to the new PDF, or `source_pdf` itself when nothing could be
            laid out or the engine failed.
        """
        source_pdf = Path(source_pdf)
        visible = sorted((s for s in page_specs if s.visible), key=lambda s: s.display_order)
        if not visible:
            logger.warning(f"No visible pages requested for '{source_pdf.name}', keeping original")
            return source_pdf

        target = Path(output_path) if output_path else self._output_path(source_pdf)
        reference = self.settings.reference_size
        margin = self.settings.margin

        try:
            # pages are rotated in place, so they must belong to a writer
            source_doc = PdfWriter(clone_from=str(source_pdf))
            page_count = len(source_doc.pages)
            content_boxes = self._content_boxes(source_pdf, source_doc) if self.settings.trim_whitespace else {}

            writer = PdfWriter()
            for spec in visible:
                if not 1 <= spec.source_page <= page_count:
                    logger.warning(f"Page {spec.source_page} out of range (1-{page_count}) in '{source_pdf.name}', skipping")
                    continue

                source_page = source_doc.pages[spec.source_page - 1]
                if source_page.rotation:
                    source_page.transfer_rotation_to_content()

                x0, y0, x1, y1 = content_boxes.get(spec.source_page) or _page_box(source_page)
                width, height = x1 - x0, y1 - y0
                target_width, target_height = target_page_size(spec.orientation, reference, (width, height))
                placement = compute_placement(width, height, target_width, target_height,
                                              rotation=spec.rotation, margin=margin)

                page = writer.add_blank_page(width=target_width, height=target_height)
                page.merge_transformed_page(source_page, placement_transform(placement, x0, y0))
                logger.debug(
                    f"Page {spec.source_page}: {width:.1f}x{height:.1f}pt -> "
                    f"{target_width:.0f}x{target_height:.0f}pt, scale {placement.scale:.3f}, "
                    f"rotation {spec.rotation}"
                )

            if not writer.pages:
                logger.warning(f"No pages laid out for '{source_pdf.name}', keeping original")
                return source_pdf

            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                writer.write(f)
        except Exception as e:
            logger.error(f"Layout failed for '{source_pdf}': {e}. Using original PDF")
            return source_pdf

        logger.success(f"Laid out {len(visible)} page(s) of '{source_pdf.name}' -> '{target.name}'")
        return target

    def fit_to_page(self, source_pdf: Path, output_path: Optional[Path] = None) -> Path:
        """Fit every page onto the reference size in its natural orientation, without rotation."""
        try:
            page_count = len(PdfReader(str(source_pdf)).pages)
        except Exception as e:
            logger.error(f"Cannot read '{source_pdf}' for fit-to-page: {e}")
            return Path(source_pdf)
        specs = [PageSpec(source_page=p, display_order=p) for p in range(1, page_count + 1)]
        return self.layout(source_pdf, specs, output_path=output_path)

    def apply_orientation(self, source_pdf: Path, orientation: Optional[str] = None,
                          rotation: int = 0, output_path: Optional[Path] = None) -> Path:
        """Lay out every page with the same orientation and rotation."""
        try:
            page_count = len(PdfReader(str(source_pdf)).pages)
        except Exception as e:
            logger.error(f"Cannot read '{source_pdf}' for layout: {e}")
            return Path(source_pdf)
        specs = [
            PageSpec(source_page=p, orientation=orientation, rotation=rotation, display_order=p)
            for p in range(1, page_count + 1)
        ]
        return self.layout(source_pdf, specs, output_path=output_path)

    def _output_path(self, source_pdf: Path) -> Path:
        directory = self.output_dir or source_pdf.parent
        return unique_path(directory, "oriented")

    def _content_boxes(self, pdf_path: Path, source_doc: PdfWriter) -> Dict[int, Box]:
        """
        Padded content bounds per 1-based page number, for pages where
        trimming removes a meaningful amount of whitespace.
        """
        padding = self.settings.trim_padding
        layout_pages: List[Optional[LTPage]] = []
        page_boxes: List[Box] = []

        layout_iter = iter(extract_pages(str(pdf_path)))
        for i, page in enumerate(source_doc.pages):
            lt_page = None
            try:
                lt_page = next(layout_iter)
            except StopIteration:
                logger.warning(f"pdfminer page exhausted at page {i + 1}")
            # pdfminer bounds of rotated pages do not match the unrotated box
            layout_pages.append(None if page.rotation else lt_page)
            page_boxes.append(_page_box(page))

        detected = self._detect_bounds_parallel(layout_pages, page_boxes)

        boxes: Dict[int, Box] = {}
        for i, content in enumerate(detected):
            if content is None:
                continue
            px0, py0, px1, py1 = page_boxes[i]
            cx0, cy0, cx1, cy1 = content
            box = (max(px0, cx0 - padding), max(py0, cy0 - padding),
                   min(px1, cx1 + padding), min(py1, cy1 + padding))
            if box[2] - box[0] < (px1 - px0) * 0.95 or box[3] - box[1] < (py1 - py0) * 0.95:
                boxes[i + 1] = box
                logger.debug(f"Page {i + 1}: content box {box[2] - box[0]:.1f}x{box[3] - box[1]:.1f}pt")
        return boxes

    def _detect_bounds_parallel(self, layout_pages: List[Optional[LTPage]],
                                page_boxes: List[Box]) -> List[Optional[Box]]:
        num_pages = len(layout_pages)
        results: List[Optional[Box]] = [None] * num_pages

        if num_pages <= 2:
            for i, lt_page in enumerate(layout_pages):
                if lt_page is not None:
                    results[i] = detect_content_bounds(lt_page, page_boxes[i])
            return results

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(detect_content_bounds, lt_page, page_boxes[i]): i
                for i, lt_page in enumerate(layout_pages)
                if lt_page is not None
            }
            for future in as_completed(futures):
                idx = futures[future]
                try:
                    results[idx] = future.result()
                except Exception as e:
                    logger.warning(f"Failed to detect bounds for page {idx + 1}: {e}")
        return results


def detect_content_bounds(lt_page: LTPage, page_box: Box) -> Optional[Box]:
    """
    Union of the content elements on a pdfminer page, or None when empty.

    Page-sized background rectangles are ignored. Tiny non-text elements
    that would grow the union by more than 10% are treated as stray marks.
    """
    px0, py0, px1, py1 = page_box
    page_area = (px1 - px0) * (py1 - py0)
    rects: List[_Rect] = []

    for element in lt_page:
        if isinstance(element, LTTextContainer):
            if not element.get_text().strip():
                continue
        elif not isinstance(element, (LTImage, LTFigure, LTRect, LTLine, LTCurve)):
            continue

        x0, y0, x1, y1 = element.bbox
        if (x1 - x0) * (y1 - y0) > page_area * 0.90:
            continue
        rects.append(_Rect(x0, y0, x1, y1, is_text=isinstance(element, LTTextContainer)))

    if not rects:
        return None

    rects.sort(key=lambda r: r.area, reverse=True)
    union = rects[0]
    for rect in rects[1:]:
        merged = union.union(rect)
        is_tiny = rect.area < union.area * 0.01
        is_expansive = merged.area - union.area > union.area * 0.10
        if is_tiny and is_expansive and not rect.is_text:
            continue
        union = merged

    return (union.x0, union.y0, union.x1, union.y1)


class _Rect:
    def __init__(self, x0: float, y0: float, x1: float, y1: float, is_text: bool = False):
        self.x0, self.y0, self.x1, self.y1 = x0, y0, x1, y1
        self.is_text = is_text

    @property
    def area(self) -> float:
        return (self.x1 - self.x0) * (self.y1 - self.y0)

    def union(self, other: "_Rect") -> "_Rect":
        return _Rect(min(self.x0, other.x0), min(self.y0, other.y0),
                     max(self.x1, other.x1), max(self.y1, other.y1))


def _page_box(page) -> Box:
    box = page.cropbox
    return (float(box.left), float(box.bottom), float(box.right), float(box.top))
