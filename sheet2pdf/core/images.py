"""
Embedded picture extraction for workbook previews.

openpyxl keeps the source of each picture in `Image.ref`, which may be an
in-memory buffer (pictures read from a file), a filesystem path, raw bytes
or a Pillow image. Each representation gets an explicit ImageSource so the
bytes are obtained the same way regardless of where the picture came from.
"""

import hashlib
from io import BytesIO
from pathlib import Path
from typing import Any, List, Set, Tuple

from openpyxl.drawing.spreadsheet_drawing import OneCellAnchor, TwoCellAnchor
from openpyxl.utils.cell import coordinate_to_tuple
from PIL import Image as PILImage

from .base import ImageSource
from ..models import SheetImage
from ..utils.logger import logger

# Magic byte prefixes, checked in order.
_SIGNATURES: List[Tuple[bytes, str]] = [
    (b"\x89PNG", "png"),
    (b"\xff\xd8\xff", "jpeg"),
    (b"GIF", "gif"),
    (b"BM", "bmp"),
]


class BufferImageSource:
    def __init__(self, buffer: BytesIO):
        self.buffer = buffer

    def raw_bytes(self) -> bytes:
        return self.buffer.getvalue()


class FileImageSource:
    def __init__(self, path: Path):
        self.path = Path(path)

    def raw_bytes(self) -> bytes:
        return self.path.read_bytes()


class BytesImageSource:
    def __init__(self, data: bytes):
        self.data = bytes(data)

    def raw_bytes(self) -> bytes:
        return self.data


class PillowImageSource:
    """Pictures built from an in-memory Pillow image are re-encoded as PNG."""

    def __init__(self, image: PILImage.Image):
        self.image = image

    def raw_bytes(self) -> bytes:
        out = BytesIO()
        self.image.save(out, format="PNG")
        return out.getvalue()


def image_source_for(ref: Any) -> ImageSource:
    """
    Pick the ImageSource matching the representation of `ref`.

    Raises:
        TypeError: If the representation is not one we know how to read.
    """
    if isinstance(ref, (bytes, bytearray)):
        return BytesImageSource(ref)
    if isinstance(ref, BytesIO):
        return BufferImageSource(ref)
    if isinstance(ref, (str, Path)):
        return FileImageSource(Path(ref))
    if isinstance(ref, PILImage.Image):
        return PillowImageSource(ref)
    raise TypeError(f"Unsupported image representation: {type(ref).__name__}")


def detect_image_format(data: bytes) -> str:
    """Infer the picture format from its leading bytes, defaulting to png."""
    if len(data) < 8:
        return "png"
    for signature, fmt in _SIGNATURES:
        if data.startswith(signature):
            return fmt
    return "png"


def anchor_position(anchor: Any) -> Tuple[int, int]:
    """Return the 1-based (row, column) of the cell a picture is anchored to."""
    if isinstance(anchor, str):
        return coordinate_to_tuple(anchor)
    if isinstance(anchor, (OneCellAnchor, TwoCellAnchor)):
        return anchor._from.row + 1, anchor._from.col + 1
    # absolute anchors have no cell
    return 1, 1


def extract_sheet_images(worksheet: Any) -> List[SheetImage]:
    """
    Collect the pictures embedded in a worksheet.

    Pictures with identical content at the same anchor are reported once.
    A picture whose bytes cannot be read is logged and skipped.
    """
    images: List[SheetImage] = []
    seen: Set[Tuple[str, int, int]] = set()

    # openpyxl exposes pictures only through the private list
    for position, picture in enumerate(worksheet._images, start=1):
        try:
            data = image_source_for(picture.ref).raw_bytes()
        except (TypeError, OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable image #{position} on '{worksheet.title}': {e}")
            continue

        if not data:
            continue

        row, column = anchor_position(picture.anchor)
        key = (hashlib.sha1(data).hexdigest(), row, column)
        if key in seen:
            logger.debug(f"Duplicate image at {worksheet.title}!R{row}C{column} ignored")
            continue
        seen.add(key)

        images.append(SheetImage(
            name=f"{worksheet.title}_image_{len(images) + 1}",
            data=data,
            format=detect_image_format(data),
            row=row,
            column=column,
        ))

    return images
