from pathlib import Path
from typing import Optional

from pypdf import PdfWriter

from ..utils.files import safe_unlink, unique_path
from ..utils.logger import logger

BYTES_PER_MB = 1024 * 1024


def compress_if_large(pdf_path: Path, max_size_mb: float = 10.0,
                      output_dir: Optional[Path] = None) -> Path:
    """
    Rewrite a PDF with compressed content streams when it exceeds `max_size_mb`.

    Returns the smaller of the original and the rewritten file; the other
    one is deleted. On any failure the original is returned untouched.
    """
    pdf_path = Path(pdf_path)
    original_size = pdf_path.stat().st_size
    if original_size <= max_size_mb * BYTES_PER_MB:
        return pdf_path

    target = unique_path(Path(output_dir) if output_dir else pdf_path.parent, "compressed")
    logger.info(f"Compressing '{pdf_path.name}' ({original_size / BYTES_PER_MB:.1f} MB)...")
    try:
        writer = PdfWriter(clone_from=str(pdf_path))
        for page in writer.pages:
            page.compress_content_streams()
        writer.compress_identical_objects()
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            writer.write(f)
    except Exception as e:
        logger.error(f"Compression failed for '{pdf_path}': {e}")
        safe_unlink(target)
        return pdf_path

    compressed_size = target.stat().st_size
    if compressed_size >= original_size:
        logger.info(f"Compression did not shrink '{pdf_path.name}', keeping original")
        safe_unlink(target)
        return pdf_path

    safe_unlink(pdf_path)
    logger.success(
        f"Compressed '{pdf_path.name}': {original_size / BYTES_PER_MB:.1f} MB -> "
        f"{compressed_size / BYTES_PER_MB:.1f} MB"
    )
    return target
