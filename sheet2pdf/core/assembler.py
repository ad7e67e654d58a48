"""
Document assembly: concatenation of the rendered PDF with user
attachments and the corpus.

Every source is copied into a scratch writer before any of its pages
reach the output, so an unreadable attachment or corpus file is skipped
without leaving partial pages behind. The final page count always comes
from re-reading the written file.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from pypdf import PdfReader, PdfWriter

from ..models import ConversionResult
from ..utils.files import unique_path
from ..utils.logger import logger


def count_pages(pdf_path: Path) -> int:
    """Number of pages in a PDF, or 0 when it cannot be read."""
    try:
        return len(PdfReader(str(pdf_path)).pages)
    except Exception as e:
        logger.warning(f"Cannot count pages of '{pdf_path}': {e}")
        return 0


def list_corpus(corpus_dir: Optional[Path]) -> List[Path]:
    """PDF files of the corpus directory in lexicographic filename order."""
    if corpus_dir is None:
        return []
    corpus_dir = Path(corpus_dir)
    if not corpus_dir.is_dir():
        logger.warning(f"Corpus directory '{corpus_dir}' not found, merging primary only")
        return []
    return sorted((p for p in corpus_dir.glob("*.pdf") if p.is_file()), key=lambda p: p.name)


def _open_pdf(pdf_path: Path) -> PdfReader:
    reader = PdfReader(str(pdf_path))
    if reader.is_encrypted:
        reader.decrypt("")
    # touch every page so damage surfaces before anything is appended
    for page in reader.pages:
        page.mediabox
    return reader


class DocumentAssembler:
    """Merges PDFs into one document."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else None

    def merge(self, primary_pdf: Path, corpus_dir: Optional[Path],
              output_name: Optional[str] = None,
              attachments: Sequence[Path] = ()) -> ConversionResult:
        """
        Append user attachments, then the corpus, to the primary PDF.

        Args:
            primary_pdf: Freshly rendered PDF; its pages come first.
            corpus_dir: Directory whose `*.pdf` files are appended in
                        filename order. Unreadable files are skipped.
            output_name: Stem used in the merged file name; defaults to
                         the primary PDF's stem.
            attachments: User-supplied PDFs placed right after the primary,
                         in the given order. Unreadable files are skipped.

        Returns:
            ConversionResult. On failure `output_path` points at the
            unmerged primary so the caller can fall back to it.
        """
        primary_pdf = Path(primary_pdf)
        stem = Path(output_name).stem if output_name else primary_pdf.stem
        directory = self.output_dir or primary_pdf.parent
        target = unique_path(directory, "final_merged")

        writer = PdfWriter()
        try:
            writer.append(_open_pdf(primary_pdf))
        except Exception as e:
            logger.error(f"Merge failed: cannot read primary PDF '{primary_pdf}': {e}")
            return self._fallback(primary_pdf, f"Cannot read primary PDF: {e}")

        if attachments:
            attached = self._append_all(writer, [Path(p) for p in attachments])
            logger.info(f"Attached {attached} of {len(attachments)} user PDF(s) to '{primary_pdf.name}'")

        appended = self._append_all(writer, list_corpus(corpus_dir))
        logger.info(f"Appending {appended} corpus file(s) to '{primary_pdf.name}'")

        result = self._write(writer, target)
        if not result.success:
            return self._fallback(primary_pdf, result.message)

        result.file_name = f"merged_{stem}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"
        logger.success(f"Merged document has {result.total_pages} page(s): '{result.file_name}'")
        return result

    def merge_files(self, pdf_paths: Sequence[Path], output_path: Path) -> ConversionResult:
        """
        Merge an explicit list of PDFs, in the given order, into `output_path`.
        Unreadable inputs are skipped.
        """
        writer = PdfWriter()
        appended = self._append_all(writer, [Path(p) for p in pdf_paths])
        if appended == 0:
            logger.error("No readable PDF among the merge inputs")
            return ConversionResult(success=False, message="No readable PDF to merge")

        result = self._write(writer, Path(output_path))
        if result.success:
            logger.success(f"Merged {appended} file(s) into '{result.file_name}' ({result.total_pages} pages)")
        return result

    @staticmethod
    def _append_all(writer: PdfWriter, pdf_paths: Sequence[Path]) -> int:
        appended = 0
        for pdf_path in pdf_paths:
            # copy into a scratch writer first so a failing file adds no pages
            try:
                scratch = PdfWriter()
                scratch.append(_open_pdf(pdf_path))
            except Exception as e:
                logger.warning(f"Skipping unreadable PDF '{pdf_path.name}': {e}")
                continue
            for page in scratch.pages:
                writer.add_page(page)
            appended += 1
            logger.debug(f"Appended '{pdf_path.name}' ({len(scratch.pages)} pages)")
        return appended

    @staticmethod
    def _write(writer: PdfWriter, target: Path) -> ConversionResult:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                writer.write(f)
        except Exception as e:
            logger.error(f"Failed to write merged PDF '{target}': {e}")
            target.unlink(missing_ok=True)
            return ConversionResult(success=False, message=f"Failed to write merged PDF: {e}")

        total = count_pages(target) if target.is_file() and target.stat().st_size > 0 else 0
        if total == 0:
            logger.error(f"Merged PDF '{target}' is empty or missing")
            target.unlink(missing_ok=True)
            return ConversionResult(success=False, message="Merged PDF is empty")

        return ConversionResult(
            success=True,
            message="Merge successful",
            output_path=target,
            file_name=target.name,
            total_pages=total,
        )

    @staticmethod
    def _fallback(primary_pdf: Path, message: str) -> ConversionResult:
        return ConversionResult(
            success=False,
            message=message,
            output_path=primary_pdf,
            file_name=primary_pdf.name,
            total_pages=count_pages(primary_pdf),
        )
