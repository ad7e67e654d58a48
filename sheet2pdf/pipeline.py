"""
End-to-end conversion: upload -> sheet selection -> render -> layout ->
merge with attachments and corpus -> compression. Previews stop after layout.

Recoverable stage failures fall back to the best artifact produced so far;
only a failed render ends the request with a failure result.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import OrientationPolicy, PipelineSettings, UploadSettings, get_orientation_policy
from .core.assembler import DocumentAssembler, count_pages
from .core.base import Renderer
from .core.compression import compress_if_large
from .core.inspector import WorkbookInspector
from .core.layout import PageLayoutEngine, build_sheet_page_specs
from .core.renderer import LibreOfficeRenderer
from .core.selector import SheetSelector
from .errors import UploadValidationError
from .models import ConversionResult, RequestContext, SelectionPlan, ValidationResult, WorkbookPreview
from .utils.files import safe_unlink, unique_path
from .utils.logger import logger


def validate_upload(filename: str, size: int, settings: Optional[UploadSettings] = None) -> None:
    """
    Reject uploads before any processing.

    Raises:
        UploadValidationError: With a user-facing message.
    """
    settings = settings or UploadSettings()
    if not filename:
        raise UploadValidationError("No file was uploaded.")

    suffix = Path(filename).suffix.lower()
    allowed = [ext.lower() for ext in settings.extensions]
    if suffix not in allowed:
        raise UploadValidationError(
            f"Unsupported file type '{suffix or filename}'. Allowed: {', '.join(allowed)}"
        )
    if size <= 0:
        raise UploadValidationError("The uploaded file is empty.")
    if size > settings.max_size_mb * 1024 * 1024:
        raise UploadValidationError(f"File is too large. Maximum size is {settings.max_size_mb:g} MB.")


class ConversionPipeline:
    """Runs one conversion request through every stage."""

    def __init__(self, settings: Optional[PipelineSettings] = None,
                 renderer: Optional[Renderer] = None,
                 policy: Optional[OrientationPolicy] = None):
        self.settings = settings or PipelineSettings()
        # A missing LibreOffice raises ConverterNotFoundError here, at startup.
        self.renderer = renderer or LibreOfficeRenderer(self.settings.renderer)
        self.policy = policy if policy is not None else get_orientation_policy()
        self.inspector = WorkbookInspector(self.settings.inspector)

    def accept_upload(self, data: bytes, filename: str) -> RequestContext:
        """Validate uploaded bytes and store them for this request."""
        validate_upload(filename, len(data), self.settings.upload)
        dirs = self.settings.directories
        context = RequestContext.from_upload(data, filename, Path(dirs.temp), Path(dirs.output))
        logger.info(f"Accepted upload '{filename}' as session {context.session_id}")
        return context

    def preview(self, context: RequestContext) -> WorkbookPreview:
        return self.inspector.inspect(context.workbook_path, context.original_filename, context.session_id)

    def validate(self, context: RequestContext) -> ValidationResult:
        return self.inspector.quick_validate(context.workbook_path, context.original_filename)

    def attach_pdf(self, context: RequestContext, data: bytes, filename: str) -> Path:
        """
        Store a user PDF for this request; it is merged right after the
        rendered workbook, in attach order.

        Raises:
            UploadValidationError: If the file is not a non-empty PDF.
        """
        validate_upload(filename, len(data), UploadSettings(
            max_size_mb=self.settings.upload.max_size_mb, extensions=[".pdf"],
        ))
        stored = unique_path(context.temp_dir, "attachment")
        stored.write_bytes(data)
        context.attachments.append(stored)
        logger.info(f"[{context.session_id}] Attached '{filename}' ({len(context.attachments)} attachment(s))")
        return stored

    def preview_pdf(self, context: RequestContext, plan: SelectionPlan) -> ConversionResult:
        """
        Render the selected sheets to a short-lived preview PDF.

        The preview is laid out like a conversion but never merged with
        attachments or the corpus. It lands in the previews directory as
        `preview_<timestamp>_<id>.pdf`, where the retention sweep removes it.
        """
        ordered = plan.ordered_names()
        if not ordered:
            return ConversionResult(success=False, message="No sheets selected.")

        previews_dir = Path(self.settings.directories.previews)
        previews_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{context.session_id}] Previewing '{context.original_filename}' sheets: {', '.join(ordered)}")

        rendered = self._render_selection(context, plan, ordered, previews_dir)
        if not rendered.success:
            return rendered

        target = unique_path(previews_dir, f"preview_{datetime.now().strftime('%Y%m%d_%H%M%S')}")
        rendered.output_path.replace(target)
        logger.success(f"[{context.session_id}] Preview ready: '{target.name}'")
        return ConversionResult(
            success=True,
            message="Preview generated",
            output_path=target,
            file_name=target.name,
            total_pages=count_pages(target),
        )

    def convert(self, context: RequestContext, plan: SelectionPlan) -> ConversionResult:
        """
        Convert the selected sheets of the request's workbook into one PDF,
        followed by the request's attachments and then the corpus.

        Returns:
            ConversionResult whose `file_name` is `merged_<stem>_<timestamp>.pdf`
            when the merge succeeded, `<stem>.pdf` otherwise.
        """
        ordered = plan.ordered_names()
        if not ordered:
            return ConversionResult(success=False, message="No sheets selected.")

        logger.info(f"[{context.session_id}] Converting '{context.original_filename}' sheets: {', '.join(ordered)}")

        rendered = self._render_selection(context, plan, ordered, context.output_dir)
        if not rendered.success:
            return rendered
        pdf_path = rendered.output_path

        corpus_dir = Path(self.settings.directories.corpus)
        try:
            merged = DocumentAssembler(context.output_dir).merge(
                pdf_path, corpus_dir, output_name=context.stem, attachments=context.attachments,
            )
        except Exception as e:
            logger.error(f"[{context.session_id}] Unexpected merge error: {e}")
            merged = ConversionResult(success=False, message=f"Merge failed: {e}")

        if merged.success:
            safe_unlink(pdf_path)
            result = merged
        else:
            logger.warning(f"[{context.session_id}] Merge stage failed for '{pdf_path}': {merged.message}. "
                           f"Returning unmerged PDF")
            result = ConversionResult(
                success=True,
                message=f"Converted without corpus merge: {merged.message}",
                output_path=pdf_path,
                file_name=f"{context.stem}.pdf",
                total_pages=count_pages(pdf_path),
            )

        if self.settings.compression.enabled:
            result.output_path = compress_if_large(result.output_path, self.settings.compression.max_size_mb)

        logger.success(f"[{context.session_id}] Conversion complete: '{result.file_name}' ({result.total_pages} pages)")
        return result

    def _render_selection(self, context: RequestContext, plan: SelectionPlan,
                          ordered: List[str], output_dir: Path) -> ConversionResult:
        """Select, render and lay out the sheets; `output_path` is the laid-out PDF."""
        workbook = self._select_sheets(context, ordered)
        rendered = self.renderer.render(workbook, output_dir)
        if workbook != context.workbook_path:
            safe_unlink(workbook)
        if not rendered.success or rendered.output_path is None:
            logger.error(f"[{context.session_id}] Render stage failed: {rendered.message}")
            return ConversionResult(success=False, message=f"Conversion failed: {rendered.message}")

        pdf_path = self._apply_layout(context, rendered.output_path, ordered, plan, output_dir)
        return ConversionResult(success=True, message=rendered.message, output_path=pdf_path,
                                file_name=pdf_path.name)

    def _select_sheets(self, context: RequestContext, ordered: List[str]) -> Path:
        try:
            return SheetSelector(context.temp_dir).rebuild(context.workbook_path, ordered, ordered)
        except Exception as e:
            logger.warning(f"[{context.session_id}] Sheet selection failed for '{context.workbook_path}': {e}. "
                           f"Rendering original workbook")
            return context.workbook_path

    def _apply_layout(self, context: RequestContext, pdf_path: Path,
                      ordered: List[str], plan: SelectionPlan, output_dir: Path) -> Path:
        specs = build_sheet_page_specs(ordered, count_pages(pdf_path), plan.orientations, self.policy)
        if not any(spec.orientation or spec.rotation for spec in specs):
            logger.debug(f"[{context.session_id}] No orientation changes requested")
            return pdf_path

        engine = PageLayoutEngine(self.settings.layout, output_dir=output_dir)
        laid_out = engine.layout(pdf_path, specs, output_path=unique_path(output_dir, "oriented"))
        if laid_out != pdf_path:
            safe_unlink(pdf_path)
        return laid_out
