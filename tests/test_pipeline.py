import re
import pytest
from pathlib import Path
from unittest.mock import patch

from openpyxl import load_workbook
from pypdf import PdfReader

from sheet2pdf.config import DirectorySettings, OrientationPolicy, PipelineSettings, UploadSettings
from sheet2pdf.errors import UploadValidationError, WorkbookReadError
from sheet2pdf.models import ConversionResult, SelectionPlan
from sheet2pdf.pipeline import ConversionPipeline, validate_upload


class FakeRenderer:
    """Writes one portrait page per sheet of the workbook it is given."""

    def __init__(self, make_pdf, fail=False):
        self.make_pdf = make_pdf
        self.fail = fail
        self.calls = []

    def render(self, input_path, output_dir, output_name=None):
        sheets = load_workbook(input_path).sheetnames
        self.calls.append((Path(input_path), sheets))
        if self.fail:
            return ConversionResult(success=False, message="Converter exited with code 1")
        pdf = self.make_pdf(Path(output_dir) / f"{Path(input_path).stem}.pdf", pages=len(sheets))
        return ConversionResult(success=True, output_path=pdf, file_name=pdf.name)


def page_sizes(pdf):
    return [(round(float(p.mediabox.width)), round(float(p.mediabox.height))) for p in PdfReader(str(pdf)).pages]


@pytest.fixture
def settings(tmp_path):
    return PipelineSettings(directories=DirectorySettings(
        temp=str(tmp_path / "temp"),
        output=str(tmp_path / "output"),
        previews=str(tmp_path / "previews"),
        corpus=str(tmp_path / "corpus"),
    ))


@pytest.fixture
def renderer(make_pdf):
    return FakeRenderer(make_pdf)


@pytest.fixture
def pipeline(settings, renderer):
    return ConversionPipeline(settings, renderer=renderer, policy=OrientationPolicy([]))


@pytest.fixture
def context(tmp_path, pipeline, make_workbook):
    source = make_workbook(tmp_path / "src" / "March Invoice.xlsx")
    return pipeline.accept_upload(source.read_bytes(), "March Invoice.xlsx")


@pytest.mark.parametrize("filename, size, message", [
    ("", 10, "No file"),
    ("report.pdf", 10, "Unsupported file type"),
    ("report", 10, "Unsupported file type"),
    ("report.xlsx", 0, "empty"),
    ("report.xlsx", 101 * 1024 * 1024, "too large"),
])
def test_validate_upload_rejects(filename, size, message):
    with pytest.raises(UploadValidationError, match=message):
        validate_upload(filename, size)


@pytest.mark.parametrize("filename", ["a.xlsx", "A.XLSM", "legacy.xls"])
def test_validate_upload_accepts(filename):
    validate_upload(filename, 1024)


def test_validate_upload_custom_limit():
    with pytest.raises(UploadValidationError):
        validate_upload("a.xlsx", 2 * 1024 * 1024, UploadSettings(max_size_mb=1))


def test_accept_upload_stores_copy(context, tmp_path):
    assert context.original_filename == "March Invoice.xlsx"
    assert context.stem == "March Invoice"
    assert context.workbook_path.parent == tmp_path / "temp"
    assert context.workbook_path.suffix == ".xlsx"
    assert context.workbook_path.exists()
    assert context.output_dir == tmp_path / "output"


def test_accept_upload_rejects_bad_file(pipeline):
    with pytest.raises(UploadValidationError):
        pipeline.accept_upload(b"data", "notes.txt")


def test_preview_and_validate(pipeline, context):
    preview = pipeline.preview(context)
    assert preview.sheet_names == ["A", "B", "C"]
    assert preview.session_id == context.session_id
    assert preview.file_name == "March Invoice"

    result = pipeline.validate(context)
    assert result.error is None
    assert result.file_name == "March Invoice.xlsx"


def test_convert_selects_orders_and_merges(pipeline, renderer, context, tmp_path, make_pdf):
    make_pdf(tmp_path / "corpus" / "terms.pdf", pages=2)

    result = pipeline.convert(context, SelectionPlan(sheet_names=["C", "A"], ranks=[2, 1]))

    assert result.success
    assert renderer.calls[0][1] == ["A", "C"]
    assert result.total_pages == 4
    assert re.fullmatch(r"merged_March Invoice_\d{8}_\d{6}\.pdf", result.file_name)
    assert result.output_path.parent == tmp_path / "output"
    # intermediate workbook and unmerged PDF are cleaned up
    rendered_workbook = renderer.calls[0][0]
    assert not rendered_workbook.exists()
    assert [p.name for p in (tmp_path / "output").iterdir()] == [result.output_path.name]


def test_convert_applies_requested_orientation(pipeline, context, tmp_path, make_pdf):
    make_pdf(tmp_path / "corpus" / "terms.pdf", pages=1)
    plan = SelectionPlan(sheet_names=["B", "A"], orientations={"B": "Landscape"})

    result = pipeline.convert(context, plan)

    assert result.success
    assert page_sizes(result.output_path) == [(842, 595), (595, 842), (595, 842)]


def test_convert_applies_policy_rotation(settings, renderer, context):
    policy = OrientationPolicy([{"pattern": "b", "orientation": "Portrait", "rotation": 90}])
    pipeline = ConversionPipeline(settings, renderer=renderer, policy=policy)

    with patch("sheet2pdf.pipeline.PageLayoutEngine.layout", autospec=True,
               side_effect=lambda self, pdf, specs, output_path=None: pdf) as mock_layout:
        result = pipeline.convert(context, SelectionPlan(sheet_names=["A", "B"]))

    assert result.success
    specs = mock_layout.call_args[0][2]
    assert [(s.source_page, s.orientation, s.rotation) for s in specs] == [
        (1, None, 0), (2, "Portrait", 90),
    ]


def test_convert_skips_layout_without_orientation_changes(pipeline, context):
    with patch("sheet2pdf.pipeline.PageLayoutEngine") as mock_engine:
        result = pipeline.convert(context, SelectionPlan(sheet_names=["A"]))
    assert result.success
    mock_engine.assert_not_called()


def test_convert_empty_selection(pipeline, renderer, context):
    result = pipeline.convert(context, SelectionPlan())
    assert not result.success
    assert result.message == "No sheets selected."
    assert renderer.calls == []


def test_convert_render_failure(settings, make_pdf, context):
    pipeline = ConversionPipeline(settings, renderer=FakeRenderer(make_pdf, fail=True), policy=OrientationPolicy([]))

    result = pipeline.convert(context, SelectionPlan(sheet_names=["A"]))

    assert not result.success
    assert "Conversion failed" in result.message
    assert result.output_path is None


def test_convert_falls_back_to_original_workbook(pipeline, renderer, context):
    with patch("sheet2pdf.pipeline.SheetSelector.rebuild", side_effect=WorkbookReadError("legacy format")):
        result = pipeline.convert(context, SelectionPlan(sheet_names=["B"]))

    assert result.success
    assert renderer.calls[0] == (context.workbook_path, ["A", "B", "C"])
    assert context.workbook_path.exists()


def test_convert_returns_unmerged_pdf_when_merge_fails(pipeline, context):
    failed = ConversionResult(success=False, message="Failed to write merged PDF: disk full")
    with patch("sheet2pdf.pipeline.DocumentAssembler.merge", return_value=failed):
        result = pipeline.convert(context, SelectionPlan(sheet_names=["A", "B"]))

    assert result.success
    assert result.file_name == "March Invoice.pdf"
    assert result.total_pages == 2
    assert result.output_path.exists()
    assert "disk full" in result.message


def test_convert_compresses_result(pipeline, context):
    with patch("sheet2pdf.pipeline.compress_if_large", side_effect=lambda path, limit: path) as mock_compress:
        result = pipeline.convert(context, SelectionPlan(sheet_names=["A"]))

    mock_compress.assert_called_once_with(result.output_path, 10.0)


def test_convert_without_compression(settings, renderer, context):
    settings.compression.enabled = False
    pipeline = ConversionPipeline(settings, renderer=renderer, policy=OrientationPolicy([]))
    with patch("sheet2pdf.pipeline.compress_if_large") as mock_compress:
        assert pipeline.convert(context, SelectionPlan(sheet_names=["A"])).success
    mock_compress.assert_not_called()


@patch("sheet2pdf.pipeline.get_orientation_policy", return_value=OrientationPolicy([]))
@patch("sheet2pdf.pipeline.LibreOfficeRenderer")
def test_pipeline_builds_default_collaborators(mock_renderer, mock_policy, settings):
    pipeline = ConversionPipeline(settings)
    mock_renderer.assert_called_once_with(settings.renderer)
    assert pipeline.renderer is mock_renderer.return_value
    assert pipeline.policy is mock_policy.return_value


def test_attach_pdf_stores_copy(pipeline, context, tmp_path, make_pdf):
    source = make_pdf(tmp_path / "src" / "signed.pdf", pages=1)

    stored = pipeline.attach_pdf(context, source.read_bytes(), "signed.pdf")

    assert stored.parent == tmp_path / "temp"
    assert stored.read_bytes() == source.read_bytes()
    assert context.attachments == [stored]


@pytest.mark.parametrize("filename, data", [
    ("signed.docx", b"%PDF-1.4"),
    ("signed.pdf", b""),
])
def test_attach_pdf_rejects_bad_file(pipeline, context, filename, data):
    with pytest.raises(UploadValidationError):
        pipeline.attach_pdf(context, data, filename)
    assert context.attachments == []


def test_convert_places_attachments_before_corpus(pipeline, context, tmp_path, make_pdf):
    make_pdf(tmp_path / "corpus" / "terms.pdf", pages=1, size=(300, 842))
    for name, width in (("z_signed.pdf", 150), ("a_receipt.pdf", 100)):
        source = make_pdf(tmp_path / "src" / name, pages=1, size=(width, 842))
        pipeline.attach_pdf(context, source.read_bytes(), name)

    result = pipeline.convert(context, SelectionPlan(sheet_names=["A", "B"]))

    assert result.success
    widths = [w for w, _ in page_sizes(result.output_path)]
    assert widths == [595, 595, 150, 100, 300]


def test_convert_returns_unmerged_pdf_when_merge_raises(pipeline, context):
    with patch("sheet2pdf.pipeline.DocumentAssembler.merge", side_effect=AttributeError("broken outline")):
        result = pipeline.convert(context, SelectionPlan(sheet_names=["A"]))

    assert result.success
    assert result.file_name == "March Invoice.pdf"
    assert result.output_path.exists()
    assert "broken outline" in result.message


def test_preview_pdf_skips_merge(pipeline, context, tmp_path, make_pdf):
    make_pdf(tmp_path / "corpus" / "terms.pdf", pages=3)

    result = pipeline.preview_pdf(context, SelectionPlan(sheet_names=["C", "A"]))

    assert result.success
    assert result.total_pages == 2
    assert result.output_path.parent == tmp_path / "previews"
    assert re.fullmatch(r"preview_\d{8}_\d{6}_[0-9a-f]{32}\.pdf", result.file_name)
    assert [p.name for p in (tmp_path / "previews").iterdir()] == [result.file_name]
    assert not list((tmp_path / "output").glob("*.pdf"))


def test_preview_pdf_applies_orientation(pipeline, context, tmp_path):
    result = pipeline.preview_pdf(context, SelectionPlan(sheet_names=["A", "B"], orientations={"A": "Landscape"}))

    assert result.success
    assert page_sizes(result.output_path) == [(842, 595), (595, 842)]
    assert [p.name for p in (tmp_path / "previews").iterdir()] == [result.file_name]


def test_preview_pdf_render_failure(settings, make_pdf, context):
    pipeline = ConversionPipeline(settings, renderer=FakeRenderer(make_pdf, fail=True), policy=OrientationPolicy([]))

    result = pipeline.preview_pdf(context, SelectionPlan(sheet_names=["A"]))

    assert not result.success
    assert result.output_path is None


def test_preview_pdf_empty_selection(pipeline, renderer, context):
    assert not pipeline.preview_pdf(context, SelectionPlan()).success
    assert renderer.calls == []
