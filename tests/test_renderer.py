import subprocess
import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch

from sheet2pdf.config import RendererSettings
from sheet2pdf.core.renderer import LibreOfficeRenderer, find_converter
from sheet2pdf.errors import ConverterNotFoundError, RenderError
from sheet2pdf.utils.process_manager import ProcessRegistry


@pytest.fixture
def renderer():
    return LibreOfficeRenderer(RendererSettings(timeout_seconds=5), binary=Path("/opt/lo/soffice"))


@pytest.fixture
def workbook(tmp_path):
    path = tmp_path / "in" / "report.xlsx"
    path.parent.mkdir()
    path.write_bytes(b"xlsx")
    return path


def fake_process(returncode=0, stdout="", stderr="", on_communicate=None):
    process = MagicMock()
    process.returncode = returncode
    process.pid = 4242

    def communicate(timeout=None):
        if on_communicate is not None:
            on_communicate()
        return stdout, stderr

    process.communicate.side_effect = communicate
    return process


def test_build_command(renderer, tmp_path):
    command = renderer.build_command(Path("/data/in.xlsx"), tmp_path)
    assert command[0] == str(Path("/opt/lo/soffice"))
    assert "--headless" in command
    assert command[command.index("--convert-to") + 1] == "pdf:calc_pdf_Export"
    assert command[command.index("--outdir") + 1] == str(tmp_path)
    assert command[-1] == str(Path("/data/in.xlsx"))


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_success(mock_popen, renderer, workbook, tmp_path):
    out_dir = tmp_path / "out"
    mock_popen.return_value = fake_process(
        on_communicate=lambda: (out_dir / "report.pdf").write_bytes(b"%PDF-1.4")
    )

    result = renderer.render(workbook, out_dir)

    assert result.success
    assert result.output_path == out_dir / "report.pdf"
    assert result.file_name == "report.pdf"
    # input is consumed on success
    assert not workbook.exists()
    assert ProcessRegistry.active_count() == 0
    _, kwargs = mock_popen.call_args
    assert kwargs["cwd"] == str(out_dir)


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_timeout_kills_process(mock_popen, renderer, workbook, tmp_path):
    process = MagicMock()
    process.communicate.side_effect = [subprocess.TimeoutExpired("soffice", 5), ("", "")]
    mock_popen.return_value = process

    result = renderer.render(workbook, tmp_path / "out")

    assert not result.success
    assert "timed out" in result.message
    process.kill.assert_called_once()
    assert workbook.exists()
    assert ProcessRegistry.active_count() == 0


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_nonzero_exit(mock_popen, renderer, workbook, tmp_path):
    mock_popen.return_value = fake_process(returncode=1, stderr="Error: source file could not be loaded")

    result = renderer.render(workbook, tmp_path / "out")

    assert not result.success
    assert "code 1" in result.message
    assert "could not be loaded" in result.message
    assert workbook.exists()


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_missing_output(mock_popen, renderer, workbook, tmp_path):
    mock_popen.return_value = fake_process()

    result = renderer.render(workbook, tmp_path / "out")

    assert not result.success
    assert result.message == "PDF file was not created"
    assert workbook.exists()


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_finds_pdf_beside_input(mock_popen, renderer, workbook, tmp_path):
    mock_popen.return_value = fake_process(
        on_communicate=lambda: (workbook.parent / "report.pdf").write_bytes(b"%PDF-1.4")
    )

    result = renderer.render(workbook, tmp_path / "out")

    assert result.success
    assert result.output_path == workbook.parent / "report.pdf"


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_prefers_requested_name(mock_popen, renderer, workbook, tmp_path):
    out_dir = tmp_path / "out"

    def write_both():
        (out_dir / "custom.pdf").write_bytes(b"%PDF-1.4")
        (out_dir / "report.pdf").write_bytes(b"%PDF-1.4")

    mock_popen.return_value = fake_process(on_communicate=write_both)

    result = renderer.render(workbook, out_dir, output_name="custom.pdf")

    assert result.output_path == out_dir / "custom.pdf"
    assert result.file_name == "custom.pdf"


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_render_reports_name_of_pdf_found(mock_popen, renderer, workbook, tmp_path):
    out_dir = tmp_path / "out"
    mock_popen.return_value = fake_process(
        on_communicate=lambda: (out_dir / "report.pdf").write_bytes(b"%PDF-1.4")
    )

    result = renderer.render(workbook, out_dir, output_name="custom.pdf")

    assert result.output_path == out_dir / "report.pdf"
    assert result.file_name == "report.pdf"


@patch("sheet2pdf.core.renderer.subprocess.Popen", side_effect=OSError("exec format error"))
def test_render_spawn_failure(mock_popen, renderer, workbook, tmp_path):
    result = renderer.render(workbook, tmp_path / "out")
    assert not result.success
    assert "Failed to start converter" in result.message


def test_candidate_paths():
    paths = LibreOfficeRenderer.candidate_paths(Path("/tmp/in/a.xlsx"), Path("/tmp/out"))
    assert paths == [Path("/tmp/out/a.pdf"), Path("/tmp/in/a.pdf")]

    paths = LibreOfficeRenderer.candidate_paths(Path("/tmp/in/a.xlsx"), Path("/tmp/out"), "b.pdf")
    assert paths[0] == Path("/tmp/out/b.pdf")


def test_find_converter_prefers_configured_file(tmp_path):
    binary = tmp_path / "soffice"
    binary.write_text("#!/bin/sh\n")
    assert find_converter(str(binary)) == binary


@patch("sheet2pdf.core.renderer.shutil.which")
def test_find_converter_searches_path(mock_which):
    mock_which.side_effect = lambda name: "/usr/bin/libreoffice" if name == "libreoffice" else None
    assert find_converter() == Path("/usr/bin/libreoffice")


@patch("sheet2pdf.core.renderer.WELL_KNOWN_LOCATIONS", ())
@patch("sheet2pdf.core.renderer.shutil.which", return_value=None)
def test_find_converter_not_found(mock_which):
    with pytest.raises(ConverterNotFoundError):
        find_converter("/nowhere/soffice")


@patch("sheet2pdf.core.renderer.find_converter", return_value=Path("/usr/bin/soffice"))
def test_renderer_locates_converter_on_init(mock_find):
    renderer = LibreOfficeRenderer(RendererSettings(binary="/custom/soffice"))
    mock_find.assert_called_once_with("/custom/soffice")
    assert renderer.binary == Path("/usr/bin/soffice")


@patch("sheet2pdf.core.renderer.subprocess.Popen")
def test_run_raises_render_error(mock_popen, renderer, tmp_path):
    mock_popen.return_value = fake_process(returncode=77)
    with pytest.raises(RenderError, match="code 77"):
        renderer._run(["soffice"], tmp_path)
