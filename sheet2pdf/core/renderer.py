"""
Spreadsheet to PDF rendering through headless LibreOffice.

The converter is located once, at construction. Each render runs
`soffice --headless --convert-to pdf` as a child process with a bounded
wait; children are tracked in ProcessRegistry so an interrupted run can
terminate them.
"""

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from ..config import RendererSettings
from ..errors import ConverterNotFoundError, RenderError
from ..models import ConversionResult
from ..utils.files import safe_unlink
from ..utils.logger import logger
from ..utils.process_manager import ProcessRegistry

EXECUTABLE_NAMES = ("soffice", "libreoffice")

WELL_KNOWN_LOCATIONS = (
    "/usr/bin/soffice",
    "/usr/local/bin/soffice",
    "/usr/lib/libreoffice/program/soffice",
    "/opt/libreoffice/program/soffice",
    "/snap/bin/libreoffice",
    "/Applications/LibreOffice.app/Contents/MacOS/soffice",
    r"C:\Program Files\LibreOffice\program\soffice.exe",
    r"C:\Program Files (x86)\LibreOffice\program\soffice.exe",
)


def find_converter(configured: Optional[str] = None) -> Path:
    """
    Locate the LibreOffice executable.

    Search order: the configured path, `soffice`/`libreoffice` on PATH,
    then well-known install locations.

    Raises:
        ConverterNotFoundError: If nothing usable is found.
    """
    if configured:
        path = Path(configured)
        if path.is_file():
            return path
        resolved = shutil.which(configured)
        if resolved:
            return Path(resolved)
        logger.warning(f"Configured converter '{configured}' not found, searching defaults")

    for name in EXECUTABLE_NAMES:
        resolved = shutil.which(name)
        if resolved:
            return Path(resolved)

    for location in WELL_KNOWN_LOCATIONS:
        path = Path(location)
        if path.is_file():
            return path

    raise ConverterNotFoundError(
        "LibreOffice executable not found. Install LibreOffice or set renderer.binary in config.yml"
    )


class LibreOfficeRenderer:
    """Renders workbooks to PDF by shelling out to LibreOffice."""

    def __init__(self, settings: Optional[RendererSettings] = None, binary: Optional[Path] = None):
        self.settings = settings or RendererSettings()
        self.binary = Path(binary) if binary else find_converter(self.settings.binary)
        logger.debug(f"Using converter at {self.binary}")

    def build_command(self, input_path: Path, output_dir: Path) -> List[str]:
        return [
            str(self.binary),
            "--headless",
            "--norestore",
            "--nofirststartwizard",
            "--convert-to",
            f"pdf:{self.settings.export_filter}",
            "--outdir",
            str(output_dir),
            str(input_path),
        ]

    def render(self, input_path: Path, output_dir: Path, output_name: Optional[str] = None) -> ConversionResult:
        """
        Convert `input_path` to PDF inside `output_dir`.

        The input workbook is deleted only after the PDF has been found.
        Failures (spawn error, timeout, non-zero exit, missing output) are
        reported in the result.
        """
        input_path = Path(input_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        command = self.build_command(input_path, output_dir)

        logger.info(f"Rendering '{input_path.name}' with LibreOffice...")
        try:
            self._run(command, output_dir)
        except RenderError as e:
            logger.error(f"Render failed for '{input_path.name}': {e}")
            return ConversionResult(success=False, message=str(e))

        pdf_path = self._locate_output(input_path, output_dir, output_name)
        if pdf_path is None:
            logger.error(f"Converter reported success but no PDF was found for '{input_path.name}'")
            return ConversionResult(success=False, message="PDF file was not created")

        safe_unlink(input_path)
        logger.success(f"Rendered '{input_path.name}' -> '{pdf_path.name}'")
        return ConversionResult(
            success=True,
            message="Conversion successful",
            output_path=pdf_path,
            file_name=pdf_path.name,
        )

    def _run(self, command: List[str], cwd: Path) -> None:
        """
        Run the converter to completion.

        Raises:
            RenderError: On spawn failure, timeout (the process is killed) or non-zero exit.
        """
        timeout = self.settings.timeout_seconds
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=str(cwd),
            )
        except OSError as e:
            raise RenderError(f"Failed to start converter: {e}") from e

        ProcessRegistry.register(process)
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Converter pid={process.pid} exceeded {timeout}s, killing it")
            process.kill()
            process.communicate()
            raise RenderError(f"Conversion timed out after {timeout} seconds")
        finally:
            ProcessRegistry.unregister(process)

        if process.returncode != 0:
            detail = (stderr or stdout or "").strip()
            raise RenderError(f"Converter exited with code {process.returncode}: {detail}")

    @staticmethod
    def candidate_paths(input_path: Path, output_dir: Path, output_name: Optional[str] = None) -> List[Path]:
        """Places the converter may have written the PDF to, in search order."""
        pdf_name = f"{input_path.stem}.pdf"
        candidates = []
        if output_name:
            candidates.append(output_dir / output_name)
        candidates.append(output_dir / pdf_name)
        candidates.append(input_path.parent / pdf_name)
        return candidates

    def _locate_output(self, input_path: Path, output_dir: Path, output_name: Optional[str]) -> Optional[Path]:
        for candidate in self.candidate_paths(input_path, output_dir, output_name):
            if candidate.is_file():
                return candidate
        return None
