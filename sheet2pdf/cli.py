import atexit
import json
import shutil
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .version import __version__
from .config import CONFIG_FILE, get_logging_config, get_orientation_policy, get_pipeline_settings
from .core.assembler import DocumentAssembler
from .core.inspector import WorkbookInspector
from .core.layout import PageLayoutEngine
from .core.retention import RetentionSweeper
from .errors import Sheet2PdfError
from .models import SelectionPlan, normalize_orientation
from .pipeline import ConversionPipeline
from .utils.logger import setup_logger, logger
from .utils.process_manager import ProcessRegistry

app = typer.Typer(
    name="sheet2pdf",
    help="""
    [bold]sheet2pdf[/bold] - Convert spreadsheet workbooks to print-ready PDF.

    [bold]Features:[/bold]
    - Preview sheets and flag anomalies (#NAME? errors, invoice dates and numbers)
    - Pick and reorder sheets, choose per-sheet orientation
    - Render with headless LibreOffice, fit pages to A4
    - Attach your own PDFs and append a fixed corpus of PDFs to every conversion
    - Render quick previews without merging

    [bold]Logging:[/bold]
    Logs are written to the console and to files in the `logs/` directory.
    Check `config.yml` for log rotation settings.
    """,
    add_completion=False,
)
console = Console()

atexit.register(ProcessRegistry.kill_all)

ConfigOption = typer.Option(CONFIG_FILE, "--config", "-c", help="Path to config.yml")
VerboseOption = typer.Option(False, "--verbose", help="Enable verbose logging")


def version_callback(value: bool):
    if value:
        console.print(f"[bold green]sheet2pdf[/bold green] version: {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show the application version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """
    sheet2pdf - Turn workbooks into merged, print-ready PDFs.
    """
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def parse_orientations(values: List[str]) -> Dict[str, str]:
    """Parse repeated `SHEET=Landscape` options into a name -> orientation map."""
    orientations: Dict[str, str] = {}
    for value in values:
        name, sep, orientation = value.rpartition("=")
        if not sep or not name or orientation.strip().lower() not in ("portrait", "landscape"):
            raise typer.BadParameter(f"Expected SHEET=Portrait|Landscape, got '{value}'")
        orientations[name] = normalize_orientation(orientation)
    return orientations


def report_validation(validation) -> None:
    """Warn about anomalies found by the upload check; conversion goes ahead regardless."""
    if validation.error:
        console.print(f"[yellow]Could not validate {validation.file_name}: {validation.error}[/yellow]")
        return
    if validation.has_anomalies:
        console.print(f"[bold yellow]Warning:[/bold yellow] {len(validation.formula_errors)} #NAME? error(s) "
                      f"found in {validation.file_name}")
    print_findings(validation)


def print_findings(report) -> None:
    """Print #NAME? errors and invoice details of a preview or validation result."""
    if report.formula_errors:
        errors = Table(title="[red]#NAME? errors[/red]")
        errors.add_column("Sheet")
        errors.add_column("Cell")
        for error in report.formula_errors:
            errors.add_row(error.sheet, error.location)
        console.print(errors)

    findings = Table(title="Invoice details")
    findings.add_column("Sheet")
    findings.add_column("Kind")
    findings.add_column("Value")
    for d in report.labeled_dates:
        findings.add_row(d.sheet, "Invoice date", d.value)
    for n in report.invoice_numbers:
        findings.add_row(n.sheet, "Invoice number", n.number)
    for r in report.date_ranges:
        findings.add_row(r.sheet, "Date range", r.text)
    if findings.row_count:
        console.print(findings)


@app.command()
def inspect(
    workbook: Path = typer.Argument(..., help="Workbook to inspect", exists=True, dir_okay=False),
    as_json: bool = typer.Option(False, "--json", help="Print the anomaly report as JSON"),
    config_path: Path = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    List the sheets of a workbook and the anomalies found in them.
    """
    setup_logger(get_logging_config(config_path), verbose)
    settings = get_pipeline_settings(config_path)

    try:
        preview = WorkbookInspector(settings.inspector).inspect(workbook)
    except Sheet2PdfError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    if as_json:
        report = {
            "file_name": preview.file_name,
            "sheets": [
                {"name": s.name, "index": s.index, "rows": s.total_rows, "columns": s.total_columns,
                 "images": len(s.images), "suggested_orientation": s.orientation_hint.orientation}
                for s in preview.sheets
            ],
            "formula_errors": [asdict(e) for e in preview.formula_errors],
            "labeled_dates": [asdict(d) for d in preview.labeled_dates],
            "invoice_numbers": [asdict(n) for n in preview.invoice_numbers],
            "date_ranges": [asdict(r) for r in preview.date_ranges],
        }
        console.print_json(json.dumps(report))
        return

    table = Table(title=f"Sheets in {workbook.name}")
    table.add_column("#", justify="right")
    table.add_column("Sheet", style="bold")
    table.add_column("Rows")
    table.add_column("Columns")
    table.add_column("Images")
    table.add_column("Suggested")
    for sheet in preview.sheets:
        table.add_row(str(sheet.index), sheet.name, str(sheet.total_rows), str(sheet.total_columns),
                      str(len(sheet.images)), sheet.orientation_hint.orientation)
    console.print(table)
    print_findings(preview)


@app.command()
def convert(
    workbook: Path = typer.Argument(..., help="Workbook to convert", exists=True, dir_okay=False),
    sheets: Optional[List[str]] = typer.Option(None, "--sheet", "-s", help="Sheet to include, in output order (repeatable). Defaults to all sheets."),
    orientations: Optional[List[str]] = typer.Option(None, "--orientation", "-r", help="Per-sheet orientation as SHEET=Portrait|Landscape (repeatable)"),
    corpus: Optional[Path] = typer.Option(None, "--corpus", help="Directory of PDFs appended to the output (overrides config.yml)"),
    attach: Optional[List[Path]] = typer.Option(None, "--attach", "-a", help="PDF merged right after the workbook, before the corpus (repeatable)", exists=True, dir_okay=False),
    output_path: Optional[Path] = typer.Option(None, "--output", "-o", help="Output PDF file or directory"),
    config_path: Path = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    Convert selected sheets of a workbook to one PDF merged with attachments and the corpus.
    """
    setup_logger(get_logging_config(config_path), verbose)
    settings = get_pipeline_settings(config_path)
    if corpus is not None:
        settings.directories.corpus = str(corpus)
    orientation_map = parse_orientations(orientations or [])

    try:
        pipeline = ConversionPipeline(settings, policy=get_orientation_policy(config_path))
        context = pipeline.accept_upload(workbook.read_bytes(), workbook.name)
        for pdf in attach or []:
            pipeline.attach_pdf(context, pdf.read_bytes(), pdf.name)
        report_validation(pipeline.validate(context))
        selected = list(sheets) if sheets else pipeline.preview(context).sheet_names
        result = pipeline.convert(context, SelectionPlan(sheet_names=selected, orientations=orientation_map))
    except Sheet2PdfError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        ProcessRegistry.kill_all()
        logger.warning("Conversion cancelled by user.")
        console.print("[bold red]Conversion cancelled by user.[/bold red]")
        sys.exit(130)

    if not result.success:
        console.print(Panel(Text(f" {result.message} ", style="bold red"), style="red"))
        raise typer.Exit(code=1)

    final_path = result.output_path
    if output_path is not None:
        target = output_path / result.file_name if output_path.suffix.lower() != ".pdf" else output_path
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(result.output_path, target)
        final_path = target

    console.print(Panel(Text(" Conversion Completed ", style="bold green"), style="green"))
    table = Table(title="Conversion Summary")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Sheets", ", ".join(selected))
    table.add_row("Attachments", str(len(attach or [])))
    table.add_row("Pages", str(result.total_pages))
    table.add_row("File name", result.file_name)
    table.add_row("Saved to", str(final_path))
    table.add_row("Note", result.message)
    console.print(table)


@app.command()
def preview(
    workbook: Path = typer.Argument(..., help="Workbook to preview", exists=True, dir_okay=False),
    sheets: Optional[List[str]] = typer.Option(None, "--sheet", "-s", help="Sheet to include, in output order (repeatable). Defaults to all sheets."),
    orientations: Optional[List[str]] = typer.Option(None, "--orientation", "-r", help="Per-sheet orientation as SHEET=Portrait|Landscape (repeatable)"),
    config_path: Path = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    Render selected sheets to a preview PDF in the previews directory, without merging.
    """
    setup_logger(get_logging_config(config_path), verbose)
    settings = get_pipeline_settings(config_path)
    orientation_map = parse_orientations(orientations or [])

    try:
        pipeline = ConversionPipeline(settings, policy=get_orientation_policy(config_path))
        context = pipeline.accept_upload(workbook.read_bytes(), workbook.name)
        selected = list(sheets) if sheets else pipeline.preview(context).sheet_names
        result = pipeline.preview_pdf(context, SelectionPlan(sheet_names=selected, orientations=orientation_map))
    except Sheet2PdfError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        ProcessRegistry.kill_all()
        logger.warning("Preview cancelled by user.")
        console.print("[bold red]Preview cancelled by user.[/bold red]")
        sys.exit(130)

    if not result.success:
        console.print(Panel(Text(f" {result.message} ", style="bold red"), style="red"))
        raise typer.Exit(code=1)
    console.print(f"Preview ({result.total_pages} pages): [bold]{result.output_path}[/bold]")


@app.command()
def layout(
    pdf: Path = typer.Argument(..., help="PDF to lay out", exists=True, dir_okay=False),
    orientation: Optional[str] = typer.Option(None, "--orientation", help="Portrait or Landscape; natural orientation when omitted"),
    rotation: int = typer.Option(0, "--rotation", help="Rotate content by this many degrees (counter-clockwise)"),
    trim: Optional[bool] = typer.Option(None, "--trim/--no-trim", help="Fit the detected content instead of the whole page (overrides config.yml)"),
    output_path: Optional[Path] = typer.Option(None, "--output", "-o", help="Output PDF path"),
    config_path: Path = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    Scale every page of a PDF onto the reference page size, centered.
    """
    setup_logger(get_logging_config(config_path), verbose)
    settings = get_pipeline_settings(config_path)
    if trim is not None:
        settings.layout.trim_whitespace = trim

    engine = PageLayoutEngine(settings.layout, output_dir=pdf.parent)
    if orientation is None and rotation == 0:
        result = engine.fit_to_page(pdf, output_path=output_path)
    else:
        result = engine.apply_orientation(pdf, orientation, rotation, output_path=output_path)

    if result == pdf:
        console.print("[yellow]Layout could not be applied; the original PDF is unchanged.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Laid out PDF: [bold]{result}[/bold]")


@app.command()
def merge(
    pdfs: List[Path] = typer.Argument(..., help="PDFs to merge, in order", exists=True, dir_okay=False),
    output_path: Path = typer.Option(Path("merged.pdf"), "--output", "-o", help="Output PDF path"),
    config_path: Path = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    Merge PDFs into one document, skipping unreadable inputs.
    """
    setup_logger(get_logging_config(config_path), verbose)
    result = DocumentAssembler().merge_files(pdfs, output_path)
    if not result.success:
        console.print(f"[bold red]Error:[/bold red] {result.message}")
        raise typer.Exit(code=1)
    console.print(f"Merged {len(pdfs)} file(s) into [bold]{result.output_path}[/bold] ({result.total_pages} pages)")


@app.command()
def sweep(
    watch: bool = typer.Option(False, "--watch", help="Keep sweeping on the configured interval until Ctrl+C"),
    config_path: Path = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    Delete expired previews, temp and output files.
    """
    setup_logger(get_logging_config(config_path), verbose)
    settings = get_pipeline_settings(config_path)
    sweeper = RetentionSweeper(settings.retention, settings.directories)

    if watch:
        sweeper.start()
        console.print(f"Sweeping every {settings.retention.interval_minutes:g} min. Press Ctrl+C to stop.")
        try:
            while sweeper.running:
                time.sleep(1)
        except KeyboardInterrupt:
            console.print("[yellow]Stopping retention sweeper...[/yellow]")
        finally:
            sweeper.stop()
        return

    result = sweeper.sweep_once()

    table = Table(title="Retention Sweep")
    table.add_column("Status", style="bold")
    table.add_column("Count")
    table.add_row("Scanned", str(result.scanned))
    table.add_row("[green]Removed[/green]", str(result.removed_count))
    table.add_row("[red]Failed[/red]", str(len(result.failed)))
    console.print(table)


if __name__ == "__main__":
    app()
