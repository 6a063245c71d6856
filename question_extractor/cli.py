"""
CLI Interface
=============
Command-line interface for the question extractor.

Usage:
    python -m question_extractor parse <pdf_path> [options]
    python -m question_extractor ai-extract <pdf_path> [options]
    python -m question_extractor info <pdf_path>
    python -m question_extractor serve [options]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .engine import ParserConfig, ParserEngine
from .exceptions import DocumentUnreadableError, RemoteExtractionError
from .llm_extractor import GeminiExtractor, RemoteConfig

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="question-extractor")
def cli():
    """PDF Question Extractor — multiple-choice questions from exam PDFs."""
    pass


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    default=None,
    help="Directory for JSON snapshots (omit to skip saving)",
)
@click.option(
    "--min-image-size",
    default=30,
    type=int,
    help="Minimum image dimension to keep (pixels)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option("--log-file", default=None, help="Path to log file")
@click.option(
    "--raw-items",
    is_flag=True,
    default=False,
    help="Also save the merged content stream",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def parse(
    pdf_path: str,
    output: str,
    min_image_size: int,
    log_level: str,
    log_file: str,
    raw_items: bool,
    json_output: bool,
):
    """Extract questions with the heuristic layout parser."""

    if json_output:
        log_level = "ERROR"

    config = ParserConfig(
        min_image_size=min_image_size,
        output_dir=output,
        save_raw_items=raw_items,
        log_level=log_level,
        log_file=log_file,
    )

    if not json_output:
        _banner("Heuristic extraction", pdf_path)

    try:
        engine = ParserEngine(config)
        if json_output:
            result = engine.parse(pdf_path)
        else:
            with console.status("Parsing PDF...") as status:
                result = engine.parse(
                    pdf_path,
                    progress_callback=lambda msg: status.update(msg),
                )
    except DocumentUnreadableError as e:
        _fail("Document unreadable", e, json_output)

    if json_output:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    _display_questions(result.questions)
    _display_report(result.report.model_dump(mode="json"))
    pv = result.parse_version
    console.print(
        f"[dim]Parser v{pv.parser_version} | "
        f"Pages: {result.document.total_pages} | "
        f"Items: {pv.raw_item_count} raw / {pv.filtered_item_count} kept | "
        f"Mode: {result.mode.value}[/]"
    )
    console.print()


@cli.command("ai-extract")
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--api-key",
    envvar="GEMINI_API_KEY",
    default="",
    help="Gemini API key (defaults to $GEMINI_API_KEY)",
)
@click.option("--model", default="gemini-1.5-pro", help="Remote model name")
@click.option("--retries", default=5, type=int, help="Maximum attempts")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout",
)
def ai_extract(
    pdf_path: str,
    api_key: str,
    model: str,
    retries: int,
    json_output: bool,
):
    """Extract questions (with linked answers) through the remote model."""

    config = RemoteConfig(api_key=api_key, model=model, max_retries=retries)
    extractor = GeminiExtractor(config)
    pdf_bytes = Path(pdf_path).read_bytes()

    if not json_output:
        _banner(f"Remote extraction ({model})", pdf_path)

    try:
        if json_output:
            questions = extractor.extract(pdf_bytes)
        else:
            with console.status("Waiting for remote model...") as status:
                questions = extractor.extract(
                    pdf_bytes,
                    progress_callback=lambda msg: status.update(msg),
                )
    except RemoteExtractionError as e:
        _fail("Remote service error", e, json_output)

    if json_output:
        click.echo(json.dumps(
            [q.model_dump(mode="json") for q in questions],
            indent=2,
            ensure_ascii=False,
        ))
        return

    _display_questions(questions)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
def info(pdf_path: str):
    """Display PDF file information."""

    import fitz

    try:
        doc = fitz.open(pdf_path)
    except Exception as e:
        _fail("Document unreadable", e, False)

    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages", str(doc.page_count))
    table.add_row(
        "File Size",
        f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
    )

    metadata = doc.metadata or {}
    for key in ["title", "author", "subject", "creator", "producer"]:
        val = metadata.get(key, "")
        if val:
            table.add_row(key.title(), val)

    total_images = sum(len(page.get_images(full=True)) for page in doc)
    table.add_row("Total Images", str(total_images))
    doc.close()

    console.print()
    console.print(table)
    console.print()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP extraction service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Extractor Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _banner(title: str, pdf_path: str):
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Extractor v{__version__}[/] — {title}\n"
            f"[dim]Parsing: {os.path.basename(pdf_path)}[/]",
            border_style="cyan",
        )
    )
    console.print()


def _fail(label: str, error: Exception, json_output: bool):
    if json_output:
        click.echo(json.dumps({"error": label, "detail": str(error)}), err=True)
    else:
        console.print(f"[red]{label}:[/] {error}")
    sys.exit(1)


def _display_questions(questions):
    """Display extracted questions, or the empty outcome."""
    if not questions:
        console.print(
            "[yellow]No questions detected.[/] "
            "[dim]The PDF might not contain standard MCQ format.[/]"
        )
        console.print()
        return

    table = Table(title=f"Found {len(questions)} Questions", border_style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Question")
    table.add_column("Options", justify="right")
    table.add_column("Image", justify="center")
    table.add_column("Multi", justify="center")

    for idx, q in enumerate(questions, start=1):
        preview = q.text if len(q.text) <= 70 else q.text[:67] + "..."
        table.add_row(
            str(idx),
            preview,
            str(len(q.options)),
            "[green]✓[/]" if q.has_image else "",
            "[green]✓[/]" if q.multi_select else "",
        )

    console.print(table)
    console.print()


def _display_report(report: dict):
    """Display the extraction report as a rich table."""
    table = Table(title="Extraction Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Mode", report.get("mode", ""))
    table.add_row("Total Questions", str(report.get("total_questions", 0)))
    table.add_row("Dropped Candidates", str(report.get("dropped_candidates", 0)))
    table.add_row("Questions With Images", str(report.get("questions_with_images", 0)))
    table.add_row("Options With Images", str(report.get("options_with_images", 0)))
    table.add_row("Questions Without Text", str(report.get("questions_without_text", 0)))

    console.print(table)
    console.print()

    breakdown = report.get("option_count_breakdown", {})
    if breakdown:
        options_table = Table(title="Options per Question", border_style="yellow")
        options_table.add_column("Options", style="bold")
        options_table.add_column("Questions", justify="right")
        for count, n in breakdown.items():
            options_table.add_row(count, str(n))
        console.print(options_table)
        console.print()


# ─── Entry point (for python -m question_extractor.cli) ───────────────────────


if __name__ == "__main__":
    cli()
