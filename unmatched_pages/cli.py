"""
CLI Interface
=============
Command-line interface for the unmatched pages engine.

Usage:
    python -m unmatched_pages scan <export.zip> --outline <json> --roster <json>
    python -m unmatched_pages inspect <submission.pdf> [--strategy structured]
    python -m unmatched_pages outline <json>
"""

from __future__ import annotations

import json
import os
import sys

import click
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .engine import PipelineConfig, UnmatchedPagesEngine
from .errors import ArchiveError, ParseError
from .models import PageKind, ReportError, UnmatchedReport
from .normalizer import PageNormalizer, Strategy
from .outline import load_outline
from .roster import load_roster

console = Console()

STRATEGY_CHOICE = click.Choice([s.value for s in Strategy])


@click.group()
@click.version_option(version=__version__, prog_name="unmatched-pages")
def cli():
    """Unmatched Pages: find questions with no pages matched in a submissions export."""
    pass


@cli.command()
@click.argument("export_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--outline", "outline_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Assignment outline JSON",
)
@click.option(
    "--roster", "roster_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Submission-to-students roster JSON",
)
@click.option(
    "--strategy", "-s",
    default=Strategy.TEXT.value,
    type=STRATEGY_CHOICE,
    help="How matched questions are read from each PDF",
)
@click.option(
    "--workers", "-j",
    default=16,
    type=click.IntRange(min=1),
    help="Number of parallel PDF workers",
)
@click.option(
    "--queue-size",
    default=32,
    type=click.IntRange(min=1),
    help="Archive members buffered ahead of the workers",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output one JSON record per line (for programmatic use)",
)
def scan(
    export_path: str,
    outline_path: str,
    roster_path: str,
    strategy: str,
    workers: int,
    queue_size: int,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Scan a submissions export for unmatched questions."""

    if json_output:
        # Keep stdout clean for JSON lines
        log_level = "ERROR"

    config = PipelineConfig(
        max_workers=workers,
        queue_size=queue_size,
        strategy=Strategy(strategy),
        log_level=log_level,
        log_file=log_file,
    )

    try:
        outline = load_outline(outline_path)
        roster = load_roster(roster_path)
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Error:[/] invalid input file: {e}")
        sys.exit(1)

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Unmatched Pages v{__version__}[/]\n"
                f"[dim]Scanning: {os.path.basename(export_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    engine = UnmatchedPagesEngine(config)

    try:
        if json_output:
            items = engine.run(export_path, outline, roster)
            for item in items:
                record = {"type": "error" if isinstance(item, ReportError) else "report"}
                record.update(item.model_dump(mode="json"))
                print(json.dumps(record, ensure_ascii=False))
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Scanning submissions...", total=None)

                def on_progress(processed: int):
                    progress.update(
                        task, description=f"Scanned {processed} submissions"
                    )

                items = engine.run(export_path, outline, roster, on_progress)

            _display_reports([i for i in items if isinstance(i, UnmatchedReport)])
            _display_errors([i for i in items if isinstance(i, ReportError)])
            _display_summary(engine)

    except ArchiveError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--strategy", "-s",
    default=Strategy.TEXT.value,
    type=STRATEGY_CHOICE,
    help="How matched questions are read from the PDF",
)
def inspect(pdf_path: str, strategy: str):
    """Show what the engine reads from a single submission PDF."""

    normalizer = PageNormalizer(strategy=Strategy(strategy))
    with open(pdf_path, "rb") as f:
        data = f.read()

    try:
        if normalizer.strategy is Strategy.STRUCTURED:
            _display_pages(normalizer.classify_pages(data))
        submission = normalizer.load(os.path.basename(pdf_path), data)
    except ParseError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print()
    table = Table(title="Submission PDF", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Submission ID", submission.submission_id)
    table.add_row("Strategy", normalizer.strategy.value)
    table.add_row(
        "Matched Questions",
        ", ".join(str(n) for n in submission.matched) or "(none)",
    )
    console.print(table)
    console.print()


@cli.command()
@click.argument("outline_path", type=click.Path(exists=True, dir_okay=False))
def outline(outline_path: str):
    """Print the flattened questions of an outline JSON file."""

    try:
        loaded = load_outline(outline_path)
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Error:[/] invalid outline: {e}")
        sys.exit(1)

    table = Table(title="Outline Questions", border_style="cyan")
    table.add_column("Number", style="bold", justify="right")
    table.add_column("Title")
    for question in loaded.questions():
        table.add_row(str(question.number), question.title)
    console.print(table)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_reports(reports: list[UnmatchedReport]):
    """Display unmatched-question reports as a rich table."""
    if not reports:
        console.print("[green]✓ No unmatched questions found[/]")
        console.print()
        return

    table = Table(title="Unmatched Questions", border_style="yellow")
    table.add_column("Student", style="bold")
    table.add_column("Email")
    table.add_column("Submission", justify="right")
    table.add_column("Questions")

    for report in sorted(reports, key=lambda r: (r.student_name, r.submission_id)):
        table.add_row(
            report.student_name,
            report.student_email,
            report.submission_id,
            ", ".join(report.question_numbers),
        )

    console.print(table)
    console.print()


def _display_errors(errors: list[ReportError]):
    """Display per-item failures."""
    if not errors:
        return

    table = Table(title="Errors", border_style="red")
    table.add_column("Kind", style="bold")
    table.add_column("Submission / File")
    table.add_column("Message")

    for error in errors:
        table.add_row(
            error.kind.value,
            error.submission_id or error.filename or "-",
            error.message,
        )

    console.print(table)
    console.print()


def _display_pages(pages):
    """Display structured page classification."""
    table = Table(title="Page Classification", border_style="cyan")
    table.add_column("Page", justify="right")
    table.add_column("Kind", style="bold")
    table.add_column("Fonts", justify="center")
    table.add_column("Logo", justify="center")
    table.add_column("Question", justify="right")

    styles = {
        PageKind.ASSIGNMENT_SUMMARY: "dim",
        PageKind.QUESTION_SUMMARY: "cyan",
        PageKind.STUDENT_SUBMISSION: "green",
    }
    for info in pages:
        table.add_row(
            str(info.page_number),
            f"[{styles[info.kind]}]{info.kind.value}[/]",
            "✓" if info.has_fonts else "",
            "✓" if info.has_logo else "",
            str(info.question_number) if info.question_number else "",
        )

    console.print()
    console.print(table)


def _display_summary(engine: UnmatchedPagesEngine):
    stats = engine.stats
    console.print(
        f"[bold]Total:[/] {stats.submissions} submissions scanned, "
        f"{stats.unmatched_submissions} with unmatched questions, "
        f"{stats.reports} student reports, {stats.errors} errors "
        f"[dim]({stats.elapsed_seconds:.2f}s)[/]"
    )
    console.print()


# ─── Entry point (for python -m unmatched_pages.cli) ──────────────────────────


if __name__ == "__main__":
    cli()
