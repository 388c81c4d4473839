"""
Corrector CLI Application.

Provides a command-line front end for the correction session engine:
grade a scanned exam, optionally re-evaluate questions, and export the
result as a report.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from corrector.config import Settings, get_settings
from corrector.credits import CreditGate, InMemoryQuotaStore, LoggingPaymentIntake
from corrector.errors import (
    CorrectorError,
    InsufficientQuota,
    MalformedResponse,
    OracleUnavailable,
)
from corrector.exam_file import ExamFileError, load_exam_image
from corrector.grading import LLMGradingOracle
from corrector.models import (
    CREDIT_PACKAGES,
    ContextItem,
    ExamImage,
    Principal,
    ScoreBand,
    SessionResult,
)
from corrector.output import ReportFormat, report_filename
from corrector.session import SessionController

# Create Typer app
app = typer.Typer(
    name="corrector",
    help="Grade scanned exams with an LLM and export editable correction reports",
    add_completion=False,
)

console = Console()

_BAND_COLORS = {ScoreBand.HIGH: "green", ScoreBand.MEDIUM: "yellow", ScoreBand.LOW: "red"}


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command()
def grade(
    exam_file: Annotated[Path, typer.Argument(help="Scanned exam (image or PDF)")],
    context: Annotated[
        str,
        typer.Option("--context", "-c", help="Answer key or grading instructions"),
    ] = "",
    context_file: Annotated[
        Optional[Path],
        typer.Option("--context-file", help="Read the grading context from a text file"),
    ] = None,
    reevaluate: Annotated[
        Optional[list[int]],
        typer.Option("--reevaluate", "-r", help="Item index to re-evaluate after grading (repeatable)"),
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Report file or directory"),
    ] = None,
    format: Annotated[
        ReportFormat,
        typer.Option("--format", "-f", help="Report format"),
    ] = ReportFormat.PDF,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show every item with its feedback"),
    ] = False,
) -> None:
    """
    Grade a scanned exam.

    The exam is graded by the LLM oracle against the given context. Items
    passed with --reevaluate are re-judged afterwards and the summary is
    refreshed before the report is written.
    """
    try:
        settings = get_settings()
        _configure_logging(settings)

        if context_file is not None:
            if not context_file.exists():
                console.print(f"[red]Error:[/red] Context file not found: {context_file}")
                raise typer.Exit(1)
            context = context_file.read_text(encoding="utf-8")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Loading exam...", total=None)
            image = load_exam_image(exam_file, settings)

            progress.update(task, description="Grading exam... (this may take a moment)")
            controller, result, committed, failures = asyncio.run(
                _run_session(settings, image, context, reevaluate or [])
            )

        if not committed:
            console.print(
                "[yellow]⚠ The exam was graded but the quota could not be updated.[/yellow]"
            )
        for index, error in failures:
            console.print(
                f"[yellow]⚠ Re-evaluation of item {index} failed, keeping its verdict:[/yellow] {error}"
            )

        _display_results(result, verbose)

        if output:
            target = output / report_filename(result, format) if output.is_dir() else output
            target.write_bytes(controller.render_report(format))
            console.print(f"\n[green]Report saved to:[/green] {target}")

    except ExamFileError as e:
        console.print(f"[red]Exam File Error:[/red] {e}")
        raise typer.Exit(1)
    except InsufficientQuota as e:
        console.print(f"[red]Insufficient Quota:[/red] {e}. Run 'corrector packages' to buy more.")
        raise typer.Exit(1)
    except OracleUnavailable as e:
        console.print(f"[red]Grading Service Error:[/red] {e}")
        raise typer.Exit(1)
    except MalformedResponse as e:
        console.print(f"[red]Malformed Grading Response:[/red] {e}")
        raise typer.Exit(1)


async def _run_session(
    settings: Settings, image: ExamImage, context: str, reevaluate: list[int]
) -> tuple[SessionController, SessionResult, bool, list[tuple[int, CorrectorError]]]:
    """
    Grade the exam, then re-evaluate the requested items.

    A failed re-evaluation leaves that item's verdict as graded and is
    returned in the failure list; the paid-for result is always returned.
    """
    store = InMemoryQuotaStore(
        [
            Principal(
                id=settings.principal_id,
                name=settings.principal_name,
                role=settings.principal_role,
                remaining_quota=settings.initial_quota,
            )
        ]
    )
    principal = await store.current_principal(settings.principal_id)
    controller = SessionController.from_settings(
        settings,
        oracle=LLMGradingOracle(settings),
        gate=CreditGate(store),
        payment_intake=LoggingPaymentIntake(),
    )

    outcome = await controller.submit(image, context, principal)

    failures: list[tuple[int, CorrectorError]] = []
    if reevaluate:
        results = await asyncio.gather(
            *(controller.reevaluate_item(index) for index in reevaluate),
            return_exceptions=True,
        )
        for index, result in zip(reevaluate, results):
            if isinstance(result, CorrectorError):
                failures.append((index, result))
            elif isinstance(result, BaseException):
                raise result
        await controller.wait_for_summary()

    return controller, controller.result or outcome.result, outcome.quota_committed, failures


@app.command()
def packages() -> None:
    """List the credit packages available for purchase."""
    table = Table(title="Credit Packages")
    table.add_column("Package", style="cyan")
    table.add_column("Credits", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Per credit", justify="right")

    for package in CREDIT_PACKAGES:
        name = f"{package.label} ★" if package.popular else package.label
        table.add_row(name, str(package.credits), f"{package.price:.2f}", f"{package.price_per_credit}")

    console.print(table)


@app.command()
def health() -> None:
    """
    Check if the grading oracle is reachable.

    Verifies API connectivity and configuration.
    """
    try:
        settings = get_settings()
        console.print("[bold]Corrector Health Check[/bold]\n")

        console.print("[dim]Checking configuration...[/dim]")
        console.print(f"  API Base URL: {settings.oracle_base_url}")
        console.print(f"  Model: {settings.oracle_model}")
        console.print(f"  Summary debounce: {settings.summary_debounce_ms} ms")
        console.print(f"  Feedback language: {settings.feedback_language}")

        console.print("\n[dim]Checking API connectivity...[/dim]")
        oracle = LLMGradingOracle(settings)

        if asyncio.run(oracle.health_check()):
            console.print("[green]✓ API is reachable[/green]")
        else:
            console.print("[red]✗ API is not reachable[/red]")
            raise typer.Exit(1)

        console.print("\n[green]All systems operational[/green]")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _display_results(result: SessionResult, verbose: bool = False) -> None:
    """Display the correction result in formatted panels and a table."""

    header = [f"[bold]{result.student_name or 'Unidentified student'}[/bold]"]
    for label, value in (
        ("School", result.institution),
        ("Class", result.class_name),
        ("Teacher", result.teacher_name),
        ("Date", result.exam_date),
    ):
        if value:
            header.append(f"{label}: {value}")
    console.print(Panel("\n".join(header), title="Exam"))

    color = _BAND_COLORS[result.score_band]
    console.print(
        Panel(
            f"[{color}][bold]{result.total_score:g} / {result.max_total_score:g}[/bold] "
            f"({result.percentage:.1f}%)[/{color}]",
            title="Final Score",
        )
    )

    table = Table(title="Items")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Item", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Status")
    if verbose:
        table.add_column("Feedback")

    for index, item in enumerate(result.items):
        if isinstance(item, ContextItem):
            row = [str(index), item.label or "Context", "-", "[dim]context[/dim]"]
            if verbose:
                row.append("")
        else:
            status = "✅" if item.verdict.is_correct else "⚠️" if item.verdict.score > 0 else "❌"
            row = [
                str(index),
                f"Question {item.label}",
                f"{item.verdict.score:g}/{item.verdict.max_score:g}",
                status,
            ]
            if verbose:
                row.append(item.feedback)
        table.add_row(*row)

    console.print(table)
    console.print(Panel(result.summary or "[dim]No summary[/dim]", title="Summary"))


if __name__ == "__main__":
    app()
