"""Typer CLI for the IMAP archiver."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from imap_archiver.archive.errors import ConnectionFailedError
from imap_archiver.archive.progress import ProgressTracker
from imap_archiver.config.settings import AppSettings, ImapSettings, load_settings
from imap_archiver.imap.store import ImapMailStore
from imap_archiver.models.types import RunOutcome, RunSummary
from imap_archiver.pipeline.display import RichProgressObserver
from imap_archiver.pipeline.orchestrator import ArchiveOrchestrator
from imap_archiver.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Move messages older than a cutoff from an IMAP inbox into its archive mailbox.",
)

_ENV_FILE_OPTION = typer.Option(
    default=None,
    exists=True,
    dir_okay=False,
    help="Optional path to a .env file (in addition to environment variables).",
)


def load_app_settings(*, env_file: Path | None) -> AppSettings:
    """Load settings, exiting with code 2 if they are invalid.

    Args:
        env_file: Optional path to a .env file to load in addition to environment variables.

    Returns:
        Validated application settings.

    Raises:
        typer.Exit: If validation fails.
    """
    try:
        return load_settings(env_file=env_file)
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=2) from None


def require_imap(settings: AppSettings) -> ImapSettings:
    """Return IMAP settings or exit with code 2 if they are missing."""
    if settings.imap is None:
        typer.echo(
            "Missing IMAP settings. Set at least "
            "ARCHIVER_IMAP__USERNAME and ARCHIVER_IMAP__PASSWORD.",
            err=True,
        )
        raise typer.Exit(code=2)
    return settings.imap


@app.command("run")
def run_cmd(
    *,
    env_file: Path | None = _ENV_FILE_OPTION,
    dry_run: bool = typer.Option(
        default=False,
        help="Search and count matching messages without moving anything.",
    ),
    progress: bool | None = typer.Option(
        None,
        "--progress/--no-progress",
        help="Show a progress bar (defaults to ARCHIVER_DISPLAY__PROGRESS).",
    ),
    json_summary: bool = typer.Option(
        False,
        "--json",
        help="Print the run summary as JSON instead of a table.",
    ),
) -> None:
    """Archive messages older than the cutoff.

    Args:
        env_file: Optional path to a .env file to load configuration from.
        dry_run: Whether to skip moving messages.
        progress: Whether to render a progress bar.
        json_summary: Whether to print the summary as JSON.
    """
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)
    imap_settings = require_imap(settings)

    archive_settings = settings.archive
    if dry_run:
        archive_settings = archive_settings.model_copy(update={"dry_run": True})
    show_progress = settings.display.progress if progress is None else progress

    console = Console()
    tracker = ProgressTracker()
    orchestrator = ArchiveOrchestrator(
        settings=archive_settings,
        store=ImapMailStore(settings=imap_settings),
        tracker=tracker,
    )

    display: contextlib.AbstractContextManager[object] = contextlib.nullcontext()
    if show_progress and not json_summary:
        observer = RichProgressObserver(console=console)
        tracker.subscribe(observer)
        display = observer

    try:
        with display:
            summary = asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None

    if json_summary:
        typer.echo(summary.model_dump_json(indent=2))
    else:
        print_summary(console, summary)
    raise typer.Exit(code=summary.exit_code)


@app.command("check")
def check_cmd(
    *,
    env_file: Path | None = _ENV_FILE_OPTION,
) -> None:
    """Connect, open the source mailbox and report whether the archive exists.

    Args:
        env_file: Optional path to a .env file to load configuration from.
    """
    settings = load_app_settings(env_file=env_file)
    configure_logging(settings=settings.logging)
    imap_settings = require_imap(settings)

    orchestrator = ArchiveOrchestrator(
        settings=settings.archive,
        store=ImapMailStore(settings=imap_settings),
    )
    try:
        report = asyncio.run(orchestrator.check())
    except ConnectionFailedError as exc:
        logger.error("Connection check failed: %s", exc)
        typer.echo(f"Connection check failed: {exc}", err=True)
        raise typer.Exit(code=1) from None

    console = Console()
    console.print(f"[green]✔[/green] Connected to {imap_settings.host}:{imap_settings.port}")
    count = "unknown" if report.source_count is None else str(report.source_count)
    console.print(f"  [dim]{report.source_mailbox}:[/dim] [bold]{count}[/bold] messages")
    if report.archive_exists:
        console.print(f"  [dim]Archive:[/dim] {report.archive_mailbox}")
    else:
        console.print(f"[yellow]⚠[/yellow] Archive mailbox {report.archive_mailbox!r} not found")
    console.print(f"  [dim]Cutoff:[/dim] {report.cutoff.isoformat()}")


def print_summary(console: Console, summary: RunSummary) -> None:
    """Render a run summary to the console."""
    if summary.outcome == RunOutcome.completed:
        headline = "[bold green]Archival finished![/bold green]"
        if summary.dry_run:
            headline = "[bold green]Dry run finished![/bold green]"
    elif summary.outcome == RunOutcome.archive_missing:
        headline = (
            f"[yellow]⚠[/yellow] Archive mailbox {summary.archive_mailbox!r} does not exist; "
            "nothing moved."
        )
    else:
        headline = f"[bold red]Archival failed:[/bold red] {summary.error}"

    console.print(headline)
    console.print(f"  [dim]cutoff:[/dim] {summary.cutoff.isoformat()}")
    estimate = "unknown" if summary.estimated_total is None else str(summary.estimated_total)
    console.print(f"  [dim]estimated total:[/dim] {estimate}")
    console.print(f"  [dim]matched:[/dim] [bold]{summary.matched_count}[/bold]")
    console.print(f"  [dim]moved:[/dim] [bold]{summary.moved_count}[/bold]")
    console.print(f"  [dim]page requests:[/dim] {summary.page_requests}")
    if summary.failed_move_attempts:
        console.print(f"  [dim]failed move attempts:[/dim] {summary.failed_move_attempts}")
    if summary.skipped_ids:
        console.print(f"  [red]skipped:[/red] {len(summary.skipped_ids)} messages")
