"""Command-line interface for recall."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)
from rich.table import Table

from . import __version__
from .backends import BACKEND_NAMES, get_backend
from .config import Settings, get_settings
from .database import ResultStore
from .errors import InvalidQuery, StoreWriteFailure
from .ingest import ingest_directory
from .models import IngestReport, OCRStatus
from .search import MatchMode, search

app = typer.Typer(
    name="recall",
    help="OCR the photos in a directory and search for the text in them.",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
)

console = Console(stderr=True)  # All output to stderr to preserve stdout for data

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

CREDITS = """\
Recall - OCR and search for text in your photos.

OCR engines:
  tesseract      Tesseract OCR (Apache-2.0), https://github.com/tesseract-ocr/tesseract
                 via pytesseract (Apache-2.0)
  livetext       Apple Vision / LiveText via ocrmac (MIT)
  google_vision  Google Cloud Vision API via google-cloud-vision (Apache-2.0)
"""


@dataclass
class CLIState:
    settings: Settings
    db_path: Path


def version_callback(value: bool) -> None:
    """Print version and exit if --version flag is provided."""
    if value:
        typer.echo(f"recall version {__version__}")
        raise typer.Exit()


def open_store(ctx: typer.Context) -> ResultStore:
    """Open the result store, exiting with an error message if that fails."""
    state: CLIState = ctx.obj
    store = ResultStore(state.db_path)
    try:
        store.open()
    except StoreWriteFailure as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    return store


def print_report(report: IngestReport) -> None:
    console.print(
        f"  [green]✓[/green] {report.succeeded} indexed ({report.spans} text spans), "
        f"{report.skipped} already indexed"
    )
    if report.failed:
        console.print(f"  [yellow]⚠[/yellow] {report.failed} failed:")
        for path in report.failed_paths:
            console.print(f"    {path}")


def run_scan(
    ctx: typer.Context,
    store: ResultStore,
    directory: Path,
    recursive: bool,
    force: bool,
    backend_name: Optional[str],
    language: Optional[str],
    workers: Optional[int],
) -> IngestReport:
    """Ingest a directory with a progress bar. Exits on backend or store errors."""
    settings: Settings = ctx.obj.settings

    try:
        backend = get_backend(backend_name, settings=settings)
    except (ValueError, RuntimeError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(f"  OCR ({backend.name})...", total=None)
        try:
            report = ingest_directory(
                store,
                directory,
                backend,
                language=language or settings.language,
                recursive=recursive,
                extensions=settings.extensions,
                force=force,
                max_workers=workers or settings.max_workers,
                progress_callback=lambda current, total: progress.update(
                    task, completed=current, total=total
                ),
            )
        except StoreWriteFailure as e:
            progress.stop()
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    return report


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="Database file (default: data.sqlite in the recall data directory)",
        dir_okay=False,
        envvar="RECALL_DB_PATH",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable info logging"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Recall is a CLI tool to OCR and search for text in your photos."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)

    settings = get_settings()
    db_path = db if db is not None else settings.effective_db_path
    logging.getLogger(__name__).debug(f"Data file path: {db_path}")
    ctx.obj = CLIState(settings=settings, db_path=db_path)


@app.command()
def scan(
    ctx: typer.Context,
    directory: Path = typer.Argument(
        Path("."),
        help="Directory containing photos (default: current directory)",
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Also scan subdirectories"),
    force: bool = typer.Option(False, "--force", "-f", help="Re-OCR photos that are already indexed"),
    backend: Optional[str] = typer.Option(
        None, "--backend", "-b", help=f"OCR backend: {', '.join(BACKEND_NAMES)}"
    ),
    language: Optional[str] = typer.Option(
        None,
        "--language",
        "-l",
        help="OCR language code (defaults to the backend's: eng, en-US or en)",
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-n", min=1, help="Number of images to OCR in parallel"
    ),
) -> None:
    """OCR new and changed photos in a directory and store the text.

    Photos already indexed are skipped unless they changed on disk. Photos that
    failed OCR are retried. A failure on one photo never stops the scan.
    """
    console.print(f"[bold cyan]Scanning[/bold cyan] {directory}")
    with open_store(ctx) as store:
        report = run_scan(ctx, store, directory, recursive, force, backend, language, workers)
    print_report(report)


@app.command("search")
def search_command(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Text to search for in OCR results"),
    directory: Path = typer.Argument(
        Path("."),
        help="Directory to scan and search (default: current directory)",
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
    global_search: bool = typer.Option(
        False, "--global", "-g", help="Search across all previously OCRed photos"
    ),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Include subdirectories"),
    mode: MatchMode = typer.Option(
        MatchMode.SUBSTRING,
        "--mode",
        "-m",
        case_sensitive=False,
        help=(
            "substring: case-insensitive literal match. "
            'fts: full-text syntax (words, "phrases", prefix*, AND/OR/NOT). '
            "fuzzy: approximate match."
        ),
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-l", min=1, help="Maximum number of results (default: 10)"
    ),
    no_scan: bool = typer.Option(False, "--no-scan", help="Search without scanning first"),
    show_text: bool = typer.Option(False, "--show-text", "-t", help="Also print matching text"),
    backend: Optional[str] = typer.Option(
        None, "--backend", "-b", help=f"OCR backend for the scan: {', '.join(BACKEND_NAMES)}"
    ),
) -> None:
    """Scan a directory, then print photos whose text matches QUERY.

    One path per line on stdout, best matches first (ties sorted by path).
    Searches only DIRECTORY unless --global is given.
    """
    settings: Settings = ctx.obj.settings

    with open_store(ctx) as store:
        if not no_scan:
            report = run_scan(ctx, store, directory, recursive, False, backend, None, None)
            if report.processed:
                print_report(report)

        try:
            hits = search(
                store,
                query,
                mode=mode,
                directory=None if global_search else directory,
                recursive=recursive,
                limit=limit or settings.search_limit,
                min_confidence=settings.min_confidence,
            )
        except InvalidQuery as e:
            console.print(f"[red]Invalid query:[/red] {e}")
            raise typer.Exit(2) from e

    if not hits:
        console.print("[yellow]No matches[/yellow]")
        return

    for hit in hits:
        typer.echo(hit.image.path)
        if show_text:
            for span in hit.spans:
                typer.echo(f"    {span.text}  ({span.confidence:.2f})")


@app.command()
def status(
    ctx: typer.Context,
    failed: bool = typer.Option(False, "--failed", help="List photos that failed OCR"),
) -> None:
    """Show how many photos are indexed, pending and failed."""
    with open_store(ctx) as store:
        stats = store.stats()
        failed_images = store.list_images(OCRStatus.FAILED) if failed else []

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Status")
    table.add_column("Photos", justify="right")
    for status_name, count in stats["by_status"].items():
        table.add_row(status_name, f"{count:,}")
    table.add_row("[bold]total[/bold]", f"{stats['total_images']:,}")
    console.print(table)
    console.print(f"Text spans: {stats['total_spans']:,}")
    console.print(f"Database: {ctx.obj.db_path}")

    for image in failed_images:
        typer.echo(f"{image.path}\t{image.error}")


@app.command()
def prune(ctx: typer.Context) -> None:
    """Remove records of photos that no longer exist on disk."""
    with open_store(ctx) as store:
        try:
            removed = store.prune_missing()
        except StoreWriteFailure as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    for path in removed:
        typer.echo(path)
    console.print(f"[green]✓[/green] Removed {len(removed)} records")


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
) -> None:
    """Delete every stored OCR result."""
    if not yes:
        typer.confirm(f"Delete all OCR results in {ctx.obj.db_path}?", abort=True)

    with open_store(ctx) as store:
        try:
            store.reset()
        except StoreWriteFailure as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e

    console.print("[green]✓[/green] Database reset")


@app.command("credits")
def show_credits() -> None:
    """Show credits and license information."""
    typer.echo(CREDITS)


if __name__ == "__main__":
    app()
