"""Command Line Interface for rx-loader.

This module provides a CLI using Typer for importing prescription and claim
extracts, creating the schema and inspecting the active configuration.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from rx_loader.domain.ports import IngestionError, StoragePort
from rx_loader.domain.records import ImportStatus, ImportSummary, RecordType
from rx_loader.infrastructure.logging_config import setup_logging
from rx_loader.infrastructure.settings import APP_VERSION, settings

# Initialize Typer app and Rich console
app = typer.Typer(
    name="rxload",
    help="rx-loader: pharmacy prescription and claim import pipeline",
    add_completion=False
)
console = Console()

STATUS_STYLES = {
    ImportStatus.SUCCESS: "green",
    ImportStatus.PARTIAL: "yellow",
    ImportStatus.FAILED: "red",
}


def create_storage_adapter_cli() -> StoragePort:
    """Create storage adapter based on configuration (CLI wrapper)."""
    try:
        from rx_loader.main import create_storage_adapter
        return create_storage_adapter(settings.db_config)
    except Exception as e:
        console.print(f"[red]✗[/red] Failed to create storage adapter: {str(e)}")
        raise typer.Exit(code=1)


def print_summary(summary: ImportSummary) -> None:
    style = STATUS_STYLES.get(summary.status, "white")
    console.print("\n[bold]Import Summary:[/bold]")

    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Status:", f"[{style}]{summary.status.value}[/{style}]")
    summary_table.add_row("Total rows:", f"[bold]{summary.total_records:,}[/bold]")
    summary_table.add_row("Imported:", f"[green]{summary.records_imported:,}[/green]")
    summary_table.add_row(
        "Skipped:",
        f"[yellow]{summary.records_skipped:,}[/yellow]" if summary.records_skipped else "0"
    )
    for reason, count in sorted(summary.skip_reasons.items()):
        summary_table.add_row(f"  {reason}:", f"{count:,}")
    if summary.duration_ms is not None:
        summary_table.add_row("Duration:", f"{summary.duration_ms / 1000:.1f}s")
    console.print(summary_table)

    created = {kind: count for kind, count in summary.reference_data_created.items() if count}
    if created:
        console.print("\n[bold]Reference data created:[/bold]")
        created_table = Table(show_header=False, box=None, padding=(0, 2))
        for kind, count in created.items():
            created_table.add_row(f"{kind.table}:", f"{count:,}")
        console.print(created_table)

    if summary.errors:
        console.print(f"\n[bold]Errors[/bold] (first {min(10, len(summary.errors))} of "
                      f"{len(summary.errors) + summary.errors_truncated}):")
        error_table = Table(show_header=True, header_style="bold")
        error_table.add_column("Row", justify="right")
        error_table.add_column("Category")
        error_table.add_column("Message")
        for error in summary.errors[:10]:
            error_table.add_row(str(error.row) if error.row else "-", error.category.value, error.message)
        console.print(error_table)


@app.command("import")
def import_file(
    input_file: Path = typer.Argument(..., help="Input file path (CSV or Excel)", exists=True, dir_okay=False),
    record_type: Optional[RecordType] = typer.Option(
        None, "--type", "-t", help="Record type (inferred from headers when omitted)"
    ),
    chunk_size: Optional[int] = typer.Option(None, "--chunk-size", "-b", min=1, help="Fact rows per bulk upsert"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Import a prescription or claim extract.

    Examples:
        rxload import data/ClaimReports.csv
        rxload import data/scripts.xlsx --type prescriptions --chunk-size 250
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        console.print("[dim]Verbose logging enabled[/dim]")

    console.print("\n[bold blue]rx-loader[/bold blue]")
    console.print(f"[dim]Input file:[/dim] {input_file}")
    console.print(f"[dim]Database:[/dim] {settings.db_config.describe()}")
    console.print(f"[dim]Chunk size:[/dim] {chunk_size or settings.load_chunk_size}")
    console.print()

    storage = create_storage_adapter_cli()

    from rx_loader.main import run_import

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console
        ) as progress:
            task = progress.add_task("Starting import...", total=100)

            def on_progress(message: str, percentage: int) -> None:
                progress.update(task, description=message, completed=percentage)

            summary = run_import(
                input_file,
                storage,
                record_type=record_type,
                progress_callback=on_progress,
                load_chunk_size=chunk_size
            )
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠[/yellow] Import interrupted by user")
        raise typer.Exit(code=130)
    except IngestionError as e:
        console.print(f"\n[red]✗[/red] Import failed: {str(e)}")
        raise typer.Exit(code=1)
    finally:
        storage.close()

    print_summary(summary)

    if summary.status is ImportStatus.SUCCESS:
        console.print("\n[green]✓[/green] Import completed successfully")
        raise typer.Exit(code=0)
    console.print(f"\n[yellow]⚠[/yellow] Import finished with status {summary.status.value}")
    raise typer.Exit(code=1)


@app.command("init-db")
def init_db() -> None:
    """Create all tables and indexes in the configured database."""
    storage = create_storage_adapter_cli()
    try:
        result = storage.initialize_schema()
    finally:
        storage.close()

    if result.is_failure():
        console.print(f"[red]✗[/red] {result.error}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Schema ready in {settings.db_config.describe()}")


@app.command()
def info() -> None:
    """Display configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", f"{settings.app_name} {APP_VERSION}")
    info_table.add_row("Database Type:", settings.db_config.db_type)

    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.get_db_path())
    elif settings.db_config.db_type == "postgresql":
        info_table.add_row("Database Host:", str(settings.db_config.host))
        info_table.add_row("Database Name:", str(settings.db_config.database))

    info_table.add_row("Load Chunk Size:", str(settings.load_chunk_size))
    info_table.add_row("Insert Chunk Size:", str(settings.insert_chunk_size))
    info_table.add_row("Progress Interval:", str(settings.progress_interval))
    info_table.add_row("Import Logs:", "Enabled" if settings.record_import_logs else "Disabled")

    console.print(info_table)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"rx-loader v{APP_VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=version_callback, is_eager=True, help="Show version information"
    )
) -> None:
    """rx-loader: pharmacy prescription and claim import pipeline."""
    setup_logging(use_json=settings.log_json, log_level=settings.log_level)


if __name__ == "__main__":
    app()
