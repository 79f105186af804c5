"""
Command-line interface for mbz_import.

Commands:
- run: Build batch files and load them, type by type
- batch: Build batch files only
- load: Load existing batch files only
- status: Show committed batches per entity type

Idempotent: rerunning after a failure skips every batch already committed.
Do not rerun with a different batch size against the same database.
"""

from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mbz_import.anomalies import ImportFailed, StoreError
from mbz_import.config import Settings, settings

app = typer.Typer(
    name="mbz-import",
    help="MusicBrainz bulk importer",
    no_args_is_help=True,
)
console = Console()


class StoreBackend(str, Enum):
    memory = "memory"
    sqlserver = "sqlserver"


ManifestOption = typer.Option(
    None, "--manifest", "-m", help="JSON manifest (db-name, basedir, concurrency, ...)"
)
StoreOption = typer.Option(None, "--store", "-s", help="Store backend", case_sensitive=False)
TypeOption = typer.Option(
    None, "--type", "-t", help="Stop after this entity type (runs it and every type before it)"
)


def _settings(manifest: Path | None, store: StoreBackend | str | None) -> Settings:
    if isinstance(store, StoreBackend):
        store = store.value
    if manifest is not None:
        return Settings.from_manifest(manifest, store=store)
    if store is not None:
        return Settings.model_validate({**settings.model_dump(), "store": store})
    return settings


def _run(manifest: Path | None, store: StoreBackend | str | None, entity_type: str | None, phases: tuple[str, ...]):
    from mbz_import.pipeline import ImportPipeline

    pipeline = ImportPipeline(_settings(manifest, store))
    try:
        pipeline.run(through=entity_type, phases=phases)
    except ImportFailed as e:
        anomaly = e.anomaly
        console.print("[bold red]Import failed[/]")
        console.print(f"  type:     {anomaly.entity_type or '-'}")
        console.print(f"  batch:    {anomaly.batch_id or '-'}")
        console.print(f"  category: {anomaly.category.value}")
        console.print(f"  message:  {escape(anomaly.message)}")
        raise typer.Exit(code=1) from e
    console.print("[bold green]Done. Import complete[/]")


@app.command()
def run(
    manifest: Path | None = ManifestOption,
    store: StoreBackend | None = StoreOption,
    entity_type: str | None = TypeOption,
):
    """Build batch files and load them in dependency order."""
    _run(manifest, store, entity_type, ("batch", "load"))


@app.command()
def batch(
    manifest: Path | None = ManifestOption,
    entity_type: str | None = TypeOption,
):
    """Transform source records into batch files (no store needed)."""
    _run(manifest, "memory", entity_type, ("batch",))


@app.command()
def load(
    manifest: Path | None = ManifestOption,
    store: StoreBackend | None = StoreOption,
    entity_type: str | None = TypeOption,
):
    """Load existing batch files, skipping batches already committed."""
    _run(manifest, store, entity_type, ("load",))


@app.command()
def status(
    manifest: Path | None = ManifestOption,
    store: StoreBackend | None = StoreOption,
):
    """Show how many batches of each type are committed."""
    from mbz_import.pipeline import ImportPipeline

    pipeline = ImportPipeline(_settings(manifest, store))
    try:
        counts = pipeline.committed_counts()
    except StoreError as e:
        detail = escape(f"[{e.category.value}] {e}")
        console.print(f"[bold red]Cannot read status:[/] {detail}")
        raise typer.Exit(code=1) from e

    table = Table(title="Committed Batches", show_header=True)
    table.add_column("Type", style="cyan")
    table.add_column("Batches", justify="right", style="green")
    for entity_type, count in counts.items():
        table.add_row(entity_type, f"{count:,}")
    console.print(table)


if __name__ == "__main__":
    app()
