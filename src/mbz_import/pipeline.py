"""
Import pipeline orchestrator.

Runs every entity type in IMPORT_ORDER, one at a time:
- batch: source records -> transform -> batch units -> batches/<type>.jsonl
- load:  batches/<type>.jsonl -> skip committed -> parallel commits

A type starts only after the previous one fully loaded, because later
types reference earlier ones by natural key and the store resolves those
lookups against committed data. The first failure stops the run.

Usage:
    from mbz_import.pipeline import ImportPipeline
    pipeline = ImportPipeline(settings)
    pipeline.run()                    # everything
    pipeline.run(through="labels")    # labels and every type before it
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mbz_import.anomalies import Anomaly, Category, ImportFailed
from mbz_import.batch import BATCH_ID, IMPORT_SCHEMA, tx_data_to_batches
from mbz_import.catalog import Catalog, load_catalog
from mbz_import.channels import Channel, StageResult, run_stage_pair
from mbz_import.config import IMPORT_ORDER, Settings
from mbz_import.loader import LoadResult, load_type
from mbz_import.paths import StoragePaths
from mbz_import.records import put_all, read_source_records, write_batch_file
from mbz_import.store import Store, open_store
from mbz_import.transform import entity_data_to_tx_data

console = Console()

PHASES = ("batch", "load")


class StepStatus(Enum):
    """Status of a pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TypeReport:
    """What happened to one entity type."""

    entity_type: str
    status: StepStatus = StepStatus.PENDING
    batch: dict[str, Any] | None = None
    load: LoadResult | None = None
    duration: float | None = None
    error: Anomaly | None = None


@dataclass
class ImportReport:
    """Reports for every type touched by a run, in order."""

    types: list[TypeReport] = field(default_factory=list)

    @property
    def failure(self) -> Anomaly | None:
        for report in self.types:
            if report.error is not None:
                return report.error
        return None


def source_items(catalog: Catalog, paths: StoragePaths, entity_type: str):
    """Items fed to a type's transform: catalog tables or source records."""
    if entity_type == "enums":
        return iter(catalog.enums.items())
    if entity_type == "super-enums":
        return iter(catalog.super_enums.items())
    return read_source_records(paths.entities_file(entity_type))


async def create_batch_file(
    catalog: Catalog,
    paths: StoragePaths,
    entity_type: str,
    batch_size: int,
    queue_size: int = 1000,
) -> StageResult:
    """
    Transform and batch a type's source records into its batch file.

    Returns:
        StageResult with the reader's unit count and the writer's summary,
        or an Anomaly on either side
    """
    to_tx_data = entity_data_to_tx_data(catalog, entity_type)

    async def produce(channel: Channel) -> int:
        fragments = to_tx_data(source_items(catalog, paths, entity_type))
        return await put_all(channel, tx_data_to_batches(fragments, batch_size, entity_type))

    async def consume(channel: Channel) -> dict[str, Any]:
        return await write_batch_file(channel, paths.batch_file(entity_type))

    return await run_stage_pair(produce, consume, queue_size, entity_type)


def types_through(entity_type: str, order: list[str] | tuple[str, ...] = IMPORT_ORDER) -> list[str]:
    """A type plus every type before it in the import order."""
    if entity_type not in order:
        raise ValueError(f"Entity type {entity_type!r} is not in the import order")
    return list(order[: order.index(entity_type) + 1])


class ImportPipeline:
    """Sequential, dependency-ordered import of every entity type."""

    def __init__(
        self,
        settings: Settings,
        store: Store | None = None,
        catalog: Catalog | None = None,
    ):
        self.settings = settings
        self.paths = StoragePaths(settings.basedir)
        self.store = store if store is not None else open_store(settings)
        self._catalog = catalog
        self.verbose = settings.log_level == "DEBUG"

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            self._catalog = load_catalog(self.paths)
        return self._catalog

    def run(
        self,
        through: str | None = None,
        phases: tuple[str, ...] = PHASES,
    ) -> ImportReport:
        """
        Run the import.

        Args:
            through: Stop after this type (it and its predecessors run)
            phases: Subset of ("batch", "load")

        Returns:
            ImportReport for every type run

        Raises:
            ImportFailed: On the first type that fails
        """
        return asyncio.run(self.run_async(through=through, phases=phases))

    async def run_async(
        self,
        through: str | None = None,
        phases: tuple[str, ...] = PHASES,
    ) -> ImportReport:
        order = list(self.settings.import_order)
        if through is not None:
            try:
                order = types_through(through, order)
            except ValueError as e:
                raise ImportFailed(Anomaly(Category.INCORRECT, str(e), entity_type=through)) from e
        self.paths.ensure_dirs()

        conn = None
        if "load" in phases:
            try:
                conn = await self._prepare_database()
            except Exception as e:
                raise ImportFailed(Anomaly.from_exception(e)) from e

        report = ImportReport()
        started = time.time()
        try:
            for entity_type in order:
                type_report = TypeReport(entity_type)
                report.types.append(type_report)
                await self._run_type(type_report, conn, phases)
                if type_report.error is not None:
                    raise ImportFailed(type_report.error)
        finally:
            self._print_summary(report, time.time() - started)
        return report

    async def _prepare_database(self) -> Any:
        """Create the database, connect, install the batch-id attribute."""
        db_name = self.settings.db_name
        created = await asyncio.to_thread(self.store.create_database, db_name)
        console.print(f"[dim]Database {db_name} {'created' if created else 'exists'}[/]")
        conn = await asyncio.to_thread(self.store.connect, db_name)
        await asyncio.to_thread(self.store.transact, conn, IMPORT_SCHEMA)
        return conn

    async def _run_type(self, report: TypeReport, conn: Any, phases: tuple[str, ...]) -> None:
        entity_type = report.entity_type
        report.status = StepStatus.RUNNING
        start = time.time()
        console.print(f"[bold cyan]{entity_type}[/]")
        try:
            if "batch" in phases:
                console.print(f"  Creating batch file for {entity_type}...")
                stage = await create_batch_file(
                    self.catalog,
                    self.paths,
                    entity_type,
                    self.settings.batch_size,
                    self.settings.extract_queue_size,
                )
                if stage.failure is not None:
                    report.error = stage.failure
                    return
                report.batch = stage.consumer_result
                console.print(
                    f"    [green]✓[/] {report.batch['entities']:,} entities in "
                    f"{report.batch['batches']:,} batches"
                )
            if "load" in phases:
                console.print(f"  Loading batch file for {entity_type}...")
                report.load = await self._load(entity_type, conn, report.batch)
                if not report.load.ok:
                    report.error = report.load.failures[0]
                    return
        except Exception as e:
            report.error = Anomaly.from_exception(e, entity_type=entity_type)
        finally:
            report.duration = time.time() - start
            report.status = StepStatus.FAILED if report.error else StepStatus.DONE
            if report.error:
                console.print(f"  [red]Failed:[/] {escape(report.error.describe())}")

    async def _load(self, entity_type: str, conn: Any, batch: dict[str, Any] | None) -> LoadResult:
        total = batch["batches"] if batch else None
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed:,} committed"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("    Committing", total=total)

            def on_commit(unit, tx_report) -> None:
                progress.update(task, advance=1)
                if self.verbose:
                    progress.console.print(f"    [dim]{unit.batch_id}: {tx_report.datoms} datoms[/]")

            result = await load_type(
                self.store,
                conn,
                self.paths,
                entity_type,
                concurrency=self.settings.concurrency,
                timeout=self.settings.commit_timeout,
                queue_size=self.settings.load_queue_size,
                on_commit=on_commit,
            )
        if result.ok:
            console.print(
                f"    [green]✓[/] committed {len(result.committed):,}, "
                f"skipped {result.skipped:,} already done"
            )
        return result

    def _print_summary(self, report: ImportReport, elapsed: float) -> None:
        table = Table(title="Import Summary", show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Status")
        table.add_column("Entities", justify="right")
        table.add_column("Committed", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Time", justify="right")
        for r in report.types:
            style = "green" if r.status is StepStatus.DONE else "red"
            table.add_row(
                r.entity_type,
                f"[{style}]{r.status.value}[/]",
                f"{r.batch['entities']:,}" if r.batch else "-",
                f"{len(r.load.committed):,}" if r.load else "-",
                f"{r.load.skipped:,}" if r.load else "-",
                f"{r.duration:.1f}s" if r.duration is not None else "-",
            )
        console.print(table)
        console.print(f"[dim]Total: {elapsed:.1f}s[/]")

    def committed_counts(self) -> dict[str, int]:
        """Committed batches per entity type, read from the store."""
        conn = self.store.connect(self.settings.db_name)
        markers = self.store.query_markers(conn, BATCH_ID)
        counts = {t: 0 for t in IMPORT_ORDER}
        for marker in markers:
            entity_type = marker.rsplit("-", 1)[0]
            if entity_type in counts:
                counts[entity_type] += 1
        return counts
