"""
Idempotent parallel loader.

Loads one entity type's batch file into the store:
1. read the committed batch-ids (marker set)
2. stream persisted units, skipping committed ones
3. commit the rest with at most N in flight, each under a timeout
4. aggregate: any failed commit fails the type

Commit failures are captured as Anomaly values, not raised. Completion
order across workers is not guaranteed; each unit commits atomically on
its own.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console

from mbz_import.anomalies import Anomaly, Category
from mbz_import.batch import BATCH_ID, BatchUnit, filter_batches
from mbz_import.channels import Channel, run_stage_pair
from mbz_import.paths import StoragePaths
from mbz_import.records import put_all, read_batch_units
from mbz_import.store.base import Store, TxReport

console = Console()

DEFAULT_CONCURRENCY = 3
DEFAULT_COMMIT_TIMEOUT = 30.0
LOAD_QUEUE_SIZE = 100


@dataclass
class LoadResult:
    """Outcome of loading one entity type."""

    entity_type: str
    read: int = 0
    skipped: int = 0
    committed: list[str] = field(default_factory=list)
    failures: list[Anomaly] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


async def already_transacted(store: Store, conn: Any, attr: str = BATCH_ID) -> set[str] | Anomaly:
    """Committed batch-ids, or an anomaly if the store cannot be queried."""
    try:
        return await asyncio.to_thread(store.query_markers, conn, attr)
    except Exception as e:
        return Anomaly.from_exception(e)


async def commit_batch(
    store: Store,
    conn: Any,
    unit: BatchUnit,
    timeout: float,
    entity_type: str | None = None,
) -> TxReport | Anomaly:
    """Commit one unit with its batch marker; failures become anomalies."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(store.transact, conn, unit.tx_data_with_marker()),
            timeout=timeout,
        )
    except TimeoutError:
        return Anomaly(
            Category.INTERRUPTED,
            f"commit timed out after {timeout:.0f}s",
            entity_type=entity_type,
            batch_id=unit.batch_id,
        )
    except Exception as e:
        return Anomaly.from_exception(e, entity_type=entity_type, batch_id=unit.batch_id)


async def load_parallel(
    channel: Channel,
    store: Store,
    conn: Any,
    entity_type: str,
    n: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_COMMIT_TIMEOUT,
    on_commit: Callable[[BatchUnit, TxReport], None] | None = None,
) -> LoadResult:
    """
    Consumer: commit units from the channel with at most n in flight.

    Stops taking new units after the first failure; commits already in
    flight are allowed to finish.
    """
    if n < 1:
        raise ValueError(f"concurrency must be >= 1, got {n}")
    result = LoadResult(entity_type)
    slots = asyncio.Semaphore(n)
    in_flight: set[asyncio.Task] = set()

    async def commit(unit: BatchUnit) -> None:
        try:
            outcome = await commit_batch(store, conn, unit, timeout, entity_type)
        finally:
            slots.release()
        if isinstance(outcome, Anomaly):
            result.failures.append(outcome)
        else:
            result.committed.append(unit.batch_id)
            if on_commit is not None:
                on_commit(unit, outcome)

    try:
        async for unit in channel:
            if result.failures:
                break
            await slots.acquire()
            if result.failures:
                slots.release()
                break
            task = asyncio.create_task(commit(unit))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    finally:
        if in_flight:
            await asyncio.gather(*in_flight)
    return result


async def load_type(
    store: Store,
    conn: Any,
    paths: StoragePaths,
    entity_type: str,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_COMMIT_TIMEOUT,
    queue_size: int = LOAD_QUEUE_SIZE,
    on_commit: Callable[[BatchUnit, TxReport], None] | None = None,
) -> LoadResult:
    """
    Load the batch file of an entity type, skipping committed batches.

    Args:
        store: Target store
        conn: Connection from store.connect
        paths: Storage paths for the batch file
        entity_type: Entity type to load
        concurrency: Commits in flight at a time
        timeout: Seconds allowed per commit
        queue_size: Capacity of the reader -> workers channel
        on_commit: Called after each successful commit

    Returns:
        LoadResult; failures is non-empty if anything went wrong
    """
    committed = await already_transacted(store, conn)
    if isinstance(committed, Anomaly):
        return LoadResult(
            entity_type,
            failures=[Anomaly(committed.category, committed.message, entity_type=entity_type)],
        )
    console.print(f"  Batches already completed: {len(committed):,}")

    path = paths.batch_file(entity_type)

    # updated per unit read, also when the producer is cancelled
    counts = {"read": 0, "skipped": 0}

    def counted():
        for unit in read_batch_units(path):
            counts["read"] += 1
            if unit.batch_id in committed:
                counts["skipped"] += 1
            yield unit

    async def produce(channel: Channel) -> int:
        return await put_all(channel, filter_batches(counted(), committed))

    async def consume(channel: Channel) -> LoadResult:
        return await load_parallel(
            channel, store, conn, entity_type, n=concurrency, timeout=timeout, on_commit=on_commit
        )

    stage = await run_stage_pair(produce, consume, queue_size, entity_type)

    result = stage.consumer_result
    if not isinstance(result, LoadResult):
        result = LoadResult(entity_type, failures=[result])
    result.read = counts["read"]
    result.skipped = counts["skipped"]
    failure = stage.failure
    if failure is not None and failure not in result.failures:
        result.failures.insert(0, failure)
    return result
