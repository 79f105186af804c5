"""
Record stream I/O.

Source records are read lazily from Parquet (polars LazyFrame slices) or
JSON Lines. Batch units are persisted as JSON Lines, one unit per line.
The async helpers here are the producer and consumer halves used with
mbz_import.channels.run_stage_pair.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import polars as pl

from mbz_import.batch import BatchUnit
from mbz_import.channels import Channel

# Rows pulled from a Parquet file per slice
PARQUET_SLICE_ROWS = 10_000


def _without_nulls(row: dict[str, Any]) -> dict[str, Any]:
    """Null columns are absent fields in the source."""
    return {k: v for k, v in row.items() if v is not None}


def _iter_parquet(path: Path, slice_rows: int) -> Iterator[dict[str, Any]]:
    frame = pl.scan_parquet(path)
    offset = 0
    while True:
        chunk = frame.slice(offset, slice_rows).collect()
        if chunk.height == 0:
            return
        for row in chunk.iter_rows(named=True):
            yield _without_nulls(row)
        offset += chunk.height


def _iter_jsonl(path: Path) -> Iterator[Any]:
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path.name}:{line_no}: malformed record: {e}") from e


def read_source_records(path: Path, slice_rows: int = PARQUET_SLICE_ROWS) -> Iterator[dict[str, Any]]:
    """
    Lazily read raw records from a source file.

    Args:
        path: entities/<type>.parquet or entities/<type>.jsonl
        slice_rows: Parquet rows materialized at a time

    Yields:
        Raw records with null fields removed
    """
    if not path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    if path.suffix == ".parquet":
        yield from _iter_parquet(path, slice_rows)
    elif path.suffix == ".jsonl":
        for record in _iter_jsonl(path):
            yield _without_nulls(record) if isinstance(record, dict) else record
    else:
        raise ValueError(f"Unsupported source format: {path.suffix}")


def read_batch_units(path: Path) -> Iterator[BatchUnit]:
    """Lazily read persisted batch units."""
    if not path.exists():
        raise FileNotFoundError(f"Batch file not found: {path}")
    for data in _iter_jsonl(path):
        yield BatchUnit.from_json(data)


async def put_all(channel: Channel, items: Iterable[Any]) -> int:
    """Producer: put every item onto the channel. Returns the count."""
    count = 0
    for item in items:
        await channel.put(item)
        count += 1
    return count


async def write_batch_file(channel: Channel, path: Path) -> dict[str, Any]:
    """
    Consumer: write every unit from the channel to a batch file.

    Writes to a temporary file and renames it on success, so a failed run
    never leaves a truncated batch file behind.
    """
    tmp = path.with_suffix(path.suffix + ".tmp")
    units = 0
    fragments = 0
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            async for unit in channel:
                f.write(json.dumps(unit.to_json(), separators=(",", ":")))
                f.write("\n")
                units += 1
                fragments += len(unit.tx_data)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    tmp.replace(path)
    return {"batches": units, "entities": fragments, "file": path.name}
