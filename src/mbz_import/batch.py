"""
Batching of transformed fragments into tagged commit units.

Every unit carries a batch-id "<type>-<n>". When committed, the batch-id is
asserted on the transaction entity under BATCH_ID, which the store keeps
unique. That is what makes a rerun safe: committed ids are skipped up front
and a resubmitted unit fails on the unique constraint.

Do not change the batch size between runs against the same database.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from itertools import islice
from typing import Any

BATCH_ID = "mbrainz.initial-import/batch-id"
TX_TEMPID = "datomic.tx"

# Transacted once before any batch, so the store enforces unique batch-ids
IMPORT_SCHEMA: list[dict[str, Any]] = [
    {
        "db/ident": BATCH_ID,
        "db/valueType": "db.type/string",
        "db/cardinality": "db.cardinality/one",
        "db/unique": "db.unique/value",
    }
]


@dataclass(frozen=True)
class BatchUnit:
    """An ordered group of fragments committed atomically."""

    batch_id: str
    tx_data: list[dict[str, Any]]

    def tx_data_with_marker(self) -> list[dict[str, Any]]:
        """Fragments plus the batch-id assertion on the transaction."""
        return [*self.tx_data, {"db/id": TX_TEMPID, BATCH_ID: self.batch_id}]

    def to_json(self) -> dict[str, Any]:
        return {"batch_id": self.batch_id, "tx_data": self.tx_data}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> BatchUnit:
        return cls(batch_id=data["batch_id"], tx_data=list(data["tx_data"]))


def batch_id(type_name: str, index: int) -> str:
    return f"{type_name}-{index}"


def tx_data_to_batches(
    fragments: Iterable[dict[str, Any]],
    batch_size: int,
    type_name: str,
) -> Iterator[BatchUnit]:
    """
    Group fragments into units of at most batch_size, in input order.

    Args:
        fragments: Transformed fragments for one entity type
        batch_size: Maximum fragments per unit
        type_name: Entity type, used as the batch-id prefix

    Yields:
        BatchUnit with ids <type_name>-0, <type_name>-1, ...
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    it = iter(fragments)
    index = 0
    while chunk := list(islice(it, batch_size)):
        yield BatchUnit(batch_id(type_name, index), chunk)
        index += 1


def filter_batches(units: Iterable[BatchUnit], committed: set[str]) -> Iterator[BatchUnit]:
    """Drop units whose batch-id is already committed."""
    return (unit for unit in units if unit.batch_id not in committed)
