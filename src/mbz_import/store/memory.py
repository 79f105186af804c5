"""
In-memory store.

Keeps entities as attribute maps with a unique-value index. Each database
has its own lock, so a transaction expands and applies atomically while
other threads (the loader's commit workers) wait.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable
from dataclasses import dataclass, field
from typing import Any

from mbz_import.anomalies import Category, StoreError
from mbz_import.store.base import TxReport
from mbz_import.store.txdata import AttrDef, TxPlan, builtin_attr, expand_tx_data


@dataclass
class MemoryDatabase:
    """One named database."""

    name: str
    entities: dict[int, dict[str, Any]] = field(default_factory=dict)
    attrs: dict[str, AttrDef] = field(default_factory=dict)
    unique: dict[tuple[str, Any], int] = field(default_factory=dict)
    tx_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)
    _next_id: int = 1000

    # DbView
    def attribute(self, ident: str) -> AttrDef | None:
        return self.attrs.get(ident)

    def entid_by_unique(self, attr: str, value: Any) -> int | None:
        if not isinstance(value, Hashable):
            return None
        return self.unique.get((attr, value))

    def new_entid(self) -> int:
        self._next_id += 1
        return self._next_id

    def _attr(self, ident: str) -> AttrDef:
        return self.attrs.get(ident) or builtin_attr(ident)

    def apply(self, plan: TxPlan) -> None:
        for attr in plan.installs:
            self.attrs[attr.ident] = attr
        for d in plan.datoms:
            attr = self._attr(d.a)
            entity = self.entities.setdefault(d.e, {})
            if attr.many:
                values = entity.setdefault(d.a, [])
                if d.v not in values:
                    values.append(d.v)
            else:
                old = entity.get(d.a)
                if attr.unique and old is not None and old != d.v:
                    self.unique.pop((d.a, old), None)
                entity[d.a] = d.v
            if attr.unique:
                self.unique[(d.a, d.v)] = d.e
        self.tx_count += 1


@dataclass(frozen=True)
class MemoryConnection:
    db: MemoryDatabase


class MemoryStore:
    """Store backed by Python dicts; used for tests and dry runs."""

    def __init__(self):
        self._databases: dict[str, MemoryDatabase] = {}
        self._lock = threading.Lock()

    def create_database(self, name: str) -> bool:
        with self._lock:
            if name in self._databases:
                return False
            self._databases[name] = MemoryDatabase(name)
            return True

    def connect(self, name: str) -> MemoryConnection:
        db = self._databases.get(name)
        if db is None:
            raise StoreError(Category.NOT_FOUND, f"Database not found: {name}")
        return MemoryConnection(db)

    def transact(self, conn: MemoryConnection, tx_data: list[dict[str, Any]]) -> TxReport:
        db = conn.db
        with db.lock:
            plan = expand_tx_data(tx_data, db)
            db.apply(plan)
        return TxReport(tx_id=plan.tx_id, datoms=len(plan.datoms), tempids=plan.tempids)

    def query_markers(self, conn: MemoryConnection, attr: str) -> set[str]:
        db = conn.db
        with db.lock:
            return {e[attr] for e in db.entities.values() if attr in e}

    def pull(self, conn: MemoryConnection, attr: str, value: Any) -> dict[str, Any] | None:
        """Entity holding a unique attr value, with ref ids left as ids."""
        db = conn.db
        with db.lock:
            e = db.entid_by_unique(attr, value)
            return None if e is None else dict(db.entities[e])

    def entity(self, conn: MemoryConnection, entid: int) -> dict[str, Any]:
        with conn.db.lock:
            return dict(conn.db.entities.get(entid, {}))
