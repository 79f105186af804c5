"""
Expansion of entity-map tx-data into datoms.

Shared by every store implementation. A store provides a DbView (read
access to its committed state plus an id allocator) and applies the
resulting TxPlan atomically.

Rules:
- "db/id" strings are tempids; equal tempids are one entity
- "datomic.tx" is the transaction entity
- a map asserting a db.unique/identity value that already exists upserts
- nested maps under ref attributes are entities of their own
- "ns/_name": [key, value] asserts ns/name on the looked-up entity
- string values of ref attributes resolve through db/ident
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from mbz_import.anomalies import Category, StoreError
from mbz_import.batch import TX_TEMPID
from mbz_import.entities import SELF_ID, forward_attr, is_reverse_attr

REF = "db.type/ref"
MANY = "db.cardinality/many"
UNIQUE_IDENTITY = "db.unique/identity"


@dataclass(frozen=True)
class AttrDef:
    """Installed attribute."""

    ident: str
    value_type: str
    many: bool = False
    unique: str | None = None

    @property
    def is_ref(self) -> bool:
        return self.value_type == REF

    @classmethod
    def from_entity(cls, m: Mapping[str, Any]) -> AttrDef:
        return cls(
            ident=m["db/ident"],
            value_type=m["db/valueType"],
            many=m.get("db/cardinality") == MANY,
            unique=m.get("db/unique"),
        )


DB_IDENT = AttrDef("db/ident", "db.type/keyword", unique=UNIQUE_IDENTITY)


def builtin_attr(ident: str) -> AttrDef | None:
    """Attributes in the db namespaces exist without being installed."""
    if ident == "db/ident":
        return DB_IDENT
    namespace = ident.partition("/")[0]
    if namespace == "db" or namespace.startswith("db."):
        return AttrDef(ident, "db.type/keyword")
    return None


class DbView(Protocol):
    """Read access to committed state, used while expanding a transaction."""

    def attribute(self, ident: str) -> AttrDef | None: ...

    def entid_by_unique(self, attr: str, value: Any) -> int | None: ...

    def new_entid(self) -> int: ...


@dataclass(frozen=True)
class Datom:
    e: int
    a: str
    v: Any


@dataclass
class TxPlan:
    """Everything a store must write for one transaction."""

    tx_id: int
    datoms: list[Datom] = field(default_factory=list)
    installs: list[AttrDef] = field(default_factory=list)
    tempids: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class _Temp:
    name: str


@dataclass(frozen=True)
class _Lookup:
    attr: str
    value: Any


@dataclass(frozen=True)
class _Ident:
    name: str


def _hashable(attr: str, value: Any) -> Any:
    if not isinstance(value, Hashable):
        raise StoreError(Category.INCORRECT, f"Unhashable value for unique attribute {attr}: {value!r}")
    return value


class _Expander:
    def __init__(self, view: DbView):
        self.view = view
        self.local_attrs: dict[str, AttrDef] = {}
        self.ops: list[tuple[Any, str, Any]] = []
        self._anon = 0

    def attr(self, ident: str) -> AttrDef:
        found = self.local_attrs.get(ident) or self.view.attribute(ident) or builtin_attr(ident)
        if found is None:
            raise StoreError(Category.INCORRECT, f"Unknown attribute: {ident}")
        return found

    def _eref(self, db_id: Any) -> Any:
        if db_id is None:
            self._anon += 1
            return _Temp(f"__anon-{self._anon}")
        if isinstance(db_id, str):
            return _Temp(db_id)
        if isinstance(db_id, int):
            return db_id
        if isinstance(db_id, (list, tuple)) and len(db_id) == 2:
            return _Lookup(db_id[0], db_id[1])
        raise StoreError(Category.INCORRECT, f"Invalid db/id: {db_id!r}")

    def _ref_value(self, attr: AttrDef, value: Any) -> Any:
        if isinstance(value, Mapping):
            return self.add_map(value)
        if isinstance(value, str):
            return _Ident(value)
        if isinstance(value, int):
            return value
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return _Lookup(value[0], value[1])
        raise StoreError(Category.INCORRECT, f"Invalid ref value for {attr.ident}: {value!r}")

    def add_map(self, m: Mapping[str, Any]) -> Any:
        eref = self._eref(m.get(SELF_ID))
        for a, v in m.items():
            if a == SELF_ID:
                continue
            if is_reverse_attr(a):
                fwd = self.attr(forward_attr(a))
                if not fwd.is_ref:
                    raise StoreError(Category.INCORRECT, f"Reverse attribute of non-ref: {a}")
                self.ops.append((self._ref_value(fwd, v), fwd.ident, eref))
                continue
            attr = self.attr(a)
            values = v if attr.many and isinstance(v, list) and not _is_pair(attr, v) else [v]
            for item in values:
                if attr.is_ref:
                    item = self._ref_value(attr, item)
                self.ops.append((eref, attr.ident, item))
        return eref


def _is_pair(attr: AttrDef, v: list) -> bool:
    """A two-element [attr, value] list under a ref attribute is a lookup ref."""
    return attr.is_ref and len(v) == 2 and isinstance(v[0], str) and "/" in v[0] and not isinstance(v[1], Mapping)


def expand_tx_data(tx_data: list[Mapping[str, Any]], view: DbView) -> TxPlan:
    """
    Expand tx-data into a plan of datoms.

    Raises:
        StoreError: INCORRECT for malformed data or unknown attributes,
            NOT_FOUND for unresolvable lookup refs and idents,
            CONFLICT for unique or cardinality-one violations
    """
    ex = _Expander(view)
    installs = []
    for m in tx_data:
        if not isinstance(m, Mapping):
            raise StoreError(Category.INCORRECT, f"tx-data items must be maps, got {m!r}")
        if "db/valueType" in m and "db/ident" in m:
            attr = AttrDef.from_entity(m)
            ex.local_attrs[attr.ident] = attr
            installs.append(attr)
    for m in tx_data:
        ex.add_map(m)

    plan = TxPlan(tx_id=view.new_entid(), installs=installs)
    ids = _assign_tempids(ex, view, plan.tx_id)
    plan.tempids = {t.name: e for t, e in ids.items() if not t.name.startswith("__anon-")}
    # idents introduced by this transaction
    new_idents = {v: ids[e] for e, a, v in ex.ops if a == "db/ident" and isinstance(e, _Temp)}

    def resolve(ref: Any) -> int:
        if isinstance(ref, int):
            return ref
        if isinstance(ref, _Temp):
            return ids[ref]
        if isinstance(ref, _Lookup):
            found = view.entid_by_unique(ref.attr, _hashable(ref.attr, ref.value))
            if found is None:
                raise StoreError(Category.NOT_FOUND, f"Unable to resolve entity [{ref.attr} {ref.value!r}]")
            return found
        if isinstance(ref, _Ident):
            found = new_idents.get(ref.name) or view.entid_by_unique("db/ident", ref.name)
            if found is None:
                raise StoreError(Category.NOT_FOUND, f"Unable to resolve ident: {ref.name}")
            return found
        raise StoreError(Category.INCORRECT, f"Invalid entity reference: {ref!r}")

    seen: set[tuple[int, str, Any]] = set()
    card_one: dict[tuple[int, str], Any] = {}
    unique_holders: dict[tuple[str, Any], int] = {}
    for e_ref, a, v in ex.ops:
        e = resolve(e_ref)
        attr = ex.attr(a)
        if attr.is_ref:
            v = resolve(v)
        if attr.unique:
            key = (a, _hashable(a, v))
            holder = unique_holders.get(key)
            if holder is None:
                holder = view.entid_by_unique(a, v)
            if holder is not None and holder != e:
                raise StoreError(Category.CONFLICT, f"Unique conflict: {a} {v!r} already held by {holder}")
            unique_holders[key] = e
        if not attr.many:
            prior = card_one.get((e, a), _MISSING)
            if prior is not _MISSING and prior != v:
                raise StoreError(Category.CONFLICT, f"Two values for cardinality-one {a} on {e}: {prior!r}, {v!r}")
            card_one[(e, a)] = v
        datom_key = (e, a, v if isinstance(v, Hashable) else repr(v))
        if datom_key in seen:
            continue
        seen.add(datom_key)
        plan.datoms.append(Datom(e, a, v))
    return plan


_MISSING = object()


def _assign_tempids(ex: _Expander, view: DbView, tx_id: int) -> dict[_Temp, int]:
    """Tempids upsert on existing unique-identity values, else get new ids."""

    def new_id(temp: _Temp) -> int:
        return tx_id if temp.name == TX_TEMPID else view.new_entid()

    temps: list[_Temp] = []
    identities: dict[_Temp, list[tuple[str, Any]]] = {}
    for e, a, v in ex.ops:
        if not isinstance(e, _Temp):
            continue
        if e not in identities:
            temps.append(e)
            identities[e] = []
        attr = ex.attr(a)
        if attr.unique == UNIQUE_IDENTITY and not attr.is_ref:
            identities[e].append((a, _hashable(a, v)))

    ids: dict[_Temp, int] = {}
    claimed: dict[tuple[str, Any], int] = {}
    for temp in temps:
        target = None
        if temp.name != TX_TEMPID:
            for key in identities[temp]:
                found = claimed.get(key) or view.entid_by_unique(*key)
                if found is None:
                    continue
                if target is not None and target != found:
                    raise StoreError(Category.CONFLICT, f"Tempid {temp.name} upserts to two entities")
                target = found
        if target is None:
            target = new_id(temp)
        ids[temp] = target
        for key in identities[temp]:
            claimed.setdefault(key, target)
    # tempids only used as ref values
    for _, _, v in ex.ops:
        if isinstance(v, _Temp) and v not in ids:
            ids[v] = new_id(v)
    return ids
