"""
Entity transform engine.

Converts raw source records into entity fragments (tx-data maps) using the
per-type field maps in mbz_import.entities and the lookup catalog. No I/O,
no joins against other entity types: references are left as lookups by
natural key for the store to resolve at commit time.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from itertools import groupby
from typing import Any

from mbz_import.catalog import Catalog
from mbz_import.entities import (
    FIELD_MAPS,
    MEDIUM_ATTRS,
    MEDIUM_GROUP_KEY,
    MEDIUM_TRACKS_ATTR,
    SELF_ID,
    TRACK_ATTRS,
    TRACK_TEMPID_KEYS,
    FieldMap,
    Ref,
)

Fragment = dict[str, Any]
TxDataFn = Callable[[Iterable[Any]], Iterator[Fragment]]


def create_tempid(record: Mapping[str, Any], prefix: str, keys: Iterable[str]) -> str:
    """Deterministic tempid from the values of keys, e.g. track-12-3."""
    return "-".join([prefix, *(str(record.get(k)) for k in keys)])


def transform_entity(catalog: Catalog, record: Mapping[str, Any], field_map: FieldMap) -> Fragment:
    """
    Transform one raw record into an entity fragment.

    Args:
        catalog: Lookup catalog for enum and super-enum values
        record: Raw source record
        field_map: Source field -> attribute name or Ref

    Returns:
        Fragment keyed by target attribute; unmapped fields are dropped

    Raises:
        UnresolvableValueError: If an enum-typed value is unknown
    """
    fragment: Fragment = {}
    for field, value in record.items():
        target = field_map.get(field)
        if target is None:
            continue
        if isinstance(target, Ref):
            if target.is_self:
                fragment[target.key] = value
            elif target.is_reverse:
                fragment[target.attr] = [target.key, value]
            else:
                fragment[target.attr] = {target.key: value}
        else:
            fragment[target] = catalog.resolve(fragment, target, value)
    return fragment


def transform_media(catalog: Catalog, records: Iterable[Mapping[str, Any]]) -> Iterator[Fragment]:
    """
    Group consecutive track rows by medium and fold them into media.

    Rows must arrive sorted by the medium id. The first row of each group
    supplies the medium's own attributes; every row contributes one track.
    """
    for _, rows in groupby(records, key=lambda r: r.get(MEDIUM_GROUP_KEY)):
        rows = list(rows)
        medium = transform_entity(catalog, rows[0], MEDIUM_ATTRS)
        tracks = medium.setdefault(MEDIUM_TRACKS_ATTR, [])
        for row in rows:
            track = transform_entity(catalog, row, TRACK_ATTRS)
            track[SELF_ID] = create_tempid(row, "track", TRACK_TEMPID_KEYS)
            tracks.append(track)
        yield medium


def enums_to_tx_data(entries: Iterable[tuple[str, Mapping[str, str]]]) -> Iterator[Fragment]:
    """(enum_type, {raw: ident}) pairs -> ident entities with a name."""
    for _, table in entries:
        for raw_value, ident in table.items():
            namespace = ident.partition("/")[0]
            yield {"db/ident": ident, f"{namespace}/name": raw_value}


def super_enums_to_tx_data(entries: Iterable[tuple[str, Mapping[str, Any]]]) -> Iterator[Fragment]:
    """(super_type, {key: record}) pairs -> the records themselves."""
    for _, table in entries:
        for record in table.values():
            yield dict(record)


def entity_data_to_tx_data(catalog: Catalog, entity_type: str) -> TxDataFn:
    """
    Return the transform for an entity type.

    The returned function maps an iterable of source items (raw records, or
    catalog table entries for enums/super-enums) to fragments, lazily.
    """
    if entity_type == "schema":
        return lambda records: (dict(r) for r in records)
    if entity_type == "enums":
        return enums_to_tx_data
    if entity_type == "super-enums":
        return super_enums_to_tx_data
    if entity_type == "media":
        return lambda records: transform_media(catalog, records)
    field_map = FIELD_MAPS.get(entity_type)
    if field_map is None:
        raise ValueError(f"Unknown entity type: {entity_type}")
    return lambda records: (transform_entity(catalog, r, field_map) for r in records)
