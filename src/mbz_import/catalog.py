"""
Lookup catalog for enumerations and super-enumerations.

Enum tables map a raw source string to an enum ident:
    {"artist_type": {"Person": "artist.type/person", ...}, ...}

Super-enum tables map a natural key to a full record with a stable ident:
    {"countries": {"United States": {"db/ident": "country/US", ...}, ...}, ...}

Resolution is an explicit chain: enum, then super-enum, then the raw value.
Each resolver answers FOUND, NOT_APPLICABLE (attribute is not of that kind)
or UNRESOLVED (attribute is of that kind but the value is unknown). An
UNRESOLVED answer is fatal.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from mbz_import.anomalies import UnresolvableValueError
from mbz_import.paths import StoragePaths

# Attribute -> enum table used to convert its values
ENUM_ATTRS: Mapping[str, str] = MappingProxyType({
    "artist/type": "artist_type",
    "artist/gender": "gender",
    "abstractRelease/type": "release_group_type",
    "release/packaging": "release_packaging",
    "medium/format": "medium_format",
    "label/type": "label_type",
})

# Attribute -> super-enum table used to convert its values
SUPER_ATTRS: Mapping[str, str] = MappingProxyType({
    "artist/country": "countries",
    "release/country": "countries",
    "release/language": "langs",
    "release/script": "scripts",
    "label/country": "countries",
})

# Super-enum table name -> file under entities/
SUPER_ENUM_FILES: Mapping[str, str] = MappingProxyType({
    "countries": "countries",
    "langs": "langs",
    "scripts": "scripts",
})


class SuperEnumRecord(BaseModel):
    """A super-enum record; only db/ident is required."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ident: str = Field(alias="db/ident")


_ENUMS_ADAPTER = TypeAdapter(dict[str, dict[str, str]])
_SUPER_ENUM_ADAPTER = TypeAdapter(dict[str, SuperEnumRecord])


class Outcome(Enum):
    FOUND = "found"
    NOT_APPLICABLE = "not-applicable"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Resolution:
    """Tagged result of a single resolver."""

    outcome: Outcome
    value: Any = None


NOT_APPLICABLE = Resolution(Outcome.NOT_APPLICABLE)
UNRESOLVED = Resolution(Outcome.UNRESOLVED)


def _freeze(table: Mapping[str, Mapping[str, Any]]) -> Mapping[str, Mapping[str, Any]]:
    return MappingProxyType({k: MappingProxyType(dict(v)) for k, v in table.items()})


@dataclass(frozen=True)
class Catalog:
    """Read-only enum and super-enum tables."""

    enums: Mapping[str, Mapping[str, str]]
    super_enums: Mapping[str, Mapping[str, Mapping[str, Any]]]

    @classmethod
    def from_tables(
        cls,
        enums: Mapping[str, Mapping[str, str]],
        super_enums: Mapping[str, Mapping[str, Mapping[str, Any]]],
    ) -> Catalog:
        """Validate raw tables and build a catalog."""
        checked_enums = _ENUMS_ADAPTER.validate_python(dict(enums))
        for table in super_enums.values():
            _SUPER_ENUM_ADAPTER.validate_python(dict(table))
        return cls(enums=_freeze(checked_enums), super_enums=_freeze(super_enums))

    def resolve_enum(self, attribute: str, value: Any) -> Resolution:
        enum_type = ENUM_ATTRS.get(attribute)
        if enum_type is None or enum_type not in self.enums:
            return NOT_APPLICABLE
        lookup = self.enums[enum_type]
        if value in lookup:
            return Resolution(Outcome.FOUND, lookup[value])
        return UNRESOLVED

    def resolve_super_enum(self, attribute: str, value: Any) -> Resolution:
        super_type = SUPER_ATTRS.get(attribute)
        if super_type is None or super_type not in self.super_enums:
            return NOT_APPLICABLE
        record = self.super_enums[super_type].get(value)
        if record is None:
            return UNRESOLVED
        return Resolution(Outcome.FOUND, record["db/ident"])

    @property
    def resolvers(self) -> tuple[Callable[[str, Any], Resolution], ...]:
        """Resolvers in the order they are tried."""
        return (self.resolve_enum, self.resolve_super_enum)

    def resolve(self, fragment: dict[str, Any] | None, attribute: str, value: Any) -> Any:
        """
        Resolve a raw value for an attribute.

        Args:
            fragment: Entity built so far, reported on failure
            attribute: Target attribute name
            value: Raw source value

        Returns:
            The enum/super-enum ident, or the raw value when neither applies

        Raises:
            UnresolvableValueError: If the attribute is enum-typed but the
                value is not in its table
        """
        for resolver in self.resolvers:
            resolution = resolver(attribute, value)
            if resolution.outcome is Outcome.FOUND:
                return resolution.value
            if resolution.outcome is Outcome.UNRESOLVED:
                raise UnresolvableValueError(fragment, attribute, value)
        return value


def _read_json(path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Catalog table not found: {path}")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_catalog(paths: StoragePaths) -> Catalog:
    """Load enums.json and the super-enum tables from entities/."""
    enums = _read_json(paths.table_file("enums"))
    super_enums = {
        super_type: _read_json(paths.table_file(file_name))
        for super_type, file_name in SUPER_ENUM_FILES.items()
    }
    return Catalog.from_tables(enums, super_enums)
