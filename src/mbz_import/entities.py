"""
Field maps from source record fields to target attributes.

A field maps either to a plain attribute name or to a Ref:
- Ref(SELF_ID, key): the value is this entity's own natural key
- Ref("ns/_name", key): reverse reference, the other entity points here
- Ref("ns/name", key): forward reference, resolved by natural key at commit
"""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

SELF_ID = "db/id"


@dataclass(frozen=True)
class Ref:
    """Reference descriptor: target attribute plus natural-key attribute."""

    attr: str
    key: str

    @property
    def is_self(self) -> bool:
        return self.attr == SELF_ID

    @property
    def is_reverse(self) -> bool:
        return is_reverse_attr(self.attr)


FieldMap = Mapping[str, "str | Ref"]


def is_reverse_attr(attr: str) -> bool:
    """True for reverse attribute names like release/_media."""
    _, _, name = attr.partition("/")
    return name.startswith("_")


def forward_attr(attr: str) -> str:
    """release/_media -> release/media"""
    namespace, _, name = attr.partition("/")
    return f"{namespace}/{name[1:]}"


ARTIST_ATTRS: FieldMap = MappingProxyType({
    "gid": "artist/gid",
    "country": "artist/country",
    "sortname": "artist/sortName",
    "name": "artist/name",
    "type": "artist/type",
    "gender": "artist/gender",
    "begin_date_year": "artist/startYear",
    "begin_date_month": "artist/startMonth",
    "begin_date_day": "artist/startDay",
    "end_date_year": "artist/endYear",
    "end_date_month": "artist/endMonth",
    "end_date_day": "artist/endDay",
})

ARELEASE_ATTRS: FieldMap = MappingProxyType({
    "gid": "abstractRelease/gid",
    "name": "abstractRelease/name",
    "type": "abstractRelease/type",
    "artist_credit": "abstractRelease/artistCredit",
})

RELEASE_ATTRS: FieldMap = MappingProxyType({
    "gid": "release/gid",
    "artist_credit": "release/artistCredit",
    "name": "release/name",
    "label": Ref("release/labels", "label/gid"),
    "packaging": "release/packaging",
    "status": "release/status",
    "country": "release/country",
    "language": "release/language",
    "script": "release/script",
    "barcode": "release/barcode",
    "date_year": "release/year",
    "date_month": "release/month",
    "date_day": "release/day",
    "release_group": Ref("release/abstractRelease", "abstractRelease/gid"),
})

LABEL_ATTRS: FieldMap = MappingProxyType({
    "gid": "label/gid",
    "name": "label/name",
    "sort_name": "label/sortName",
    "type": "label/type",
    "country": "label/country",
    "begin_date_year": "label/startYear",
    "begin_date_month": "label/startMonth",
    "begin_date_day": "label/startDay",
    "end_date_year": "label/endYear",
    "end_date_month": "label/endMonth",
    "end_date_day": "label/endDay",
})

MEDIUM_ATTRS: FieldMap = MappingProxyType({
    "release": Ref("release/_media", "release/gid"),
    "position": "medium/position",
    "track_count": "medium/trackCount",
    "format": "medium/format",
})

TRACK_ATTRS: FieldMap = MappingProxyType({
    "name": "track/name",
    "tracknum": "track/position",
    "length": "track/duration",
    "artist": Ref("track/artists", "artist/gid"),
})

# Fields whose values make up a track's tempid; rows for the same track
# with different artists get the same tempid and merge in one commit.
TRACK_TEMPID_KEYS = ("id", "tracknum")

# Grouping key for consecutive media rows
MEDIUM_GROUP_KEY = "id"

# Multi-valued attribute on the medium that collects its tracks
MEDIUM_TRACKS_ATTR = "medium/tracks"

RELEASE_ARTIST_ATTRS: FieldMap = MappingProxyType({
    "release": Ref(SELF_ID, "release/gid"),
    "artist": Ref("release/artists", "artist/gid"),
})

ARELEASE_ARTIST_ATTRS: FieldMap = MappingProxyType({
    "artist": Ref("abstractRelease/artists", "artist/gid"),
    "release_group": Ref(SELF_ID, "abstractRelease/gid"),
})

# Entity type -> field map, for the single-row types
FIELD_MAPS: Mapping[str, FieldMap] = MappingProxyType({
    "artists": ARTIST_ATTRS,
    "areleases": ARELEASE_ATTRS,
    "releases": RELEASE_ATTRS,
    "labels": LABEL_ATTRS,
    "releases-artists": RELEASE_ARTIST_ATTRS,
    "areleases-artists": ARELEASE_ARTIST_ATTRS,
})
