"""Tests for the entity transform engine."""

import pytest

from mbz_import.anomalies import UnresolvableValueError
from mbz_import.catalog import Catalog
from mbz_import.entities import ARTIST_ATTRS, RELEASE_ARTIST_ATTRS, RELEASE_ATTRS
from mbz_import.transform import (
    create_tempid,
    entity_data_to_tx_data,
    enums_to_tx_data,
    super_enums_to_tx_data,
    transform_entity,
    transform_media,
)

from conftest import SOURCES


def test_artist_record():
    """Enum values resolve and plain values pass through."""
    catalog = Catalog.from_tables({"artist_type": {"Person": "artist.type/person"}}, {})
    fragment = transform_entity(catalog, {"gid": "abc", "name": "Foo", "type": "Person"}, ARTIST_ATTRS)
    assert fragment == {
        "artist/gid": "abc",
        "artist/name": "Foo",
        "artist/type": "artist.type/person",
    }


def test_unmapped_fields_are_dropped(catalog):
    fragment = transform_entity(catalog, {"gid": "abc", "id": 42, "comment": "x"}, ARTIST_ATTRS)
    assert fragment == {"artist/gid": "abc"}


def test_only_mapped_attributes(catalog):
    targets = {t if isinstance(t, str) else t.attr for t in ARTIST_ATTRS.values()}
    for record in SOURCES["artists"]:
        fragment = transform_entity(catalog, record, ARTIST_ATTRS)
        assert set(fragment) <= targets


def test_super_enum_field(catalog):
    fragment = transform_entity(catalog, {"gid": "abc", "country": "United Kingdom"}, ARTIST_ATTRS)
    assert fragment["artist/country"] == "country/GB"


def test_forward_reference(catalog):
    fragment = transform_entity(catalog, {"gid": "r1", "label": "l1", "release_group": "rg1"}, RELEASE_ATTRS)
    assert fragment == {
        "release/gid": "r1",
        "release/labels": {"label/gid": "l1"},
        "release/abstractRelease": {"abstractRelease/gid": "rg1"},
    }


def test_self_reference(catalog):
    fragment = transform_entity(catalog, {"release": "r1", "artist": "a1"}, RELEASE_ARTIST_ATTRS)
    assert fragment == {"release/gid": "r1", "release/artists": {"artist/gid": "a1"}}


def test_unknown_enum_value(catalog):
    with pytest.raises(UnresolvableValueError) as excinfo:
        transform_entity(catalog, {"gid": "abc", "type": "Orchestra"}, ARTIST_ATTRS)
    assert excinfo.value.fragment == {"artist/gid": "abc"}


def test_create_tempid():
    assert create_tempid({"id": 12, "tracknum": 3}, "track", ("id", "tracknum")) == "track-12-3"


class TestMedia:
    def test_groups_rows_into_media(self, catalog):
        media = list(transform_media(catalog, SOURCES["media"]))
        assert len(media) == 2

        first, second = media
        assert first["release/_media"] == ["release/gid", "r1"]
        assert first["medium/position"] == 1
        assert first["medium/trackCount"] == 2
        assert first["medium/format"] == "medium.format/cd"
        assert second["medium/format"] == "medium.format/vinyl"
        assert "track/name" not in first

    def test_one_track_per_row(self, catalog):
        first, second = transform_media(catalog, SOURCES["media"])
        assert [t["db/id"] for t in first["medium/tracks"]] == ["track-10-1", "track-10-1", "track-10-2"]
        assert [t["db/id"] for t in second["medium/tracks"]] == ["track-11-1"]

    def test_multi_artist_track_rows_share_tempid(self, catalog):
        first = next(transform_media(catalog, SOURCES["media"]))
        song_a = [t for t in first["medium/tracks"] if t["db/id"] == "track-10-1"]
        assert [t["track/artists"] for t in song_a] == [{"artist/gid": "a1"}, {"artist/gid": "a2"}]
        assert song_a[0]["track/duration"] == 180000
        assert song_a[0]["track/position"] == 1


class TestEntityDataToTxData:
    def test_enums(self):
        fragments = list(enums_to_tx_data([("gender", {"Male": "artist.gender/male"})]))
        assert fragments == [{"db/ident": "artist.gender/male", "artist.gender/name": "Male"}]

    def test_super_enums(self):
        record = {"db/ident": "country/US", "country/name": "United States"}
        assert list(super_enums_to_tx_data([("countries", {"United States": record})])) == [record]

    def test_schema_passes_through(self, catalog):
        attr = SOURCES["schema"][0]
        assert list(entity_data_to_tx_data(catalog, "schema")([attr])) == [attr]

    def test_field_mapped_type(self, catalog):
        fragments = list(entity_data_to_tx_data(catalog, "labels")(SOURCES["labels"]))
        assert fragments == [{
            "label/gid": "l1",
            "label/name": "Label One",
            "label/sortName": "Label One",
            "label/type": "label.type/original-production",
            "label/country": "country/US",
        }]

    def test_lazy(self, catalog):
        def records():
            yield {"gid": "abc", "type": "Person"}
            raise AssertionError("read past the first record")

        fragments = entity_data_to_tx_data(catalog, "artists")(records())
        assert next(fragments)["artist/type"] == "artist.type/person"

    def test_unknown_type(self, catalog):
        with pytest.raises(ValueError, match="tracks"):
            entity_data_to_tx_data(catalog, "tracks")
