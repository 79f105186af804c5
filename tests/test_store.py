"""Tests for tx-data expansion and the in-memory store."""

import pytest

from mbz_import.anomalies import Category, StoreError
from mbz_import.batch import BATCH_ID, IMPORT_SCHEMA, BatchUnit
from mbz_import.config import Settings
from mbz_import.store import MemoryStore, open_store

from conftest import SCHEMA


@pytest.fixture
def conn(memory_store):
    memory_store.create_database("test")
    conn = memory_store.connect("test")
    memory_store.transact(conn, IMPORT_SCHEMA)
    memory_store.transact(conn, SCHEMA)
    memory_store.transact(conn, [
        {"db/ident": "artist.type/person", "artist.type/name": "Person"},
        {"db/ident": "country/US", "country/name": "United States"},
    ])
    return conn


def _artist(memory_store, conn, gid):
    return memory_store.pull(conn, "artist/gid", gid)


class TestDatabase:
    def test_create_is_idempotent(self, memory_store):
        assert memory_store.create_database("db") is True
        assert memory_store.create_database("db") is False

    def test_connect_missing_database(self, memory_store):
        with pytest.raises(StoreError) as excinfo:
            memory_store.connect("nope")
        assert excinfo.value.category is Category.NOT_FOUND

    def test_open_store(self):
        assert isinstance(open_store(Settings(store="memory")), MemoryStore)

    def test_open_store_unknown_backend(self):
        settings = Settings(store="memory").model_copy(update={"store": "memroy"})
        with pytest.raises(ValueError, match="memroy"):
            open_store(settings)


class TestSqlServerConnect:
    def test_marker_query_connects_once(self, monkeypatch):
        import mssql_python

        from mbz_import.store import sqlserver

        calls = []

        def unreachable(connection_string, autocommit=False):
            calls.append(connection_string)
            raise mssql_python.OperationalError("unreachable", "unreachable")

        monkeypatch.setattr(sqlserver, "mssql_connect", unreachable)
        settings = Settings(store="sqlserver")
        store = sqlserver.SqlServerStore(settings)

        with pytest.raises(StoreError) as excinfo:
            store.query_markers(sqlserver.SqlServerConnection(settings, "mbrainz"), BATCH_ID)

        assert excinfo.value.category is Category.UNAVAILABLE
        assert len(calls) == 1


class TestTransact:
    def test_ident_values_resolve(self, memory_store, conn):
        memory_store.transact(conn, [
            {"artist/gid": "a1", "artist/name": "Foo", "artist/type": "artist.type/person",
             "artist/country": "country/US"},
        ])
        artist = _artist(memory_store, conn, "a1")
        person = memory_store.pull(conn, "db/ident", "artist.type/person")
        assert artist["artist/name"] == "Foo"
        assert memory_store.entity(conn, artist["artist/type"]) == person

    def test_unknown_ident(self, memory_store, conn):
        with pytest.raises(StoreError) as excinfo:
            memory_store.transact(conn, [{"artist/gid": "a1", "artist/type": "artist.type/choir"}])
        assert excinfo.value.category is Category.NOT_FOUND

    def test_unknown_attribute(self, memory_store, conn):
        with pytest.raises(StoreError) as excinfo:
            memory_store.transact(conn, [{"artist/gid": "a1", "artist/shoeSize": 9}])
        assert excinfo.value.category is Category.INCORRECT

    def test_upsert_on_identity(self, memory_store, conn):
        memory_store.transact(conn, [{"artist/gid": "a1", "artist/name": "Foo"}])
        memory_store.transact(conn, [{"artist/gid": "a1", "artist/sortName": "Foo, The"}])
        artist = _artist(memory_store, conn, "a1")
        assert artist["artist/name"] == "Foo"
        assert artist["artist/sortName"] == "Foo, The"
        assert len(memory_store.query_markers(conn, "artist/gid")) == 1

    def test_nested_map_references_existing_entity(self, memory_store, conn):
        memory_store.transact(conn, [{"artist/gid": "a1"}, {"abstractRelease/gid": "rg1"}])
        memory_store.transact(conn, [
            {"abstractRelease/gid": "rg1", "abstractRelease/artists": {"artist/gid": "a1"}},
        ])
        group = memory_store.pull(conn, "abstractRelease/gid", "rg1")
        a1 = conn.db.entid_by_unique("artist/gid", "a1")
        assert group["abstractRelease/artists"] == [a1]

    def test_lookup_ref_not_found(self, memory_store, conn):
        with pytest.raises(StoreError) as excinfo:
            memory_store.transact(conn, [{"release/_media": ["release/gid", "missing"], "medium/position": 1}])
        assert excinfo.value.category is Category.NOT_FOUND
        assert "missing" in str(excinfo.value)

    def test_reverse_reference(self, memory_store, conn):
        memory_store.transact(conn, [{"release/gid": "r1"}])
        report = memory_store.transact(conn, [
            {"db/id": "m1", "release/_media": ["release/gid", "r1"], "medium/position": 1},
        ])
        release = memory_store.pull(conn, "release/gid", "r1")
        assert release["release/media"] == [report.tempids["m1"]]

    def test_equal_tempids_merge(self, memory_store, conn):
        memory_store.transact(conn, [{"artist/gid": "a1"}, {"artist/gid": "a2"}, {"release/gid": "r1"}])
        report = memory_store.transact(conn, [{
            "release/_media": ["release/gid", "r1"],
            "medium/tracks": [
                {"db/id": "track-10-1", "track/name": "Song A", "track/artists": {"artist/gid": "a1"}},
                {"db/id": "track-10-1", "track/name": "Song A", "track/artists": {"artist/gid": "a2"}},
                {"db/id": "track-10-2", "track/name": "Song B"},
            ],
        }])
        assert report.tempids["track-10-1"] != report.tempids["track-10-2"]
        track = memory_store.entity(conn, report.tempids["track-10-1"])
        assert track["track/name"] == "Song A"
        assert len(track["track/artists"]) == 2

    def test_conflicting_card_one_values(self, memory_store, conn):
        with pytest.raises(StoreError) as excinfo:
            memory_store.transact(conn, [
                {"db/id": "t", "track/name": "Song A"},
                {"db/id": "t", "track/name": "Song B"},
            ])
        assert excinfo.value.category is Category.CONFLICT

    def test_failed_transaction_changes_nothing(self, memory_store, conn):
        before = conn.db.tx_count
        with pytest.raises(StoreError):
            memory_store.transact(conn, [{"artist/gid": "a9"}, {"artist/gid": "a8", "artist/type": "nope"}])
        assert conn.db.tx_count == before
        assert _artist(memory_store, conn, "a9") is None


class TestBatchMarkers:
    def test_marker_on_transaction_entity(self, memory_store, conn):
        unit = BatchUnit("artists-0", [{"artist/gid": "a1"}])
        report = memory_store.transact(conn, unit.tx_data_with_marker())
        assert memory_store.entity(conn, report.tx_id) == {BATCH_ID: "artists-0"}
        assert memory_store.query_markers(conn, BATCH_ID) == {"artists-0"}

    def test_duplicate_batch_id_conflicts(self, memory_store, conn):
        unit = BatchUnit("artists-0", [{"artist/gid": "a1"}])
        memory_store.transact(conn, unit.tx_data_with_marker())
        before = conn.db.tx_count
        with pytest.raises(StoreError) as excinfo:
            memory_store.transact(conn, unit.tx_data_with_marker())
        assert excinfo.value.category is Category.CONFLICT
        assert conn.db.tx_count == before

    def test_schema_reinstall_is_harmless(self, memory_store, conn):
        memory_store.transact(conn, IMPORT_SCHEMA)
        assert memory_store.query_markers(conn, BATCH_ID) == set()
