"""Pytest configuration and fixtures."""

import json

import pytest

from mbz_import.catalog import Catalog
from mbz_import.config import Settings
from mbz_import.paths import StoragePaths
from mbz_import.store import MemoryStore


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-db",
        action="store_true",
        default=False,
        help="Run tests that require database connection",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "db: mark test as requiring database connection")


def pytest_collection_modifyitems(config, items):
    """Skip db tests unless --run-db is provided."""
    if config.getoption("--run-db"):
        # --run-db given: do not skip db tests
        return

    skip_db = pytest.mark.skip(reason="Need --run-db option to run database tests")
    for item in items:
        if "db" in item.keywords:
            item.add_marker(skip_db)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

ENUMS = {
    "artist_type": {"Person": "artist.type/person", "Group": "artist.type/group"},
    "gender": {"Male": "artist.gender/male", "Female": "artist.gender/female"},
    "release_group_type": {"Album": "release.type/album", "Single": "release.type/single"},
    "release_packaging": {"Jewel Case": "release.packaging/jewel-case"},
    "medium_format": {"CD": "medium.format/cd", "Vinyl": "medium.format/vinyl"},
    "label_type": {"Original Production": "label.type/original-production"},
}

COUNTRIES = {
    "United States": {"db/ident": "country/US", "country/name": "United States"},
    "United Kingdom": {"db/ident": "country/GB", "country/name": "United Kingdom"},
}
LANGS = {"English": {"db/ident": "language/eng", "language/name": "English"}}
SCRIPTS = {"Latin": {"db/ident": "script/Latn", "script/name": "Latin"}}


def _attr(ident, value_type, many=False, unique=None):
    attr = {
        "db/ident": ident,
        "db/valueType": f"db.type/{value_type}",
        "db/cardinality": "db.cardinality/many" if many else "db.cardinality/one",
    }
    if unique:
        attr["db/unique"] = f"db.unique/{unique}"
    return attr


SCHEMA = [
    # enum and super-enum names
    *(_attr(f"{ns}/name", "string") for ns in (
        "artist.type", "artist.gender", "release.type", "release.packaging",
        "medium.format", "label.type", "country", "language", "script",
    )),
    # artist
    _attr("artist/gid", "uuid", unique="identity"),
    _attr("artist/name", "string"),
    _attr("artist/sortName", "string"),
    _attr("artist/type", "ref"),
    _attr("artist/gender", "ref"),
    _attr("artist/country", "ref"),
    *(_attr(f"artist/{p}", "long") for p in (
        "startYear", "startMonth", "startDay", "endYear", "endMonth", "endDay",
    )),
    # abstract release
    _attr("abstractRelease/gid", "uuid", unique="identity"),
    _attr("abstractRelease/name", "string"),
    _attr("abstractRelease/type", "ref"),
    _attr("abstractRelease/artistCredit", "string"),
    _attr("abstractRelease/artists", "ref", many=True),
    # label
    _attr("label/gid", "uuid", unique="identity"),
    _attr("label/name", "string"),
    _attr("label/sortName", "string"),
    _attr("label/type", "ref"),
    _attr("label/country", "ref"),
    *(_attr(f"label/{p}", "long") for p in (
        "startYear", "startMonth", "startDay", "endYear", "endMonth", "endDay",
    )),
    # release
    _attr("release/gid", "uuid", unique="identity"),
    _attr("release/name", "string"),
    _attr("release/artistCredit", "string"),
    _attr("release/labels", "ref", many=True),
    _attr("release/packaging", "ref"),
    _attr("release/status", "string"),
    _attr("release/country", "ref"),
    _attr("release/language", "ref"),
    _attr("release/script", "ref"),
    _attr("release/barcode", "string"),
    _attr("release/year", "long"),
    _attr("release/month", "long"),
    _attr("release/day", "long"),
    _attr("release/abstractRelease", "ref"),
    _attr("release/artists", "ref", many=True),
    _attr("release/media", "ref", many=True),
    # medium and track
    _attr("medium/position", "long"),
    _attr("medium/trackCount", "long"),
    _attr("medium/format", "ref"),
    _attr("medium/tracks", "ref", many=True),
    _attr("track/name", "string"),
    _attr("track/position", "long"),
    _attr("track/duration", "long"),
    _attr("track/artists", "ref", many=True),
]

SOURCES = {
    "schema": SCHEMA,
    "artists": [
        {"gid": "a1", "name": "Foo", "sortname": "Foo", "type": "Person",
         "gender": "Male", "country": "United States", "begin_date_year": 1970, "id": 1},
        {"gid": "a2", "name": "The Bars", "sortname": "Bars, The", "type": "Group",
         "country": "United Kingdom", "end_date_year": None, "id": 2},
    ],
    "areleases": [
        {"gid": "rg1", "name": "Debut", "type": "Album", "artist_credit": "Foo"},
    ],
    "areleases-artists": [
        {"artist": "a1", "release_group": "rg1"},
        {"artist": "a2", "release_group": "rg1"},
    ],
    "labels": [
        {"gid": "l1", "name": "Label One", "sort_name": "Label One",
         "type": "Original Production", "country": "United States"},
    ],
    "releases": [
        {"gid": "r1", "name": "Debut", "artist_credit": "Foo", "label": "l1",
         "packaging": "Jewel Case", "status": "Official", "country": "United States",
         "language": "English", "script": "Latin", "date_year": 1999,
         "release_group": "rg1"},
    ],
    "releases-artists": [
        {"release": "r1", "artist": "a1"},
    ],
    "media": [
        {"id": 10, "release": "r1", "position": 1, "track_count": 2, "format": "CD",
         "name": "Song A", "tracknum": 1, "length": 180000, "artist": "a1"},
        {"id": 10, "release": "r1", "position": 1, "track_count": 2, "format": "CD",
         "name": "Song A", "tracknum": 1, "length": 180000, "artist": "a2"},
        {"id": 10, "release": "r1", "position": 1, "track_count": 2, "format": "CD",
         "name": "Song B", "tracknum": 2, "length": 200000, "artist": "a1"},
        {"id": 11, "release": "r1", "position": 2, "track_count": 1, "format": "Vinyl",
         "name": "Song C", "tracknum": 1, "length": 240000, "artist": "a2"},
    ],
}


def write_jsonl(path, records):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")


@pytest.fixture
def catalog():
    """Catalog built from the sample tables."""
    return Catalog.from_tables(
        ENUMS, {"countries": COUNTRIES, "langs": LANGS, "scripts": SCRIPTS}
    )


@pytest.fixture
def basedir(tmp_path):
    """A base directory with catalog tables and every source file."""
    entities = tmp_path / "entities"
    entities.mkdir()
    for name, table in (("enums", ENUMS), ("countries", COUNTRIES),
                        ("langs", LANGS), ("scripts", SCRIPTS)):
        (entities / f"{name}.json").write_text(json.dumps(table), encoding="utf-8")
    for entity_type, records in SOURCES.items():
        write_jsonl(entities / f"{entity_type}.jsonl", records)
    return tmp_path


@pytest.fixture
def paths(basedir):
    storage = StoragePaths(basedir)
    storage.ensure_dirs()
    return storage


@pytest.fixture
def settings(basedir):
    """Settings pointing at the sample base directory and a memory store."""
    return Settings(store="memory", basedir=basedir, db_name="mbrainz-test", batch_size=2)


@pytest.fixture
def memory_store():
    return MemoryStore()
