"""
Tests of the CompoundDb store handle
"""
import sqlite3

import pytest

from compdb import (
    CompoundDb,
    CompoundIdFilter,
    DependentRowsExistError,
    ExactmassFilter,
    MsLevelFilter,
    PrecursorMzFilter,
    ReadOnlyViolationError,
    ReferencedPath,
    ReferentialIntegrityError,
    SchemaMismatchWarning,
    StoreConfig,
    StoreNotInitializedError,
    StoreState,
    TransactionInProgressError,
)
from compdb.tests.util import CAFFEINE, GLUCOSE, ion, spectrum


@pytest.mark.component
def test_caffeine_glucose_scenario(db):
    heavy = db.compounds(["name"], filter=ExactmassFilter(190, ">"))
    assert set(heavy["name"]) == {"Caffeine"}

    db.insert_ions([ion("1")])
    before = db.counts()
    with pytest.raises(DependentRowsExistError):
        db.delete_compounds(["1"])
    assert db.counts() == before

    result = db.delete_compounds(["1"], recursive=True)
    assert result.cascaded == {"ms_ion": 1, "ms_spectrum": 0}
    assert len(db.ions(filter=CompoundIdFilter("1"))) == 0
    assert list(db.compounds(["name"])["name"]) == ["Glucose"]


@pytest.mark.component
def test_lifecycle(db_path):
    db = CompoundDb(db_path)
    assert db.state is StoreState.UNINITIALIZED
    with pytest.raises(StoreNotInitializedError, match="open()"):
        db.compounds()

    assert db.open() is db
    assert db.state is StoreState.READ_WRITE
    assert db.is_open and not db.read_only
    assert db.open() is db

    db.close()
    db.close()
    assert db.state is StoreState.CLOSED
    with pytest.raises(StoreNotInitializedError):
        db.counts()
    with pytest.raises(StoreNotInitializedError):
        db.insert_compounds([CAFFEINE])
    with pytest.raises(StoreNotInitializedError, match="closed"):
        db.open()


@pytest.mark.component
def test_context_manager(db_path):
    with CompoundDb(db_path) as db:
        db.insert_compounds([CAFFEINE])
        assert db.counts()["ms_compound"] == 1
    assert db.state is StoreState.CLOSED


@pytest.mark.component
def test_schema_views(db):
    assert list(db.tables()) == ["ms_compound", "ms_ion", "ms_spectrum", "metadata"]
    assert db.compound_variables() == ["name", "inchi", "inchikey", "formula", "exactmass", "synonyms"]
    assert db.compound_variables(include_id=True)[0] == "compound_id"
    assert db.ion_variables() == ["compound_id", "ion_adduct", "ion_mz", "ion_rt"]
    assert db.ion_variables(include_id=True)[0] == "ion_id"
    assert db.spectra_variables(include_id=True)[0] == "spectrum_id"
    assert "spectrum_id" not in db.spectra_variables()


@pytest.mark.component
def test_read_only_handle(db, db_path):
    db.insert_ions([ion()])
    with CompoundDb(db_path, read_only=True) as ro:
        assert ro.state is StoreState.READ_ONLY
        assert ro.read_only
        assert len(ro.compounds()) == 2
        assert len(ro.ions()) == 1
        with pytest.raises(ReadOnlyViolationError):
            ro.insert_compounds([{"compound_id": "3"}])
        with pytest.raises(ReadOnlyViolationError):
            ro.delete_ions([1])
        with pytest.raises(ReadOnlyViolationError):
            ro.delete_compounds(["1"], recursive=True)
        with pytest.raises(ReadOnlyViolationError):
            ro.set_metadata({"source": "HMDB"})
    assert db.counts() == {"ms_compound": 2, "ms_ion": 1, "ms_spectrum": 0}


@pytest.mark.component
def test_read_only_requires_existing_database(tmp_path):
    with pytest.raises(StoreNotInitializedError, match="does not exist"):
        CompoundDb(tmp_path / "missing.db", read_only=True).open()


@pytest.mark.component
def test_foreign_database_rejected(tmp_path):
    path = tmp_path / "other.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE samples (id INTEGER)")
    conn.commit()
    conn.close()

    with pytest.raises(StoreNotInitializedError, match="missing tables"):
        CompoundDb(path, read_only=True).open()
    with pytest.raises(StoreNotInitializedError, match="missing tables"):
        CompoundDb(StoreConfig(path=path, create=False)).open()

    with CompoundDb(path) as db:
        assert db.counts() == {"ms_compound": 0, "ms_ion": 0, "ms_spectrum": 0}


@pytest.mark.component
def test_corrupt_file_rejected(tmp_path):
    path = tmp_path / "corrupt.db"
    path.write_bytes(b"this is not a database file" * 100)
    with pytest.raises(StoreNotInitializedError, match="Cannot open"):
        CompoundDb(path).open()


@pytest.mark.component
def test_referenced_path_releases_connections(db_path, monkeypatch):
    import compdb.store

    opened = []
    real_connect = compdb.store.connect

    def tracking_connect(*args, **kwargs):
        conn = real_connect(*args, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr("compdb.store.connect", tracking_connect)

    db = CompoundDb(db_path, keep_connection=False).open()
    assert isinstance(db._source, ReferencedPath)
    db.insert_compounds([CAFFEINE, GLUCOSE])
    with pytest.raises(ReferentialIntegrityError):
        db.insert_ions([ion("404")])
    assert list(db.compounds(["name"])["name"]) == ["Caffeine", "Glucose"]
    db.close()

    assert len(opened) >= 4
    for conn in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")


@pytest.mark.component
def test_from_connection_leaves_caller_connection_open():
    conn = sqlite3.connect(":memory:")
    db = CompoundDb.from_connection(conn)
    assert db.state is StoreState.READ_WRITE
    db.insert_compounds([CAFFEINE])
    db.set_metadata({"source": "test"})
    assert db.metadata() == {"source": "test"}
    db.close()

    assert conn.execute("SELECT name FROM ms_compound").fetchone()[0] == "Caffeine"
    conn.close()


@pytest.mark.component
def test_ion_identities_through_store(db):
    assert db.insert_ions([ion(), ion(adduct="[M+Na]+")]).ids == [1, 2]
    db.delete_ions([1])
    assert db.insert_ions([ion("2", adduct="[M-H]-", mz=179.056)]).ids == [3]
    assert list(db.ions(["ion_id", "compound_id"])["ion_id"]) == [2, 3]


@pytest.mark.component
def test_failed_batch_persists_nothing(db):
    with pytest.raises(ReferentialIntegrityError):
        db.insert_ions([ion("1"), ion("1"), ion("3")])
    assert db.counts()["ms_ion"] == 0


@pytest.mark.component
def test_column_widening(db, db_path):
    db.insert_ions([ion()])
    with pytest.warns(SchemaMismatchWarning):
        db.insert_ions([ion(ion_source="ESI")])
    assert "ion_source" not in db.ion_variables()

    result = db.insert_ions([ion(ion_source="ESI")], add_columns=True)
    assert result.added_columns == ["ion_source"]
    assert db.ion_variables()[-1] == "ion_source"

    frame = db.ions(["ion_id", "ion_source"], filter=db.filter("ion_source", "=", "ESI"))
    assert list(frame["ion_id"]) == [3]
    db.close()

    with CompoundDb(db_path, read_only=True) as reopened:
        assert reopened.ion_variables()[-1] == "ion_source"
        assert list(reopened.ions(["ion_source"])["ion_source"]) == [None, None, "ESI"]


@pytest.mark.component
def test_spectra(db):
    result = db.insert_spectra([spectrum(), spectrum("2", ms_level=3, precursor=181.07)])
    assert result.ids == [1, 2]

    frame = db.spectra()
    assert list(frame.columns) == [
        "spectrum_id", "compound_id", "msLevel", "precursorMz", "polarity",
        "collision_energy", "instrument", "peaks",
    ]
    assert frame.loc[0, "peaks"] == {"mz": [110.0713, 138.0662], "intensity": [20.0, 100.0]}

    selected = db.spectra(["spectrum_id"], filter=MsLevelFilter(2) & CompoundIdFilter("1"))
    assert list(selected["spectrum_id"]) == [1]

    names = db.compounds(["name"], filter=PrecursorMzFilter(190.0, ">"))
    assert list(names["name"]) == ["Caffeine"]

    db.delete_spectra([2])
    assert db.counts()["ms_spectrum"] == 1


@pytest.mark.component
def test_metadata(db):
    assert db.metadata() == {}
    db.set_metadata({"source": "HMDB", "url": "https://hmdb.ca", "source_version": "5.0"})
    db.set_metadata({"source_version": "5.1", "release": 2024})
    assert db.metadata() == {
        "source": "HMDB",
        "url": "https://hmdb.ca",
        "source_version": "5.1",
        "release": "2024",
    }


@pytest.mark.component
def test_copy_to(db, tmp_path):
    db.insert_ions([ion()])
    db.set_metadata({"source": "HMDB"})
    copy = db.copy_to(tmp_path / "copy.db")
    try:
        assert copy.state is StoreState.READ_WRITE
        assert copy.counts() == db.counts()
        assert copy.metadata() == {"source": "HMDB"}
        copy.insert_compounds([{"compound_id": "3", "name": "Theobromine"}])
    finally:
        copy.close()
    assert db.counts()["ms_compound"] == 2


@pytest.mark.component
def test_repr(db):
    assert repr(db).endswith(", read_write): 2 compounds, 0 ions, 0 spectra")
    db.close()
    assert repr(db).endswith(", closed)")


@pytest.mark.component
def test_default_projections_with_shared_user_column(db):
    db.insert_compounds([{"compound_id": "3", "name": "Theobromine", "note": "c"}], add_columns=True)
    db.insert_ions([ion("3", note="i")], add_columns=True)

    assert list(db.ions()["note"]) == ["i"]
    assert list(db.compounds()["note"]) == [None, None, "c"]

    joined = db.ions(["name", "note"])
    assert joined.loc[0, "name"] == "Theobromine"
    assert joined.loc[0, "note"] == "i"


@pytest.mark.component
def test_from_connection_with_open_caller_transaction():
    conn = sqlite3.connect(":memory:")
    db = CompoundDb.from_connection(conn)
    conn.execute("INSERT INTO ms_compound (compound_id, name) VALUES ('9', 'Pending')")
    with pytest.raises(TransactionInProgressError):
        db.insert_compounds([GLUCOSE])

    conn.commit()
    db.insert_compounds([GLUCOSE])
    assert db.counts()["ms_compound"] == 2
    db.close()
    conn.close()


@pytest.mark.component
def test_read_only_path_with_uri_characters(tmp_path):
    path = tmp_path / "odd?name#1.db"
    with CompoundDb(path) as db:
        db.insert_compounds([CAFFEINE])
    with CompoundDb(path, read_only=True) as ro:
        assert ro.counts()["ms_compound"] == 1
        assert list(ro.compounds(["name"])["name"]) == ["Caffeine"]
