"""
Tests of the schema registry
"""
import sqlite3

import pytest

from compdb.errors import InvalidFilterError, InvalidRecordError
from compdb.schema import (
    CORE_TABLES,
    SchemaRegistry,
    create_schema,
    kind_for_sql_type,
    quote_identifier,
)


@pytest.fixture
def registry():
    return SchemaRegistry()


@pytest.mark.unit
def test_resolve_join_key_follows_start_table(registry):
    assert registry.resolve("compound_id") == ("ms_compound", "compound_id")
    assert registry.resolve("compound_id", "ms_ion") == ("ms_ion", "compound_id")
    assert registry.resolve("compound_id", "ms_spectrum") == ("ms_spectrum", "compound_id")


@pytest.mark.unit
def test_resolve_unqualified_column(registry):
    assert registry.resolve("exactmass", "ms_ion") == ("ms_compound", "exactmass")
    assert registry.resolve("precursorMz") == ("ms_spectrum", "precursorMz")


@pytest.mark.unit
def test_resolve_qualified_column(registry):
    assert registry.resolve("ms_spectrum.compound_id") == ("ms_spectrum", "compound_id")
    with pytest.raises(InvalidFilterError):
        registry.resolve("ms_ion.name")
    with pytest.raises(InvalidFilterError):
        registry.resolve("metadata.key")


@pytest.mark.unit
def test_resolve_unknown_column(registry):
    with pytest.raises(InvalidFilterError, match="Unknown field 'mass'"):
        registry.resolve("mass")


@pytest.mark.unit
def test_resolve_ambiguous_user_column(registry):
    registry.add_column("ms_ion", "note", "TEXT")
    registry.add_column("ms_spectrum", "note", "TEXT")
    with pytest.raises(InvalidFilterError, match="qualify"):
        registry.resolve("note")
    assert registry.resolve("ms_ion.note") == ("ms_ion", "note")


@pytest.mark.unit
def test_add_column_leaves_core_registry_alone(registry):
    registry.add_column("ms_ion", "ion_source", "TEXT")
    assert registry.has_column("ms_ion", "ion_source")
    assert not SchemaRegistry().has_column("ms_ion", "ion_source")
    assert "ion_source" not in CORE_TABLES["ms_ion"]


@pytest.mark.unit
def test_columns(registry):
    assert registry.columns("ms_ion", include_id=False) == [
        "compound_id", "ion_adduct", "ion_mz", "ion_rt"
    ]
    assert registry.columns("ms_compound", include_id=False)[0] == "compound_id"
    assert registry.columns("ms_spectrum")[0] == "spectrum_id"
    with pytest.raises(KeyError):
        registry.columns("ms_peak")


@pytest.mark.unit
def test_field_kinds(registry):
    assert registry.field_kind("ms_compound", "exactmass") == "numeric"
    assert registry.field_kind("ms_compound", "name") == "text"
    assert registry.field_kind("ms_compound", "synonyms") == "json"
    assert registry.field_kind("ms_spectrum", "peaks") == "json"
    assert registry.field_kind("ms_spectrum", "msLevel") == "numeric"


@pytest.mark.unit
@pytest.mark.parametrize(
    "sql_type,kind",
    [
        ("INTEGER", "numeric"),
        ("REAL", "numeric"),
        ("DOUBLE PRECISION", "numeric"),
        ("TEXT", "text"),
        ("", "text"),
        (None, "text"),
    ],
)
def test_kind_for_sql_type(sql_type, kind):
    assert kind_for_sql_type(sql_type) == kind


@pytest.mark.unit
def test_quote_identifier():
    assert quote_identifier("ion_source") == '"ion_source"'
    for bad in ("ion source", 'x"; DROP TABLE ms_ion; --', "1abc", ""):
        with pytest.raises(InvalidRecordError):
            quote_identifier(bad)


@pytest.mark.unit
def test_join_condition(registry):
    assert registry.join_condition("ms_compound", "ms_ion") == \
        "ms_compound.compound_id = ms_ion.compound_id"
    with pytest.raises(ValueError):
        registry.join_condition("ms_ion", "ms_ion")
    with pytest.raises(ValueError):
        registry.join_condition("ms_ion", "metadata")


@pytest.mark.component
def test_from_connection_reads_live_columns():
    conn = sqlite3.connect(":memory:")
    try:
        create_schema(conn)
        conn.execute('ALTER TABLE ms_ion ADD COLUMN "ion_source" TEXT')
        conn.execute('ALTER TABLE ms_ion ADD COLUMN "charge" INTEGER')
        registry = SchemaRegistry.from_connection(conn)
    finally:
        conn.close()

    assert registry.missing_tables() == []
    assert registry.columns("ms_ion")[-2:] == ["ion_source", "charge"]
    assert registry.field_kind("ms_ion", "charge") == "numeric"
    assert registry.tables()["ms_compound"] == CORE_TABLES["ms_compound"]


@pytest.mark.component
def test_from_connection_empty_database():
    conn = sqlite3.connect(":memory:")
    try:
        registry = SchemaRegistry.from_connection(conn)
    finally:
        conn.close()
    assert registry.missing_tables() == list(CORE_TABLES)


@pytest.mark.unit
def test_resolve_prefers_start_table_for_shared_column(registry):
    registry.add_column("ms_compound", "note", "TEXT")
    registry.add_column("ms_ion", "note", "TEXT")
    assert registry.resolve("note") == ("ms_compound", "note")
    assert registry.resolve("note", "ms_ion") == ("ms_ion", "note")
    with pytest.raises(InvalidFilterError, match="qualify"):
        registry.resolve("note", "ms_spectrum")
