"""
Schema registry for the compound database.

## Tables

ms_compound:  compound_id (PK) | name | inchi | inchikey | formula | exactmass | synonyms
ms_ion:       ion_id (PK) | compound_id (FK) | ion_adduct | ion_mz | ion_rt
ms_spectrum:  spectrum_id (PK) | compound_id (FK) | msLevel | precursorMz | polarity |
              collision_energy | instrument | peaks
metadata:     key (PK) | value

Ions and spectra both reference ms_compound through compound_id. The
compound table is the hub of the join graph: every pair of data tables can be
joined on compound_id.

Multi-valued attributes (synonyms, peaks) are stored as JSON text. They are
returned by queries but cannot be used in filters.

The registry is the single source of truth for valid column names per table.
Each store handle owns one instance, loaded from the live database so that
columns added by earlier sessions are known, and updated whenever a column is
added.
"""
import logging
import re
import sqlite3
from typing import Literal, Optional

from compdb.errors import InvalidFilterError, InvalidRecordError

_log = logging.getLogger(__name__)

FieldKind = Literal['text', 'numeric', 'json']

COMPOUND_TABLE = 'ms_compound'
ION_TABLE = 'ms_ion'
SPECTRUM_TABLE = 'ms_spectrum'
METADATA_TABLE = 'metadata'

# Canonical order, also the order in which tables are joined.
DATA_TABLES = (COMPOUND_TABLE, ION_TABLE, SPECTRUM_TABLE)

IDENTITY_COLUMNS = {
    COMPOUND_TABLE: 'compound_id',
    ION_TABLE: 'ion_id',
    SPECTRUM_TABLE: 'spectrum_id',
}

JSON_COLUMNS = {
    COMPOUND_TABLE: ('synonyms',),
    SPECTRUM_TABLE: ('peaks',),
}

JOIN_KEY = 'compound_id'

CORE_TABLES = {
    COMPOUND_TABLE: [
        'compound_id', 'name', 'inchi', 'inchikey', 'formula', 'exactmass', 'synonyms',
    ],
    ION_TABLE: ['ion_id', 'compound_id', 'ion_adduct', 'ion_mz', 'ion_rt'],
    SPECTRUM_TABLE: [
        'spectrum_id', 'compound_id', 'msLevel', 'precursorMz', 'polarity',
        'collision_energy', 'instrument', 'peaks',
    ],
    METADATA_TABLE: ['key', 'value'],
}

CORE_COLUMN_TYPES = {
    COMPOUND_TABLE: {
        'compound_id': 'TEXT', 'name': 'TEXT', 'inchi': 'TEXT', 'inchikey': 'TEXT',
        'formula': 'TEXT', 'exactmass': 'REAL', 'synonyms': 'TEXT',
    },
    ION_TABLE: {
        'ion_id': 'INTEGER', 'compound_id': 'TEXT', 'ion_adduct': 'TEXT',
        'ion_mz': 'REAL', 'ion_rt': 'REAL',
    },
    SPECTRUM_TABLE: {
        'spectrum_id': 'INTEGER', 'compound_id': 'TEXT', 'msLevel': 'INTEGER',
        'precursorMz': 'REAL', 'polarity': 'INTEGER', 'collision_energy': 'REAL',
        'instrument': 'TEXT', 'peaks': 'TEXT',
    },
    METADATA_TABLE: {'key': 'TEXT', 'value': 'TEXT'},
}

SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS ms_compound (
        compound_id TEXT PRIMARY KEY,
        name TEXT,
        inchi TEXT,
        inchikey TEXT,
        formula TEXT,
        exactmass REAL,
        synonyms TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ms_ion (
        ion_id INTEGER PRIMARY KEY AUTOINCREMENT,
        compound_id TEXT NOT NULL,
        ion_adduct TEXT,
        ion_mz REAL,
        ion_rt REAL,
        FOREIGN KEY (compound_id) REFERENCES ms_compound(compound_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ms_spectrum (
        spectrum_id INTEGER PRIMARY KEY AUTOINCREMENT,
        compound_id TEXT NOT NULL,
        msLevel INTEGER,
        precursorMz REAL,
        polarity INTEGER,
        collision_energy REAL,
        instrument TEXT,
        peaks TEXT,
        FOREIGN KEY (compound_id) REFERENCES ms_compound(compound_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS ms_ion_compound_id_idx ON ms_ion (compound_id)",
    "CREATE INDEX IF NOT EXISTS ms_spectrum_compound_id_idx ON ms_spectrum (compound_id)",
)

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def quote_identifier(name: str) -> str:
    """Quote a table or column name for interpolation into SQL.

    Raises:
        InvalidRecordError: If name is not a plain SQL identifier
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise InvalidRecordError(
            f"Invalid column name {name!r}: names must start with a letter or "
            f"underscore and contain only letters, digits and underscores"
        )
    return f'"{name}"'


def kind_for_sql_type(sql_type: str) -> FieldKind:
    """Map a declared SQLite column type onto a filter field kind."""
    sql_type = (sql_type or '').upper()
    if 'INT' in sql_type or 'REAL' in sql_type or 'FLOA' in sql_type \
            or 'DOUB' in sql_type or 'NUM' in sql_type:
        return 'numeric'
    return 'text'


def create_schema(conn: sqlite3.Connection):
    """Create all tables and indexes that do not exist yet."""
    for statement in SCHEMA_SQL:
        conn.execute(statement)
    _log.debug("Schema statements executed")


class SchemaRegistry:
    """Valid columns, column types and join keys for each table.

    Mutated only through add_column(), which the mutation engine calls after a
    column-widening insert has committed.
    """

    def __init__(
        self,
        tables: Optional[dict[str, list[str]]] = None,
        column_types: Optional[dict[str, dict[str, str]]] = None,
    ):
        tables = tables if tables is not None else CORE_TABLES
        column_types = column_types if column_types is not None else CORE_COLUMN_TYPES
        self._tables = {name: list(cols) for name, cols in tables.items()}
        self._types = {name: dict(types) for name, types in column_types.items()}

    @classmethod
    def from_connection(cls, conn: sqlite3.Connection) -> 'SchemaRegistry':
        """Load the registry from the live database schema.

        Args:
            conn: Open connection to a compound database

        Returns:
            Registry listing every column of every known table in declaration order
        """
        tables = {}
        column_types = {}
        for table in CORE_TABLES:
            rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
            tables[table] = [row[1] for row in rows]
            column_types[table] = {row[1]: row[2] for row in rows}
        return cls(tables, column_types)

    def missing_tables(self) -> list[str]:
        """Core tables that are absent (have no columns) in this registry."""
        return [table for table in CORE_TABLES if not self._tables.get(table)]

    def tables(self) -> dict[str, list[str]]:
        """Copy of the table name to column list mapping."""
        return {name: list(cols) for name, cols in self._tables.items()}

    def columns(self, table: str, include_id: bool = True) -> list[str]:
        """Column names of a table in declaration order.

        Args:
            table: Table name
            include_id: If False, drop the store-assigned identity column
                (ion_id, spectrum_id). compound_id is caller-supplied and is
                always kept.
        """
        if table not in self._tables:
            raise KeyError(f"Unknown table '{table}'")
        cols = list(self._tables[table])
        if not include_id and table in (ION_TABLE, SPECTRUM_TABLE):
            cols.remove(IDENTITY_COLUMNS[table])
        return cols

    def has_column(self, table: str, column: str) -> bool:
        return column in self._tables.get(table, ())

    def sql_type(self, table: str, column: str) -> str:
        return self._types.get(table, {}).get(column, 'TEXT')

    def field_kind(self, table: str, column: str) -> FieldKind:
        if column in JSON_COLUMNS.get(table, ()):
            return 'json'
        return kind_for_sql_type(self.sql_type(table, column))

    def add_column(self, table: str, column: str, sql_type: str):
        """Record a column that was added to the live table."""
        if column in self._tables[table]:
            return
        self._tables[table].append(column)
        self._types[table][column] = sql_type
        _log.info("Registered new column %s.%s (%s)", table, column, sql_type)

    def resolve(self, column: str, start_from: str = COMPOUND_TABLE) -> tuple[str, str]:
        """Resolve a possibly table-qualified column name to (table, column).

        An unqualified name held by the start table resolves to the start
        table; this always applies to the join key compound_id. Any other
        unqualified name must belong to exactly one data table.

        Raises:
            InvalidFilterError: If the column is unknown or ambiguous
        """
        if '.' in column:
            table, _, name = column.partition('.')
            if table not in DATA_TABLES or not self.has_column(table, name):
                raise InvalidFilterError(f"Unknown column '{column}'")
            return table, name

        if column == JOIN_KEY:
            return (start_from if self.has_column(start_from, JOIN_KEY) else COMPOUND_TABLE), column

        owners = [t for t in DATA_TABLES if self.has_column(t, column)]
        if not owners:
            raise InvalidFilterError(
                f"Unknown field '{column}'. Valid fields: {', '.join(self.fields())}"
            )
        if start_from in owners:
            return start_from, column
        if len(owners) > 1:
            raise InvalidFilterError(
                f"Column '{column}' exists in {owners}; qualify it as 'table.{column}'"
            )
        return owners[0], column

    def fields(self) -> list[str]:
        """All column names of the data tables, de-duplicated, in table order."""
        seen = []
        for table in DATA_TABLES:
            for col in self._tables.get(table, ()):
                if col not in seen:
                    seen.append(col)
        return seen

    def join_condition(self, left: str, right: str) -> str:
        """ON clause linking two data tables through compound_id."""
        if left == right or left not in DATA_TABLES or right not in DATA_TABLES:
            raise ValueError(f"No join edge between '{left}' and '{right}'")
        return f"{left}.{JOIN_KEY} = {right}.{JOIN_KEY}"


CORE_REGISTRY = SchemaRegistry()
