"""
Store handle for a SQLite-backed compound database.

A CompoundDb ties the schema registry, query translator and mutation engine
to one database file and owns the connection lifecycle:

    Uninitialized --open()--> ReadOnly | ReadWrite --close()--> Closed

The mode is fixed at open time. Mutations (inserts, deletes, column widening,
metadata updates) require ReadWrite and raise ReadOnlyViolationError
otherwise. Any operation on a handle that is not open raises
StoreNotInitializedError.

## Connection variants

**OwnedConnection**: the handle holds one live connection for its whole life.
This is the default, and also what from_connection() wraps.

**ReferencedPath**: the handle stores only the path. Every operation opens
its own connection and closes it again on every exit path, including
exceptions. Useful when a handle is kept around for a long time but used
rarely, or when many readers share a file.

## Usage

```python
from compdb import CompoundDb, ExactmassFilter

with CompoundDb("compounds.db") as db:
    db.insert_compounds([
        {"compound_id": "1", "name": "Caffeine", "exactmass": 194.080375584},
        {"compound_id": "2", "name": "Glucose", "exactmass": 180.063388116},
    ])
    db.insert_ions([{"compound_id": "1", "ion_adduct": "[M+H]+",
                     "ion_mz": 195.087652, "ion_rt": 120.0}])

    heavy = db.compounds(["name"], filter=ExactmassFilter(190, ">"))

    db.delete_compounds(["1"], recursive=True)  # drops the ion as well
```

## Concurrency

One handle, one connection, no threads. Many read-only handles may share a
file; a read-write handle is expected to be its only writer. Write
transactions start with BEGIN IMMEDIATE, so competing writers wait on
SQLite's lock for up to StoreConfig.timeout seconds and then fail.
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Literal, Optional, Sequence, Union
from urllib.parse import quote

import pandas as pd

from compdb.errors import ReadOnlyViolationError, StoreNotInitializedError
from compdb.filters import Filter, FilterExpression
from compdb.models import MetadataRecord, MutationResult, StoreConfig, StoreState
from compdb.mutation import MutationEngine, Transaction
from compdb.query import QueryTranslator
from compdb.schema import (
    COMPOUND_TABLE,
    DATA_TABLES,
    ION_TABLE,
    METADATA_TABLE,
    SPECTRUM_TABLE,
    SchemaRegistry,
    create_schema,
)
from compdb.utils import Records, frame_to_rows

_log = logging.getLogger(__name__)

ReturnType = Literal['dataframe', 'records']


def connect(path: Union[str, Path], read_only: bool = False, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a connection configured for the compound database.

    Read-only connections use SQLite's URI mode=ro, so the file must exist and
    no statement can write to it.
    """
    if read_only:
        uri = f"file:{quote(Path(path).resolve().as_posix())}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=timeout)
    else:
        conn = sqlite3.connect(path, timeout=timeout)
    conn.row_factory = sqlite3.Row  # Dict-like row access

    # Enable foreign key constraints (disabled by default in SQLite)
    conn.execute("PRAGMA foreign_keys = ON")
    _log.debug("Connected to %s (read_only=%s)", path, read_only)
    return conn


class OwnedConnection:
    """A live connection held for the life of the store handle.

    Args:
        conn: The connection
        close_on_release: If False the connection belongs to the caller and
            is left open when the handle closes
    """

    def __init__(self, conn: sqlite3.Connection, close_on_release: bool = True):
        self.conn = conn
        self.close_on_release = close_on_release

    @contextmanager
    def acquire(self) -> Iterator[sqlite3.Connection]:
        yield self.conn

    def release(self):
        if self.close_on_release:
            self.conn.close()


class ReferencedPath:
    """A database path; each acquire() opens a connection and closes it after use."""

    def __init__(self, path: Path, read_only: bool, timeout: float):
        self.path = path
        self.read_only = read_only
        self.timeout = timeout

    @contextmanager
    def acquire(self) -> Iterator[sqlite3.Connection]:
        conn = connect(self.path, self.read_only, self.timeout)
        try:
            yield conn
        finally:
            conn.close()

    def release(self):
        pass


ConnectionSource = Union[OwnedConnection, ReferencedPath]


class CompoundDb:
    """Compound, ion and spectrum annotation database.

    See module docstring for lifecycle and connection handling.

    Data access:
    1. Queries: compounds(), ions(), spectra(), query()
    2. Inserts: insert_compounds(), insert_ions(), insert_spectra()
    3. Deletes: delete_compounds(), delete_ions(), delete_spectra()

    Query results are pandas DataFrames (or lists of dicts) with columns in
    the requested order. Mutations return a MutationResult.
    """

    def __init__(
        self,
        config: Union[StoreConfig, str, Path],
        read_only: bool = False,
        keep_connection: bool = True,
    ):
        """Create an unopened handle.

        Args:
            config: StoreConfig, or a path to the database file
            read_only: Open read-only (ignored when config is a StoreConfig)
            keep_connection: Hold one connection rather than one per operation
                (ignored when config is a StoreConfig)
        """
        if not isinstance(config, StoreConfig):
            config = StoreConfig(path=config, read_only=read_only, keep_connection=keep_connection)
        self.config = config
        self.state = StoreState.UNINITIALIZED
        self._source: Optional[ConnectionSource] = None
        self.schema: Optional[SchemaRegistry] = None
        self._translator: Optional[QueryTranslator] = None
        self._mutations: Optional[MutationEngine] = None

    @classmethod
    def from_connection(cls, conn: sqlite3.Connection, read_only: bool = False) -> 'CompoundDb':
        """Wrap an open connection owned by the caller.

        The connection is not closed when the handle closes. With
        read_only=False the schema is created if missing.
        """
        rows = conn.execute("PRAGMA database_list").fetchall()
        path = rows[0][2] if rows and rows[0][2] else ':memory:'
        db = cls(StoreConfig(path=path, read_only=read_only))
        conn.execute("PRAGMA foreign_keys = ON")
        db._attach(OwnedConnection(conn, close_on_release=False))
        return db

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> 'CompoundDb':
        """Open the database in the configured mode.

        Raises:
            StoreNotInitializedError: If the handle was closed, the file does
                not exist for a read-only open, or the file lacks the
                compound database tables and cannot be initialized
        """
        if self.state is StoreState.CLOSED:
            raise StoreNotInitializedError("Store handle has been closed")
        if self.state is not StoreState.UNINITIALIZED:
            return self

        path = self.config.path
        if self.config.read_only and not Path(path).exists():
            raise StoreNotInitializedError(f"Database file '{path}' does not exist")

        if self.config.keep_connection:
            try:
                conn = connect(path, self.config.read_only, self.config.timeout)
            except sqlite3.Error as err:
                raise StoreNotInitializedError(f"Cannot open '{path}': {err}") from err
            source = OwnedConnection(conn)
        else:
            source = ReferencedPath(Path(path), self.config.read_only, self.config.timeout)
        self._attach(source)
        return self

    def _attach(self, source: ConnectionSource):
        try:
            with source.acquire() as conn:
                if not self.config.read_only and self.config.create:
                    with Transaction(conn):
                        create_schema(conn)
                registry = SchemaRegistry.from_connection(conn)
        except sqlite3.Error as err:
            source.release()
            raise StoreNotInitializedError(f"Cannot open '{self.config.path}': {err}") from err

        missing = registry.missing_tables()
        if missing:
            source.release()
            raise StoreNotInitializedError(
                f"'{self.config.path}' is not a compound database; missing tables: {missing}"
            )

        self._source = source
        self.schema = registry
        self._translator = QueryTranslator(registry)
        self._mutations = MutationEngine(registry)
        self.state = StoreState.READ_ONLY if self.config.read_only else StoreState.READ_WRITE
        _log.info("Opened %s (%s)", self.config.path, self.state.value)

    def close(self):
        """Close the database connection. Closing twice is a no-op."""
        if self._source is not None:
            self._source.release()
            self._source = None
        if self.state is not StoreState.CLOSED:
            _log.info("Closed %s", self.config.path)
        self.state = StoreState.CLOSED

    def __enter__(self):
        """Context manager entry; opens the handle if needed."""
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    @property
    def read_only(self) -> bool:
        return self.config.read_only

    @property
    def is_open(self) -> bool:
        return self.state in (StoreState.READ_ONLY, StoreState.READ_WRITE)

    @contextmanager
    def _connection(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        if not self.is_open:
            raise StoreNotInitializedError(
                f"Database not initialized (state: {self.state.value}). Call open() first."
            )
        if write and self.state is StoreState.READ_ONLY:
            raise ReadOnlyViolationError(
                f"'{self.config.path}' is opened read-only; open it read-write to modify it"
            )
        with self._source.acquire() as conn:
            yield conn

    # =========================================================================
    # Schema
    # =========================================================================

    def tables(self) -> dict[str, list[str]]:
        """Table names mapped to their column names."""
        with self._connection():
            return self.schema.tables()

    def compound_variables(self, include_id: bool = False) -> list[str]:
        """Columns of ms_compound, without compound_id unless include_id."""
        with self._connection():
            cols = self.schema.columns(COMPOUND_TABLE)
            return cols if include_id else [c for c in cols if c != 'compound_id']

    def ion_variables(self, include_id: bool = False) -> list[str]:
        """Columns of ms_ion, without ion_id unless include_id."""
        with self._connection():
            return self.schema.columns(ION_TABLE, include_id=include_id)

    def spectra_variables(self, include_id: bool = False) -> list[str]:
        """Columns of ms_spectrum, without spectrum_id unless include_id."""
        with self._connection():
            return self.schema.columns(SPECTRUM_TABLE, include_id=include_id)

    def filter(self, field: str, operator: str, value, negate: bool = False) -> Filter:
        """Build a Filter validated against this database's columns.

        Unlike Filter(...) on its own, this accepts columns added with
        add_columns=True.
        """
        with self._connection():
            return Filter(field, operator, value, registry=self.schema, negate=negate)

    # =========================================================================
    # Queries
    # =========================================================================

    def query(
        self,
        columns: Sequence[str],
        filter: Optional[FilterExpression] = None,
        start_from: str = COMPOUND_TABLE,
        return_type: ReturnType = 'dataframe',
    ) -> Union[pd.DataFrame, list[dict]]:
        """Fetch columns from any combination of tables.

        Args:
            columns: Column names, optionally qualified as 'table.column'
            filter: Optional Filter or FilterCombinator
            start_from: Table anchoring the joins
            return_type: 'dataframe' or 'records' (list of dicts)

        Returns:
            Rows with columns in requested order; empty if no columns requested

        Raises:
            InvalidFilterError: If a column or the filter is invalid; raised
                before anything is executed
        """
        if return_type not in ('dataframe', 'records'):
            raise ValueError(f"Invalid return_type: {return_type}. Must be 'dataframe' or 'records'")
        with self._connection() as conn:
            if filter is not None:
                self._translator.compile_filter(filter, start_from)
            if not columns:
                frame = pd.DataFrame()
            else:
                compiled = self._translator.translate(columns, filter, start_from)
                frame = self._translator.execute(conn, compiled)
        return frame_to_rows(frame) if return_type == 'records' else frame

    def compounds(
        self,
        columns: Optional[Sequence[str]] = None,
        filter: Optional[FilterExpression] = None,
        return_type: ReturnType = 'dataframe',
    ) -> Union[pd.DataFrame, list[dict]]:
        """Compound data; all compound columns by default."""
        if columns is None:
            columns = self.compound_variables(include_id=True)
        return self.query(columns, filter, COMPOUND_TABLE, return_type)

    def ions(
        self,
        columns: Optional[Sequence[str]] = None,
        filter: Optional[FilterExpression] = None,
        return_type: ReturnType = 'dataframe',
    ) -> Union[pd.DataFrame, list[dict]]:
        """Ion data; all ion columns except ion_id by default."""
        if columns is None:
            columns = self.ion_variables()
        return self.query(columns, filter, ION_TABLE, return_type)

    def spectra(
        self,
        columns: Optional[Sequence[str]] = None,
        filter: Optional[FilterExpression] = None,
        return_type: ReturnType = 'dataframe',
    ) -> Union[pd.DataFrame, list[dict]]:
        """Spectrum data; all spectrum columns including spectrum_id by default."""
        if columns is None:
            columns = self.spectra_variables(include_id=True)
        return self.query(columns, filter, SPECTRUM_TABLE, return_type)

    def counts(self) -> dict[str, int]:
        """Number of rows in each data table."""
        with self._connection() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in DATA_TABLES
            }

    def metadata(self) -> dict[str, str]:
        """Provenance key/value pairs of the database."""
        with self._connection() as conn:
            rows = conn.execute(f"SELECT key, value FROM {METADATA_TABLE} ORDER BY rowid").fetchall()
            return {row[0]: row[1] for row in rows}

    # =========================================================================
    # Mutations
    # =========================================================================

    def insert_compounds(self, compounds: Records, add_columns: bool = False) -> MutationResult:
        """Insert compounds; compound_id must be new and unique."""
        with self._connection(write=True) as conn:
            return self._mutations.insert(conn, COMPOUND_TABLE, compounds, add_columns)

    def insert_ions(self, ions: Records, add_columns: bool = False) -> MutationResult:
        """Insert ions for existing compounds; ion_id is assigned by the store."""
        with self._connection(write=True) as conn:
            return self._mutations.insert(conn, ION_TABLE, ions, add_columns)

    def insert_spectra(self, spectra: Records, add_columns: bool = False) -> MutationResult:
        """Insert spectra for existing compounds; spectrum_id is assigned by the store."""
        with self._connection(write=True) as conn:
            return self._mutations.insert(conn, SPECTRUM_TABLE, spectra, add_columns)

    def delete_compounds(self, ids: Iterable, recursive: bool = False) -> MutationResult:
        """Delete compounds; with recursive=True also their ions and spectra."""
        with self._connection(write=True) as conn:
            return self._mutations.delete_compounds(conn, ids, recursive)

    def delete_ions(self, ids: Iterable[int]) -> MutationResult:
        """Delete ions by ion_id."""
        with self._connection(write=True) as conn:
            return self._mutations.delete(conn, ION_TABLE, ids)

    def delete_spectra(self, ids: Iterable[int]) -> MutationResult:
        """Delete spectra by spectrum_id."""
        with self._connection(write=True) as conn:
            return self._mutations.delete(conn, SPECTRUM_TABLE, ids)

    def set_metadata(self, metadata: Union[MetadataRecord, dict]):
        """Store provenance information, replacing values of existing keys."""
        if not isinstance(metadata, MetadataRecord):
            metadata = MetadataRecord.model_validate(metadata)
        values = {k: v for k, v in metadata.model_dump().items() if v is not None}
        with self._connection(write=True) as conn:
            with Transaction(conn):
                conn.executemany(
                    f"INSERT OR REPLACE INTO {METADATA_TABLE} (key, value) VALUES (?, ?)",
                    [(key, str(value)) for key, value in values.items()]
                )

    def copy_to(self, path: Union[str, Path]) -> 'CompoundDb':
        """Copy the whole database into a new file.

        Args:
            path: Destination file; overwritten if it exists

        Returns:
            Open read-write handle on the copy
        """
        with self._connection() as conn:
            target = sqlite3.connect(path)
            try:
                conn.backup(target)
            finally:
                target.close()
        _log.info("Copied %s to %s", self.config.path, path)
        return CompoundDb(StoreConfig(path=path, timeout=self.config.timeout)).open()

    def __repr__(self):
        desc = f"CompoundDb('{self.config.path}', {self.state.value})"
        if self.is_open:
            counts = self.counts()
            desc += (f": {counts[COMPOUND_TABLE]} compounds, {counts[ION_TABLE]} ions, "
                     f"{counts[SPECTRUM_TABLE]} spectra")
        return desc
