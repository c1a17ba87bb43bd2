"""
Inserts and deletes across the compound, ion and spectrum tables.

Every mutation runs in one explicit Transaction: either all of its statements
commit or none do. Validation that needs no database (record shape, column
names) happens before the transaction starts; checks against live data
(referential integrity, dependent rows, identity high-water marks) happen
inside it, so a concurrent writer cannot invalidate them between check and
write.

Non-fatal conditions are collected as diagnostics on the MutationResult and,
after the transaction has committed, issued as SchemaMismatchWarning:

- a caller-supplied ion_id/spectrum_id column is replaced by store identities
- columns unknown to the table are not written unless add_columns=True
- ids passed to a delete that are not in the table are ignored
"""
import logging
import numbers
import sqlite3
import warnings
from collections import Counter
from typing import Iterable, Iterator, Sequence

from pydantic import ValidationError

from compdb.errors import (
    DependentRowsExistError,
    InvalidRecordError,
    ReferentialIntegrityError,
    SchemaMismatchWarning,
    TransactionInProgressError,
)
from compdb.models import RECORD_MODELS, Diagnostic, MutationResult
from compdb.models.record_models import canonical_compound_id
from compdb.schema import (
    COMPOUND_TABLE,
    IDENTITY_COLUMNS,
    ION_TABLE,
    JOIN_KEY,
    SPECTRUM_TABLE,
    SchemaRegistry,
    quote_identifier,
)
from compdb.utils import Records, as_frame, frame_to_rows, infer_sql_type, to_sql_value

_log = logging.getLogger(__name__)

# Stay below SQLITE_MAX_VARIABLE_NUMBER of older SQLite builds.
_MAX_VARIABLES = 500

DEPENDENT_TABLES = (ION_TABLE, SPECTRUM_TABLE)


class Transaction:
    """Explicit transaction boundary around a group of statements.

    BEGIN IMMEDIATE takes SQLite's write lock up front, so concurrent writers
    serialize on the database's own locking and readers never see a partial
    write. Leaving the block normally commits; an exception rolls back and
    propagates.

    Usage:
        with Transaction(conn):
            conn.execute("DELETE FROM ms_ion WHERE ...")
            conn.execute("DELETE FROM ms_compound WHERE ...")
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def __enter__(self):
        if self.conn.in_transaction:
            raise TransactionInProgressError(
                "The connection has an uncommitted transaction; commit or roll it "
                "back before writing through the compound database"
            )
        self.conn.execute("BEGIN IMMEDIATE")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.conn.commit()
        else:
            _log.debug("Rolling back transaction after %s", exc_type.__name__)
            self.conn.rollback()
        return False


def _chunks(values: Sequence, size: int = _MAX_VARIABLES) -> Iterator[list]:
    values = list(values)
    for i in range(0, len(values), size):
        yield values[i:i + size]


def _existing(conn: sqlite3.Connection, table: str, column: str, values: Iterable) -> set:
    """Subset of values present in table.column."""
    found = set()
    for chunk in _chunks(list(dict.fromkeys(values))):
        placeholders = ', '.join('?' for _ in chunk)
        rows = conn.execute(
            f"SELECT DISTINCT {column} FROM {table} WHERE {column} IN ({placeholders})",
            chunk
        ).fetchall()
        found.update(row[0] for row in rows)
    return found


def _identity(value) -> int:
    """Integer identity; integral floats are accepted, other fractions are not."""
    if isinstance(value, numbers.Real) and not isinstance(value, numbers.Integral) \
            and not float(value).is_integer():
        raise ValueError(f"{value!r} is not a whole number")
    return int(value)


def _delete_where_in(conn: sqlite3.Connection, table: str, column: str, values: Sequence) -> int:
    deleted = 0
    for chunk in _chunks(values):
        placeholders = ', '.join('?' for _ in chunk)
        cursor = conn.execute(f"DELETE FROM {table} WHERE {column} IN ({placeholders})", chunk)
        deleted += cursor.rowcount
    return deleted


def current_max_id(conn: sqlite3.Connection, table: str) -> int:
    """Highest identity ever used in an ion or spectrum table.

    Takes the larger of the live maximum and SQLite's AUTOINCREMENT
    high-water mark, so identities of deleted rows are not handed out again.
    """
    id_col = IDENTITY_COLUMNS[table]
    live = conn.execute(f"SELECT MAX({id_col}) FROM {table}").fetchone()[0] or 0
    has_sequence = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
    ).fetchone()
    seq = 0
    if has_sequence:
        row = conn.execute("SELECT seq FROM sqlite_sequence WHERE name = ?", (table,)).fetchone()
        seq = row[0] if row and row[0] is not None else 0
    return max(int(live), int(seq))


class MutationEngine:
    """Validates and applies inserts and deletes against one schema registry."""

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    # =========================================================================
    # Diagnostics
    # =========================================================================

    @staticmethod
    def _diagnose(result: MutationResult, code: str, message: str):
        result.diagnostics.append(Diagnostic(code=code, message=message))
        _log.warning("%s: %s", result.table, message)

    @staticmethod
    def _emit(result: MutationResult):
        for diagnostic in result.diagnostics:
            warnings.warn(diagnostic.message, SchemaMismatchWarning, stacklevel=4)

    # =========================================================================
    # Insert
    # =========================================================================

    def _validate_batch(self, table: str, records: Records) -> tuple[list[dict], list[str], dict]:
        """Validate rows with the table's record model.

        Returns:
            Tuple of (validated rows, batch column order, SQL types inferred
            from the caller's columns)
        """
        frame = as_frame(records)
        id_col = IDENTITY_COLUMNS[table]
        if table != COMPOUND_TABLE and id_col in frame.columns:
            frame = frame.drop(columns=[id_col])

        model = RECORD_MODELS[table]
        rows = []
        for i, raw in enumerate(frame_to_rows(frame)):
            raw = {k: v for k, v in raw.items() if v is not None}
            try:
                rows.append(model.model_validate(raw).to_row())
            except ValidationError as err:
                raise InvalidRecordError(f"Row {i} of the '{table}' batch is invalid: {err}") from err

        consumed = {'mz', 'intensity'} if table == SPECTRUM_TABLE else set()
        columns = []
        for row in rows:
            columns.extend(col for col in row if col not in columns)
        columns.extend(col for col in frame.columns
                       if col not in columns and col not in consumed)

        types = {col: infer_sql_type(frame[col]) for col in frame.columns}
        return rows, columns, types

    def insert(
        self,
        conn: sqlite3.Connection,
        table: str,
        records: Records,
        add_columns: bool = False
    ) -> MutationResult:
        """Insert a batch of rows into a data table.

        Steps: normalize compound_id to text, validate rows, check referential
        integrity against ms_compound, assign identities to ions and spectra,
        optionally widen the table, then append all rows in one transaction.

        Args:
            conn: Open read-write connection
            table: ms_compound, ms_ion or ms_spectrum
            records: Batch of rows; an empty batch is a no-op
            add_columns: If True, add batch columns missing from the table.
                If False, such columns are not written.

        Returns:
            MutationResult; ids holds the compound ids or assigned identities

        Raises:
            InvalidRecordError: If rows fail validation, compound ids are
                duplicated, or a new column name is not a valid identifier
            ReferentialIntegrityError: If any ion or spectrum references a
                compound that does not exist; nothing is inserted
        """
        if table not in RECORD_MODELS:
            raise ValueError(f"Cannot insert into '{table}'")
        result = MutationResult(table=table, operation='insert')

        frame = as_frame(records)
        if len(frame) == 0:
            _log.debug("Empty batch for %s; nothing to insert", table)
            return result

        id_col = IDENTITY_COLUMNS[table]
        assigns_ids = table in DEPENDENT_TABLES
        if assigns_ids and id_col in frame.columns:
            self._diagnose(result, 'identity_replaced',
                           f"Column '{id_col}' will be replaced with internal identifiers.")

        rows, columns, types = self._validate_batch(table, frame)
        compound_ids = [row[JOIN_KEY] for row in rows]
        if table == COMPOUND_TABLE:
            duplicated = sorted(cid for cid, n in Counter(compound_ids).items() if n > 1)
            if duplicated:
                raise InvalidRecordError(f"Duplicated 'compound_id' values in batch: {duplicated}")

        live = self.registry.columns(table)
        live_lower = {col.lower(): col for col in live}
        new_columns = []
        for col in columns:
            if col in live:
                continue
            if col.lower() in live_lower:
                raise InvalidRecordError(
                    f"Column '{col}' differs only in case from existing column "
                    f"'{live_lower[col.lower()]}' of '{table}'"
                )
            new_columns.append(col)

        if new_columns and not add_columns:
            self._diagnose(result, 'columns_dropped',
                           f"Columns {new_columns} are not in '{table}' and will not be "
                           f"written. Use add_columns=True to add them.")
            columns = [col for col in columns if col not in new_columns]
            new_columns = []
        for col in new_columns:
            quote_identifier(col)

        with Transaction(conn):
            if table == COMPOUND_TABLE:
                clashing = _existing(conn, COMPOUND_TABLE, JOIN_KEY, compound_ids)
                if clashing:
                    raise InvalidRecordError(
                        f"Compound IDs already present in '{COMPOUND_TABLE}': {sorted(clashing)}"
                    )
                ids = compound_ids
            else:
                known = _existing(conn, COMPOUND_TABLE, JOIN_KEY, compound_ids)
                missing = set(compound_ids) - known
                if missing:
                    raise ReferentialIntegrityError(table, missing)
                max_id = current_max_id(conn, table)
                ids = list(range(max_id + 1, max_id + 1 + len(rows)))
                for row, new_id in zip(rows, ids):
                    row[id_col] = new_id
                columns = [id_col] + columns

            for col in new_columns:
                sql_type = types.get(col, 'TEXT')
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {quote_identifier(col)} {sql_type}")
                _log.info("Added column %s.%s (%s)", table, col, sql_type)

            names = ', '.join(quote_identifier(col) for col in columns)
            placeholders = ', '.join('?' for _ in columns)
            conn.executemany(
                f"INSERT INTO {table} ({names}) VALUES ({placeholders})",
                [[to_sql_value(row.get(col)) for col in columns] for row in rows]
            )

        for col in new_columns:
            self.registry.add_column(table, col, types.get(col, 'TEXT'))

        result.rows = len(rows)
        result.ids = ids
        result.added_columns = new_columns
        _log.info("Inserted %d rows into %s", result.rows, table)
        self._emit(result)
        return result

    # =========================================================================
    # Delete
    # =========================================================================

    def delete(self, conn: sqlite3.Connection, table: str, ids: Iterable) -> MutationResult:
        """Delete ions or spectra by identity.

        Identities not present in the table are ignored with a diagnostic.

        Raises:
            InvalidRecordError: If an id is not an integer
        """
        if table not in DEPENDENT_TABLES:
            raise ValueError(f"Use delete_compounds() for '{table}'; got '{table}'")
        id_col = IDENTITY_COLUMNS[table]
        result = MutationResult(table=table, operation='delete')
        try:
            ids = list(dict.fromkeys(_identity(i) for i in ids))
        except (TypeError, ValueError) as err:
            raise InvalidRecordError(f"'{id_col}' values must be integers: {err}") from err
        if not ids:
            return result

        with Transaction(conn):
            existing = _existing(conn, table, id_col, ids)
            unknown = [i for i in ids if i not in existing]
            if unknown:
                self._diagnose(result, 'ids_ignored',
                               f"Some IDs are not valid and will be ignored: {unknown}")
            targets = [i for i in ids if i in existing]
            result.rows = _delete_where_in(conn, table, id_col, targets)

        result.ids = targets
        _log.info("Deleted %d rows from %s", result.rows, table)
        self._emit(result)
        return result

    def delete_compounds(
        self,
        conn: sqlite3.Connection,
        ids: Iterable,
        recursive: bool = False
    ) -> MutationResult:
        """Delete compounds, optionally together with their ions and spectra.

        Args:
            conn: Open read-write connection
            ids: Compound identifiers
            recursive: If True, delete dependent ions and spectra first.
                If False, any dependent row blocks the whole operation.

        Raises:
            DependentRowsExistError: If recursive is False and any of the
                compounds has ions or spectra; nothing is deleted
        """
        result = MutationResult(table=COMPOUND_TABLE, operation='delete')
        ids = list(dict.fromkeys(canonical_compound_id(i) for i in ids))
        if not ids:
            return result

        with Transaction(conn):
            existing = _existing(conn, COMPOUND_TABLE, JOIN_KEY, ids)
            unknown = [i for i in ids if i not in existing]
            if unknown:
                self._diagnose(result, 'ids_ignored',
                               f"Some compound IDs are not valid and will be ignored: {unknown}")
            blocked = set()
            for dependent in DEPENDENT_TABLES:
                blocked |= _existing(conn, dependent, JOIN_KEY, ids)
            if blocked and not recursive:
                raise DependentRowsExistError(len(blocked))
            if blocked:
                for dependent in DEPENDENT_TABLES:
                    result.cascaded[dependent] = _delete_where_in(conn, dependent, JOIN_KEY, ids)
            targets = [i for i in ids if i in existing]
            result.rows = _delete_where_in(conn, COMPOUND_TABLE, JOIN_KEY, targets)

        result.ids = targets
        _log.info("Deleted %d compounds (cascaded: %s)", result.rows, result.cascaded)
        self._emit(result)
        return result
