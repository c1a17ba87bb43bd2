"""
Error and warning classes for the compound database.

All errors derive from CompDbError so callers can catch the whole family.
Validation errors are raised before any SQL statement runs; failures inside a
write transaction are rolled back before they propagate.
"""


class CompDbError(Exception):
    """Base class for all compound database errors."""


class InvalidFilterError(CompDbError, ValueError):
    """Unknown field, operator incompatible with the field, or bad combinator arity."""


class InvalidRecordError(CompDbError, ValueError):
    """A batch of records cannot be written to the target table."""


class ReferentialIntegrityError(CompDbError):
    """An inserted ion or spectrum references a compound that does not exist."""

    def __init__(self, table: str, missing: list[str]):
        self.table = table
        self.missing = sorted(missing)
        shown = ", ".join(repr(m) for m in self.missing[:10])
        more = f" (and {len(self.missing) - 10} more)" if len(self.missing) > 10 else ""
        super().__init__(
            f"All values of 'compound_id' inserted into '{table}' must exist in "
            f"'ms_compound'. Unknown compound IDs: {shown}{more}. "
            f"List available IDs with compounds(columns=['compound_id', 'name'])."
        )


class DependentRowsExistError(CompDbError):
    """A non-recursive compound delete is blocked by ions or spectra."""

    def __init__(self, blocked: int):
        self.blocked = blocked
        super().__init__(
            f"Ions or spectra for {blocked} of the specified compounds present. "
            f"Use 'recursive=True' to delete compounds together with all ions "
            f"and spectra associated with them."
        )


class ReadOnlyViolationError(CompDbError):
    """A mutation was attempted on a read-only store handle."""


class StoreNotInitializedError(CompDbError):
    """An operation was attempted without a live database."""


class TransactionInProgressError(CompDbError):
    """A write was attempted while the connection already has an open transaction."""


class SchemaMismatchWarning(UserWarning):
    """Non-fatal mismatch between caller-supplied data and the live schema."""
