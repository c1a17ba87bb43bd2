from compdb.errors import (
    CompDbError,
    InvalidFilterError,
    InvalidRecordError,
    ReferentialIntegrityError,
    DependentRowsExistError,
    ReadOnlyViolationError,
    StoreNotInitializedError,
    SchemaMismatchWarning,
    TransactionInProgressError,
)
from compdb.models import (
    # Table records
    CompoundRecord,
    IonRecord,
    SpectrumRecord,
    MetadataRecord,
    Peaks,

    # Store
    StoreConfig,
    StoreState,
    CompiledQuery,
    Diagnostic,
    MutationResult,
)
from compdb.filters import (
    Filter,
    FilterCombinator,
    CompoundIdFilter,
    NameFilter,
    InchiFilter,
    InchikeyFilter,
    FormulaFilter,
    ExactmassFilter,
    IonIdFilter,
    IonAdductFilter,
    IonMzFilter,
    IonRtFilter,
    SpectrumIdFilter,
    MsLevelFilter,
    PrecursorMzFilter,
    supported_filters,
)

# Expose commonly-used classes at top level for convenience
from compdb.schema import SchemaRegistry
from compdb.query import QueryTranslator
from compdb.mutation import MutationEngine, Transaction
from compdb.store import CompoundDb, OwnedConnection, ReferencedPath, connect

__all__ = [
    # Errors
    "CompDbError", "InvalidFilterError", "InvalidRecordError",
    "ReferentialIntegrityError", "DependentRowsExistError",
    "ReadOnlyViolationError", "StoreNotInitializedError", "TransactionInProgressError",
    "SchemaMismatchWarning",

    # Models
    "CompoundRecord", "IonRecord", "SpectrumRecord", "MetadataRecord", "Peaks",
    "StoreConfig", "StoreState", "CompiledQuery", "Diagnostic", "MutationResult",

    # Filters
    "Filter", "FilterCombinator",
    "CompoundIdFilter", "NameFilter", "InchiFilter", "InchikeyFilter",
    "FormulaFilter", "ExactmassFilter", "IonIdFilter", "IonAdductFilter",
    "IonMzFilter", "IonRtFilter", "SpectrumIdFilter", "MsLevelFilter",
    "PrecursorMzFilter", "supported_filters",

    # Core components
    "SchemaRegistry", "QueryTranslator", "MutationEngine", "Transaction",
    "CompoundDb", "OwnedConnection", "ReferencedPath", "connect",
]
