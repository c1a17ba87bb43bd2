from compdb.models.record_models import (
    CompoundRecord,
    IonRecord,
    SpectrumRecord,
    MetadataRecord,
    Peaks,
    RECORD_MODELS,
)
from compdb.models.store_models import (
    StoreState,
    StoreConfig,
    CompiledQuery,
    Diagnostic,
    MutationResult,
)

__all__ = [
    # Table records
    "CompoundRecord", "IonRecord", "SpectrumRecord", "MetadataRecord", "Peaks",
    "RECORD_MODELS",

    # Store
    "StoreState", "StoreConfig", "CompiledQuery", "Diagnostic", "MutationResult",
]
