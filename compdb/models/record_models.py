"""
Pydantic record models, one per data table.

Records validate the core columns of a row and keep any additional columns in
the model's extra side-bag (model_extra). Extra columns are written only when
the insert asks for the table to be widened.
"""
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Record(BaseModel):
    model_config = ConfigDict(extra='allow')

    def to_row(self) -> dict:
        """Core and extra columns as a flat dict, dropping unset optionals."""
        return self.model_dump(exclude_none=True)


class CompoundRecord(_Record):
    """Row of ms_compound."""
    compound_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    inchi: Optional[str] = None
    inchikey: Optional[str] = None
    formula: Optional[str] = None
    exactmass: Optional[float] = None
    synonyms: Optional[list[str]] = None

    @field_validator('compound_id', mode='before')
    @classmethod
    def _canonical_id(cls, v):
        return canonical_compound_id(v)

    @field_validator('synonyms', mode='before')
    @classmethod
    def _split_synonyms(cls, v):
        if isinstance(v, str):
            return [v]
        return v


class IonRecord(_Record):
    """Row of ms_ion. ion_id is assigned by the store."""
    compound_id: str = Field(..., min_length=1)
    ion_adduct: str
    ion_mz: float
    ion_rt: float

    @field_validator('compound_id', mode='before')
    @classmethod
    def _canonical_id(cls, v):
        return canonical_compound_id(v)


class Peaks(BaseModel):
    """Paired m/z and intensity sequences of one spectrum."""
    mz: list[float]
    intensity: list[float]

    @model_validator(mode='after')
    def _paired(self):
        if len(self.mz) != len(self.intensity):
            raise ValueError(
                f"'mz' and 'intensity' must have the same length, "
                f"got {len(self.mz)} and {len(self.intensity)}"
            )
        return self


class SpectrumRecord(_Record):
    """Row of ms_spectrum. spectrum_id is assigned by the store.

    Peaks can be given as a {'mz': [...], 'intensity': [...]} mapping, as a
    list of (mz, intensity) pairs, or as separate 'mz' and 'intensity' columns.
    """
    compound_id: str = Field(..., min_length=1)
    msLevel: Optional[int] = None
    precursorMz: Optional[float] = None
    polarity: Optional[int] = None
    collision_energy: Optional[float] = None
    instrument: Optional[str] = None
    peaks: Optional[Peaks] = None

    @field_validator('compound_id', mode='before')
    @classmethod
    def _canonical_id(cls, v):
        return canonical_compound_id(v)

    @model_validator(mode='before')
    @classmethod
    def _collect_peaks(cls, data: Any):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get('peaks') is None and 'mz' in data and 'intensity' in data:
            data['peaks'] = {'mz': data.pop('mz'), 'intensity': data.pop('intensity')}
        peaks = data.get('peaks')
        if isinstance(peaks, (list, tuple)):
            data['peaks'] = {
                'mz': [p[0] for p in peaks],
                'intensity': [p[1] for p in peaks],
            }
        return data


class MetadataRecord(BaseModel):
    """Provenance of the annotation resource held by a store."""
    model_config = ConfigDict(extra='allow')

    source: Optional[str] = None
    url: Optional[str] = None
    source_version: Optional[str] = None
    source_date: Optional[str] = None
    organism: Optional[str] = None


def canonical_compound_id(value: Union[str, int, float, None]):
    """Compound IDs are stored as text; integral floats lose their '.0'."""
    if value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        return value.strip()
    return str(value)


RECORD_MODELS = {
    'ms_compound': CompoundRecord,
    'ms_ion': IonRecord,
    'ms_spectrum': SpectrumRecord,
}
