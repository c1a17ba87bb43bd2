"""
Helpers for the in-memory tabular exchange with callers.

Batches come in as pandas DataFrames, lists of dicts, dicts of lists or record
models and go out as DataFrames. These helpers convert between those shapes
and the plain Python values sqlite3 can bind.
"""
import json
import math
from datetime import date, datetime
from typing import Any, Iterable, Union

import numpy as np
import pandas as pd
from pandas.api import types as ptypes
from pydantic import BaseModel

Records = Union[pd.DataFrame, Iterable[dict], dict, Iterable[BaseModel], None]


def as_frame(records: Records) -> pd.DataFrame:
    """Coerce a batch of records into a DataFrame.

    Args:
        records: DataFrame, dict of columns, a single record dict or model,
            or an iterable of dicts / pydantic models

    Returns:
        A new DataFrame; an empty one for None or an empty batch
    """
    if records is None:
        return pd.DataFrame()
    if isinstance(records, pd.DataFrame):
        return records.reset_index(drop=True).copy()
    if isinstance(records, BaseModel):
        records = [records]
    if isinstance(records, dict):
        # dict of columns if every value is list-like, otherwise one record
        if records and all(isinstance(v, (list, tuple, np.ndarray, pd.Series))
                           for v in records.values()):
            return pd.DataFrame(records)
        records = [records]
    rows = [r.model_dump(exclude_none=True) if isinstance(r, BaseModel) else dict(r)
            for r in records]
    return pd.DataFrame(rows)


def is_missing(value: Any) -> bool:
    """True for None, NaN, NaT and pd.NA; False for containers."""
    if value is None or value is pd.NA or value is pd.NaT:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    return False


def to_python(value: Any) -> Any:
    """Convert numpy and pandas scalars to plain Python values; missing to None."""
    if is_missing(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    return value


def frame_to_rows(frame: pd.DataFrame) -> list[dict]:
    """Rows of a DataFrame as dicts of plain Python values."""
    columns = list(frame.columns)
    return [
        {col: to_python(value) for col, value in zip(columns, values)}
        for values in frame.itertuples(index=False, name=None)
    ]


def to_sql_value(value: Any) -> Any:
    """Value as bound into an INSERT; containers are stored as JSON text."""
    value = to_python(value)
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value)
    if isinstance(value, bool):
        return int(value)
    return value


def decode_json(value: Any) -> Any:
    """Inverse of to_sql_value for JSON columns."""
    if value is None or not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def infer_sql_type(series: pd.Series) -> str:
    """SQLite column type for a new column, from its values.

    bool and integer columns become INTEGER, float columns REAL, and anything
    else (strings, lists, mixed objects, all-missing) TEXT.
    """
    if ptypes.is_bool_dtype(series) or ptypes.is_integer_dtype(series):
        return 'INTEGER'
    if ptypes.is_float_dtype(series):
        return 'REAL'
    values = [v for v in series if not is_missing(v)]
    if not values:
        return 'TEXT'
    if all(isinstance(v, (bool, int, np.integer, np.bool_)) for v in values):
        return 'INTEGER'
    if all(isinstance(v, (int, float, np.number)) and not isinstance(v, bool) for v in values):
        return 'REAL'
    return 'TEXT'
