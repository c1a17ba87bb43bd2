"""
Utility modules for the compound database.
"""

from compdb.utils.tabular import (
    Records,
    as_frame,
    frame_to_rows,
    is_missing,
    to_python,
    to_sql_value,
    decode_json,
    infer_sql_type
)

__all__ = [
    'Records',
    'as_frame',
    'frame_to_rows',
    'is_missing',
    'to_python',
    'to_sql_value',
    'decode_json',
    'infer_sql_type'
]
