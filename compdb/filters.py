"""
Filter expressions for querying the compound database.

A Filter is a single predicate (field, operator, value) bound to one column of
the compound, ion or spectrum table. Filters are combined with
FilterCombinator, which applies its boolean operators strictly left to right:

    FilterCombinator([f1, f2, f3], ['AND', 'OR'])  ==  ((f1 AND f2) OR f3)

The Python operators & | ~ build the same structures:

    (ExactmassFilter(190, '>') & NameFilter('caff', 'startsWith')) | IonAdductFilter('[M+H]+')

Malformed expressions are rejected when they are built, raising
InvalidFilterError. Filters built without a registry are checked against the
core columns; use CompoundDb.filter() to filter on user-added columns.
"""
import copy
import numbers
from typing import Any, Optional, Sequence, Union

import pandas as pd

from compdb.errors import InvalidFilterError
from compdb.models.record_models import canonical_compound_id
from compdb.schema import CORE_REGISTRY, JOIN_KEY, SchemaRegistry

COMPARISON_OPERATORS = ('>', '<', '>=', '<=')
STRING_OPERATORS = ('contains', 'startsWith', 'endsWith')
OPERATORS = ('=', '!=', *COMPARISON_OPERATORS, 'in', *STRING_OPERATORS)

_OPERATOR_ALIASES = {'==': '=', '<>': '!='}
_OPERATOR_ALIASES.update({op.lower(): op for op in ('in', *STRING_OPERATORS)})

LOGICAL_OPERATORS = ('AND', 'OR')
_LOGICAL_ALIASES = {'and': 'AND', '&': 'AND', 'or': 'OR', '|': 'OR'}


def _normalize_operator(operator: str) -> str:
    if not isinstance(operator, str):
        raise InvalidFilterError(f"Operator must be a string, got {operator!r}")
    op = operator.strip()
    op = _OPERATOR_ALIASES.get(op, _OPERATOR_ALIASES.get(op.lower(), op))
    if op not in OPERATORS:
        raise InvalidFilterError(
            f"Unsupported operator '{operator}'. Must be one of: {', '.join(OPERATORS)}"
        )
    return op


def _normalize_logical(operator: str) -> str:
    if not isinstance(operator, str) or operator.strip().lower() not in _LOGICAL_ALIASES:
        raise InvalidFilterError(
            f"Unsupported logical operator {operator!r}. Must be 'AND' or 'OR'"
        )
    return _LOGICAL_ALIASES[operator.strip().lower()]


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


class Filter:
    """Leaf predicate on one field.

    Args:
        field: Column name, optionally qualified as 'table.column'
        operator: One of =, !=, >, <, >=, <=, in, contains, startsWith, endsWith
        value: Scalar value, or a non-empty list/tuple/set for 'in'
        registry: Registry to validate the field against (core columns if None)
        negate: If True, the predicate is negated

    Raises:
        InvalidFilterError: If the field is unknown, the operator does not suit
            the field type, or the value has the wrong shape
    """

    def __init__(
        self,
        field: str,
        operator: str,
        value: Any,
        registry: Optional[SchemaRegistry] = None,
        negate: bool = False,
    ):
        if not isinstance(field, str) or not field:
            raise InvalidFilterError(f"Filter field must be a non-empty string, got {field!r}")
        self.field = field
        self.operator = _normalize_operator(operator)
        self.negate = negate
        self.value = self._normalize_value(value)
        self.validate(registry or CORE_REGISTRY)

    def _normalize_value(self, value):
        coerce = canonical_compound_id if self.field.split('.')[-1] == JOIN_KEY else None
        if self.operator == 'in':
            if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset, pd.Series)):
                raise InvalidFilterError(
                    f"Operator 'in' requires a list, tuple or set of values for '{self.field}'"
                )
            values = list(value)
            if not values:
                raise InvalidFilterError(f"Operator 'in' requires at least one value for '{self.field}'")
            if coerce:
                values = [coerce(v) for v in values]
            return tuple(values)
        if isinstance(value, (list, tuple, set, frozenset, dict)):
            raise InvalidFilterError(
                f"Operator '{self.operator}' requires a single value for '{self.field}'"
            )
        if value is None:
            raise InvalidFilterError(f"Filter value for '{self.field}' must not be None")
        return coerce(value) if coerce else value

    def validate(self, registry: SchemaRegistry, start_from: Optional[str] = None):
        """Check field, operator and value against a registry.

        Returns:
            The (table, column) the field resolves to
        """
        if start_from is None:
            table, column = registry.resolve(self.field)
        else:
            table, column = registry.resolve(self.field, start_from)
        kind = registry.field_kind(table, column)
        if kind == 'json':
            raise InvalidFilterError(f"Field '{self.field}' holds multi-valued data and cannot be filtered")
        if self.operator in COMPARISON_OPERATORS and kind != 'numeric':
            raise InvalidFilterError(
                f"Operator '{self.operator}' requires a numeric field; '{self.field}' is {kind}"
            )
        if self.operator in STRING_OPERATORS and kind != 'text':
            raise InvalidFilterError(
                f"Operator '{self.operator}' requires a text field; '{self.field}' is {kind}"
            )
        values = self.value if self.operator == 'in' else (self.value,)
        for v in values:
            if kind == 'numeric' and not _is_number(v):
                raise InvalidFilterError(f"Field '{self.field}' is numeric; got {v!r}")
            if kind == 'text' and not isinstance(v, str):
                raise InvalidFilterError(f"Field '{self.field}' is text; got {v!r}")
        return table, column

    def leaves(self) -> list['Filter']:
        return [self]

    def __and__(self, other: 'FilterExpression') -> 'FilterCombinator':
        return FilterCombinator([self, other], ['AND'])

    def __or__(self, other: 'FilterExpression') -> 'FilterCombinator':
        return FilterCombinator([self, other], ['OR'])

    def __invert__(self) -> 'Filter':
        clone = copy.copy(self)
        clone.negate = not self.negate
        return clone

    def __eq__(self, other):
        if not isinstance(other, Filter):
            return NotImplemented
        return (self.field, self.operator, self.value, self.negate) == \
            (other.field, other.operator, other.value, other.negate)

    def __hash__(self):
        return hash((self.field, self.operator, self.value, self.negate))

    def __repr__(self):
        prefix = 'NOT ' if self.negate else ''
        return f"{prefix}{type(self).__name__}({self.field!r} {self.operator} {self.value!r})"


class FilterCombinator:
    """Ordered filters joined by ordered AND/OR operators, evaluated left to right.

    Args:
        filters: Filters or nested combinators, at least one
        operators: 'AND'/'OR' tokens; exactly len(filters) - 1 of them

    Raises:
        InvalidFilterError: On arity mismatch or unknown operator tokens
    """

    def __init__(self, filters: Sequence['FilterExpression'], operators: Sequence[str] = ()):
        filters = list(filters)
        if not filters:
            raise InvalidFilterError("A filter combinator needs at least one filter")
        for f in filters:
            if not isinstance(f, (Filter, FilterCombinator)):
                raise InvalidFilterError(f"Expected Filter or FilterCombinator, got {type(f).__name__}")
        if isinstance(operators, str):
            operators = [operators] * (len(filters) - 1)
        operators = list(operators)
        if len(operators) != len(filters) - 1:
            raise InvalidFilterError(
                f"{len(filters)} filters need {len(filters) - 1} logical operators, "
                f"got {len(operators)}"
            )
        self.filters = filters
        self.operators = [_normalize_logical(op) for op in operators]
        self.negate = False

    def leaves(self) -> list[Filter]:
        """All leaf filters in left-to-right order."""
        return [leaf for f in self.filters for leaf in f.leaves()]

    def __and__(self, other: 'FilterExpression') -> 'FilterCombinator':
        return FilterCombinator([self, other], ['AND'])

    def __or__(self, other: 'FilterExpression') -> 'FilterCombinator':
        return FilterCombinator([self, other], ['OR'])

    def __invert__(self) -> 'FilterCombinator':
        clone = FilterCombinator(self.filters, self.operators)
        clone.negate = not self.negate
        return clone

    def __len__(self):
        return len(self.filters)

    def __repr__(self):
        parts = [repr(self.filters[0])]
        for op, f in zip(self.operators, self.filters[1:]):
            parts.append(f"{op} {f!r}")
        prefix = 'NOT ' if self.negate else ''
        return f"{prefix}FilterCombinator({' '.join(parts)})"


FilterExpression = Union[Filter, FilterCombinator]


# =============================================================================
# Typed filters, one per supported field
# =============================================================================

class _FieldFilter(Filter):
    """Filter bound to a fixed field; subclasses set FIELD."""

    FIELD: str = ''

    def __init__(self, value: Any, operator: str = '=', negate: bool = False):
        super().__init__(self.FIELD, operator, value, negate=negate)


class CompoundIdFilter(_FieldFilter):
    FIELD = 'compound_id'


class NameFilter(_FieldFilter):
    FIELD = 'name'


class InchiFilter(_FieldFilter):
    FIELD = 'inchi'


class InchikeyFilter(_FieldFilter):
    FIELD = 'inchikey'


class FormulaFilter(_FieldFilter):
    FIELD = 'formula'


class ExactmassFilter(_FieldFilter):
    FIELD = 'exactmass'


class IonIdFilter(_FieldFilter):
    FIELD = 'ion_id'


class IonAdductFilter(_FieldFilter):
    FIELD = 'ion_adduct'


class IonMzFilter(_FieldFilter):
    FIELD = 'ion_mz'


class IonRtFilter(_FieldFilter):
    FIELD = 'ion_rt'


class SpectrumIdFilter(_FieldFilter):
    FIELD = 'spectrum_id'


class MsLevelFilter(_FieldFilter):
    FIELD = 'msLevel'


class PrecursorMzFilter(_FieldFilter):
    FIELD = 'precursorMz'


TYPED_FILTERS = (
    CompoundIdFilter, NameFilter, InchiFilter, InchikeyFilter, FormulaFilter,
    ExactmassFilter, IonIdFilter, IonAdductFilter, IonMzFilter, IonRtFilter,
    SpectrumIdFilter, MsLevelFilter, PrecursorMzFilter,
)


def supported_filters(registry: Optional[SchemaRegistry] = None) -> pd.DataFrame:
    """List typed filters with the field, table and kind they apply to.

    Args:
        registry: Registry to report tables and kinds from (core columns if None)

    Returns:
        DataFrame with columns: filter, field, table, kind
    """
    registry = registry or CORE_REGISTRY
    records = []
    for cls in TYPED_FILTERS:
        table, column = registry.resolve(cls.FIELD)
        records.append({
            'filter': cls.__name__,
            'field': cls.FIELD,
            'table': table,
            'kind': registry.field_kind(table, column),
        })
    return pd.DataFrame(records)
