"""
Translation of column projections and filter expressions into SQL.

A query is anchored at a start table (ms_compound, ms_ion or ms_spectrum).
The tables to join are the union of the tables holding the requested columns
and the tables referenced by the filter, so a filter on ion m/z joins ms_ion
even when no ion column is returned. Joins are LEFT OUTER JOINs on
compound_id, so a compound query that returns ion columns keeps compounds
that have no ions.

Each filter leaf becomes one parameterized predicate. Combinators are folded
strictly left to right with explicit parentheses, so

    FilterCombinator([a, b, c], ['AND', 'OR'])

renders as ((a AND b) OR c) and never relies on SQL operator precedence.
"""
import logging
import sqlite3
from typing import Optional, Sequence

import pandas as pd

from compdb.errors import InvalidFilterError
from compdb.filters import STRING_OPERATORS, Filter, FilterCombinator, FilterExpression
from compdb.models import CompiledQuery
from compdb.schema import (
    COMPOUND_TABLE,
    DATA_TABLES,
    SchemaRegistry,
    quote_identifier,
)
from compdb.utils import decode_json, to_python

_log = logging.getLogger(__name__)

_LIKE_PATTERNS = {
    'contains': '%{}%',
    'startsWith': '{}%',
    'endsWith': '%{}',
}


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class QueryTranslator:
    """Compile projections and filters against one schema registry."""

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    def resolve_columns(
        self,
        columns: Sequence[str],
        start_from: str = COMPOUND_TABLE
    ) -> list[tuple[str, str, str]]:
        """Resolve requested columns to (label, table, column) triples.

        Duplicate requests are collapsed, keeping the first occurrence.

        Raises:
            InvalidFilterError: If a column is unknown or ambiguous
        """
        resolved = []
        seen = set()
        for label in columns:
            if label in seen:
                continue
            seen.add(label)
            table, column = self.registry.resolve(label, start_from)
            resolved.append((label, table, column))
        return resolved

    def compile_filter(
        self,
        expression: FilterExpression,
        start_from: str = COMPOUND_TABLE
    ) -> tuple[str, list, list[str]]:
        """Render a filter expression as a WHERE predicate.

        Returns:
            Tuple of (predicate SQL, bound parameters, tables referenced)
        """
        if isinstance(expression, Filter):
            return self._compile_leaf(expression, start_from)
        if not isinstance(expression, FilterCombinator):
            raise InvalidFilterError(
                f"Expected Filter or FilterCombinator, got {type(expression).__name__}"
            )

        sql, params, tables = self.compile_filter(expression.filters[0], start_from)
        params = list(params)
        tables = list(tables)
        for op, sub in zip(expression.operators, expression.filters[1:]):
            sub_sql, sub_params, sub_tables = self.compile_filter(sub, start_from)
            sql = f"({sql} {op} {sub_sql})"
            params.extend(sub_params)
            tables.extend(t for t in sub_tables if t not in tables)
        if expression.negate:
            sql = f"NOT ({sql})"
        return sql, params, tables

    def _compile_leaf(self, leaf: Filter, start_from: str) -> tuple[str, list, list[str]]:
        table, column = leaf.validate(self.registry, start_from)
        target = f"{table}.{quote_identifier(column)}"
        if leaf.operator == 'in':
            placeholders = ', '.join('?' for _ in leaf.value)
            sql = f"{target} IN ({placeholders})"
            params = [to_python(v) for v in leaf.value]
        elif leaf.operator in STRING_OPERATORS:
            pattern = _LIKE_PATTERNS[leaf.operator].format(_escape_like(leaf.value))
            sql = f"{target} LIKE ? ESCAPE '\\'"
            params = [pattern]
        else:
            sql = f"{target} {leaf.operator} ?"
            params = [to_python(leaf.value)]
        if leaf.negate:
            sql = f"NOT ({sql})"
        return sql, params, [table]

    def translate(
        self,
        columns: Sequence[str],
        filter: Optional[FilterExpression] = None,
        start_from: str = COMPOUND_TABLE
    ) -> CompiledQuery:
        """Build one SELECT for the requested columns and filter.

        Args:
            columns: Column names, optionally qualified as 'table.column'
            filter: Optional Filter or FilterCombinator
            start_from: Table the join graph is anchored at

        Returns:
            CompiledQuery with SQL, parameters, result labels and joined tables

        Raises:
            InvalidFilterError: If a column or filter field cannot be resolved,
                or an operator does not suit its field
            ValueError: If start_from is not a data table or no columns are given
        """
        if start_from not in DATA_TABLES:
            raise ValueError(
                f"Invalid start table '{start_from}'. Must be one of: {', '.join(DATA_TABLES)}"
            )
        if not columns:
            raise ValueError("At least one column must be requested")

        resolved = self.resolve_columns(columns, start_from)
        needed = {table for _, table, _ in resolved}

        where, params = '', []
        if filter is not None:
            where, params, filter_tables = self.compile_filter(filter, start_from)
            needed.update(filter_tables)

        tables = [start_from] + [t for t in DATA_TABLES if t in needed and t != start_from]

        select = ', '.join(
            f"{table}.{quote_identifier(column)} AS \"{label}\""
            for label, table, column in resolved
        )
        sql = f"SELECT {select} FROM {start_from}"
        for table in tables[1:]:
            anchor = COMPOUND_TABLE if COMPOUND_TABLE in tables[:tables.index(table)] else start_from
            sql += f" LEFT OUTER JOIN {table} ON {self.registry.join_condition(anchor, table)}"
        if where:
            sql += f" WHERE {where}"
        sql += " ORDER BY " + ', '.join(f"{table}.rowid" for table in tables)

        return CompiledQuery(
            sql=sql,
            params=params,
            columns=[label for label, _, _ in resolved],
            tables=tables
        )

    def execute(self, conn: sqlite3.Connection, query: CompiledQuery) -> pd.DataFrame:
        """Run a compiled query and return its rows in requested column order.

        JSON columns (synonyms, peaks) are decoded into lists / dicts.
        """
        _log.debug("Executing: %s %s", query.sql, query.params)
        frame = pd.read_sql_query(query.sql, conn, params=query.params)
        frame.columns = query.columns
        for label in query.columns:
            table, column = self.registry.resolve(label, query.tables[0])
            if self.registry.field_kind(table, column) == 'json':
                frame[label] = frame[label].map(decode_json)
        return frame
