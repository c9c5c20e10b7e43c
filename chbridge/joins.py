"""Multi-table join helpers.

Join predicates arrive as free text from the caller. They are accepted only
in the form ``a.b = c.d`` (several joined with ``AND``) and every identifier
is re-quoted, so nothing from the request reaches the query verbatim.
"""

import logging
import re

from .clickhouse import describe_table, engine_errors, list_tables
from .errors import InvalidIdentifier, InvalidParameter, MissingParameters, QueryFailed
from .identifiers import quote_qualified_column, quote_table

logger = logging.getLogger(__name__)

_REF = r'[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?'
_EQUALITY_RE = re.compile(rf'^\s*({_REF})\s*=\s*({_REF})\s*$')
_AND_RE = re.compile(r'\s+AND\s+', re.IGNORECASE)
_TABLE_STAR_RE = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)\.\*$')


def joinable_tables(client):
    return list_tables(client)


def _require_list(value, name):
    if not isinstance(value, list):
        raise InvalidParameter(f'{name} must be a JSON list')
    return value


def join_columns(client, tables):
    if not tables:
        raise MissingParameters('Missing required parameters: tables')
    _require_list(tables, 'tables')
    return {table: [col.to_dict() for col in describe_table(client, table)] for table in tables}


def build_join_condition(condition):
    if not isinstance(condition, str) or not condition.strip():
        raise InvalidIdentifier(f'Invalid join condition: {condition!r}')

    parts = []
    for clause in _AND_RE.split(condition.strip()):
        match = _EQUALITY_RE.match(clause)
        if not match:
            raise InvalidIdentifier(f'Invalid join condition: {condition!r}')
        left, right = match.groups()
        parts.append(f'{quote_qualified_column(left)} = {quote_qualified_column(right)}')
    return ' AND '.join(parts)


def _select_item(ref):
    if ref == '*':
        return ref
    match = _TABLE_STAR_RE.match(ref or '')
    if match:
        return f'{quote_table(match.group(1))}.*'
    return quote_qualified_column(ref)


def build_join_query(tables, join_conditions, selected_columns):
    if not tables or not selected_columns:
        raise MissingParameters('Missing required parameters: tables or selectedColumns')
    _require_list(tables, 'tables')
    _require_list(selected_columns, 'selectedColumns')
    join_conditions = _require_list(join_conditions or [], 'joinConditions')
    if len(join_conditions) != len(tables) - 1:
        raise InvalidParameter(
            f'Expected {len(tables) - 1} join conditions for {len(tables)} tables, '
            f'got {len(join_conditions)}'
        )

    query = f'SELECT {", ".join(_select_item(ref) for ref in selected_columns)} FROM {quote_table(tables[0])}'
    for table, condition in zip(tables[1:], join_conditions):
        query += f' JOIN {quote_table(table)} ON {build_join_condition(condition)}'
    return query


def execute_join(client, tables, join_conditions, selected_columns):
    query = build_join_query(tables, join_conditions, selected_columns)
    logger.info('Executing join query: %s', query)
    with engine_errors(QueryFailed, 'Failed to execute join'):
        rows, column_types = client.execute(query, with_column_types=True)
    names = [col[0] for col in column_types]
    return [dict(zip(names, row)) for row in rows]
