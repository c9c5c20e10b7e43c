"""Validation and quoting of identifiers that cannot be bound as parameters."""

import re

from .errors import InvalidIdentifier

TABLE_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$')
_FORBIDDEN_COLUMN_CHARS = re.compile(r'[`\\\x00-\x1f\x7f]')


def is_valid_table_name(name):
    return isinstance(name, str) and bool(TABLE_NAME_RE.match(name))


def is_valid_column_name(name):
    return isinstance(name, str) and bool(name.strip()) and not _FORBIDDEN_COLUMN_CHARS.search(name)


def quote_table(name, error=InvalidIdentifier):
    """Back-quote ``table`` or ``database.table`` after checking it against the allow-list."""
    if not is_valid_table_name(name):
        raise error(f'Invalid table name: {name!r}')
    return '.'.join(f'`{part}`' for part in name.split('.'))


def quote_column(name, error=InvalidIdentifier):
    if not is_valid_column_name(name):
        raise error(f'Invalid column name: {name!r}')
    return f'`{name}`'


def quote_columns(names, error=InvalidIdentifier):
    return ', '.join(quote_column(name, error) for name in names)


def quote_qualified_column(ref):
    """Quote ``column`` or ``table.column`` where both parts follow the table allow-list."""
    if not is_valid_table_name(ref):
        raise InvalidIdentifier(f'Invalid column reference: {ref!r}')
    return '.'.join(f'`{part}`' for part in ref.split('.'))
