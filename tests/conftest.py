"""Pytest configuration and shared fixtures."""

import os
import re
import sys

import pytest
from clickhouse_driver.errors import ServerException

# Make the project root importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

_IDENT = r'`[^`]+`(?:\.`[^`]+`)?'
_CREATE_RE = re.compile(rf'^CREATE TABLE IF NOT EXISTS ({_IDENT}) \((.*)\) ENGINE', re.DOTALL)
_INSERT_RE = re.compile(rf'^INSERT INTO ({_IDENT}) \((.*)\) VALUES$')
_SELECT_RE = re.compile(rf'^SELECT (.*) FROM ({_IDENT}) LIMIT %\(limit\)s OFFSET %\(offset\)s$')
_COUNT_RE = re.compile(rf'^SELECT count\(\) FROM ({_IDENT})$')
_SELECT_ALL_RE = re.compile(rf'^SELECT \* FROM ({_IDENT})$')
_DESCRIBE_RE = re.compile(rf'^DESCRIBE TABLE ({_IDENT})$')


def _name(quoted):
    return quoted.replace('`', '')


def _names(quoted_list):
    return [_name(part.strip()) for part in quoted_list.split(',')]


def _check_text(value):
    # The driver encodes String values on the client before sending the block
    if not isinstance(value, str):
        raise AttributeError(f"'{type(value).__name__}' object has no attribute 'encode'")


class FakeClickHouseServer:
    """In-memory stand-in for a ClickHouse server.

    Understands only the statements the bridge issues. Tables are stored as
    ``{'columns': [(name, type)], 'rows': [dict]}``.
    """

    def __init__(self):
        self.tables = {}
        self.statements = []
        self.connections = []
        self.failures = []

    def client(self, **kwargs):
        self.connections.append(kwargs)
        return FakeClient(self)

    def add_table(self, name, columns, rows=()):
        self.tables[name] = {
            'columns': list(columns),
            'rows': [dict(zip([c[0] for c in columns], row)) for row in rows],
        }

    def fail_on(self, prefix, after=0, message='boom'):
        """Raise ServerException for statements starting with ``prefix`` once ``after`` have passed."""
        self.failures.append({'prefix': prefix, 'after': after, 'message': message})

    def statements_starting(self, prefix):
        return [s for s in self.statements if s.startswith(prefix)]

    def _table(self, quoted):
        name = _name(quoted)
        if name not in self.tables:
            raise ServerException(f'Table {name} does not exist', code=60)
        return self.tables[name]

    def _check_failures(self, query):
        for failure in self.failures:
            if query.startswith(failure['prefix']):
                if failure['after'] > 0:
                    failure['after'] -= 1
                else:
                    raise ServerException(failure['message'], code=1000)

    def execute(self, query, params=None, with_column_types=False):
        self.statements.append(query)
        self._check_failures(query)

        if query == 'SELECT 1':
            return [(1,)]

        if query == 'SHOW TABLES':
            return [(name,) for name in sorted(self.tables)]

        match = _DESCRIBE_RE.match(query)
        if match:
            table = self._table(match.group(1))
            return [(name, type_, '', '', '', '', '') for name, type_ in table['columns']]

        match = _CREATE_RE.match(query)
        if match:
            name = _name(match.group(1))
            if name not in self.tables:
                columns = []
                for definition in re.split(r',\s*(?=`)', match.group(2)):
                    col_match = re.match(r'^`([^`]+)` (.+)$', definition.strip())
                    columns.append((col_match.group(1), col_match.group(2)))
                self.tables[name] = {'columns': columns, 'rows': []}
            return []

        match = _INSERT_RE.match(query)
        if match:
            table = self._table(match.group(1))
            names = _names(match.group(2))
            rows = [
                {name: row.get(name) for name in names} if isinstance(row, dict) else dict(zip(names, row))
                for row in params
            ]
            text_columns = {name for name, type_ in table['columns'] if type_ == 'String'}
            for row in rows:
                for name in text_columns.intersection(row):
                    _check_text(row[name])
            table['rows'].extend(rows)
            return len(params)

        match = _SELECT_RE.match(query)
        if match:
            names = _names(match.group(1))
            table = self._table(match.group(2))
            window = table['rows'][params['offset']:params['offset'] + params['limit']]
            return [tuple(row.get(name) for name in names) for row in window]

        match = _COUNT_RE.match(query)
        if match:
            return [(len(self._table(match.group(1))['rows']),)]

        match = _SELECT_ALL_RE.match(query)
        if match:
            table = self._table(match.group(1))
            names = [c[0] for c in table['columns']]
            rows = [tuple(row.get(name) for name in names) for row in table['rows']]
            return rows, list(table['columns'])

        raise AssertionError(f'Unexpected statement: {query}')


class FakeClient:

    def __init__(self, server):
        self.server = server
        self.disconnected = False

    def execute(self, query, params=None, with_column_types=False):
        return self.server.execute(query, params, with_column_types)

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def clickhouse_server(monkeypatch):
    """Patch the driver Client so every connection talks to one in-memory server."""
    server = FakeClickHouseServer()
    monkeypatch.setattr('chbridge.clickhouse.Client', server.client)
    return server


@pytest.fixture
def fake_client(clickhouse_server):
    return clickhouse_server.client()


@pytest.fixture
def sample_csv(tmp_path):
    path = tmp_path / 'people.csv'
    path.write_text(
        'id,name\n'
        '1,Alice\n'
        '2,Bob\n'
        '3,Carol\n'
        '4,Dan\n'
        "5,O'Brien\n"
    )
    return str(path)


@pytest.fixture
def write_csv(tmp_path):
    def _write(name, content):
        path = tmp_path / name
        path.write_text(content)
        return str(path)
    return _write


@pytest.fixture
def flask_app(tmp_path):
    import app as app_module

    flask_app = app_module.app
    saved = dict(flask_app.config)
    flask_app.config.update(TESTING=True, UPLOAD_FOLDER=str(tmp_path / 'uploads'))
    yield flask_app
    flask_app.config.clear()
    flask_app.config.update(saved)


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
