"""ClickHouse client factory and catalogue queries."""

import logging
from contextlib import contextmanager
from datetime import datetime

from clickhouse_driver import Client
from clickhouse_driver import errors as ch_errors

from .errors import QueryFailed, SourceUnreachable
from .identifiers import quote_table
from .models import ColumnDescriptor

logger = logging.getLogger(__name__)

ENGINE_ERRORS = (ch_errors.Error, OSError, EOFError)

SAMPLE_TABLE = 'sample_data'

SAMPLE_TABLE_DDL = (
    'CREATE TABLE IF NOT EXISTS `sample_data` ('
    '`id` UInt32, `name` String, `age` UInt8, `email` String, `created_at` DateTime'
    ') ENGINE = MergeTree() ORDER BY id'
)

SAMPLE_ROWS = [
    (1, 'John Doe', 30, 'john@example.com'),
    (2, 'Jane Smith', 25, 'jane@example.com'),
    (3, 'Bob Johnson', 40, 'bob@example.com'),
    (4, 'Alice Brown', 35, 'alice@example.com'),
    (5, 'Charlie Wilson', 28, 'charlie@example.com'),
]


@contextmanager
def engine_errors(error_cls, message):
    """Re-raise driver and socket failures as ``error_cls``."""
    try:
        yield
    except ENGINE_ERRORS as exc:
        logger.error('%s: %s', message, exc)
        raise error_cls(f'{message}: {exc}') from exc


def get_clickhouse_client(settings):
    return Client(host=settings.host, port=settings.port, user=settings.user,
                  database=settings.database, secure=settings.secure,
                  password=settings.password)


@contextmanager
def clickhouse_client(settings):
    logger.info('Connecting to ClickHouse at %s', settings.describe())
    client = get_clickhouse_client(settings)
    try:
        yield client
    finally:
        client.disconnect()


def ping(client, settings=None):
    where = settings.describe() if settings else 'ClickHouse'
    with engine_errors(SourceUnreachable, f'Failed to connect to {where}'):
        client.execute('SELECT 1')


def list_tables(client):
    with engine_errors(QueryFailed, 'Failed to list tables'):
        rows = client.execute('SHOW TABLES')
    return [row[0] for row in rows]


def describe_table(client, table):
    """Engine-reported ``(name, type)`` pairs for ``table``, in declaration order."""
    query = f'DESCRIBE TABLE {quote_table(table)}'
    with engine_errors(QueryFailed, f'Failed to describe table {table}'):
        rows = client.execute(query)
    return [ColumnDescriptor(name=row[0], type=row[1]) for row in rows]


def ensure_sample_table(client):
    """Create and fill ``sample_data`` so an empty database has something to browse."""
    logger.info('No tables found, creating %s', SAMPLE_TABLE)
    created_at = datetime.now().replace(microsecond=0)
    with engine_errors(QueryFailed, 'Failed to create sample table'):
        client.execute(SAMPLE_TABLE_DDL)
        client.execute(
            'INSERT INTO `sample_data` (`id`, `name`, `age`, `email`, `created_at`) VALUES',
            [row + (created_at,) for row in SAMPLE_ROWS],
        )
