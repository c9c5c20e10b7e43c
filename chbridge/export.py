"""Dump a whole table as CSV, header row included."""

import io
import logging

import pandas as pd

from .clickhouse import engine_errors
from .errors import QueryFailed
from .identifiers import quote_table

logger = logging.getLogger(__name__)


def export_csv(client, table):
    """Return the contents of ``table`` as CSV bytes."""
    query = f'SELECT * FROM {quote_table(table)}'
    with engine_errors(QueryFailed, f'Failed to export {table}'):
        rows, column_types = client.execute(query, with_column_types=True)

    df = pd.DataFrame(rows, columns=[col[0] for col in column_types])
    buf = io.BytesIO()
    df.to_csv(buf, index=False)
    logger.info('Exported %d rows from %s', len(df), table)
    buf.seek(0)
    return buf
