"""Batch ingestion: copy selected columns of a source into a new ClickHouse table.

One :class:`IngestionPipeline` serves exactly one ingest call and moves
through ``CREATED -> TABLE_READY -> DRAINING -> COMPLETED | FAILED``.

``prepare()`` validates the column selection and creates the destination
table. ``drain()`` is a generator: it reads the source in fixed-size batches,
inserts each one and yields a :class:`ProgressEvent` per batch followed by a
single :class:`IngestResult`. How those messages reach the caller is up to
the consumer (see :mod:`chbridge.transport`).

Batches are committed one by one. A failing insert aborts the run with
:class:`BatchInsertFailed` and leaves earlier batches in the table.
"""

import enum
import json
import logging
from contextlib import closing
from typing import Iterator, List, Union

from .clickhouse import ENGINE_ERRORS
from .errors import (
    BatchInsertFailed,
    BridgeError,
    InvalidColumnSpec,
    MissingParameters,
    TableCreationFailed,
)
from .identifiers import is_valid_column_name, quote_column, quote_table
from .models import GENERIC_TEXT_TYPE, ColumnDescriptor, IngestResult, ProgressEvent, column_names
from .type_mapper import map_type

logger = logging.getLogger(__name__)

TABLE_ENGINE = 'MergeTree()'
TABLE_ORDER_BY = 'tuple()'

# Raised by the driver while serialising a batch on the client side
CLIENT_WRITE_ERRORS = (TypeError, ValueError, AttributeError)


class JobState(enum.Enum):
    CREATED = 'created'
    TABLE_READY = 'table_ready'
    DRAINING = 'draining'
    COMPLETED = 'completed'
    FAILED = 'failed'


def validate_columns(columns: List[ColumnDescriptor]) -> List[ColumnDescriptor]:
    if not columns:
        raise InvalidColumnSpec('No columns selected')

    seen = set()
    for col in columns:
        if not col.name or not col.type:
            raise InvalidColumnSpec(f'Invalid column definition: {col.to_dict()}')
        if not is_valid_column_name(col.name):
            raise InvalidColumnSpec(f'Invalid column name: {col.name!r}')
        if col.name in seen:
            raise InvalidColumnSpec(f'Column selected more than once: {col.name!r}')
        seen.add(col.name)
    return list(columns)


def build_create_table(target_table, columns):
    definitions = ', '.join(f'{quote_column(col.name)} {col.type}' for col in columns)
    return (f'CREATE TABLE IF NOT EXISTS {quote_table(target_table)} ({definitions}) '
            f'ENGINE = {TABLE_ENGINE} ORDER BY {TABLE_ORDER_BY}')


def build_insert(target_table, names):
    cols = ', '.join(quote_column(name) for name in names)
    return f'INSERT INTO {quote_table(target_table)} ({cols}) VALUES'


def as_text(value):
    """Render a value read from an unrecognised source type for a ``String`` column.

    The destination column is not nullable, so ``None`` becomes ``''``.
    Containers are written as JSON.
    """
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)


class IngestionPipeline:

    def __init__(self, client, source, columns, target_table, settings):
        self.client = client
        self.source = source
        self.columns = list(columns)
        self.target_table = target_table
        self.settings = settings

        self.state = JobState.CREATED
        self.processed = 0
        self.offset = 0
        # Columns whose source type fell back to the generic text type
        self.text_columns = set()

    def __repr__(self):
        return (f'IngestionPipeline({self.source!r} -> {self.target_table!r}, '
                f'state={self.state.value}, processed={self.processed})')

    def _expect(self, state):
        if self.state is not state:
            raise RuntimeError(f'Pipeline is {self.state.value}, expected {state.value}')

    def _fail(self, exc):
        self.state = JobState.FAILED
        logger.error('Ingestion into %s failed after %d rows: %s',
                     self.target_table, self.processed, exc)

    def prepare(self):
        """Validate the selection and create the destination table."""
        self._expect(JobState.CREATED)
        try:
            if not self.target_table:
                raise MissingParameters('Missing required parameters: targetTable')
            quote_table(self.target_table)
            columns = validate_columns(self.columns)
            self.columns = [ColumnDescriptor(col.name, map_type(col.type)) for col in columns]
            self.text_columns = {
                col.name for col, mapped in zip(columns, self.columns)
                if mapped.type == GENERIC_TEXT_TYPE and str(col.type).strip() != GENERIC_TEXT_TYPE
            }
        except BridgeError as exc:
            self._fail(exc)
            raise

        ddl = build_create_table(self.target_table, self.columns)
        logger.info('Creating table with query: %s', ddl)
        try:
            self.client.execute(ddl)
        except ENGINE_ERRORS as exc:
            self._fail(exc)
            raise TableCreationFailed(f'Failed to create table {self.target_table}: {exc}') from exc

        self.state = JobState.TABLE_READY
        return self.columns

    def _insert(self, query, names, batch):
        converters = [as_text if name in self.text_columns else None for name in names]
        rows = [
            tuple(row.get(name) if convert is None else convert(row.get(name))
                  for name, convert in zip(names, converters))
            for row in batch
        ]
        try:
            self.client.execute(query, rows)
        except ENGINE_ERRORS + CLIENT_WRITE_ERRORS as exc:
            raise BatchInsertFailed(
                f'Failed to insert batch at offset {self.offset} into {self.target_table}: {exc}',
                processed=self.processed,
            ) from exc

    def drain(self) -> Iterator[Union[ProgressEvent, IngestResult]]:
        self._expect(JobState.TABLE_READY)
        self.state = JobState.DRAINING

        names = column_names(self.columns)
        query = build_insert(self.target_table, names)
        batch_size = self.settings.batch_size

        try:
            with closing(self.source.iter_batches(names, batch_size, self.offset)) as batches:
                for batch in batches:
                    if not batch:
                        break
                    logger.debug('Processing batch at offset %d (%d rows)', self.offset, len(batch))
                    self._insert(query, names, batch)
                    self.processed += len(batch)
                    self.offset += batch_size
                    yield ProgressEvent(processed=self.processed, total=self.processed)
        except BridgeError as exc:
            self._fail(exc)
            raise

        self.state = JobState.COMPLETED
        logger.info('Ingested %d rows into %s', self.processed, self.target_table)
        yield IngestResult(count=self.processed, target_table=self.target_table)

    def run(self, on_progress=None) -> IngestResult:
        """Prepare and drain in one call, passing progress events to ``on_progress``."""
        if self.state is JobState.CREATED:
            self.prepare()
        result = None
        for message in self.drain():
            if isinstance(message, ProgressEvent):
                if on_progress is not None:
                    on_progress(message)
            else:
                result = message
        return result
