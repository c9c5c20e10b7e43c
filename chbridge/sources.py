"""Tabular sources: a ClickHouse table or an uploaded CSV/TXT file.

Every component above this module talks to :class:`DataSource` only. A source
can describe its columns, return one ``(offset, limit)`` window of rows,
count its rows, and hand out fixed-size batches for ingestion.
"""

import logging
import os
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass
from functools import cached_property
from itertools import islice
from typing import Iterator, List

import pandas as pd

from .clickhouse import describe_table, engine_errors
from .errors import InvalidColumnSpec, QueryFailed, SourceUnreachable, UnsupportedFormat
from .identifiers import quote_columns, quote_table
from .models import GENERIC_TEXT_TYPE, ColumnDescriptor, PageRequest, Row

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.csv', '.txt')

# UK Land Registry price-paid files ship without a header row.
PRICE_PAID_MARKERS = ('pp-', 'price-paid')
PRICE_PAID_COLUMNS = [
    'transaction_id',
    'price',
    'date_of_transfer',
    'postcode',
    'property_type',
    'old_new',
    'duration',
    'paon',
    'saon',
    'street',
    'locality',
    'town_city',
    'district',
    'county',
    'ppd_category_type',
    'record_status',
]


def check_extension(filename):
    ext = os.path.splitext(filename or '')[1].lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat('Unsupported file format. Please upload a CSV or TXT file.')
    return ext


def is_price_paid_file(filename):
    lowered = (filename or '').lower()
    return any(marker in lowered for marker in PRICE_PAID_MARKERS)


def _require_columns(columns):
    if not columns:
        raise InvalidColumnSpec('No columns selected')
    return list(columns)


class DataSource(ABC):
    """Capability shared by database and file sources."""

    @abstractmethod
    def discover_schema(self) -> List[ColumnDescriptor]:
        ...

    @abstractmethod
    def read_rows(self, columns: List[str], window: PageRequest) -> List[Row]:
        ...

    @abstractmethod
    def count_rows(self) -> int:
        ...

    def iter_batches(self, columns: List[str], batch_size: int, offset: int = 0) -> Iterator[List[Row]]:
        """Yield batches of at most ``batch_size`` rows, ending with one empty batch."""
        while True:
            batch = self.read_rows(columns, PageRequest(offset=offset, limit=batch_size))
            yield batch
            if not batch:
                return
            offset += batch_size


class DatabaseSource(DataSource):

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self._quoted_table = quote_table(table)

    def __repr__(self):
        return f'DatabaseSource({self.table!r})'

    def discover_schema(self):
        return describe_table(self.client, self.table)

    def read_rows(self, columns, window):
        columns = _require_columns(columns)
        query = (f'SELECT {quote_columns(columns, InvalidColumnSpec)} FROM {self._quoted_table} '
                 'LIMIT %(limit)s OFFSET %(offset)s')
        with engine_errors(QueryFailed, f'Failed to read from {self.table}'):
            rows = self.client.execute(query, {'limit': window.limit, 'offset': window.offset})
        return [dict(zip(columns, row)) for row in rows]

    def count_rows(self):
        with engine_errors(QueryFailed, f'Failed to count rows of {self.table}'):
            rows = self.client.execute(f'SELECT count() FROM {self._quoted_table}')
        return int(rows[0][0]) if rows else 0


@dataclass(frozen=True)
class FileLayout:
    names: List[str]
    has_header: bool


class FileSource(DataSource):
    """A delimited text file read with pandas, one pass per call."""

    def __init__(self, path, original_name=None, delimiter=',', chunk_size=1000):
        self.path = path
        self.original_name = original_name or os.path.basename(path)
        self.delimiter = delimiter
        self.chunk_size = chunk_size
        check_extension(self.original_name)

    def __repr__(self):
        return f'FileSource({self.original_name!r})'

    def _first_line(self):
        try:
            with open(self.path, 'r', encoding='utf-8-sig', errors='replace', newline='') as fh:
                return fh.readline().rstrip('\r\n')
        except OSError as exc:
            raise SourceUnreachable(f'Cannot read {self.original_name}: {exc}') from exc

    def _count_fields(self):
        try:
            frame = pd.read_csv(self.path, sep=self.delimiter, header=None, nrows=1,
                                dtype=str, skip_blank_lines=True, encoding='utf-8-sig')
        except pd.errors.EmptyDataError:
            return 0
        return len(frame.columns)

    @cached_property
    def layout(self):
        if is_price_paid_file(self.original_name):
            logger.info('Detected UK price-paid file %s, using standard columns', self.original_name)
            return FileLayout(list(PRICE_PAID_COLUMNS), has_header=False)

        first_line = self._first_line()
        if first_line.strip():
            names = []
            for i, token in enumerate(first_line.split(self.delimiter)):
                token = token.strip().strip('"').strip()
                names.append(token or f'column_{i + 1}')
            if len(set(names)) != len(names):
                raise UnsupportedFormat(f'Duplicate column names in header of {self.original_name}')
            return FileLayout(names, has_header=True)

        logger.info('Could not parse header of %s, using positional column names', self.original_name)
        count = self._count_fields()
        return FileLayout([f'column_{i + 1}' for i in range(count)], has_header=False)

    def discover_schema(self):
        return [ColumnDescriptor(name=name, type=GENERIC_TEXT_TYPE) for name in self.layout.names]

    def _reader(self, usecols, chunksize):
        layout = self.layout
        return pd.read_csv(
            self.path,
            sep=self.delimiter,
            header=0 if layout.has_header else None,
            names=layout.names,
            usecols=usecols,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            on_bad_lines='skip',
            encoding='utf-8-sig',
            chunksize=chunksize,
        )

    def _iter_rows(self, columns):
        columns = _require_columns(columns)
        missing = [name for name in columns if name not in self.layout.names]
        if missing:
            raise InvalidColumnSpec(f'Columns not found in {self.original_name}: {missing}')

        try:
            with self._reader(sorted(set(columns)), self.chunk_size) as reader:
                for frame in reader:
                    for record in frame.fillna('').to_dict('records'):
                        yield {name: record[name] for name in columns}
        except pd.errors.EmptyDataError:
            return
        except (pd.errors.ParserError, UnicodeDecodeError) as exc:
            raise UnsupportedFormat(f'Failed to parse {self.original_name}: {exc}') from exc
        except OSError as exc:
            raise SourceUnreachable(f'Cannot read {self.original_name}: {exc}') from exc

    def read_rows(self, columns, window):
        with closing(self._iter_rows(columns)) as rows:
            return list(islice(rows, window.offset, window.offset + window.limit))

    def iter_batches(self, columns, batch_size, offset=0):
        # Single pass over the file instead of one re-read per batch.
        with closing(self._iter_rows(columns)) as rows:
            rows = islice(rows, offset, None)
            while True:
                batch = list(islice(rows, batch_size))
                yield batch
                if not batch:
                    return

    def count_rows(self):
        if not self.layout.names:
            return 0
        total = 0
        try:
            with self._reader([self.layout.names[0]], self.chunk_size) as reader:
                for frame in reader:
                    total += len(frame)
        except pd.errors.EmptyDataError:
            return 0
        except (pd.errors.ParserError, UnicodeDecodeError) as exc:
            raise UnsupportedFormat(f'Failed to parse {self.original_name}: {exc}') from exc
        return total
