"""Typed settings for the bridge.

``IngestSettings`` carries the batching and paging limits and is handed to
the preview service and the ingestion pipeline at construction, so tests can
shrink them freely. ``ConnectionSettings`` describes one ClickHouse endpoint.
"""

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from .errors import InvalidParameter

BATCH_SIZE = 1000
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

CREDENTIAL_FIELDS = ('password', 'credential', 'jwtToken', 'jwt')


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


@dataclass(frozen=True)
class IngestSettings:
    batch_size: int = BATCH_SIZE
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    delimiter: str = ','
    chunk_size: Optional[int] = None

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError('batch_size must be positive')
        if self.max_page_size < 1:
            raise ValueError('max_page_size must be positive')

    @property
    def scan_chunk_size(self):
        return self.chunk_size or self.batch_size

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]):
        return cls(
            batch_size=int(config.get('BATCH_SIZE', BATCH_SIZE)),
            default_page_size=int(config.get('DEFAULT_PAGE_SIZE', DEFAULT_PAGE_SIZE)),
            max_page_size=int(config.get('MAX_PAGE_SIZE', MAX_PAGE_SIZE)),
            delimiter=config.get('CSV_DELIMITER', ','),
        )

    def with_delimiter(self, delimiter):
        if not delimiter or delimiter == self.delimiter:
            return self
        return replace(self, delimiter=delimiter)


@dataclass(frozen=True)
class ConnectionSettings:
    host: str = 'localhost'
    port: int = 8123
    database: str = 'default'
    user: str = 'default'
    password: str = ''
    secure: bool = False

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]):
        return cls(
            host=config.get('CLICKHOUSE_HOST', 'localhost'),
            port=int(config.get('CLICKHOUSE_PORT', 8123)),
            database=config.get('CLICKHOUSE_DATABASE', 'default'),
            user=config.get('CLICKHOUSE_USER', 'default'),
            password=config.get('CLICKHOUSE_PASSWORD', ''),
            secure=_as_bool(config.get('CLICKHOUSE_SECURE', False)),
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], defaults=None):
        """Read connection fields from a request body, falling back to ``defaults``."""
        defaults = defaults or cls()
        port = payload.get('port') or defaults.port
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise InvalidParameter(f'Invalid port: {port!r}')

        password = defaults.password
        for field_name in CREDENTIAL_FIELDS:
            if payload.get(field_name):
                password = payload[field_name]
                break

        return cls(
            host=payload.get('host') or defaults.host,
            port=port,
            database=payload.get('database') or defaults.database,
            user=payload.get('user') or defaults.user,
            password=password,
            secure=_as_bool(payload.get('secure', defaults.secure)),
        )

    def describe(self):
        return f'{self.user}@{self.host}:{self.port}/{self.database}'
