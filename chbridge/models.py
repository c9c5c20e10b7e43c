"""Value objects passed between the bridge components."""

from dataclasses import dataclass
from typing import Any, Dict, List

GENERIC_TEXT_TYPE = 'String'

Row = Dict[str, Any]


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    type: str = GENERIC_TEXT_TYPE

    @classmethod
    def from_dict(cls, data):
        if isinstance(data, str):
            return cls(name=data.strip())
        if not isinstance(data, dict):
            return cls(name='', type='')
        return cls(name=str(data.get('name') or '').strip(),
                   type=str(data.get('type') or '').strip())

    def to_dict(self):
        return {'name': self.name, 'type': self.type}


@dataclass(frozen=True)
class PageRequest:
    offset: int
    limit: int

    @classmethod
    def for_page(cls, page, page_size):
        return cls(offset=(page - 1) * page_size, limit=page_size)


@dataclass(frozen=True)
class ProgressEvent:
    processed: int
    total: int

    def to_dict(self):
        return {'type': 'progress', 'processed': self.processed, 'total': self.total}


@dataclass(frozen=True)
class IngestResult:
    count: int
    target_table: str

    @property
    def message(self):
        return f'Successfully ingested {self.count} records'

    def to_dict(self):
        return {'success': True, 'count': self.count, 'message': self.message}


def column_names(columns: List[ColumnDescriptor]) -> List[str]:
    return [col.name for col in columns]
