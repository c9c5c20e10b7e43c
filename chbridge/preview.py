"""One page of rows plus pagination metadata."""

import logging
import math

from .models import PageRequest

logger = logging.getLogger(__name__)


class PreviewService:

    def __init__(self, settings):
        self.settings = settings

    def page_window(self, page=None, page_size=None):
        """Clamp ``page`` to >= 1 and ``page_size`` to ``1..max_page_size``."""
        page = max(int(page or 1), 1)
        if not page_size or page_size < 1:
            page_size = self.settings.default_page_size
        page_size = min(int(page_size), self.settings.max_page_size)
        return page, page_size

    def preview(self, source, columns, page=None, page_size=None):
        page, page_size = self.page_window(page, page_size)
        if not columns:
            columns = [col.name for col in source.discover_schema()]

        total = source.count_rows()
        rows = source.read_rows(columns, PageRequest.for_page(page, page_size))
        logger.info('Preview of %r page %d: %d of %d rows', source, page, len(rows), total)

        return {
            'data': rows,
            'pagination': {
                'total': total,
                'page': page,
                'pageSize': page_size,
                'totalPages': math.ceil(total / page_size),
            },
        }
