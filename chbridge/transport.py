"""Adapters that turn pipeline messages into a streamed HTTP body."""

import json
import logging

from .errors import BridgeError
from .models import IngestResult, ProgressEvent

logger = logging.getLogger(__name__)

NDJSON_MIMETYPE = 'application/x-ndjson'
SSE_MIMETYPE = 'text/event-stream'


def _default(value):
    return str(value)


def _payloads(messages):
    """Yield ``(event, payload)`` pairs, ending with an error payload on failure."""
    try:
        for message in messages:
            if isinstance(message, ProgressEvent):
                yield 'progress', message.to_dict()
            elif isinstance(message, IngestResult):
                yield 'result', message.to_dict()
    except BridgeError as exc:
        yield 'error', exc.to_dict()
    except Exception:
        logger.exception('Unexpected error while streaming ingestion')
        yield 'error', {'success': False, 'error': 'Internal server error'}


def ndjson_stream(messages):
    for _, payload in _payloads(messages):
        yield json.dumps(payload, default=_default) + '\n'


def sse_stream(messages):
    for event, payload in _payloads(messages):
        yield f'event: {event}\ndata: {json.dumps(payload, default=_default)}\n\n'


def pick_stream(accept_header):
    """Server-sent events when the caller asks for them, NDJSON otherwise."""
    if accept_header and SSE_MIMETYPE in accept_header:
        return sse_stream, SSE_MIMETYPE
    return ndjson_stream, NDJSON_MIMETYPE
