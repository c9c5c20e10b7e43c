"""ClickHouse source type -> destination column type.

The mapping is a whitelist: recognised type names pass through unchanged,
parameterised forms are accepted when their head and every nested type are
recognised, and everything else becomes ``String``.
"""

import logging

from .models import GENERIC_TEXT_TYPE

logger = logging.getLogger(__name__)

SCALAR_TYPES = frozenset([
    'UInt8', 'UInt16', 'UInt32', 'UInt64', 'UInt128', 'UInt256',
    'Int8', 'Int16', 'Int32', 'Int64', 'Int128', 'Int256',
    'Float32', 'Float64',
    'Bool', 'String',
    'Date', 'Date32', 'DateTime',
    'UUID', 'IPv4', 'IPv6',
])

# Heads whose arguments are literals (lengths, precisions, time zones, enum members).
LITERAL_ARG_TYPES = frozenset([
    'FixedString', 'DateTime', 'DateTime64', 'Decimal', 'Enum8', 'Enum16',
])

# Heads whose arguments are themselves types.
CONTAINER_TYPES = {
    'Array': 1,
    'Nullable': 1,
    'LowCardinality': 1,
    'Tuple': None,
}


def _split_args(body):
    """Split ``body`` on commas that are not nested in brackets or quotes."""
    args, depth, quote, escaped, start = [], 0, None, False, 0
    for i, ch in enumerate(body):
        if quote:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth < 0:
                return None
        elif ch == ',' and depth == 0:
            args.append(body[start:i].strip())
            start = i + 1
    if depth or quote:
        return None
    args.append(body[start:].strip())
    return args


def _parse(type_str):
    """Return ``(head, args)``; ``args`` is None for a bare name and [] on malformed input."""
    type_str = type_str.strip()
    if '(' not in type_str:
        return type_str, None
    if not type_str.endswith(')'):
        return type_str, []
    head, body = type_str.split('(', 1)
    args = _split_args(body[:-1])
    return head.strip(), args if args is not None else []


def _is_supported(type_str):
    head, args = _parse(type_str)

    if args is None:
        return head in SCALAR_TYPES

    if not args or any(not arg for arg in args):
        return False

    if head in LITERAL_ARG_TYPES:
        return True

    if head not in CONTAINER_TYPES:
        return False

    arity = CONTAINER_TYPES[head]
    if arity is not None and len(args) != arity:
        return False

    if head == 'Tuple':
        return all(_is_supported(arg) or _is_supported_named(arg) for arg in args)
    return all(_is_supported(arg) for arg in args)


def _is_supported_named(element):
    # Named tuple element: ``name Type``
    parts = element.split(None, 1)
    return len(parts) == 2 and _is_supported(parts[1])


def map_type(source_type):
    """Map a source column type to the type used for the destination table."""
    if not isinstance(source_type, str) or not source_type.strip():
        return GENERIC_TEXT_TYPE

    source_type = source_type.strip()
    if _is_supported(source_type):
        return source_type

    logger.debug("Unrecognised type '%s', using %s", source_type, GENERIC_TEXT_TYPE)
    return GENERIC_TEXT_TYPE
