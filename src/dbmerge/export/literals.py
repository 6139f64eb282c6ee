"""
SQL literal rendering for emitted INSERT statements.

Values arrive as asyncpg decodes them. Integers stay Python ``int``
(arbitrary precision), so 64-bit ids are written digit for digit and
never pass through a float. Anything that is not recognisably numeric,
including numeric-looking text, is written as a quoted string. Arrays
are written as untyped array input strings ('{...}') that take the
column's element type.
"""

import json
import math
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network
from typing import Any

from ..exceptions import EmissionError


NULL = "NULL"


def quote_string(text: str) -> str:
    """Escape ``text`` as a PostgreSQL string literal."""
    if "\x00" in text:
        raise EmissionError("String value contains a NUL character", details={"value": text[:40]})
    escaped = text.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return f"'{escaped}'"


def _float_literal(value: float) -> str:
    if math.isnan(value):
        return "'NaN'"
    if math.isinf(value):
        return "'Infinity'" if value > 0 else "'-Infinity'"
    return repr(value)


def _decimal_literal(value: Decimal) -> str:
    if value.is_nan():
        return "'NaN'"
    if value.is_infinite():
        return "'Infinity'" if value > 0 else "'-Infinity'"
    return str(value)


def _interval_text(value: timedelta) -> str:
    seconds = value.days * 86400 + value.seconds
    text = f"{seconds} seconds"
    if value.microseconds:
        text += f" {value.microseconds} microseconds"
    return text


def _interval_literal(value: timedelta) -> str:
    return quote_string(_interval_text(value)) + "::interval"


def _array_element(value: Any) -> str:
    """One element of a PostgreSQL array input string, unescaped for SQL."""
    if value is None:
        return NULL
    if isinstance(value, (list, tuple)):
        return "{" + ",".join(_array_element(item) for item in value) + "}"
    if isinstance(value, bool):
        text = "t" if value else "f"
    elif isinstance(value, float):
        text = _float_literal(value).strip("'")
    elif isinstance(value, Decimal):
        text = _decimal_literal(value).strip("'")
    elif isinstance(value, (bytes, bytearray, memoryview)):
        text = "\\x" + bytes(value).hex()
    elif isinstance(value, datetime):
        text = value.isoformat(sep=" ")
    elif isinstance(value, (date, time)):
        text = value.isoformat()
    elif isinstance(value, timedelta):
        text = _interval_text(value)
    elif isinstance(value, dict):
        text = json.dumps(value, ensure_ascii=False, default=str)
    else:
        text = str(value)
    if "\x00" in text:
        raise EmissionError("Array element contains a NUL character", details={"value": text[:40]})
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def array_literal(values: Any) -> str:
    """Render a sequence as a quoted array input string.

    The literal is untyped, so PostgreSQL coerces it to the column type
    (uuid[], date[], jsonb[] and so on) on insert.
    """
    return quote_string(_array_element(list(values)))


def to_sql_literal(value: Any) -> str:
    """Render one value as a literal usable in a VALUES list."""
    if value is None:
        return NULL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _float_literal(value)
    if isinstance(value, Decimal):
        return _decimal_literal(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"'\\x{bytes(value).hex()}'::bytea"
    if isinstance(value, datetime):
        return quote_string(value.isoformat(sep=" "))
    if isinstance(value, (date, time)):
        return quote_string(value.isoformat())
    if isinstance(value, timedelta):
        return _interval_literal(value)
    if isinstance(value, dict):
        return quote_string(json.dumps(value, ensure_ascii=False, default=str))
    if isinstance(value, (list, tuple)):
        return array_literal(value)
    if isinstance(value, (uuid.UUID, IPv4Address, IPv6Address, IPv4Network, IPv6Network)):
        return quote_string(str(value))
    return quote_string(str(value))
