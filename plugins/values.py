"""
Plugin argument values as a closed set of kinds with total promotion rules.

Every argument handed to a plugin function falls into exactly one
ValueKind. Promotion helpers either return a value of the requested
kind or raise TypePromotionError; there is no third outcome.

    promote_integer(2)       → 2
    promote_integer("-7")    → -7
    promote_integer(2.5)     → TypePromotionError
    promote_integer(True)    → TypePromotionError
"""
from __future__ import annotations

import base64
import binascii
import json
import re
from enum import Enum
from typing import Any, Mapping

from models.errors import PluginEvaluationError, TypePromotionError

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_INTEGER_TEXT = re.compile(r"^[+-]?\d+$")


class ValueKind(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BOOLEAN = "boolean"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    NULL = "null"
    BYTES = "bytes"


def kind_of(value: Any) -> ValueKind:
    # bool before int: bool is an int subclass
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (bytes, bytearray)):
        return ValueKind.BYTES
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    raise TypePromotionError(f"Unsupported value type {type(value).__name__}")


# ── Promotion ─────────────────────────────────────────

def promote_integer(value: Any) -> int:
    """Promote an integer or integer text to a signed 64-bit integer."""
    kind = kind_of(value)
    if kind == ValueKind.INTEGER:
        number = value
    elif kind == ValueKind.STRING and _INTEGER_TEXT.match(value.strip()):
        number = int(value.strip())
    else:
        raise TypePromotionError(f"Cannot promote {kind.value} '{value}' to integer")
    if number < INT64_MIN or number > INT64_MAX:
        raise TypePromotionError(f"Integer {number} is outside the 64-bit range")
    return number


def promote_float(value: Any) -> float:
    kind = kind_of(value)
    if kind in (ValueKind.INTEGER, ValueKind.FLOAT):
        return float(value)
    if kind == ValueKind.STRING:
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise TypePromotionError(f"Cannot promote {kind.value} '{value}' to float")


def promote_boolean(value: Any) -> bool:
    """Booleans pass through; text must read "true" or "false" (any case)."""
    kind = kind_of(value)
    if kind == ValueKind.BOOLEAN:
        return value
    if kind == ValueKind.STRING and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise TypePromotionError(f"Cannot promote {kind.value} '{value}' to boolean")


# ── Conversion ────────────────────────────────────────

def to_text(value: Any) -> str:
    kind = kind_of(value)
    if kind == ValueKind.STRING:
        return value
    if kind == ValueKind.BYTES:
        return bytes(value).decode("utf-8", errors="replace")
    if kind == ValueKind.BOOLEAN:
        return "true" if value else "false"
    if kind == ValueKind.NULL:
        return "null"
    if kind in (ValueKind.MAPPING, ValueKind.SEQUENCE):
        return json.dumps(value, default=str)
    return str(value)


def length_of(value: Any) -> int:
    kind = kind_of(value)
    if kind == ValueKind.NULL:
        return 0
    if kind in (ValueKind.STRING, ValueKind.BYTES, ValueKind.SEQUENCE, ValueKind.MAPPING):
        return len(value)
    return len(to_text(value))


def b64_convert(value: Any) -> Any:
    """Bytes encode to base64 text; text decodes to bytes; others pass through."""
    kind = kind_of(value)
    if kind == ValueKind.BYTES:
        return base64.b64encode(bytes(value)).decode("ascii")
    if kind == ValueKind.STRING:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise PluginEvaluationError("invalid base64 text")
    return value
