"""
Type conversion plugins.

text/boolean/long/b64 convert a single argument to a single value, or
every argument to a list of values when given more than one.
"""
from __future__ import annotations

from typing import Any, Callable

from models.errors import ArityError, PluginEvaluationError
from plugins.registry import simple_plugin
from plugins.values import (
    b64_convert, length_of, promote_boolean, promote_integer, to_text,
)


def _convert_each(name: str, args: tuple, convert: Callable[[Any], Any]) -> Any:
    if not args:
        raise ArityError(f"{name} expects at least 1 argument")
    if len(args) == 1:
        return convert(args[0])
    return [convert(a) for a in args]


@simple_plugin
class TextConversion:
    name = "text"

    def calculate(self, *args: Any) -> Any:
        return _convert_each(self.name, args, to_text)


@simple_plugin
class BooleanConversion:
    name = "boolean"

    def calculate(self, *args: Any) -> Any:
        return _convert_each(self.name, args, promote_boolean)


@simple_plugin
class LongConversion:
    name = "long"

    def calculate(self, *args: Any) -> Any:
        return _convert_each(self.name, args, promote_integer)


@simple_plugin
class Base64Conversion:
    name = "b64"

    def calculate(self, *args: Any) -> Any:
        return _convert_each(self.name, args, b64_convert)


@simple_plugin
class GetLengthConversion:
    name = "length"

    def calculate(self, *args: Any) -> int:
        if len(args) != 1:
            raise ArityError(f"length expects exactly 1 argument, got {len(args)}")
        return length_of(args[0])


@simple_plugin
class ConcatenateStrings:
    name = "concat"

    def calculate(self, *args: Any) -> str:
        if len(args) < 2:
            raise ArityError("concat expects at least 2 arguments")
        return "".join(to_text(a) for a in args)


@simple_plugin
class SubstringPlugin:
    """substring(text, start[, end]) with start inclusive and end exclusive."""
    name = "substring"

    def calculate(self, *args: Any) -> str:
        if not 1 <= len(args) <= 3:
            raise ArityError(f"substring expects 1 to 3 arguments, got {len(args)}")
        return substring(to_text(args[0]),
                         promote_integer(args[1]) if len(args) > 1 else -1,
                         promote_integer(args[2]) if len(args) > 2 else -1)


def substring(value: str, start: int = -1, end: int = -1) -> str:
    """A negative start or end means "not given"."""
    if ((end >= 0 and end > len(value))
            or (start >= 0 and start > len(value))
            or (0 <= end < start)):
        raise PluginEvaluationError(f"Substring indexes are out of bounds: [{start}, {end}]")
    if start >= 0 and end >= 0:
        return value[start:end]
    if start >= 0:
        return value[start:]
    return value
