"""
Integer arithmetic plugins.

All arguments are promoted with promote_integer() so 2, "2" and "+2"
are interchangeable. Results stay within the signed 64-bit range.
"""
from __future__ import annotations

from typing import Any

from models.errors import ArityError, DivisionByZeroError, PluginEvaluationError
from plugins.registry import simple_plugin
from plugins.values import INT64_MAX, INT64_MIN, promote_integer


def _promote_all(args: tuple) -> list[int]:
    return [promote_integer(a) for a in args]


def _checked(value: int) -> int:
    if value < INT64_MIN or value > INT64_MAX:
        raise PluginEvaluationError(f"Integer overflow: {value}")
    return value


def _require(args: tuple, minimum: int, operation: str):
    if len(args) < minimum:
        raise ArityError(
            f"{operation} expects at least {minimum} argument(s), got {len(args)}"
        )


def _truncated_div(a: int, b: int) -> int:
    # rounds toward zero, unlike Python's floor division
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _truncated_mod(a: int, b: int) -> int:
    return a - b * _truncated_div(a, b)


@simple_plugin
class AddNumbers:
    name = "add"

    def calculate(self, *args: Any) -> int:
        _require(args, 1, "add")
        return _checked(sum(_promote_all(args)))


@simple_plugin
class SubtractNumbers:
    name = "subtract"

    def calculate(self, *args: Any) -> int:
        _require(args, 2, "subtract")
        numbers = _promote_all(args)
        result = numbers[0]
        for n in numbers[1:]:
            result -= n
        return _checked(result)


@simple_plugin
class MultiplyNumbers:
    name = "multiply"

    def calculate(self, *args: Any) -> int:
        _require(args, 1, "multiply")
        result = 1
        for n in _promote_all(args):
            result = _checked(result * n)
        return result


@simple_plugin
class DivideNumbers:
    name = "div"

    def calculate(self, *args: Any) -> int:
        _require(args, 2, "div")
        numbers = _promote_all(args)
        if any(n == 0 for n in numbers[1:]):
            raise DivisionByZeroError(f"Dividing {list(args)} would divide by zero")
        result = numbers[0]
        for n in numbers[1:]:
            result = _truncated_div(result, n)
        return _checked(result)


@simple_plugin
class ModulusNumbers:
    name = "mod"

    def calculate(self, *args: Any) -> int:
        if len(args) != 2:
            raise ArityError(f"mod expects exactly 2 arguments, got {len(args)}")
        dividend, divisor = _promote_all(args)
        if divisor == 0:
            raise DivisionByZeroError(f"Modulus of {dividend} by zero")
        return _truncated_mod(dividend, divisor)


@simple_plugin
class IncrementNumbers:
    name = "increment"

    def calculate(self, *args: Any) -> list[int]:
        _require(args, 1, "increment")
        return [_checked(n + 1) for n in _promote_all(args)]


@simple_plugin
class DecrementNumbers:
    name = "decrement"

    def calculate(self, *args: Any) -> list[int]:
        _require(args, 1, "decrement")
        return [_checked(n - 1) for n in _promote_all(args)]
