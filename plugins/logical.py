"""
Comparison and boolean plugins.

Comparisons promote their arguments to integers. Boolean operators accept
booleans or "true"/"false" text only; anything else is a TypePromotionError.
"""
from __future__ import annotations

from typing import Any

from models.errors import ArityError
from plugins.registry import simple_plugin
from plugins.values import promote_boolean, promote_integer


@simple_plugin
class EqualsOperator:
    name = "eq"

    def calculate(self, *args: Any) -> bool:
        if len(args) < 2:
            raise ArityError("eq expects at least 2 arguments")
        first = args[0]
        return all(a == first and type(a) is type(first) for a in args[1:])


@simple_plugin
class GreaterThanOperator:
    """True when the first argument is greater than every other argument."""
    name = "gt"

    def calculate(self, *args: Any) -> bool:
        if not args:
            raise ArityError("gt expects at least 1 argument")
        first, *rest = [promote_integer(a) for a in args]
        return all(first > n for n in rest)


@simple_plugin
class LessThanOperator:
    name = "lt"

    def calculate(self, *args: Any) -> bool:
        if len(args) != 2:
            raise ArityError(f"lt expects exactly 2 arguments, got {len(args)}")
        return promote_integer(args[0]) < promote_integer(args[1])


@simple_plugin
class LogicalConjunction:
    name = "and"

    def calculate(self, *args: Any) -> bool:
        if not args:
            raise ArityError("and expects at least 1 argument")
        return all([promote_boolean(a) for a in args])


@simple_plugin
class LogicalDisjunction:
    name = "or"

    def calculate(self, *args: Any) -> bool:
        if not args:
            raise ArityError("or expects at least 1 argument")
        return any([promote_boolean(a) for a in args])


@simple_plugin
class LogicalNegation:
    name = "not"

    def calculate(self, *args: Any) -> bool:
        if len(args) != 1:
            raise ArityError(f"not expects exactly 1 argument, got {len(args)}")
        return not promote_boolean(args[0])


@simple_plugin
class TernaryOperator:
    name = "ternary"

    def calculate(self, *args: Any) -> Any:
        if len(args) != 3:
            raise ArityError(f"ternary expects exactly 3 arguments, got {len(args)}")
        condition, when_true, when_false = args
        return when_true if promote_boolean(condition) else when_false


@simple_plugin
class IsNullOperator:
    name = "isNull"

    def calculate(self, *args: Any) -> bool:
        if len(args) != 1:
            raise ArityError(f"isNull expects exactly 1 argument, got {len(args)}")
        return args[0] is None


@simple_plugin
class IsNotNullOperator:
    name = "notNull"

    def calculate(self, *args: Any) -> bool:
        if len(args) != 1:
            raise ArityError(f"notNull expects exactly 1 argument, got {len(args)}")
        return args[0] is not None
