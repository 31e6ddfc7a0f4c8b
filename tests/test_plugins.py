"""Tests for the plugin registry, value promotion and built-in plugins."""
import base64
import re
import time
import uuid
from datetime import datetime

import pytest

from models.errors import (
    ArityError, DivisionByZeroError, DuplicateNameError, PluginEvaluationError,
    PluginNotFound, RegistrySealedError, TypePromotionError,
)
from plugins.registry import PluginRegistry, simple_plugin
from plugins.values import ValueKind, kind_of, promote_boolean, promote_integer


# ──────────────────────────────────────────────────────
#  Registry
# ──────────────────────────────────────────────────────

class TestPluginRegistry:

    def test_register_and_invoke(self):
        reg = PluginRegistry()
        reg.register("double", lambda x: x * 2)
        assert reg.invoke("double", 4) == 8
        assert reg.lookup("double")(1) == 2

    def test_duplicate_name_rejected(self):
        reg = PluginRegistry()
        reg.register("x", lambda: 1)
        with pytest.raises(DuplicateNameError):
            reg.register("x", lambda: 2)
        assert reg.invoke("x") == 1

    def test_unknown_plugin(self):
        with pytest.raises(PluginNotFound):
            PluginRegistry().lookup("nope")

    def test_invalid_name(self):
        with pytest.raises(ValueError):
            PluginRegistry().register("not-an-identifier", lambda: 1)

    def test_sealed_registry_rejects_registration(self):
        reg = PluginRegistry()
        reg.register("a", lambda: 1)
        reg.seal()
        assert reg.sealed
        with pytest.raises(RegistrySealedError):
            reg.register("b", lambda: 2)
        assert reg.invoke("a") == 1

    def test_unexpected_exceptions_are_wrapped(self):
        reg = PluginRegistry()
        reg.register("boom", lambda: {}["missing"])
        with pytest.raises(PluginEvaluationError, match="boom"):
            reg.invoke("boom")

    def test_simple_plugin_requires_name(self):
        with pytest.raises(TypeError):
            @simple_plugin
            class Nameless:
                def calculate(self, *args):
                    return None

    def test_discover_builtins(self, plugin_registry):
        for name in ("add", "subtract", "multiply", "div", "mod", "increment",
                     "decrement", "dateTime", "uuid", "eq", "gt", "lt", "and",
                     "or", "not", "ternary", "isNull", "notNull", "text",
                     "boolean", "long", "length", "concat", "substring", "b64"):
            assert plugin_registry.exists(name), name
        assert plugin_registry.sealed


# ──────────────────────────────────────────────────────
#  Value kinds and promotion
# ──────────────────────────────────────────────────────

class TestValues:

    @pytest.mark.parametrize("value,kind", [
        (1, ValueKind.INTEGER), (1.5, ValueKind.FLOAT), ("s", ValueKind.STRING),
        (True, ValueKind.BOOLEAN), ([1], ValueKind.SEQUENCE), ({}, ValueKind.MAPPING),
        (None, ValueKind.NULL), (b"x", ValueKind.BYTES),
    ])
    def test_kind_of(self, value, kind):
        assert kind_of(value) == kind

    @pytest.mark.parametrize("value,expected", [(2, 2), ("2", 2), ("-7", -7), (" +3 ", 3)])
    def test_promote_integer(self, value, expected):
        assert promote_integer(value) == expected

    @pytest.mark.parametrize("value", [True, 2.5, "2.5", "abc", "", None, [1], {"a": 1}, b"1", 2 ** 63])
    def test_promote_integer_rejects(self, value):
        with pytest.raises(TypePromotionError):
            promote_integer(value)

    def test_promote_boolean(self):
        assert promote_boolean("TRUE") is True
        assert promote_boolean(False) is False
        with pytest.raises(TypePromotionError):
            promote_boolean(1)


# ──────────────────────────────────────────────────────
#  Arithmetic
# ──────────────────────────────────────────────────────

class TestArithmetic:

    def test_add(self, plugin_registry):
        assert plugin_registry.invoke("add", 2, 2) == 4
        assert plugin_registry.invoke("add", "2", 2) == 4
        assert plugin_registry.invoke("add", 1, 2, 3, "4") == 10

    def test_add_rejects_non_numeric(self, plugin_registry):
        with pytest.raises(TypePromotionError):
            plugin_registry.invoke("add", "two", 2)

    def test_subtract_left_fold(self, plugin_registry):
        assert plugin_registry.invoke("subtract", 10, 3, 2) == 5
        with pytest.raises(ArityError):
            plugin_registry.invoke("subtract", 10)

    def test_multiply(self, plugin_registry):
        assert plugin_registry.invoke("multiply", 2, "3", 4) == 24

    def test_div_truncates_toward_zero(self, plugin_registry):
        assert plugin_registry.invoke("div", 100, 5, 2) == 10
        assert plugin_registry.invoke("div", -7, 2) == -3

    def test_div_by_zero(self, plugin_registry):
        with pytest.raises(DivisionByZeroError):
            plugin_registry.invoke("div", 10, 0)
        with pytest.raises(DivisionByZeroError):
            plugin_registry.invoke("div", 10, 2, "0")

    @pytest.mark.parametrize("args", [(10,), (10, 3, 2), ()])
    def test_mod_arity(self, plugin_registry, args):
        with pytest.raises(ArityError):
            plugin_registry.invoke("mod", *args)

    def test_mod(self, plugin_registry):
        assert plugin_registry.invoke("mod", 10, 3) == 1
        assert plugin_registry.invoke("mod", -7, 2) == -1
        with pytest.raises(DivisionByZeroError):
            plugin_registry.invoke("mod", 10, 0)

    def test_increment_decrement_return_lists(self, plugin_registry):
        assert plugin_registry.invoke("increment", 1) == [2]
        assert plugin_registry.invoke("increment", 1, "5") == [2, 6]
        assert plugin_registry.invoke("decrement", 0, 10) == [-1, 9]

    def test_overflow(self, plugin_registry):
        with pytest.raises(PluginEvaluationError):
            plugin_registry.invoke("add", 2 ** 63 - 1, 1)

    def test_warm_invocation_is_sub_millisecond(self, plugin_registry):
        for _ in range(2):
            plugin_registry.invoke("add", 2, 3)
        runs = 1000
        started = time.perf_counter()
        for _ in range(runs):
            plugin_registry.invoke("add", 2, "3")
        per_call = (time.perf_counter() - started) / runs
        assert per_call < 0.001


# ──────────────────────────────────────────────────────
#  Generators
# ──────────────────────────────────────────────────────

class TestGenerators:

    def test_uuid_is_fresh(self, plugin_registry):
        a = plugin_registry.invoke("uuid")
        b = plugin_registry.invoke("uuid")
        assert a != b
        assert uuid.UUID(a).version == 4

    def test_date_time_default_is_iso(self, plugin_registry):
        value = plugin_registry.invoke("dateTime")
        assert datetime.fromisoformat(value).tzinfo is not None

    def test_date_time_pattern_and_zone(self, plugin_registry):
        assert re.match(r"^\d{4}-\d{2}-\d{2}$", plugin_registry.invoke("dateTime", "%Y-%m-%d"))
        value = plugin_registry.invoke("dateTime", "%z", "UTC")
        assert value == "+0000"

    def test_date_time_unknown_zone(self, plugin_registry):
        with pytest.raises(PluginEvaluationError):
            plugin_registry.invoke("dateTime", "%Y", "Mars/Olympus_Mons")


# ──────────────────────────────────────────────────────
#  Logical and conversion
# ──────────────────────────────────────────────────────

class TestLogical:

    def test_comparisons(self, plugin_registry):
        assert plugin_registry.invoke("eq", 1, 1, 1) is True
        assert plugin_registry.invoke("eq", 1, "1") is False
        assert plugin_registry.invoke("gt", 5, 3, "4") is True
        assert plugin_registry.invoke("lt", "2", 3) is True

    def test_boolean_operators(self, plugin_registry):
        assert plugin_registry.invoke("and", True, "true") is True
        assert plugin_registry.invoke("or", False, "TRUE") is True
        assert plugin_registry.invoke("not", "false") is True
        with pytest.raises(TypePromotionError):
            plugin_registry.invoke("and", True, 1)

    def test_ternary_and_null_checks(self, plugin_registry):
        assert plugin_registry.invoke("ternary", True, "a", "b") == "a"
        assert plugin_registry.invoke("isNull", None) is True
        assert plugin_registry.invoke("notNull", 0) is True
        with pytest.raises(ArityError):
            plugin_registry.invoke("ternary", True, "a")


class TestConversions:

    def test_text_and_long(self, plugin_registry):
        assert plugin_registry.invoke("text", 12) == "12"
        assert plugin_registry.invoke("text", True, None) == ["true", "null"]
        assert plugin_registry.invoke("long", "42") == 42

    def test_length_and_concat(self, plugin_registry):
        assert plugin_registry.invoke("length", "hello") == 5
        assert plugin_registry.invoke("length", None) == 0
        assert plugin_registry.invoke("concat", "a", 1, True) == "a1true"

    def test_substring(self, plugin_registry):
        assert plugin_registry.invoke("substring", "hello", 1, 3) == "el"
        assert plugin_registry.invoke("substring", "hello", 2) == "llo"
        with pytest.raises(PluginEvaluationError):
            plugin_registry.invoke("substring", "hello", 3, 1)

    def test_b64_round_trip(self, plugin_registry):
        encoded = plugin_registry.invoke("b64", b"hi")
        assert encoded == base64.b64encode(b"hi").decode()
        assert plugin_registry.invoke("b64", encoded) == b"hi"
        with pytest.raises(PluginEvaluationError):
            plugin_registry.invoke("b64", "not base64!")
