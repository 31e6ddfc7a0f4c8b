"""Tests for pipeline loop statements and their runtime checks."""
import pytest

from context.state_store import StateStore
from flows.loops import loop_control, loop_repeats, loop_starts, parse_loop
from models.errors import MappingError
from models.schemas import LoopAction, LoopStatement


class TestParseLoop:

    def test_for_with_initializer(self):
        loop = parse_loop({"statement": "for (model.n = 0; model.n < model.size; model.n++)"})
        assert loop.statement == LoopStatement.FOR
        assert (loop.init_key, loop.init_value) == ("model.n", 0)
        assert (loop.left, loop.comparator, loop.right) == ("model.n", "<", "model.size")
        assert (loop.step_key, loop.step) == ("model.n", 1)

    def test_for_without_initializer(self):
        loop = parse_loop({"statement": "for(model.n >= -2; model.n--)"})
        assert loop.init_key is None
        assert (loop.comparator, loop.right) == (">=", "-2")
        assert loop.step == -1

    def test_while_with_conditions(self):
        loop = parse_loop({
            "statement": "while (model.more)",
            "condition": ["if (model.quit) break", "if (model.skip) continue"],
        })
        assert loop.statement == LoopStatement.WHILE
        assert loop.while_key == "model.more"
        assert [(c.key, c.action) for c in loop.conditions] == [
            ("model.quit", LoopAction.BREAK), ("model.skip", LoopAction.CONTINUE),
        ]

    def test_single_condition_text(self):
        loop = parse_loop({"statement": "while (model.more)", "condition": "if (model.quit) break"})
        assert len(loop.conditions) == 1

    @pytest.mark.parametrize("raw", [
        "for (model.n = 0; model.n < 3; model.n++)",
        {"statement": 42},
        {"statement": "loop (model.n)"},
        {"statement": "while (input.more)"},
        {"statement": "for (model.n < 3)"},
        {"statement": "for (n = 0; model.n < 3; model.n++)"},
        {"statement": "for (model.n = x; model.n < 3; model.n++)"},
        {"statement": "for (model.n == 3; model.n++)"},
        {"statement": "for (model.n < three; model.n++)"},
        {"statement": "for (model.n < 3; model.n += 1)"},
        {"statement": "while (model.more)", "condition": "if model.quit break"},
        {"statement": "while (model.more)", "condition": {"if": "model.quit"}},
    ])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_loop(raw)


class TestLoopRuntime:

    def test_for_loop_lifecycle(self):
        store = StateStore({"model": {"size": 2}})
        loop = parse_loop({"statement": "for (model.n = 0; model.n < model.size; model.n++)"})

        assert loop_starts(loop, store) is True
        assert store.get_element("model.n") == 0
        assert loop_repeats(loop, store) is True
        assert loop_repeats(loop, store) is False
        assert store.get_element("model.n") == 2

    def test_numeric_text_variable(self):
        store = StateStore({"model": {"n": "3"}})
        loop = parse_loop({"statement": "for (model.n > 0; model.n--)"})
        assert loop_starts(loop, store) is True
        assert loop_repeats(loop, store) is True
        assert store.get_element("model.n") == 2

    def test_missing_variable(self):
        loop = parse_loop({"statement": "for (model.n < 3; model.n++)"})
        with pytest.raises(MappingError, match="not set"):
            loop_starts(loop, StateStore({"model": {}}))

    def test_while_needs_true(self):
        loop = parse_loop({"statement": "while (model.more)"})
        assert loop_starts(loop, StateStore({"model": {"more": True}})) is True
        assert loop_starts(loop, StateStore({"model": {"more": "true"}})) is False
        assert loop_repeats(loop, StateStore({"model": {}})) is False

    def test_fired_condition_is_cleared(self):
        store = StateStore({"model": {"skip": True, "quit": True}})
        loop = parse_loop({
            "statement": "while (model.more)",
            "condition": ["if (model.skip) continue", "if (model.quit) break"],
        })
        assert loop_control(loop, store) == LoopAction.CONTINUE
        assert loop_control(loop, store) == LoopAction.BREAK
        assert loop_control(loop, store) is None
        assert store.get_element("model") == {}

    def test_no_loop_runs_once(self):
        store = StateStore({})
        assert loop_starts(None, store) is True
        assert loop_control(None, store) is None
        assert loop_repeats(None, store) is False
