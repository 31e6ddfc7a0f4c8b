"""
Loop control for pipeline tasks.

A pipeline task may repeat its steps:

    loop:
      statement: "for (model.n = 0; model.n < 3; model.n++)"
      condition:
        - "if (model.quit) break"
        - "if (model.skip) continue"

    loop:
      statement: "while (model.more)"

The for initializer is optional ("for (model.n < 3; model.n++)").
Comparison operands are model.* paths or integers; the sequencer is
"++" or "--". A condition fires when its model.* key holds True, and the
key is removed as soon as it fires.
"""
from __future__ import annotations

import re
from typing import Any, Optional

from context.state_store import StateStore, is_valid_path
from models.errors import MappingError, TypePromotionError
from models.schemas import Loop, LoopAction, LoopCondition, LoopStatement
from plugins.values import promote_integer

COMPARATORS = ("<=", ">=", "<", ">")

_STATEMENT = re.compile(r"^\s*(for|while)\s*\((.*)\)\s*$", re.DOTALL)
_CONDITION = re.compile(r"^\s*if\s*\((.*)\)\s*(break|continue)\s*$")
_SEQUENCER = re.compile(r"^(.+?)(\+\+|--)$")


def _model_path(text: str) -> bool:
    return text.startswith("model.") and is_valid_path(text)


def _operand(text: str) -> bool:
    return _model_path(text) or text.lstrip("-").isdigit()


# ──────────────────────────────────────────────────────────────
#  Parsing
# ──────────────────────────────────────────────────────────────

def parse_loop(raw: Any) -> Loop:
    """Build a Loop from its YAML mapping. Raises ValueError when malformed."""
    if not isinstance(raw, dict):
        raise ValueError("loop must be a mapping with a statement")
    statement = raw.get("statement")
    if not isinstance(statement, str):
        raise ValueError("loop statement must be text")

    found = _STATEMENT.match(statement)
    if not found:
        raise ValueError(f"invalid loop statement '{statement}'")
    keyword, body = found.group(1), found.group(2).strip()

    conditions = raw.get("condition") or []
    if isinstance(conditions, str):
        conditions = [conditions]
    if not isinstance(conditions, list):
        raise ValueError("loop condition must be text or a list")
    parsed = tuple(_parse_condition(c) for c in conditions)

    if keyword == LoopStatement.WHILE.value:
        if not _model_path(body):
            raise ValueError(f"while loop needs a model.* key - '{statement}'")
        return Loop(statement=LoopStatement.WHILE, while_key=body, conditions=parsed)
    return _parse_for(statement, body, parsed)


def _parse_for(statement: str, body: str, conditions) -> Loop:
    parts = [p.strip() for p in body.split(";")]
    if len(parts) not in (2, 3):
        raise ValueError(f"for loop needs 2 or 3 parts - '{statement}'")

    init_key, init_value = None, 0
    if len(parts) == 3:
        key, eq, value = parts[0].partition("=")
        key, value = key.strip(), value.strip()
        if not eq or not _model_path(key) or not value.lstrip("-").isdigit():
            raise ValueError(f"invalid for loop initializer '{parts[0]}'")
        init_key, init_value = key, int(value)

    comparison = parts[-2]
    for comparator in COMPARATORS:
        left, sep, right = comparison.partition(comparator)
        if sep:
            break
    else:
        raise ValueError(f"invalid for loop comparison '{comparison}'")
    left, right = left.strip(), right.strip()
    if not _operand(left) or not _operand(right):
        raise ValueError(f"invalid for loop comparison '{comparison}'")

    sequencer = _SEQUENCER.match(parts[-1])
    if not sequencer or not _model_path(sequencer.group(1).strip()):
        raise ValueError(f"invalid for loop sequencer '{parts[-1]}'")

    return Loop(
        statement=LoopStatement.FOR,
        init_key=init_key,
        init_value=init_value,
        left=left,
        comparator=comparator,
        right=right,
        step_key=sequencer.group(1).strip(),
        step=1 if sequencer.group(2) == "++" else -1,
        conditions=conditions,
    )


def _parse_condition(text: Any) -> LoopCondition:
    found = _CONDITION.match(text) if isinstance(text, str) else None
    if not found or not _model_path(found.group(1).strip()):
        raise ValueError(f"invalid loop condition '{text}'")
    return LoopCondition(key=found.group(1).strip(), action=LoopAction(found.group(2)))


# ──────────────────────────────────────────────────────────────
#  Runtime
# ──────────────────────────────────────────────────────────────

def _integer(text: str, store: StateStore) -> int:
    if not _model_path(text):
        return int(text)
    value = store.get_element(text)
    if value is None:
        raise MappingError(f"loop variable '{text}' is not set")
    try:
        return int(value) if isinstance(value, float) else promote_integer(value)
    except TypePromotionError as e:
        raise MappingError(f"loop variable '{text}' is not an integer - {e}") from e


def _compare(loop: Loop, store: StateStore) -> bool:
    left = _integer(loop.left, store)
    right = _integer(loop.right, store)
    if loop.comparator == "<":
        return left < right
    if loop.comparator == "<=":
        return left <= right
    if loop.comparator == ">":
        return left > right
    return left >= right


def loop_starts(loop: Optional[Loop], store: StateStore) -> bool:
    """Apply the initializer, then test whether the first iteration runs."""
    if loop is None:
        return True
    if loop.statement == LoopStatement.WHILE:
        return store.get_element(loop.while_key) is True
    if loop.init_key:
        store.set_element(loop.init_key, loop.init_value)
    return _compare(loop, store)


def loop_repeats(loop: Optional[Loop], store: StateStore) -> bool:
    """Advance the loop after a full iteration and test whether it runs again."""
    if loop is None:
        return False
    if loop.statement == LoopStatement.WHILE:
        return store.get_element(loop.while_key) is True
    store.set_element(loop.step_key, _integer(loop.step_key, store) + loop.step)
    return _compare(loop, store)


def loop_control(loop: Optional[Loop], store: StateStore) -> Optional[LoopAction]:
    """Return the first condition that fires, clearing its key."""
    if loop is None:
        return None
    for condition in loop.conditions:
        if store.get_element(condition.key) is True:
            store.remove_element(condition.key)
            return condition.action
    return None
