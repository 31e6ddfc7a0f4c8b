"""
Data mapping expressions.

A task's input and output lists hold entries of the form "<lhs> -> <rhs>":

    input.body.amount -> model.amount          copy a path
    text(hello) -> greeting                    constant into the request
    f:add(model.a, model.b) -> sum             plugin call
    model.name:length -> model.name_len        path with a type suffix
    result.status -> decision                  (output, decision task)

Input entries read the instance state (input, model) and write either
the state (rhs "model.*") or the request payload (any other rhs; "*"
replaces the whole payload). Output entries read a view of input, model,
result (the function's response) and status, and write "model.*",
"result.*", "output.*" or "decision". The output namespace holds the reply
to the caller: output.body, output.status (100-599) and output.header.

An lhs that resolves to nothing removes a state rhs and is skipped for a
payload rhs.
"""
from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from context.state_store import StateStore, is_valid_path
from models.errors import EngineError, MappingError, TypePromotionError
from plugins.registry import PluginRegistry
from plugins.types import substring
from plugins.values import (
    b64_convert, length_of, promote_float, promote_integer, to_text,
)

ARROW = "->"
PLUGIN_PREFIX = "f:"
DECISION = "decision"
WHOLE_PAYLOAD = "*"

INPUT_SOURCES = ("input", "model")
OUTPUT_SOURCES = ("input", "model", "result", "status")
STATE_TARGETS = ("model.", "result.", "output.")

CONSTANT_TYPES = ("text", "int", "long", "float", "double", "boolean", "map")
SIMPLE_SUFFIXES = ("text", "int", "long", "float", "double", "boolean", "!",
                   "length", "uuid", "b64")
# suffixes that produce a value even when the path is absent
_ABSENT_TOLERANT = ("boolean", "!", "length", "uuid")

_ABSENT = object()

# {model.x} references are only known at run time
_RUNTIME_REF = re.compile(r"\{[^{}]*\}")


@dataclass(frozen=True)
class MappingEntry:
    source: str
    target: str

    def __str__(self) -> str:
        return f"{self.source} {ARROW} {self.target}"


def parse_entry(text: str) -> MappingEntry:
    """Split on the last '->'. Both sides must be non-empty."""
    if not isinstance(text, str):
        raise MappingError(f"Mapping entry must be text, got {type(text).__name__}")
    sep = text.rfind(ARROW)
    if sep == -1:
        raise MappingError(f"Invalid mapping entry '{text}' - missing '{ARROW}'")
    source = text[:sep].strip()
    target = text[sep + len(ARROW):].strip()
    if not source or not target:
        raise MappingError(f"Invalid mapping entry '{text}' - empty side")
    return MappingEntry(source, target)


# ──────────────────────────────────────────────────────────────
#  Expression syntax
# ──────────────────────────────────────────────────────────────

def split_arguments(text: str) -> list[str]:
    """Split on commas that are not nested inside parentheses."""
    args, depth, start = [], 0, 0
    for i, ch in enumerate(text):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            args.append(text[start:i].strip())
            start = i + 1
    tail = text[start:].strip()
    if tail or args:
        args.append(tail)
    return args


def parse_plugin_call(expr: str) -> Optional[tuple[str, list[str]]]:
    """'f:add(model.a, 1)' → ('add', ['model.a', '1']); None if not a call."""
    if not expr.startswith(PLUGIN_PREFIX):
        return None
    open_paren = expr.find("(")
    if open_paren == -1 or not expr.endswith(")"):
        return None
    name = expr[len(PLUGIN_PREFIX):open_paren].strip()
    return name, split_arguments(expr[open_paren + 1:-1])


def constant_type(expr: str) -> Optional[str]:
    open_paren = expr.find("(")
    if open_paren == -1 or not expr.endswith(")"):
        return None
    kind = expr[:open_paren].strip()
    return kind if kind in CONSTANT_TYPES else None


def split_suffix(expr: str) -> tuple[str, str]:
    """'model.x:substring(0, 2)' → ('model.x', 'substring(0, 2)')."""
    colon = expr.find(":")
    if colon == -1:
        return expr, ""
    return expr[:colon].strip(), expr[colon + 1:].strip()


def _valid_suffix(suffix: str) -> bool:
    if suffix in SIMPLE_SUFFIXES:
        return True
    if suffix.startswith("substring(") and suffix.endswith(")"):
        parts = split_arguments(suffix[len("substring("):-1])
        return 1 <= len(parts) <= 2 and all(p.lstrip("-").isdigit() for p in parts)
    return False


# ──────────────────────────────────────────────────────────────
#  Load-time validation
# ──────────────────────────────────────────────────────────────

def validate_entry(
    text: str,
    output: bool,
    decision: bool = False,
    plugins: PluginRegistry = None,
) -> list[str]:
    """Return the problems with one mapping entry (empty when valid)."""
    try:
        entry = parse_entry(_RUNTIME_REF.sub("ref", text))
    except MappingError as e:
        return [str(e)]

    errors = []
    namespaces = OUTPUT_SOURCES if output else INPUT_SOURCES
    errors.extend(_source_errors(entry.source, namespaces, plugins, text))

    target = entry.target
    if output:
        if target == DECISION:
            if not decision:
                errors.append(f"'{text}' maps to decision in a non-decision task")
        elif not (target.startswith(STATE_TARGETS) and is_valid_path(target)):
            errors.append(f"'{text}' - output must map to model.*, result.*, output.* or decision")
    elif target != WHOLE_PAYLOAD and not is_valid_path(target):
        errors.append(f"'{text}' - invalid target path '{target}'")
    return errors


def _source_errors(expr: str, namespaces, plugins, text: str) -> list[str]:
    call = parse_plugin_call(expr)
    if call is not None:
        name, args = call
        errors = []
        if plugins is not None and not plugins.exists(name):
            errors.append(f"'{text}' - plugin '{name}' not found")
        for arg in args:
            errors.extend(_source_errors(arg, namespaces, plugins, text))
        return errors
    if expr.startswith(PLUGIN_PREFIX):
        return [f"'{text}' - malformed plugin call '{expr}'"]

    if constant_type(expr):
        return []

    path, suffix = split_suffix(expr)
    if path.split(".", 1)[0] not in namespaces or not is_valid_path(path):
        return [f"'{text}' - '{path}' is not a readable path ({', '.join(namespaces)})"]
    if suffix and not _valid_suffix(suffix):
        return [f"'{text}' - unknown type suffix ':{suffix}'"]
    return []


# ──────────────────────────────────────────────────────────────
#  Evaluation
# ──────────────────────────────────────────────────────────────

def evaluate(expr: str, view: StateStore, plugins: PluginRegistry) -> Any:
    """Resolve one lhs against view. Returns None when nothing resolves."""
    value = _evaluate(expr, view, plugins)
    return None if value is _ABSENT else value


def _evaluate(expr: str, view: StateStore, plugins: PluginRegistry) -> Any:
    call = parse_plugin_call(expr)
    if call is not None:
        name, args = call
        values = [evaluate(a, view, plugins) for a in args]
        return plugins.invoke(name, *values)
    if expr.startswith(PLUGIN_PREFIX):
        raise MappingError(f"Malformed plugin call '{expr}'")

    kind = constant_type(expr)
    if kind:
        return _constant(kind, expr[expr.find("(") + 1:-1])

    path, suffix = split_suffix(expr)
    value = view.get_element(path, _ABSENT)
    if not suffix:
        return value
    if value is _ABSENT and suffix not in _ABSENT_TOLERANT:
        return _ABSENT
    return _apply_suffix(suffix, None if value is _ABSENT else value, expr)


def _constant(kind: str, body: str) -> Any:
    if kind == "text":
        return body
    if kind == "boolean":
        return body.strip().lower() == "true"
    if kind == "map":
        result = {}
        for pair in split_arguments(body):
            key, _, val = pair.partition("=")
            if key.strip():
                result[key.strip()] = val.strip()
        return result
    try:
        if kind in ("int", "long"):
            return promote_integer(body.strip())
        return promote_float(body.strip())
    except TypePromotionError as e:
        raise MappingError(f"Invalid {kind} constant '{body}'") from e


def _apply_suffix(suffix: str, value: Any, expr: str) -> Any:
    try:
        if suffix == "text":
            return to_text(value)
        if suffix in ("int", "long"):
            return int(value) if isinstance(value, float) else promote_integer(value)
        if suffix in ("float", "double"):
            return promote_float(value)
        if suffix == "boolean":
            return to_text(value).lower() == "true"
        if suffix == "!":
            return to_text(value).lower() != "true"
        if suffix == "length":
            return length_of(value)
        if suffix == "uuid":
            return str(uuid.uuid4())
        if suffix == "b64":
            return b64_convert(value)
        if suffix.startswith("substring(") and suffix.endswith(")"):
            return _substring(value, suffix)
    except EngineError as e:
        raise MappingError(f"Cannot apply ':{suffix}' to '{expr}' - {e}") from e
    raise MappingError(f"Unknown type suffix ':{suffix}' in '{expr}'")


def _substring(value: Any, suffix: str) -> str:
    if not isinstance(value, str):
        raise MappingError("substring needs a text value")
    bounds = [int(p) for p in split_arguments(suffix[len("substring("):-1])]
    start = bounds[0]
    end = bounds[1] if len(bounds) > 1 else len(value)
    if not 0 <= start < end <= len(value):
        raise MappingError(f"substring index out of bounds [{start}, {end}]")
    return substring(value, start, end)


# ──────────────────────────────────────────────────────────────
#  Applying mapping lists
# ──────────────────────────────────────────────────────────────

def _owned(value: Any) -> Any:
    return copy.deepcopy(value) if isinstance(value, (dict, list)) else value


def apply_input_mapping(
    entries: Iterable[MappingEntry],
    store: StateStore,
    plugins: PluginRegistry,
) -> dict[str, Any]:
    """Evaluate input entries against store. Returns the request payload."""
    payload = StateStore()
    for entry in entries:
        value = evaluate(entry.source, store, plugins)
        target = entry.target
        if target.startswith("model."):
            if value is None:
                store.remove_element(target)
            else:
                store.set_element(target, _owned(value))
        elif value is None:
            continue
        elif target == WHOLE_PAYLOAD:
            if not isinstance(value, dict):
                raise MappingError(f"'{entry}' - only a mapping can replace the whole request")
            payload = StateStore(copy.deepcopy(value))
        else:
            payload.set_element(target, _owned(value))
    return payload.to_dict()


def apply_output_mapping(
    entries: Iterable[MappingEntry],
    store: StateStore,
    response: Any,
    status: int,
    plugins: PluginRegistry,
) -> Any:
    """
    Evaluate output entries against input/model/result/status and write
    them into store. Returns the decision value, if any entry produced one.
    Raises MappingError for an output.status or output.header the reply
    cannot carry.
    """
    view = StateStore({
        "input": store.namespace("input"),
        "model": store.namespace("model"),
        "result": response,
        "status": status,
    })
    decision = None
    for entry in entries:
        value = evaluate(entry.source, view, plugins)
        if entry.target == DECISION:
            decision = value
        elif value is None:
            store.remove_element(entry.target)
        else:
            _check_reply_value(entry, value)
            store.set_element(entry.target, _owned(value))
    return decision


def _check_reply_value(entry: MappingEntry, value: Any) -> None:
    if entry.target == "output.status":
        if isinstance(value, bool) or not isinstance(value, int) or not 100 <= value <= 599:
            raise MappingError(f"'{entry}' - output.status must be an integer from 100 to 599")
    elif entry.target == "output.header" and not isinstance(value, dict):
        raise MappingError(f"'{entry}' - output.header must be a mapping")


def parse_entries(texts: Iterable[str]) -> list[MappingEntry]:
    return [parse_entry(t) for t in texts]
