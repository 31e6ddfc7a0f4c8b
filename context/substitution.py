"""
Runtime variable substitution for mapping expressions.

    substitute("model.{model.key} -> baz", store)   # model.key = "foo"
    # → "model.foo -> baz"

Only references into the ``model`` namespace are expanded. Anything else,
and any reference that is malformed (no closing brace, empty or trailing
segment, unresolvable path), stays in the text exactly as written.
Expansion is single pass: inserted values are never re-scanned.
"""
from __future__ import annotations

from typing import Any

import structlog

from context.state_store import StateStore, is_valid_path

logger = structlog.get_logger()

SAFE_NAMESPACE = "model"


def substitute(text: str, store: StateStore) -> str:
    if not text or "{" not in text:
        return text

    parts: list[str] = []
    cursor = 0
    while True:
        start = text.find("{", cursor)
        if start == -1:
            parts.append(text[cursor:])
            break
        end = text.find("}", start + 1)
        if end == -1:
            # unterminated reference, keep the remainder verbatim
            parts.append(text[cursor:])
            break
        nested = text.find("{", start + 1, end)
        if nested != -1:
            # "{a{model.x}" - only the innermost brace can open a reference
            parts.append(text[cursor:nested])
            cursor = nested
            continue

        parts.append(text[cursor:start])
        reference = text[start + 1:end]
        resolved = _resolve(reference, store)
        if resolved is None:
            parts.append(text[start:end + 1])
        else:
            parts.append(resolved)
        cursor = end + 1

    return "".join(parts)


def _resolve(reference: str, store: StateStore) -> str | None:
    namespace = reference.split(".", 1)[0]
    if namespace != SAFE_NAMESPACE or "." not in reference:
        return None
    if not is_valid_path(reference) or not store.has_element(reference):
        logger.warning("runtime_var_unresolved", reference=reference)
        return None
    return _as_text(store.get_element(reference))


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)
