"""
StateStore — dot-addressed working data of one flow instance.

    store = StateStore({"input": {"body": {"a": 1}}, "model": {}})
    store.set_element("model.items[0].name", "x")
    store.get_element("input.body.a")      # → 1
    store.get_element("model.missing")     # → None (absent)

A store is created per flow instance and owned exclusively by it, so it
mutates in place and does no locking. Values are stored as given; no type
coercion happens here.
"""
from __future__ import annotations

import copy
import re
from typing import Any, Iterator, Mapping, Union

from models.errors import InvalidPathError, PathCollisionError

_SEGMENT = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")
_INDEX = re.compile(r"\[(\d+)\]")
_ABSENT = object()

Key = Union[str, int]


def parse_path(path: str) -> list[Key]:
    """
    Split a path into dict keys and list indexes.
    Raises InvalidPathError for empty segments ("a..b", "a.", ".a").
    """
    if not isinstance(path, str) or not path:
        raise InvalidPathError(str(path))
    keys: list[Key] = []
    for segment in path.split("."):
        match = _SEGMENT.match(segment.strip()) if segment.strip() else None
        if match is None:
            raise InvalidPathError(path)
        keys.append(match.group(1))
        keys.extend(int(i) for i in _INDEX.findall(match.group(2)))
    return keys


def is_valid_path(path: str) -> bool:
    try:
        parse_path(path)
        return True
    except InvalidPathError:
        return False


class StateStore:
    """Hierarchical key-value namespace addressed by dot-separated paths."""

    def __init__(self, data: dict[str, Any] = None, *, copy_data: bool = False):
        if data is None:
            data = {}
        self._data: dict[str, Any] = copy.deepcopy(data) if copy_data else data

    # ── Read ──────────────────────────────────────────

    def get_element(self, path: str, default: Any = None) -> Any:
        value = self._lookup(path)
        return default if value is _ABSENT else value

    def has_element(self, path: str) -> bool:
        return self._lookup(path) is not _ABSENT

    def __contains__(self, path: str) -> bool:
        return self.has_element(path)

    def _lookup(self, path: str) -> Any:
        try:
            keys = parse_path(path)
        except InvalidPathError:
            return _ABSENT
        current: Any = self._data
        for key in keys:
            if isinstance(key, int):
                if not isinstance(current, list) or key >= len(current):
                    return _ABSENT
                current = current[key]
            else:
                if not isinstance(current, Mapping) or key not in current:
                    return _ABSENT
                current = current[key]
        return current

    # ── Write ─────────────────────────────────────────

    def set_element(self, path: str, value: Any) -> None:
        """
        Set value at path, creating intermediate containers as needed.
        Raises PathCollisionError when an intermediate segment holds a
        non-container value.
        """
        keys = parse_path(path)
        parent = self._data
        for position, key in enumerate(keys[:-1]):
            following = keys[position + 1]
            parent = self._descend(parent, key, following, path)
        self._assign(parent, keys[-1], value, path)

    def _descend(self, container: Any, key: Key, following: Key, path: str) -> Any:
        child = self._child(container, key)
        if child is None:
            child = [] if isinstance(following, int) else {}
            self._assign(container, key, child, path)
            return child
        expected = list if isinstance(following, int) else dict
        if not isinstance(child, expected):
            raise PathCollisionError(path, str(key))
        return child

    @staticmethod
    def _child(container: Any, key: Key) -> Any:
        if isinstance(key, int):
            return container[key] if key < len(container) else None
        return container.get(key)

    @staticmethod
    def _assign(container: Any, key: Key, value: Any, path: str) -> None:
        if isinstance(key, int):
            if not isinstance(container, list):
                raise PathCollisionError(path, str(key))
            while len(container) <= key:
                container.append(None)
            container[key] = value
        else:
            if not isinstance(container, dict):
                raise PathCollisionError(path, key)
            container[key] = value

    def remove_element(self, path: str) -> bool:
        """Remove the element at path. Returns False when it does not exist."""
        try:
            keys = parse_path(path)
        except InvalidPathError:
            return False
        parent_path_value = self._data
        for key in keys[:-1]:
            parent_path_value = self._child_or_absent(parent_path_value, key)
            if parent_path_value is _ABSENT:
                return False
        last = keys[-1]
        if isinstance(last, int):
            if isinstance(parent_path_value, list) and last < len(parent_path_value):
                parent_path_value.pop(last)
                return True
            return False
        if isinstance(parent_path_value, dict) and last in parent_path_value:
            del parent_path_value[last]
            return True
        return False

    @staticmethod
    def _child_or_absent(container: Any, key: Key) -> Any:
        if isinstance(key, int):
            if isinstance(container, list) and key < len(container):
                return container[key]
            return _ABSENT
        if isinstance(container, dict) and key in container:
            return container[key]
        return _ABSENT

    def merge(self, subtree: Any, at_path: str = "") -> None:
        """
        Deep-merge subtree into the mapping at at_path (the root when empty).
        Nested mappings are merged key by key; any other value overwrites.
        """
        if not isinstance(subtree, Mapping):
            if not at_path:
                raise PathCollisionError("<root>", "<root>")
            self.set_element(at_path, subtree)
            return
        if at_path:
            target = self.get_element(at_path)
            if target is None:
                target = {}
                self.set_element(at_path, target)
            elif not isinstance(target, dict):
                raise PathCollisionError(at_path, at_path.rsplit(".", 1)[-1])
        else:
            target = self._data
        _deep_merge(target, subtree)

    # ── Views ─────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the current contents, safe to hand to observers."""
        return copy.deepcopy(self._data)

    def to_dict(self) -> dict[str, Any]:
        """Live underlying dict. Callers that keep it must not mutate it."""
        return self._data

    def namespace(self, name: str) -> dict[str, Any]:
        """Live top-level namespace, created when missing."""
        ns = self._data.get(name)
        if not isinstance(ns, dict):
            ns = {}
            self._data[name] = ns
        return ns

    def keys(self) -> Iterator[str]:
        return iter(self._data.keys())

    def __repr__(self) -> str:
        return f"<StateStore namespaces={list(self._data.keys())}>"


def _deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            _deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)
