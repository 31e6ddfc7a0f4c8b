"""
Plugin functions for mapping expressions.

Built-in plugins live in the modules of this package and are picked up
by PluginRegistry.discover() at startup:
  - arithmetic: add, subtract, multiply, div, mod, increment, decrement
  - generators: dateTime, uuid
  - logical:    eq, gt, lt, and, or, not, ternary, isNull, notNull
  - types:      text, boolean, long, length, concat, substring, b64
"""
from plugins.registry import (
    PluginRegistry, simple_plugin, get_plugin_registry, create_plugin_registry,
)
from plugins.values import ValueKind, kind_of, promote_integer
