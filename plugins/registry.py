"""
Plugin Registry — named calculation functions usable inside mapping expressions.

    f:add(model.a, model.b) -> model.sum

Plugins are plain classes marked with @simple_plugin. Each carries a
``name`` and a ``calculate(*args)`` method:

    @simple_plugin
    class AddNumbers:
        name = "add"
        def calculate(self, *args): ...

Lifecycle:
  1. Warm-up: register() / discover() during single-threaded startup
  2. seal(): the table is frozen into a read-only MappingProxyType
  3. Steady state: lookup() / invoke() from any number of concurrent
     flow instances, no locking

get_plugin_registry() builds the process-wide registry once, from the
built-in plugins package plus settings.plugins.packages.
"""
from __future__ import annotations

import importlib
import inspect
import pkgutil
from types import MappingProxyType
from typing import Any, Callable, Iterable, Optional

import structlog

from models.errors import (
    DuplicateNameError, PluginEvaluationError, PluginNotFound, RegistrySealedError,
)

logger = structlog.get_logger()

BUILTIN_PACKAGE = "plugins"

PluginFunction = Callable[..., Any]


def simple_plugin(cls):
    """Mark a class as a discoverable plugin implementation."""
    if not isinstance(getattr(cls, "name", None), str) or not cls.name:
        raise TypeError(f"Plugin class {cls.__name__} must define a non-empty 'name'")
    if not callable(getattr(cls, "calculate", None)):
        raise TypeError(f"Plugin class {cls.__name__} must define calculate(*args)")
    cls.__simple_plugin__ = True
    return cls


class PluginRegistry:
    """Name → function table, append-only until sealed."""

    def __init__(self):
        self._functions: dict[str, PluginFunction] = {}
        self._view = MappingProxyType(self._functions)
        self._sealed = False

    # ── Registration ──────────────────────────────────

    def register(self, name: str, fn: PluginFunction):
        if self._sealed:
            raise RegistrySealedError(f"Cannot register '{name}' - plugin registry is sealed")
        if not isinstance(name, str) or not name.isidentifier():
            raise ValueError(f"Invalid plugin name '{name}'")
        if not callable(fn):
            raise TypeError(f"Plugin '{name}' is not callable")
        if name in self._functions:
            raise DuplicateNameError(name)
        self._functions[name] = fn
        logger.debug("plugin_registered", name=name)

    def register_class(self, cls) -> str:
        """Instantiate a @simple_plugin class and register its calculate method."""
        self.register(cls.name, cls().calculate)
        return cls.name

    def discover(self, packages: Iterable[str]) -> int:
        """
        Import every module of the given packages and register all
        @simple_plugin classes they define. Returns the number registered.
        """
        packages = list(packages)
        count = 0
        for package_name in packages:
            for module in _iter_modules(package_name):
                for _, cls in inspect.getmembers(module, inspect.isclass):
                    if cls.__module__ != module.__name__:
                        continue
                    if not getattr(cls, "__simple_plugin__", False):
                        continue
                    self.register_class(cls)
                    count += 1
        logger.info("plugins_loaded", packages=list(packages), count=count)
        return count

    def seal(self):
        """End warm-up. Further registration raises RegistrySealedError."""
        if self._sealed:
            return
        self._view = MappingProxyType(dict(self._functions))
        self._sealed = True
        logger.info("plugin_registry_sealed", count=len(self._view))

    @property
    def sealed(self) -> bool:
        return self._sealed

    # ── Lookup ────────────────────────────────────────

    def lookup(self, name: str) -> PluginFunction:
        try:
            return self._view[name]
        except KeyError:
            raise PluginNotFound(name) from None

    def exists(self, name: str) -> bool:
        return name in self._view

    def invoke(self, name: str, *args: Any) -> Any:
        fn = self.lookup(name)
        try:
            return fn(*args)
        except PluginEvaluationError:
            raise
        except Exception as e:
            raise PluginEvaluationError(f"Plugin '{name}' failed - {e}") from e

    def names(self) -> list[str]:
        return sorted(self._view.keys())

    @property
    def count(self) -> int:
        return len(self._view)


def _iter_modules(package_name: str):
    package = importlib.import_module(package_name)
    yield package
    if not hasattr(package, "__path__"):
        return
    for info in pkgutil.iter_modules(package.__path__, prefix=f"{package_name}."):
        yield importlib.import_module(info.name)


# ──────────────────────────────────────────────────────────────
#  Process-wide registry
# ──────────────────────────────────────────────────────────────

_registry: Optional[PluginRegistry] = None


def create_plugin_registry(extra_packages: Iterable[str] = ()) -> PluginRegistry:
    """Build a sealed registry with the built-ins plus extra_packages."""
    registry = PluginRegistry()
    packages = [BUILTIN_PACKAGE]
    packages += [p for p in extra_packages if p not in packages]
    registry.discover(packages)
    registry.seal()
    return registry


def get_plugin_registry() -> PluginRegistry:
    """Return the process-wide registry, initialising it on first call."""
    global _registry
    if _registry is None:
        from config.settings import get_settings
        _registry = create_plugin_registry(get_settings().plugins.packages)
    return _registry
