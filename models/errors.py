"""
Engine error taxonomy.

Every error carries a stable ``kind`` string. The executor copies it into
``FlowError.kind`` when a flow instance fails, so callers can branch on the
kind without importing the exception classes.

  EngineError
    ├── FlowLoadError            malformed flow graph (fatal at load time)
    ├── FlowNotFound / TaskNotFound
    ├── PluginError
    │     ├── DuplicateNameError
    │     ├── PluginNotFound
    │     └── RegistrySealedError
    ├── PluginEvaluationError
    │     ├── ArityError
    │     ├── TypePromotionError
    │     └── DivisionByZeroError
    ├── DispatchError
    │     ├── DispatchTimeout     kind "Timeout"
    │     └── RouteNotFound
    ├── MappingError
    ├── InvalidDecision
    ├── StepLimitExceeded
    ├── FlowCancelled             kind "Cancelled"
    ├── FlowExpired               kind "Expired"
    ├── InvalidRouteError
    └── StateStoreError
          ├── InvalidPathError
          └── PathCollisionError
"""
from __future__ import annotations


class EngineError(Exception):
    kind = "EngineError"


# ── Flow model ────────────────────────────────────────

class FlowLoadError(EngineError):
    """Raised when a flow definition is structurally invalid."""
    kind = "FlowLoadError"

    def __init__(self, reason: str, flow_id: str = ""):
        self.reason = reason
        self.flow_id = flow_id
        prefix = f"Invalid flow '{flow_id}': " if flow_id else "Invalid flow: "
        super().__init__(prefix + reason)


class FlowNotFound(EngineError, LookupError):
    kind = "FlowNotFound"

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' does not exist")


class TaskNotFound(EngineError, LookupError):
    kind = "TaskNotFound"

    def __init__(self, flow_id: str, task_name: str):
        self.flow_id = flow_id
        self.task_name = task_name
        super().__init__(f"Task '{task_name}' does not exist in flow '{flow_id}'")


class InvalidRouteError(EngineError, ValueError):
    kind = "InvalidRoute"

    def __init__(self, route: str):
        self.route = route
        super().__init__(f"Invalid function route '{route}'")


# ── Plugin registry ───────────────────────────────────

class PluginError(EngineError):
    kind = "PluginError"


class DuplicateNameError(PluginError):
    kind = "DuplicateNameError"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Plugin '{name}' is already registered")


class PluginNotFound(PluginError, LookupError):
    kind = "PluginNotFound"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Plugin '{name}' not found")


class RegistrySealedError(PluginError):
    kind = "RegistrySealedError"


class PluginEvaluationError(EngineError):
    """A plugin function could not compute a result for its arguments."""
    kind = "EvaluationError"


class ArityError(PluginEvaluationError):
    kind = "ArityError"


class TypePromotionError(PluginEvaluationError):
    kind = "TypePromotionError"


class DivisionByZeroError(PluginEvaluationError):
    kind = "DivisionByZeroError"


# ── Dispatch ──────────────────────────────────────────

class DispatchError(EngineError):
    kind = "DispatchError"


class DispatchTimeout(DispatchError):
    kind = "Timeout"

    def __init__(self, route: str, timeout: float):
        self.route = route
        self.timeout = timeout
        super().__init__(f"Function '{route}' did not respond within {timeout}s")


class RouteNotFound(DispatchError):
    kind = "RouteNotFound"

    def __init__(self, route: str):
        self.route = route
        super().__init__(f"Function route '{route}' is not registered")


# ── Execution ─────────────────────────────────────────

class MappingError(EngineError):
    kind = "MappingError"


class InvalidDecision(EngineError):
    kind = "InvalidDecision"


class StepLimitExceeded(EngineError):
    kind = "StepLimitExceeded"


class FlowCancelled(EngineError):
    kind = "Cancelled"


class FlowExpired(EngineError):
    kind = "Expired"


# ── State store ───────────────────────────────────────

class StateStoreError(EngineError):
    kind = "StateStoreError"


class InvalidPathError(StateStoreError, ValueError):
    kind = "InvalidPath"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Invalid path '{path}'")


class PathCollisionError(StateStoreError):
    kind = "PathCollision"

    def __init__(self, path: str, segment: str):
        self.path = path
        self.segment = segment
        super().__init__(f"Cannot set '{path}' - '{segment}' is not a container")
