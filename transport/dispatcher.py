"""
Dispatcher — request/response delivery to named functions.

The executor only depends on the abstract Dispatcher. LocalDispatcher is
the in-process implementation used by the engine and the test suite:

    dispatcher = LocalDispatcher()
    dispatcher.register("v1.echo", lambda payload: payload)
    reply = await dispatcher.dispatch("v1.echo", {"a": 1}, timeout=5)
    reply.body      # → {"a": 1}
    reply.status    # → 200

Retry is not done here. A transport that wants retries wraps its own
dispatch in whatever resilience policy it needs.
"""
from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

import structlog

from models.errors import DispatchError, InvalidRouteError, RouteNotFound
from utils.routes import valid_service_name

logger = structlog.get_logger()

Handler = Callable[[Any], Union[Any, Awaitable[Any]]]


@dataclass
class DispatchResult:
    """Response of a dispatched function."""
    body: Any = None
    status: int = 200


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class Dispatcher(ABC):
    """Abstract request/response primitive."""

    @abstractmethod
    async def dispatch(self, route: str, payload: Any, timeout: float) -> DispatchResult:
        """
        Deliver payload to the function at route and return its response.
        Raises RouteNotFound for unknown routes and DispatchError when the
        function fails. timeout is the caller's budget in seconds; the
        executor enforces it regardless of the implementation.
        """
        ...

    def has_route(self, route: str) -> bool:
        return True


# ──────────────────────────────────────────────────────────────
#  In-process Implementation
# ──────────────────────────────────────────────────────────────

class LocalDispatcher(Dispatcher):
    """Routes to Python callables registered in this process."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}

    def register(self, route: str, handler: Handler):
        """
        Register a sync or async handler taking the request payload.
        Sync handlers run in a worker thread.
        """
        if not valid_service_name(route):
            raise InvalidRouteError(route)
        if not callable(handler):
            raise TypeError(f"Handler for '{route}' is not callable")
        self._handlers[route] = handler
        logger.info("function_registered", route=route)

    def unregister(self, route: str) -> bool:
        return self._handlers.pop(route, None) is not None

    def has_route(self, route: str) -> bool:
        return route in self._handlers

    @property
    def routes(self) -> list[str]:
        return sorted(self._handlers.keys())

    async def dispatch(self, route: str, payload: Any, timeout: float) -> DispatchResult:
        handler = self._handlers.get(route)
        if handler is None:
            raise RouteNotFound(route)
        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(payload)
            else:
                # sync handlers run off the event loop
                result = await asyncio.to_thread(handler, payload)
            if inspect.isawaitable(result):
                result = await result
        except DispatchError:
            raise
        except Exception as e:
            logger.warning("function_failed", route=route, error=str(e))
            raise DispatchError(f"Function '{route}' failed - {e}") from e

        if isinstance(result, DispatchResult):
            return result
        return DispatchResult(body=result)
