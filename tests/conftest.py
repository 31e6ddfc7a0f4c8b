"""Shared test fixtures for the event flow engine."""
import asyncio
from typing import Any

import pytest

from config.settings import ExecutorSettings
from context.state_store import StateStore
from flows.executor import TaskExecutor
from flows.registry import FlowRegistry
from plugins.registry import PluginRegistry, create_plugin_registry
from transport.dispatcher import LocalDispatcher


@pytest.fixture
def plugin_registry() -> PluginRegistry:
    """Sealed registry with every built-in plugin."""
    return create_plugin_registry()


@pytest.fixture
def store() -> StateStore:
    return StateStore({
        "input": {"body": {"name": "Ada", "amount": "12"}},
        "model": {"a": 2, "b": 3, "replacement": "foo", "items": [{"sku": "x1"}]},
        "result": {},
        "safe": "bar",
    })


@pytest.fixture
def calls() -> list[tuple[str, Any]]:
    """Every (route, payload) seen by the dispatcher fixture, in order."""
    return []


@pytest.fixture
def dispatcher(calls) -> LocalDispatcher:
    d = LocalDispatcher()

    def recorder(route):
        def handler(payload):
            calls.append((route, payload))
            return payload
        return handler

    async def slow(payload):
        calls.append(("v1.slow", payload))
        await asyncio.sleep(5)
        return payload

    def broken(payload):
        calls.append(("v1.broken", payload))
        raise RuntimeError("backend unavailable")

    for route in ("v1.echo", "v1.alt.echo", "v1.monitor.before", "v1.monitor.after"):
        d.register(route, recorder(route))
    d.register("v1.slow", slow)
    d.register("v1.broken", broken)
    return d


@pytest.fixture
def flow_registry(plugin_registry) -> FlowRegistry:
    return FlowRegistry(plugins=plugin_registry)


@pytest.fixture
def executor(flow_registry, dispatcher, plugin_registry) -> TaskExecutor:
    return TaskExecutor(
        flows=flow_registry,
        dispatcher=dispatcher,
        plugins=plugin_registry,
        settings=ExecutorSettings(dispatch_timeout=2.0, max_steps=50),
    )


@pytest.fixture
def calc_flow() -> dict[str, Any]:
    """start → calc → end, where calc adds model.a and model.b."""
    return {
        "id": "calc",
        "first_task": "start",
        "tasks": [
            {
                "name": "start",
                "process": "v1.echo",
                "input": ["input.a -> model.a", "input.b -> model.b"],
                "execution": "sequential",
                "next": ["calc"],
            },
            {
                "name": "calc",
                "process": "v1.echo",
                "input": ["f:add(model.a, model.b) -> sum"],
                "output": ["result.sum -> result.calc", "result.sum -> model.sum"],
                "execution": "sequential",
                "next": ["end"],
            },
            {
                "name": "end",
                "process": "v1.echo",
                "input": ["model.sum -> total"],
                "output": ["result.total -> result.total"],
                "execution": "end",
            },
        ],
    }


@pytest.fixture
def decision_flow() -> dict[str, Any]:
    """check → (big | small) chosen by f:gt(input.amount, 100)."""
    return {
        "id": "route-by-amount",
        "first_task": "check",
        "tasks": [
            {
                "name": "check",
                "process": "v1.echo",
                "input": ["input.amount -> amount"],
                "output": ["f:gt(result.amount, int(100)) -> decision"],
                "execution": "decision",
                "next": ["big", "small"],
            },
            {
                "name": "big",
                "process": "v1.echo",
                "output": ["text(big) -> result.path"],
                "execution": "end",
            },
            {
                "name": "small",
                "process": "v1.echo",
                "output": ["text(small) -> result.path"],
                "execution": "end",
            },
        ],
    }
