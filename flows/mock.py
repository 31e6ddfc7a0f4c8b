"""
Mock/override layer for test harnesses.

Overrides shadow a task's function route and its before/after monitor
routes without touching the loaded Flow. The executor resolves routes
through the OverrideStore first and falls back to the Flow:

    mock = executor.mock("order-total")
    previous = mock.reassign_function_route("fetch", "v1.orders.fake")
    mock.set_monitor("fetch", "v1.spy", MonitorPhase.BEFORE)
    ...
    mock.reset()
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

import structlog

from models.errors import InvalidRouteError, TaskNotFound
from models.schemas import MonitorPhase, Task
from utils.routes import valid_service_name

logger = structlog.get_logger()


@dataclass
class MockOverride:
    """
    Shadow values for one task of one flow.
    A phase present in monitors with a None route means "no monitor",
    which also hides a monitor declared on the task.
    """
    function_route: Optional[str] = None
    monitors: dict[MonitorPhase, Optional[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.function_route is None and not self.monitors


class OverrideStore:
    """Override records keyed by (flow id, task name)."""

    def __init__(self):
        self._records: dict[tuple[str, str], MockOverride] = {}

    def get(self, flow_id: str, task_name: str) -> Optional[MockOverride]:
        return self._records.get((flow_id, task_name))

    def record(self, flow_id: str, task_name: str) -> MockOverride:
        return self._records.setdefault((flow_id, task_name), MockOverride())

    def discard_if_empty(self, flow_id: str, task_name: str):
        record = self._records.get((flow_id, task_name))
        if record is not None and record.is_empty:
            del self._records[(flow_id, task_name)]

    def clear_flow(self, flow_id: str) -> int:
        keys = [k for k in self._records if k[0] == flow_id]
        for key in keys:
            del self._records[key]
        return len(keys)

    # ── Lookup chain: override → flow ─────────────────

    def function_route(self, flow_id: str, task: Task) -> str:
        record = self.get(flow_id, task.name)
        if record is not None and record.function_route is not None:
            return record.function_route
        return task.function_route

    def monitor_route(self, flow_id: str, task: Task, phase: MonitorPhase) -> Optional[str]:
        record = self.get(flow_id, task.name)
        if record is not None and phase in record.monitors:
            return record.monitors[phase]
        return task.monitor_before if phase == MonitorPhase.BEFORE else task.monitor_after

    def __len__(self) -> int:
        return len(self._records)


class FlowMock:
    """Override operations bound to one flow."""

    def __init__(self, flow_id: str, flows, overrides: OverrideStore):
        self.flow_id = flow_id
        self._flows = flows                 # FlowRegistry
        self._overrides = overrides
        self._flows.get_flow(flow_id)       # raises FlowNotFound

    def _task(self, task_name: str) -> Task:
        task = self._flows.get_flow(self.flow_id).get_task(task_name)
        if task is None:
            raise TaskNotFound(self.flow_id, task_name)
        return task

    # ── Function route ────────────────────────────────

    def get_function_route(self, task_name: str) -> str:
        return self._overrides.function_route(self.flow_id, self._task(task_name))

    def reassign_function_route(self, task_name: str, new_route: str) -> str:
        """Point task at new_route. Returns the route it pointed at before."""
        task = self._task(task_name)
        if not valid_service_name(new_route):
            raise InvalidRouteError(new_route)
        previous = self._overrides.function_route(self.flow_id, task)
        self._overrides.record(self.flow_id, task_name).function_route = new_route
        logger.info("function_route_reassigned",
                    flow_id=self.flow_id,
                    task=task_name,
                    previous=previous,
                    route=new_route)
        return previous

    def restore_function_route(self, task_name: str) -> str:
        """Drop the route override. Returns the route now in effect."""
        task = self._task(task_name)
        record = self._overrides.get(self.flow_id, task_name)
        if record is not None:
            record.function_route = None
            self._overrides.discard_if_empty(self.flow_id, task_name)
        return task.function_route

    # ── Monitors ──────────────────────────────────────

    def get_monitor(self, task_name: str, phase: Union[MonitorPhase, str]) -> Optional[str]:
        return self._overrides.monitor_route(self.flow_id, self._task(task_name), MonitorPhase(phase))

    def set_monitor(
        self,
        task_name: str,
        monitor_route: str,
        phase: Union[MonitorPhase, str] = MonitorPhase.BEFORE,
    ):
        self._task(task_name)
        if not valid_service_name(monitor_route):
            raise InvalidRouteError(monitor_route)
        phase = MonitorPhase(phase)
        self._overrides.record(self.flow_id, task_name).monitors[phase] = monitor_route
        logger.info("monitor_assigned",
                    flow_id=self.flow_id,
                    task=task_name,
                    phase=phase.value,
                    route=monitor_route)

    def clear_monitors(self, task_name: str) -> list[str]:
        """Remove both monitors, declared ones included. Returns the released routes."""
        task = self._task(task_name)
        released = []
        for phase in (MonitorPhase.BEFORE, MonitorPhase.AFTER):
            route = self._overrides.monitor_route(self.flow_id, task, phase)
            if route:
                released.append(route)
        record = self._overrides.record(self.flow_id, task_name)
        record.monitors[MonitorPhase.BEFORE] = None
        record.monitors[MonitorPhase.AFTER] = None
        logger.info("monitors_cleared",
                    flow_id=self.flow_id,
                    task=task_name,
                    released=released)
        return released

    def reset(self) -> int:
        """Remove every override of this flow."""
        return self._overrides.clear_flow(self.flow_id)
