"""
Task Executor — drives flow instances from the first task to an end task.

Each instance owns one StateStore (namespaces input, model, result,
output) and runs its tasks strictly one after another. Per task:

  0. delay               optional pause, bounded by the flow ttl
  1. before-monitor      dispatched with a snapshot of the state
  2. input mapping       substitution, then plugin / constant / path values
  3. dispatch            resolved route (override → task), bounded by a timeout
  4. output mapping      writes model.*, result.*, output.* or the decision
  5. after-monitor       dispatched with the post-mapping snapshot
  6. transition          end | sequential → next[0] | decision → next[n]
                         | response → reply, then next[0]
                         | pipeline → run the steps (looped), then next[0]

Architecture:
  EventFlowEngine → TaskExecutor.run_flow(flow_id, payload, cid)
    → start(): new FlowInstance + isolated StateStore
    → execute(): walk tasks, dispatching through the Dispatcher
    → FlowResult with status, final state, the reply and, on failure,
      a FlowError

  TaskExecutor.request() runs the same walk in the background and returns
  the FlowResponse as soon as a response task (or the end task) replies.

Errors raised anywhere in a step are caught once, in execute(), and
returned as FlowResult.error tagged with the failing task. Nothing is
retried here.
"""
from __future__ import annotations

import asyncio
import copy
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from config.settings import ExecutorSettings
from context.state_store import StateStore
from context.substitution import substitute
from flows.loops import loop_control, loop_repeats, loop_starts
from flows.mapping import apply_input_mapping, apply_output_mapping, parse_entry
from flows.mock import FlowMock, OverrideStore
from flows.registry import FlowRegistry
from models.errors import (
    DispatchTimeout, FlowCancelled, FlowExpired, InvalidDecision, MappingError,
    StepLimitExceeded, TypePromotionError,
)
from models.schemas import (
    ExecutionType, Flow, FlowError, FlowResponse, FlowResult, InstanceStatus,
    LoopAction, MonitorPhase, StepRecord, Task,
)
from plugins.registry import PluginRegistry
from plugins.values import promote_float, promote_integer
from transport.dispatcher import Dispatcher

logger = structlog.get_logger()


@dataclass
class FlowInstance:
    """Runtime state of one execution of a flow."""
    id: str
    flow: Flow
    correlation_id: str
    store: StateStore
    status: InstanceStatus = InstanceStatus.READY
    current_task: str = ""
    steps: list[StepRecord] = field(default_factory=list)
    cancel_requested: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    deadline: Optional[float] = None              # time.monotonic() bound from the flow ttl
    response: Optional[FlowResponse] = None
    responded: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None           # set by launch()


class TaskExecutor:
    """
    Executes flows registered in a FlowRegistry.

    Dependencies are injected via the constructor so tests can swap the
    dispatcher and share an OverrideStore with their mocks.
    """

    def __init__(
        self,
        flows: FlowRegistry,
        dispatcher: Dispatcher,
        plugins: PluginRegistry = None,
        overrides: OverrideStore = None,
        settings: ExecutorSettings = None,
    ):
        self._flows = flows
        self._dispatcher = dispatcher
        self._plugins = plugins if plugins is not None else flows.plugins
        self._overrides = overrides if overrides is not None else OverrideStore()
        self._settings = settings or ExecutorSettings()
        self._active: dict[str, FlowInstance] = {}
        self._background: set[asyncio.Task] = set()

    @property
    def overrides(self) -> OverrideStore:
        return self._overrides

    def mock(self, flow_id: str) -> FlowMock:
        return FlowMock(flow_id, self._flows, self._overrides)

    # ══════════════════════════════════════════════════════════
    #  MAIN ENTRY POINT
    # ══════════════════════════════════════════════════════════

    async def run_flow(
        self,
        flow_id: str,
        payload: Any = None,
        correlation_id: str = None,
    ) -> FlowResult:
        """Start and execute one instance. Raises FlowNotFound for unknown flows."""
        instance = self.start(flow_id, payload, correlation_id)
        return await self.execute(instance)

    async def request(
        self,
        flow_id: str,
        payload: Any = None,
        correlation_id: str = None,
    ) -> Optional[FlowResponse]:
        """
        Start an instance and return its reply as soon as there is one.

        A response task replies early and the instance keeps running in the
        background; otherwise the end task replies, or a failure produces a
        500 reply. Returns None only when the instance task was cancelled.
        """
        instance = self.launch(flow_id, payload, correlation_id)
        replied = asyncio.ensure_future(instance.responded.wait())
        try:
            await asyncio.wait({replied, instance.task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not replied.done():
                replied.cancel()
        return instance.response

    def launch(
        self,
        flow_id: str,
        payload: Any = None,
        correlation_id: str = None,
    ) -> FlowInstance:
        """Start an instance as a background task. Needs a running event loop."""
        instance = self.start(flow_id, payload, correlation_id)
        instance.task = asyncio.create_task(self.execute(instance))
        self._background.add(instance.task)
        instance.task.add_done_callback(self._background.discard)
        return instance

    def start(
        self,
        flow_id: str,
        payload: Any = None,
        correlation_id: str = None,
    ) -> FlowInstance:
        """Create a READY instance with its own state store."""
        flow = self._flows.get_flow(flow_id)
        instance_id = uuid.uuid4().hex
        cid = correlation_id or uuid.uuid4().hex

        if payload is None:
            payload = {}
        elif not isinstance(payload, dict):
            payload = {"body": payload}

        store = StateStore({
            "input": copy.deepcopy(payload),
            "model": {"instance": instance_id, "cid": cid, "flow": flow.id},
            "result": {},
            "output": {},
        })
        instance = FlowInstance(id=instance_id, flow=flow, correlation_id=cid, store=store)
        if flow.ttl:
            instance.deadline = time.monotonic() + flow.ttl
        self._active[instance_id] = instance
        return instance

    async def execute(self, instance: FlowInstance) -> FlowResult:
        """Walk the instance's tasks until an end task or a failure."""
        flow = instance.flow
        result = FlowResult(
            flow_id=flow.id,
            instance_id=instance.id,
            correlation_id=instance.correlation_id,
            started_at=instance.started_at,
        )
        instance.status = InstanceStatus.EXECUTING
        logger.info("flow_started",
                    flow_id=flow.id,
                    instance_id=instance.id,
                    cid=instance.correlation_id)

        task: Optional[Task] = flow.get_task(flow.first_task)
        try:
            while task is not None:
                if task.execution == ExecutionType.PIPELINE:
                    next_name = await self._run_pipeline(instance, task)
                else:
                    decision = await self._run_task(instance, task)
                    if task.execution in (ExecutionType.RESPONSE, ExecutionType.END):
                        self._respond(instance)
                    next_name = self._next_task(task, decision)
                task = flow.get_task(next_name) if next_name else None

            instance.status = InstanceStatus.COMPLETED
            result.status = InstanceStatus.COMPLETED

        except Exception as e:
            instance.status = InstanceStatus.FAILED
            result.status = InstanceStatus.FAILED
            result.error = FlowError(
                flow_id=flow.id,
                task_name=instance.current_task,
                kind=getattr(e, "kind", type(e).__name__),
                message=str(e),
            )
            logger.warning("flow_failed",
                           flow_id=flow.id,
                           instance_id=instance.id,
                           task=instance.current_task,
                           kind=result.error.kind,
                           error=str(e))
            if not instance.responded.is_set():
                instance.response = FlowResponse(
                    status=500,
                    body={"kind": result.error.kind, "message": result.error.message},
                )
                instance.responded.set()
        finally:
            self._active.pop(instance.id, None)

        result.state = instance.store.snapshot()
        result.output = result.state.get("result") or {}
        result.response = instance.response
        result.steps = list(instance.steps)
        result.completed_at = datetime.now(timezone.utc)

        if result.succeeded:
            logger.info("flow_completed",
                        flow_id=flow.id,
                        instance_id=instance.id,
                        steps=len(result.steps))
        return result

    # ══════════════════════════════════════════════════════════
    #  CANCELLATION
    # ══════════════════════════════════════════════════════════

    def cancel(self, instance_id: str) -> bool:
        """
        Ask a running instance to stop. Takes effect before its next task;
        a dispatch already in flight is allowed to finish.
        """
        instance = self._active.get(instance_id)
        if instance is None:
            return False
        instance.cancel_requested = True
        logger.info("flow_cancel_requested",
                    flow_id=instance.flow.id,
                    instance_id=instance_id,
                    task=instance.current_task)
        return True

    @property
    def active_instances(self) -> list[str]:
        return list(self._active.keys())

    # ══════════════════════════════════════════════════════════
    #  TASK EXECUTION
    # ══════════════════════════════════════════════════════════

    def _check_running(self, instance: FlowInstance):
        if instance.cancel_requested:
            raise FlowCancelled(f"Flow instance '{instance.id}' was cancelled")
        if len(instance.steps) >= self._settings.max_steps:
            raise StepLimitExceeded(
                f"Flow '{instance.flow.id}' exceeded {self._settings.max_steps} steps"
            )
        remaining = self._remaining(instance)
        if remaining is not None and remaining <= 0:
            raise FlowExpired(
                f"Flow instance '{instance.id}' exceeded its ttl of {instance.flow.ttl}s"
            )

    @staticmethod
    def _remaining(instance: FlowInstance) -> Optional[float]:
        if instance.deadline is None:
            return None
        return instance.deadline - time.monotonic()

    async def _run_task(self, instance: FlowInstance, task: Task) -> Any:
        """Run one task up to its transition. Returns the decision value."""
        self._check_running(instance)
        instance.current_task = task.name

        flow = instance.flow
        store = instance.store
        route = self._overrides.function_route(flow.id, task)
        record = StepRecord(task_name=task.name, route=route)
        instance.steps.append(record)
        started = time.perf_counter()

        try:
            # 0. delay
            await self._delay(instance, task)

            # 1. before-monitor
            await self._notify_monitor(instance, task, MonitorPhase.BEFORE)

            # 2. input mapping
            entries = [parse_entry(substitute(e, store)) for e in task.input]
            payload = apply_input_mapping(entries, store, self._plugins)

            # 3. dispatch
            timeout = self._timeout_for(flow, task)
            logger.debug("task_dispatched",
                         flow_id=flow.id,
                         instance_id=instance.id,
                         task=task.name,
                         route=route,
                         timeout=timeout)
            reply = await self._dispatch(instance, route, payload, timeout)

            # 4. output mapping
            entries = [parse_entry(substitute(e, store)) for e in task.output]
            decision = apply_output_mapping(entries, store, reply.body, reply.status, self._plugins)

            # 5. after-monitor
            await self._notify_monitor(instance, task, MonitorPhase.AFTER)

        except Exception as e:
            record.status = "failed"
            record.error = str(e)
            record.elapsed_ms = (time.perf_counter() - started) * 1000
            raise

        record.decision = decision
        record.elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("task_completed",
                    flow_id=flow.id,
                    instance_id=instance.id,
                    task=task.name,
                    route=route,
                    elapsed_ms=round(record.elapsed_ms, 3))
        return decision

    async def _run_pipeline(self, instance: FlowInstance, task: Task) -> str:
        """
        Run a pipeline task's own function, then its steps in order,
        repeating them while the loop allows. Returns next[0].
        """
        await self._run_task(instance, task)
        store = instance.store
        iterations = 0

        if loop_starts(task.loop, store):
            while True:
                iterations += 1
                action = None
                for name in task.pipeline:
                    await self._run_task(instance, instance.flow.tasks[name])
                    action = loop_control(task.loop, store)
                    if action is not None:
                        logger.debug("pipeline_loop_control",
                                     flow_id=instance.flow.id,
                                     instance_id=instance.id,
                                     task=task.name,
                                     step=name,
                                     action=action.value)
                        break
                if action == LoopAction.BREAK or not loop_repeats(task.loop, store):
                    break

        logger.info("pipeline_completed",
                    flow_id=instance.flow.id,
                    instance_id=instance.id,
                    task=task.name,
                    iterations=iterations)
        return task.next[0]

    async def _delay(self, instance: FlowInstance, task: Task):
        if task.delay is None:
            return
        seconds = task.delay
        if isinstance(seconds, str):
            value = instance.store.get_element(seconds)
            if value is None:
                return
            try:
                seconds = promote_float(value)
            except TypePromotionError as e:
                raise MappingError(f"Task '{task.name}' delay '{task.delay}' is not a number") from e
        if seconds <= 0:
            return

        remaining = self._remaining(instance)
        if remaining is not None and seconds >= remaining:
            await asyncio.sleep(max(remaining, 0))
            raise FlowExpired(
                f"Flow instance '{instance.id}' exceeded its ttl of {instance.flow.ttl}s"
            )
        logger.debug("task_delayed",
                     flow_id=instance.flow.id,
                     instance_id=instance.id,
                     task=task.name,
                     seconds=seconds)
        await asyncio.sleep(seconds)

    def _respond(self, instance: FlowInstance):
        """Build the reply from output.* once; later calls are ignored."""
        if instance.responded.is_set():
            return
        output = copy.deepcopy(instance.store.namespace("output"))
        instance.response = FlowResponse(
            status=output.get("status", 200),
            body=output.get("body"),
            headers=output.get("header") or {},
        )
        instance.responded.set()
        logger.info("flow_responded",
                    flow_id=instance.flow.id,
                    instance_id=instance.id,
                    task=instance.current_task,
                    status=instance.response.status)

    def _timeout_for(self, flow: Flow, task: Task) -> float:
        return task.timeout or flow.timeout or self._settings.dispatch_timeout

    async def _dispatch(self, instance: FlowInstance, route: str, payload: Any, timeout: float):
        remaining = self._remaining(instance)
        expires = remaining is not None and remaining < timeout
        if expires:
            timeout = max(remaining, 0)

        instance.status = InstanceStatus.SUSPENDED
        try:
            return await asyncio.wait_for(
                self._dispatcher.dispatch(route, payload, timeout), timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("dispatch_timeout",
                           flow_id=instance.flow.id,
                           instance_id=instance.id,
                           task=instance.current_task,
                           route=route,
                           timeout=timeout,
                           ttl_reached=expires)
            if expires:
                raise FlowExpired(
                    f"Flow instance '{instance.id}' exceeded its ttl of {instance.flow.ttl}s"
                ) from None
            raise DispatchTimeout(route, timeout) from None
        finally:
            instance.status = InstanceStatus.EXECUTING

    async def _notify_monitor(self, instance: FlowInstance, task: Task, phase: MonitorPhase):
        """Monitors observe only; their failures are logged and ignored."""
        route = self._overrides.monitor_route(instance.flow.id, task, phase)
        if not route:
            return
        event = {
            "flow": instance.flow.id,
            "instance": instance.id,
            "task": task.name,
            "phase": phase.value,
            "state": instance.store.snapshot(),
        }
        timeout = self._timeout_for(instance.flow, task)
        try:
            await asyncio.wait_for(self._dispatcher.dispatch(route, event, timeout), timeout)
        except Exception as e:
            logger.warning("monitor_failed",
                           flow_id=instance.flow.id,
                           instance_id=instance.id,
                           task=task.name,
                           phase=phase.value,
                           route=route,
                           error=str(e) or type(e).__name__)

    @staticmethod
    def _next_task(task: Task, decision: Any) -> Optional[str]:
        if task.execution == ExecutionType.END:
            return None
        if task.execution != ExecutionType.DECISION:
            return task.next[0]

        # decision: True → next[0], False → next[1], n or "n" → next[n-1]
        if isinstance(decision, bool):
            return task.next[0] if decision else task.next[1]
        try:
            number = promote_integer(decision)
        except TypePromotionError:
            number = None
        if number is not None and 1 <= number <= len(task.next):
            return task.next[number - 1]
        raise InvalidDecision(
            f"Task '{task.name}' returned decision {decision!r} "
            f"but has {len(task.next)} next tasks"
        )
