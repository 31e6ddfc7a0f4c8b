"""
Flow Registry — Loads, validates, and resolves flow definitions.

Flows are loaded from YAML (or an equivalent dict) and indexed by id:

    id: order-total
    first_task: fetch
    timeout: 10
    tasks:
      - name: fetch
        process: v1.orders.fetch
        input: ["input.body.order_id -> id"]
        output: ["result.items -> model.items"]
        execution: sequential
        next: [total]
      - name: total
        process: v1.orders.total
        input: ["f:add(model.items[0].price, model.items[1].price) -> amount"]
        output: ["result.amount -> result.total"]
        execution: end

A pipeline task lists step tasks under "pipeline" and may repeat them with
a "loop" (see flows.loops); the steps run in order and their own
transition is ignored. A flow "ttl" bounds the run time of an instance.

A definition is either accepted whole or rejected with a FlowLoadError
listing every problem found; no partially valid Flow is ever registered.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import ValidationError

from context.state_store import is_valid_path
from flows.loops import parse_loop
from flows.mapping import validate_entry
from models.errors import FlowLoadError, FlowNotFound, TaskNotFound
from models.schemas import ExecutionType, Flow, Task
from plugins.registry import PluginRegistry, get_plugin_registry
from utils.routes import valid_service_name

logger = structlog.get_logger()

# a pipeline step ignores its own transition
_NOT_A_STEP = (ExecutionType.PIPELINE, ExecutionType.DECISION, ExecutionType.RESPONSE)


# ──────────────────────────────────────────────────────────────
#  Loading
# ──────────────────────────────────────────────────────────────

def load_flow(definition: Any, plugins: PluginRegistry = None) -> Flow:
    """
    Build and validate a Flow from a dict or YAML text.
    Raises FlowLoadError with all violations joined by "; ".
    """
    if isinstance(definition, str):
        try:
            definition = yaml.safe_load(definition)
        except yaml.YAMLError as e:
            raise FlowLoadError(f"cannot parse flow definition - {e}")
    if not isinstance(definition, dict):
        raise FlowLoadError("flow definition must be a mapping")

    flow_id = str(definition.get("id") or "")
    flow, errors = _parse_flow(definition)
    if flow is not None:
        errors.extend(validate_flow(flow, plugins if plugins is not None else get_plugin_registry()))

    if errors:
        logger.error("invalid_flow", flow_id=flow_id, errors=errors)
        raise FlowLoadError("; ".join(errors), flow_id=flow_id)
    return flow


def _parse_flow(raw: dict[str, Any]) -> tuple[Optional[Flow], list[str]]:
    """Parse a raw dict (from YAML) into a Flow model."""
    errors = []
    if not raw.get("id"):
        errors.append("flow id is required")

    raw_tasks = raw.get("tasks") or []
    if not isinstance(raw_tasks, list) or not raw_tasks:
        errors.append("flow must have at least one task")
        raw_tasks = []

    tasks: dict[str, Task] = {}
    for position, raw_task in enumerate(raw_tasks):
        if not isinstance(raw_task, dict):
            errors.append(f"task #{position + 1} must be a mapping")
            continue
        try:
            task = _parse_task(raw_task)
        except KeyError as e:
            errors.append(f"task #{position + 1} is missing {e}")
            continue
        except (ValidationError, TypeError, ValueError) as e:
            errors.append(f"task #{position + 1} is malformed - {e}")
            continue
        if task.name in tasks:
            errors.append(f"duplicate task name '{task.name}'")
            continue
        tasks[task.name] = task

    if errors:
        return None, errors

    try:
        flow = Flow(
            id=str(raw["id"]),
            description=raw.get("description", ""),
            first_task=raw.get("first_task") or "",
            tasks=tasks,
            timeout=raw.get("timeout"),
            ttl=raw.get("ttl"),
            metadata=raw.get("metadata") or {},
        )
    except ValidationError as e:
        return None, [f"flow is malformed - {e}"]
    return flow, []


def _parse_task(raw: dict[str, Any]) -> Task:
    """Parse a raw dict into a Task."""
    loop = raw.get("loop")
    return Task(
        name=raw["name"],
        process=raw.get("process", ""),
        description=raw.get("description", ""),
        input=_entry_list(raw, "input"),
        output=_entry_list(raw, "output"),
        execution=ExecutionType(raw.get("execution", ExecutionType.END.value)),
        next=_entry_list(raw, "next"),
        pipeline=_entry_list(raw, "pipeline"),
        loop=parse_loop(loop) if loop is not None else None,
        monitor_before=raw.get("monitor_before"),
        monitor_after=raw.get("monitor_after"),
        timeout=raw.get("timeout"),
        delay=raw.get("delay"),
    )


def _entry_list(raw: dict[str, Any], key: str) -> tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return tuple(value)


# ──────────────────────────────────────────────────────────────
#  Validation
# ──────────────────────────────────────────────────────────────

def validate_flow(flow: Flow, plugins: PluginRegistry = None) -> list[str]:
    errors = []

    if not flow.id:
        errors.append("flow id is required")
    if not flow.tasks:
        errors.append("flow must have at least one task")
    if not flow.first_task:
        errors.append("first_task is required")
    elif flow.first_task not in flow.tasks:
        errors.append(f"first_task '{flow.first_task}' not found in tasks")
    if flow.timeout is not None and flow.timeout <= 0:
        errors.append("flow timeout must be positive")
    if flow.ttl is not None and flow.ttl <= 0:
        errors.append("flow ttl must be positive")

    for name, task in flow.tasks.items():
        if name != task.name:
            errors.append(f"task key '{name}' does not match task name '{task.name}'")

        if not valid_service_name(task.function_route):
            errors.append(f"task '{task.name}' has invalid function route '{task.function_route}'")
        for label, route in (("monitor_before", task.monitor_before),
                             ("monitor_after", task.monitor_after)):
            if route is not None and not valid_service_name(route):
                errors.append(f"task '{task.name}' has invalid {label} route '{route}'")
        if task.timeout is not None and task.timeout <= 0:
            errors.append(f"task '{task.name}' timeout must be positive")

        for target in task.next:
            if target not in flow.tasks:
                errors.append(f"task '{task.name}' references unknown next '{target}'")

        if task.execution == ExecutionType.END and task.next:
            errors.append(f"end task '{task.name}' must not have next tasks")
        elif task.execution == ExecutionType.SEQUENTIAL and len(task.next) != 1:
            errors.append(f"sequential task '{task.name}' needs exactly one next task")
        elif task.execution == ExecutionType.DECISION and len(task.next) < 2:
            errors.append(f"decision task '{task.name}' needs at least two next tasks")
        elif task.execution == ExecutionType.RESPONSE and len(task.next) != 1:
            errors.append(f"response task '{task.name}' needs exactly one next task")
        elif task.execution == ExecutionType.PIPELINE:
            errors.extend(_pipeline_errors(flow, task))
        if task.loop is not None and task.execution != ExecutionType.PIPELINE:
            errors.append(f"task '{task.name}' has a loop but is not a pipeline task")
        errors.extend(_delay_errors(flow, task))

        decision = task.execution == ExecutionType.DECISION
        for entry in task.input:
            errors.extend(f"task '{task.name}' input {e}"
                          for e in validate_entry(entry, output=False, plugins=plugins))
        for entry in task.output:
            errors.extend(f"task '{task.name}' output {e}"
                          for e in validate_entry(entry, output=True, decision=decision, plugins=plugins))
        if decision and not any(e.rsplit("->", 1)[-1].strip() == "decision" for e in task.output):
            errors.append(f"decision task '{task.name}' has no output mapping to decision")

    return errors


def _pipeline_errors(flow: Flow, task: Task) -> list[str]:
    errors = []
    if len(task.next) != 1:
        errors.append(f"pipeline task '{task.name}' needs exactly one next task")
    if not task.pipeline:
        errors.append(f"pipeline task '{task.name}' has no pipeline steps")
    for step in task.pipeline:
        target = flow.tasks.get(step)
        if target is None:
            errors.append(f"pipeline task '{task.name}' references unknown step '{step}'")
        elif step == task.name:
            errors.append(f"pipeline task '{task.name}' lists itself as a step")
        elif target.execution in _NOT_A_STEP:
            errors.append(f"pipeline task '{task.name}' step '{step}' "
                          f"cannot be a {target.execution.value} task")
    return errors


def _delay_errors(flow: Flow, task: Task) -> list[str]:
    delay = task.delay
    if delay is None:
        return []
    if isinstance(delay, str):
        if not (delay.startswith("model.") and is_valid_path(delay)):
            return [f"task '{task.name}' delay must be seconds or a model.* path"]
        return []
    if delay <= 0:
        return [f"task '{task.name}' delay must be positive"]
    if flow.ttl is not None and delay >= flow.ttl:
        return [f"task '{task.name}' delay must be shorter than the flow ttl"]
    return []


# ──────────────────────────────────────────────────────────────
#  Registry
# ──────────────────────────────────────────────────────────────

class FlowRegistry:
    """Central registry of loaded flows, indexed by flow id."""

    def __init__(self, plugins: PluginRegistry = None):
        self._flows: dict[str, Flow] = {}
        self._plugins = plugins

    @property
    def plugins(self) -> PluginRegistry:
        if self._plugins is None:
            self._plugins = get_plugin_registry()
        return self._plugins

    # ── Registration ──────────────────────────────────

    def register(self, flow: Flow) -> Flow:
        """Register an already-built flow after validating it."""
        if flow.id in self._flows:
            raise FlowLoadError("flow id is already registered", flow_id=flow.id)
        errors = validate_flow(flow, self.plugins)
        if errors:
            logger.error("invalid_flow", flow_id=flow.id, errors=errors)
            raise FlowLoadError("; ".join(errors), flow_id=flow.id)

        self._flows[flow.id] = flow
        logger.info("flow_registered",
                    flow_id=flow.id,
                    tasks=len(flow.tasks),
                    first_task=flow.first_task)
        return flow

    def load(self, definition: Any) -> Flow:
        return self.register(load_flow(definition, self.plugins))

    def load_file(self, path: str) -> Flow:
        with open(Path(path)) as f:
            return self.load(f.read())

    def load_from_config(self, config: list[Any]) -> list[Flow]:
        """Load flows from a list of definitions or YAML file paths."""
        flows = []
        for item in config:
            if isinstance(item, (str, Path)) and Path(item).suffix in (".yaml", ".yml"):
                flows.append(self.load_file(str(item)))
            else:
                flows.append(self.load(item))
        logger.info("flows_loaded", count=len(flows))
        return flows

    # ── Resolution ────────────────────────────────────

    def get_flow(self, flow_id: str) -> Flow:
        flow = self._flows.get(flow_id)
        if flow is None:
            raise FlowNotFound(flow_id)
        return flow

    def get_task(self, flow_id: str, task_name: str) -> Task:
        task = self.get_flow(flow_id).get_task(task_name)
        if task is None:
            raise TaskNotFound(flow_id, task_name)
        return task

    def list_flows(self) -> list[Flow]:
        return list(self._flows.values())

    def __contains__(self, flow_id: str) -> bool:
        return flow_id in self._flows
