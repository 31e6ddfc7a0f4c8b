"""
Core data models for the event flow engine.
These are the universal types shared across all modules.

A Flow is loaded once and never mutated afterwards; every running
instance reads the same Flow. Per-instance data lives in a StateStore
(see context.state_store), never on these models.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class ExecutionType(str, Enum):
    """How the executor picks the task that runs after this one."""
    SEQUENTIAL = "sequential"     # always next[0]
    DECISION = "decision"         # next[n] selected by the "decision" output
    PIPELINE = "pipeline"         # runs its pipeline steps, optionally looped, then next[0]
    RESPONSE = "response"         # replies to the caller early, then next[0]
    END = "end"                   # terminal task, flow completes


class InstanceStatus(str, Enum):
    READY = "ready"
    EXECUTING = "executing"
    SUSPENDED = "suspended"       # awaiting a dispatched function's result
    COMPLETED = "completed"
    FAILED = "failed"


class MonitorPhase(str, Enum):
    BEFORE = "before"
    AFTER = "after"


class LoopStatement(str, Enum):
    FOR = "for"
    WHILE = "while"


class LoopAction(str, Enum):
    BREAK = "break"
    CONTINUE = "continue"


# ──────────────────────────────────────────────────────────────
#  Flow model — immutable after load
# ──────────────────────────────────────────────────────────────

class LoopCondition(BaseModel):
    """"if (model.quit) break" fires when model.quit is True."""
    model_config = ConfigDict(frozen=True)

    key: str                                      # model.* path
    action: LoopAction


class Loop(BaseModel):
    """
    Repetition of a pipeline task's steps.

        for (model.n = 0; model.n < 3; model.n++)
        while (model.more)

    Operands of a for comparison are model.* paths or integers.
    """
    model_config = ConfigDict(frozen=True)

    statement: LoopStatement
    init_key: Optional[str] = None                # for: optional initializer
    init_value: int = 0
    left: str = ""                                # for: left operand
    comparator: str = ""                          # < <= > >=
    right: str = ""                               # for: right operand
    step_key: str = ""                            # for: model.* path to step
    step: int = 0                                 # +1 or -1
    while_key: str = ""                           # while: model.* path
    conditions: tuple[LoopCondition, ...] = ()


class Task(BaseModel):
    """
    One node of a flow.

    input/output hold mapping entries of the form "<lhs> -> <rhs>",
    e.g. "input.body.amount -> model.amount" or
    "f:add(model.a, model.b) -> sum".
    """
    model_config = ConfigDict(frozen=True)

    name: str                                     # unique within the flow
    process: str = ""                             # function route (defaults to name)
    description: str = ""
    input: tuple[str, ...] = ()
    output: tuple[str, ...] = ()
    execution: ExecutionType = ExecutionType.END
    next: tuple[str, ...] = ()
    pipeline: tuple[str, ...] = ()                # step task names of a pipeline task
    loop: Optional[Loop] = None
    monitor_before: Optional[str] = None
    monitor_after: Optional[str] = None
    timeout: Optional[float] = None               # seconds, overrides the flow default
    delay: Optional[Union[float, str]] = None     # seconds, or a model.* path holding them

    @property
    def function_route(self) -> str:
        return self.process or self.name

    @property
    def is_terminal(self) -> bool:
        return self.execution == ExecutionType.END


class Flow(BaseModel):
    """A named, immutable graph of tasks."""
    model_config = ConfigDict(frozen=True)

    id: str
    description: str = ""
    first_task: str
    tasks: Mapping[str, Task] = {}
    timeout: Optional[float] = None               # default dispatch timeout for all tasks
    ttl: Optional[float] = None                   # seconds an instance may run in total
    metadata: Mapping[str, Any] = {}

    @field_validator("tasks", "metadata", mode="after")
    @classmethod
    def _read_only(cls, value):
        return MappingProxyType(dict(value))

    def get_task(self, name: str) -> Optional[Task]:
        return self.tasks.get(name)


# ──────────────────────────────────────────────────────────────
#  Execution results
# ──────────────────────────────────────────────────────────────

class FlowError(BaseModel):
    """Structured failure returned to the caller of a flow."""
    flow_id: str
    task_name: str = ""
    kind: str
    message: str


class StepRecord(BaseModel):
    """Outcome of executing one task of a flow instance."""
    task_name: str
    route: str
    status: str = "ok"                            # ok | failed
    decision: Any = None
    elapsed_ms: float = 0.0
    error: str = ""


class FlowResponse(BaseModel):
    """
    Reply to the caller, built from the output.* namespace by the first
    response task, or by the end task when no response task ran.
    """
    status: int = 200
    body: Any = None
    headers: dict[str, Any] = {}


class FlowResult(BaseModel):
    """Complete result of running one flow instance."""
    flow_id: str
    instance_id: str
    correlation_id: str
    status: InstanceStatus = InstanceStatus.COMPLETED
    state: dict[str, Any] = {}                    # final state store contents
    output: dict[str, Any] = {}                   # the "result" namespace of the state
    response: Optional[FlowResponse] = None
    error: Optional[FlowError] = None
    steps: list[StepRecord] = []
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == InstanceStatus.COMPLETED
