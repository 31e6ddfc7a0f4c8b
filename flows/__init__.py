"""
Flow definitions and their execution.

A flow is a named graph of tasks. Each task is bound to a function route
and carries input/output mapping entries plus a transition rule:
  - registry:  load, validate and look up flows
  - mapping:   "<lhs> -> <rhs>" expressions between state and requests
  - loops:     for / while repetition of pipeline steps
  - executor:  run instances task by task against a Dispatcher
  - mock:      shadow routes and monitors for test harnesses
"""
from flows.registry import FlowRegistry, load_flow, validate_flow
from flows.loops import parse_loop
from flows.mapping import MappingEntry, parse_entry, evaluate
from flows.mock import FlowMock, MockOverride, OverrideStore
from flows.executor import TaskExecutor, FlowInstance
