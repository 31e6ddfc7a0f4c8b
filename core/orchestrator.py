"""
EventFlowEngine — wires the engine together from settings.

Bootstrap:
  settings → plugin registry (built-ins + plugins.packages, sealed)
           → FlowRegistry (flow files listed in settings.flows)
           → Dispatcher (LocalDispatcher unless one is injected)
           → TaskExecutor

    engine = EventFlowEngine()
    engine.register_function("v1.echo", lambda payload: payload)
    result = await engine.run_flow("greeting", {"name": "Ada"}, correlation_id="c-1")
    reply = await engine.request("greeting", {"name": "Ada"})
"""
from __future__ import annotations

from typing import Any, Optional

import structlog

from config.settings import EngineSettings, get_settings
from flows.executor import TaskExecutor
from flows.mock import FlowMock
from flows.registry import FlowRegistry
from models.errors import EngineError
from models.schemas import Flow, FlowResponse, FlowResult
from plugins.registry import PluginRegistry, create_plugin_registry, get_plugin_registry
from transport.dispatcher import Dispatcher, Handler, LocalDispatcher

logger = structlog.get_logger()


class EventFlowEngine:
    """
    Facade over the flow registry, dispatcher and executor.

    Flow ids, function routes and plugins are all resolved by name at run
    time, so a test can reassign any of them through mock().
    """

    def __init__(
        self,
        settings: EngineSettings = None,
        dispatcher: Dispatcher = None,
        plugins: PluginRegistry = None,
    ):
        self._settings = settings or get_settings()
        if plugins is None:
            if settings is None:
                plugins = get_plugin_registry()
            else:
                plugins = create_plugin_registry(self._settings.plugins.packages)
        self.plugins = plugins
        self.flows = FlowRegistry(plugins=self.plugins)
        self.dispatcher = dispatcher or LocalDispatcher()
        self.executor = TaskExecutor(
            flows=self.flows,
            dispatcher=self.dispatcher,
            plugins=self.plugins,
            settings=self._settings.executor,
        )

        for path in self._settings.flows:
            self.flows.load_file(path)

        logger.info("engine_started",
                    app=self._settings.app_name,
                    flows=len(self.flows.list_flows()),
                    plugins=self.plugins.count)

    # ── Setup ─────────────────────────────────────────

    def load_flow(self, definition: Any) -> Flow:
        return self.flows.load(definition)

    def register_function(self, route: str, handler: Handler):
        """Bind a handler to a route on the in-process dispatcher."""
        if not isinstance(self.dispatcher, LocalDispatcher):
            raise EngineError("register_function needs the in-process dispatcher")
        self.dispatcher.register(route, handler)

    # ── Execution ─────────────────────────────────────

    async def run_flow(
        self,
        flow_id: str,
        payload: Any = None,
        correlation_id: str = None,
    ) -> FlowResult:
        return await self.executor.run_flow(flow_id, payload, correlation_id)

    async def request(
        self,
        flow_id: str,
        payload: Any = None,
        correlation_id: str = None,
    ) -> Optional[FlowResponse]:
        """Return the flow's reply as soon as a response or end task sends it."""
        return await self.executor.request(flow_id, payload, correlation_id)

    def cancel(self, instance_id: str) -> bool:
        return self.executor.cancel(instance_id)

    def mock(self, flow_id: str) -> FlowMock:
        return self.executor.mock(flow_id)
