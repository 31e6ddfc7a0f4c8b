"""End-to-end tests through the EventFlowEngine facade."""
from pathlib import Path

import pytest

from config.settings import EngineSettings, ExecutorSettings
from core.orchestrator import EventFlowEngine
from models.errors import EngineError, FlowLoadError
from transport.dispatcher import Dispatcher, DispatchResult


def _greeting_engine() -> EventFlowEngine:
    import config.settings as settings_module
    flow_file = Path(settings_module.__file__).parent / "flows" / "greeting.yaml"
    engine = EventFlowEngine(settings=EngineSettings(flows=[str(flow_file)]))
    engine.register_function("v1.greeting.compose",
                             lambda p: {"text": p["text"], "visits": p.get("visits")})
    engine.register_function("v1.greeting.count", lambda p: p)
    engine.register_function("v1.greeting.echo", lambda p: p)
    return engine


@pytest.mark.asyncio
class TestEventFlowEngine:

    async def test_register_load_and_run(self, calc_flow):
        engine = EventFlowEngine(settings=EngineSettings(executor=ExecutorSettings(dispatch_timeout=2)))
        engine.register_function("v1.echo", lambda p: p)
        engine.load_flow(calc_flow)

        result = await engine.run_flow("calc", {"a": 20, "b": 22}, correlation_id="c-9")
        assert result.succeeded
        assert result.output == {"calc": 42, "total": 42}
        assert result.correlation_id == "c-9"

    async def test_bundled_greeting_flow(self):
        engine = _greeting_engine()

        first = await engine.run_flow("greeting", {"name": "Ada", "visits": 0})
        assert first.output == {"greeting": "Hello, Ada", "returning": False}

        again = await engine.run_flow("greeting", {"name": "Ada", "visits": 3})
        assert again.output["returning"] is True
        assert [s.task_name for s in again.steps] == ["greet", "count", "returning"]

    async def test_mock_through_the_engine(self, calc_flow):
        engine = EventFlowEngine(settings=EngineSettings())
        engine.register_function("v1.echo", lambda p: p)
        engine.register_function("v1.fixed", lambda p: {"sum": 100})
        engine.load_flow(calc_flow)

        engine.mock("calc").reassign_function_route("calc", "v1.fixed")
        result = await engine.run_flow("calc", {"a": 1, "b": 1})
        assert result.output["calc"] == 100

    async def test_request_returns_the_reply(self, calc_flow):
        calc_flow["tasks"][2]["output"].append("result.total -> output.body.total")
        engine = EventFlowEngine(settings=EngineSettings())
        engine.register_function("v1.echo", lambda p: p)
        engine.load_flow(calc_flow)

        reply = await engine.request("calc", {"a": 4, "b": 5})
        assert reply.status == 200
        assert reply.body == {"total": 9}

    async def test_custom_dispatcher(self, calc_flow):
        class Constant(Dispatcher):
            async def dispatch(self, route, payload, timeout):
                return DispatchResult(body={"sum": 7, "total": 7}, status=200)

        engine = EventFlowEngine(settings=EngineSettings(), dispatcher=Constant())
        engine.load_flow(calc_flow)
        result = await engine.run_flow("calc", {"a": 1, "b": 1})
        assert result.output == {"calc": 7, "total": 7}

        with pytest.raises(EngineError):
            engine.register_function("v1.echo", lambda p: p)


class TestEngineSetup:

    def test_invalid_flow_file_stops_startup(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("id: bad\nfirst_task: missing\ntasks: []\n")
        with pytest.raises(FlowLoadError):
            EventFlowEngine(settings=EngineSettings(flows=[str(path)]))

    def test_plugins_are_sealed(self):
        engine = EventFlowEngine(settings=EngineSettings())
        assert engine.plugins.sealed
        assert engine.plugins.exists("add")
