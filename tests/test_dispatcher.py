"""Tests for the in-process dispatcher."""
import threading

import pytest

from models.errors import DispatchError, InvalidRouteError, RouteNotFound
from transport.dispatcher import DispatchResult, LocalDispatcher


class TestRegistration:

    def test_register_and_list(self):
        d = LocalDispatcher()
        d.register("v1.b", lambda p: p)
        d.register("v1.a", lambda p: p)
        assert d.routes == ["v1.a", "v1.b"]
        assert d.has_route("v1.a")
        assert d.unregister("v1.a") is True
        assert d.unregister("v1.a") is False

    @pytest.mark.parametrize("route", ["", "V1.echo", "v1..echo", "v1/echo"])
    def test_invalid_route(self, route):
        with pytest.raises(InvalidRouteError):
            LocalDispatcher().register(route, lambda p: p)

    def test_handler_must_be_callable(self):
        with pytest.raises(TypeError):
            LocalDispatcher().register("v1.echo", "not callable")


@pytest.mark.asyncio
class TestDispatch:

    async def test_sync_handler(self):
        d = LocalDispatcher()
        d.register("v1.double", lambda p: {"n": p["n"] * 2})
        reply = await d.dispatch("v1.double", {"n": 4}, timeout=1)
        assert reply.body == {"n": 8}
        assert reply.status == 200

    async def test_sync_handler_runs_in_a_worker_thread(self):
        d = LocalDispatcher()
        d.register("v1.where", lambda p: threading.get_ident())
        reply = await d.dispatch("v1.where", {}, timeout=1)
        assert reply.body != threading.get_ident()

    async def test_async_handler(self):
        async def handler(payload):
            return payload["x"]

        d = LocalDispatcher()
        d.register("v1.async", handler)
        reply = await d.dispatch("v1.async", {"x": "y"}, timeout=1)
        assert reply.body == "y"

    async def test_dispatch_result_passes_through(self):
        d = LocalDispatcher()
        d.register("v1.created", lambda p: DispatchResult(body={"id": 1}, status=201))
        reply = await d.dispatch("v1.created", {}, timeout=1)
        assert reply.status == 201
        assert reply.body == {"id": 1}

    async def test_unknown_route(self):
        with pytest.raises(RouteNotFound):
            await LocalDispatcher().dispatch("v1.missing", {}, timeout=1)

    async def test_handler_exception_is_wrapped(self):
        def handler(payload):
            raise ValueError("bad input")

        d = LocalDispatcher()
        d.register("v1.fails", handler)
        with pytest.raises(DispatchError, match="bad input") as exc:
            await d.dispatch("v1.fails", {}, timeout=1)
        assert isinstance(exc.value.__cause__, ValueError)
