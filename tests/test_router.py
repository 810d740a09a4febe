"""Tests for the server-side dispatch router."""

import pytest

from src.mcp.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    InvalidParams,
)
from src.mcp.handlers import build_router, get_router
from src.mcp.models import JsonRpcResponse
from src.mcp.router import ServerDispatchRouter
from src.mcp.transport_sse import SessionManager, get_session_manager


@pytest.fixture
def router():
    router = ServerDispatchRouter(SessionManager())

    async def echo(request):
        return {"params": request.params}

    async def explode(request):
        raise RuntimeError("disk on fire")

    async def picky(request):
        raise InvalidParams("need a name")

    async def full_response(request):
        return JsonRpcResponse(id=request.id, result="custom")

    router.register("echo", echo)
    router.register("explode", explode)
    router.register("picky", picky)
    router.register("full", full_response)
    return router


class TestDispatch:

    @pytest.mark.asyncio
    async def test_unknown_method(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": "x", "method": "nope"})
        data = response.model_dump()
        assert data["jsonrpc"] == "2.0"
        assert data["id"] == "x"
        assert data["error"]["code"] == METHOD_NOT_FOUND
        assert "nope" in data["error"]["message"]

    @pytest.mark.asyncio
    async def test_wrong_version(self, router):
        response = await router.dispatch({"jsonrpc": "1.0", "id": "x", "method": "tools/list"})
        assert response.error.code == INVALID_REQUEST
        assert response.id == "x"

    @pytest.mark.asyncio
    async def test_missing_version(self, router):
        response = await router.dispatch({"id": 1, "method": "echo"})
        assert response.error.code == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_response_shaped_message_is_invalid(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 1, "result": {}})
        assert response.error.code == INVALID_REQUEST
        assert "unexpected response" in response.error.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("extra", [{"result": 5}, {"error": {"code": 1, "message": "x"}}])
    async def test_request_with_response_fields_is_invalid(self, router, extra):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 1, "method": "echo", **extra})
        assert response.error.code == INVALID_REQUEST
        assert response.id == 1

    @pytest.mark.asyncio
    async def test_missing_method(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 1})
        assert response.error.code == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_non_string_method(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 1, "method": 42})
        assert response.error.code == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_plain_result_is_wrapped(self, router):
        response = await router.dispatch(
            {"jsonrpc": "2.0", "id": 9, "method": "echo", "params": {"a": 1}}
        )
        assert response.model_dump() == {"jsonrpc": "2.0", "id": 9, "result": {"params": {"a": 1}}}

    @pytest.mark.asyncio
    async def test_handler_response_passes_through(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 2, "method": "full"})
        assert response.result == "custom"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_internal_error(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 3, "method": "explode"})
        assert response.error.code == INTERNAL_ERROR
        assert response.error.data == "disk on fire"

    @pytest.mark.asyncio
    async def test_handler_fault_keeps_its_code(self, router):
        response = await router.dispatch({"jsonrpc": "2.0", "id": 4, "method": "picky"})
        assert response.error.code == INVALID_PARAMS
        assert response.error.message == "need a name"

    @pytest.mark.asyncio
    async def test_notification_gets_no_response(self, router):
        assert await router.dispatch({"jsonrpc": "2.0", "method": "echo"}) is None

    @pytest.mark.asyncio
    async def test_failing_notification_gets_no_response(self, router):
        assert await router.dispatch({"jsonrpc": "2.0", "method": "explode"}) is None
        assert await router.dispatch({"jsonrpc": "2.0", "method": "nope"}) is None

    @pytest.mark.asyncio
    async def test_last_registration_wins(self, router):
        async def second(request):
            return "second"

        router.register("echo", second)
        response = await router.dispatch({"jsonrpc": "2.0", "id": 1, "method": "echo"})
        assert response.result == "second"
        assert router.methods.count("echo") == 1


class TestMcpMethods:

    @pytest.mark.asyncio
    async def test_mcp_methods_registered(self, registry):
        router = build_router(registry, SessionManager("aws-cn"))
        assert set(router.methods) == {
            "initialize",
            "notifications/initialized",
            "tools/list",
            "tools/call",
        }
        response = await router.dispatch({"jsonrpc": "2.0", "id": 1, "method": "initialize"})
        assert response.result["capabilities"]["experimental"]["partition"] == "aws-cn"

    @pytest.mark.asyncio
    async def test_tools_call_without_name(self, registry):
        router = build_router(registry, SessionManager())
        response = await router.dispatch(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {}}
        )
        assert response.error.code == INVALID_PARAMS


class TestSweep:

    def test_stale_sessions_removed_fresh_survive(self):
        sessions = SessionManager()
        router = ServerDispatchRouter(sessions)
        stale = sessions.create_session()
        fresh = sessions.create_session()
        stale.touch(now=1000.0)
        fresh.touch(now=1250.0)

        removed = router.sweep(max_age=100.0, now=1300.0)

        assert removed == [stale.channel_id]
        assert sessions.get_session(stale.channel_id) is None
        assert sessions.get_session(fresh.channel_id) is fresh
        assert stale.connected is False

    def test_sweep_on_empty_registry(self):
        assert ServerDispatchRouter(SessionManager()).sweep(1.0) == []


class TestGlobalRouter:

    def test_router_is_built_once(self):
        router = get_router()
        assert get_router() is router
        assert router.sessions is get_session_manager()
        assert "tools/call" in router.methods
