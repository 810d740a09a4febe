"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from src.client.channel import PushChannelClient
from src.main import app
from src.mcp.codec import encode_envelope
from src.mcp.handlers import reset_router
from src.mcp.models import EnvelopeKind
from src.mcp.registry import get_registry, reset_registry
from src.mcp.transport_sse import reset_session_manager
from src.config.loader import get_settings


@pytest.fixture
def client():
    """Synchronous test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the global registry and channels, then reload the diagnostics tools."""
    reset_registry()
    reset_router()
    reset_session_manager()
    registry = get_registry()
    registry.load_provider("diagnostics")
    yield
    reset_registry()
    reset_router()
    reset_session_manager()


@pytest.fixture
def registry():
    """Get a fresh tool registry."""
    reset_registry()
    reset_router()
    return get_registry()


@pytest.fixture
def settings():
    """Get application settings."""
    return get_settings()


@pytest.fixture
def sample_jsonrpc_request():
    """Sample JSON-RPC request factory."""
    def _make_request(method: str, params: dict = None, id: int = 1):
        return {
            "jsonrpc": "2.0",
            "id": id,
            "method": method,
            "params": params or {},
        }
    return _make_request


# =============================================================================
# Scripted push server for client tests
# =============================================================================


class FakePushServer:
    """
    Scripted split-channel server served through httpx.MockTransport.

    Each GET /sse opens a fresh stream fed from ``self.stream``; put encoded
    frames on it, or None to end the stream.
    """

    def __init__(self, channel_id: str = "conn_test"):
        self.channel_id = channel_id
        self.connect_attempts = 0
        self.fail_connects = 0  # connections to refuse; -1 refuses all
        self.send_init = True
        self.sync_replies = True
        self.push_replies = False
        self.pong_status = 200
        self.message_delay = 0.0  # seconds /message holds its reply
        self.message_reply: tuple[int, Any] | None = None  # (status, json) override
        self.results: dict[str, Any] = {}
        self.errors: dict[str, dict[str, Any]] = {}
        self.messages: list[dict[str, Any]] = []
        self.message_headers: list[httpx.Headers] = []
        self.pongs: list[dict[str, Any]] = []
        self.stream: asyncio.Queue | None = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/sse":
            return self._open_stream()
        if request.url.path == "/message":
            if self.message_delay:
                await asyncio.sleep(self.message_delay)
            return self._message(request)
        if request.url.path == "/pong":
            self.pongs.append(
                {"channel_id": request.headers.get("X-Channel-Id"), "body": json.loads(request.content)}
            )
            return httpx.Response(self.pong_status, json={"status": "ok"})
        return httpx.Response(404)

    def _open_stream(self) -> httpx.Response:
        self.connect_attempts += 1
        if self.fail_connects:
            if self.fail_connects > 0:
                self.fail_connects -= 1
            raise httpx.ConnectError("connection refused")

        queue: asyncio.Queue = asyncio.Queue()
        self.stream = queue
        channel_id = f"{self.channel_id}_{self.connect_attempts}"
        send_init = self.send_init

        async def frames():
            if send_init:
                yield encode_envelope(
                    EnvelopeKind.INIT,
                    channel_id,
                    {"capabilities": {"experimental": {"sse": True, "partition": "aws"}}},
                )
            while True:
                frame = await queue.get()
                if frame is None:
                    return
                yield frame

        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream", "X-Channel-Id": channel_id},
            content=frames(),
        )

    def reply_for(self, message: dict[str, Any]) -> dict[str, Any]:
        method = message["method"]
        if method in self.errors:
            return {"jsonrpc": "2.0", "id": message["id"], "error": self.errors[method]}
        return {"jsonrpc": "2.0", "id": message["id"], "result": self.results.get(method, {"ok": True})}

    def _message(self, request: httpx.Request) -> httpx.Response:
        message = json.loads(request.content)
        self.messages.append(message)
        self.message_headers.append(request.headers)
        if self.message_reply is not None:
            status, body = self.message_reply
            return httpx.Response(status, json=body)
        if "id" not in message:
            return httpx.Response(202, json={"status": "ok"})

        reply = self.reply_for(message)
        if self.push_replies and self.stream is not None:
            kind = EnvelopeKind.FAULT if "error" in reply else EnvelopeKind.PAYLOAD
            self.push(kind, reply)
        if self.sync_replies:
            return httpx.Response(200, json=reply)
        return httpx.Response(202, json={"status": "ok"})

    def push(self, kind: EnvelopeKind, body: Any) -> None:
        self.stream.put_nowait(encode_envelope(kind, self.current_channel_id, body))

    def push_raw(self, frame: bytes) -> None:
        self.stream.put_nowait(frame)

    def end_stream(self) -> None:
        self.stream.put_nowait(None)

    @property
    def current_channel_id(self) -> str:
        return f"{self.channel_id}_{self.connect_attempts}"


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() holds, failing the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def push_server():
    return FakePushServer()


@pytest.fixture
def recorded_sleeps():
    return []


@pytest.fixture
async def channel_client(push_server, recorded_sleeps):
    """A PushChannelClient wired to the scripted server, with instant reconnect sleeps."""

    async def fake_sleep(delay: float) -> None:
        recorded_sleeps.append(delay)
        await asyncio.sleep(0)

    http = httpx.AsyncClient(transport=httpx.MockTransport(push_server.handler))
    channel = PushChannelClient(
        "http://test",
        request_timeout=1.0,
        connect_timeout=1.0,
        reconnect_interval=0.5,
        max_reconnect_attempts=2,
        http_client=http,
        sleep=fake_sleep,
    )
    yield channel
    await channel.close()
    await http.aclose()
