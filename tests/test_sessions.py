"""Tests for channel sessions, the push event stream and the client state machine."""

import asyncio

import pytest

from src.client.state import ChannelState, ConnectionState
from src.mcp.codec import decode_envelope
from src.mcp.errors import InvalidTransition
from src.mcp.models import EnvelopeKind, JsonRpcError, JsonRpcResponse
from src.mcp.transport_sse import SessionManager, channel_event_stream


class TestConnectionState:

    def test_starts_disconnected(self):
        state = ConnectionState()
        assert state.state is ChannelState.DISCONNECTED
        assert state.connected is False

    def test_open_clears_retry_counter(self):
        state = ConnectionState()
        state.transition(ChannelState.CONNECTING)
        state.transition(ChannelState.DEGRADED)
        state.transition(ChannelState.CONNECTING)
        assert state.retry_count == 1
        state.mark_open("conn_1", "aws")
        assert state.connected
        assert state.retry_count == 0
        assert state.channel_id == "conn_1"
        assert state.idle_for() is not None

    def test_invalid_transitions(self):
        state = ConnectionState()
        with pytest.raises(InvalidTransition):
            state.transition(ChannelState.OPEN)
        with pytest.raises(InvalidTransition):
            state.transition(ChannelState.DEGRADED)

    def test_open_cannot_skip_back_to_connecting(self):
        state = ConnectionState()
        state.transition(ChannelState.CONNECTING)
        state.mark_open("conn_1")
        with pytest.raises(InvalidTransition):
            state.transition(ChannelState.CONNECTING)

    @pytest.mark.parametrize(
        "path",
        [
            [],
            [ChannelState.CONNECTING],
            [ChannelState.CONNECTING, ChannelState.OPEN],
            [ChannelState.CONNECTING, ChannelState.OPEN, ChannelState.DEGRADED],
        ],
    )
    def test_teardown_allowed_from_any_state(self, path):
        state = ConnectionState()
        for step in path:
            state.transition(step)
        state.transition(ChannelState.DISCONNECTED)
        assert state.state is ChannelState.DISCONNECTED
        assert state.channel_id is None


class TestSessionManager:

    def test_create_and_lookup(self):
        manager = SessionManager("aws-cn")
        session = manager.create_session()
        assert session.channel_id.startswith("conn_")
        assert session.partition == "aws-cn"
        assert manager.get_session(session.channel_id) is session
        assert manager.session_count == 1

    def test_channel_ids_are_unique(self):
        manager = SessionManager()
        ids = {manager.create_session().channel_id for _ in range(50)}
        assert len(ids) == 50

    def test_touch_updates_heartbeat(self):
        manager = SessionManager()
        session = manager.create_session()
        session.touch(now=0.0)
        assert manager.touch(session.channel_id) is True
        assert session.last_heartbeat > 0.0
        assert manager.touch("conn_unknown") is False

    def test_remove_closes_session(self):
        manager = SessionManager()
        session = manager.create_session()
        manager.remove_session(session.channel_id)
        manager.remove_session(session.channel_id)
        assert session.connected is False
        assert manager.session_count == 0

    def test_describe(self):
        session = SessionManager().create_session()
        session.touch(now=10.0)
        info = session.describe(now=12.5)
        assert info["id"] == session.channel_id
        assert info["lastPing"] == 10000
        assert info["age"] == 2500


class TestChannelEventStream:

    @pytest.mark.asyncio
    async def test_init_first_then_heartbeat(self):
        session = SessionManager().create_session()
        stream = channel_event_stream(session, {"hello": "client"}, heartbeat_interval=0.01)

        init = decode_envelope(await stream.__anext__())
        assert init.kind is EnvelopeKind.INIT
        assert init.channelId == session.channel_id
        assert init.body == {"hello": "client"}

        ping = decode_envelope(await stream.__anext__())
        assert ping.kind is EnvelopeKind.HEARTBEAT_PING
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_queued_responses_are_relayed(self):
        session = SessionManager().create_session()
        stream = channel_event_stream(session, {}, heartbeat_interval=5.0)
        await stream.__anext__()

        await session.push_response(JsonRpcResponse(id=1, result={"ok": True}))
        await session.push_response(
            JsonRpcResponse(id=2, error=JsonRpcError(code=-32601, message="Method not found: x"))
        )

        payload = decode_envelope(await asyncio.wait_for(stream.__anext__(), 1.0))
        fault = decode_envelope(await asyncio.wait_for(stream.__anext__(), 1.0))
        assert payload.kind is EnvelopeKind.PAYLOAD
        assert payload.body == {"jsonrpc": "2.0", "id": 1, "result": {"ok": True}}
        assert fault.kind is EnvelopeKind.FAULT
        assert fault.body["error"]["code"] == -32601
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_closed_session_drops_frames(self):
        session = SessionManager().create_session()
        session.close()
        await session.push_response(JsonRpcResponse(id=1, result=None))
        assert session.queue.empty()
