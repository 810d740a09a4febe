"""SSE (Server-Sent Events) push transport and channel sessions."""

import asyncio
import logging
import secrets
import time
from typing import Any, AsyncGenerator, Literal

from sse_starlette.sse import EventSourceResponse

from src.config.loader import get_settings
from src.mcp.codec import encode_envelope
from src.mcp.models import EnvelopeKind, JsonRpcResponse, now_ms

logger = logging.getLogger(__name__)

Partition = Literal["aws", "aws-cn"]

# Overridden by settings.heartbeat_interval in the app
DEFAULT_HEARTBEAT_INTERVAL = 30.0


def generate_channel_id() -> str:
    """Generate an opaque channel id."""
    return f"conn_{now_ms()}_{secrets.token_hex(5)}"


class ChannelSession:
    """A push channel session with its outbound frame queue."""

    def __init__(self, channel_id: str, partition: Partition = "aws"):
        self.channel_id = channel_id
        self.partition = partition
        self.connected = True
        self.created_at = time.time()
        self.last_heartbeat = time.time()
        self.queue: asyncio.Queue[bytes] = asyncio.Queue()

    def touch(self, now: float | None = None) -> None:
        """Record a heartbeat (pong or client traffic)."""
        self.last_heartbeat = time.time() if now is None else now

    def age(self, now: float | None = None) -> float:
        """Seconds since the last heartbeat."""
        return (time.time() if now is None else now) - self.last_heartbeat

    def is_stale(self, max_age: float, now: float | None = None) -> bool:
        return self.age(now) > max_age

    async def push(self, kind: EnvelopeKind, body: Any) -> None:
        """Queue an envelope to be sent to the client."""
        if self.connected:
            await self.queue.put(encode_envelope(kind, self.channel_id, body))

    async def push_response(self, response: JsonRpcResponse) -> None:
        """Queue a JSON-RPC response as a payload or fault envelope."""
        kind = EnvelopeKind.FAULT if response.is_error else EnvelopeKind.PAYLOAD
        await self.push(kind, response.model_dump())

    def close(self) -> None:
        """Mark the session as closed."""
        self.connected = False

    def describe(self, now: float | None = None) -> dict[str, Any]:
        return {
            "id": self.channel_id,
            "connected": self.connected,
            "lastPing": int(self.last_heartbeat * 1000),
            "partition": self.partition,
            "age": int(self.age(now) * 1000),
        }


class SessionManager:
    """Owns every open channel session, keyed by channel id."""

    def __init__(self, partition: Partition = "aws"):
        self.partition = partition
        self._sessions: dict[str, ChannelSession] = {}
        self._sweep_task: asyncio.Task | None = None

    def create_session(self, partition: Partition | None = None) -> ChannelSession:
        """Create and register a new session."""
        channel_id = generate_channel_id()
        session = ChannelSession(channel_id, partition or self.partition)
        self._sessions[channel_id] = session
        logger.info(f"Created channel: {channel_id}")
        return session

    def get_session(self, channel_id: str) -> ChannelSession | None:
        """Get a session by id."""
        return self._sessions.get(channel_id)

    def touch(self, channel_id: str) -> bool:
        """Record a heartbeat for a channel. Returns False if unknown."""
        session = self._sessions.get(channel_id)
        if session is None:
            return False
        session.touch()
        return True

    def remove_session(self, channel_id: str) -> None:
        """Remove a session."""
        session = self._sessions.pop(channel_id, None)
        if session:
            session.close()
            logger.info(f"Removed channel: {channel_id}")

    def sweep(self, max_age: float, now: float | None = None) -> list[str]:
        """Remove every session whose last heartbeat is older than max_age seconds."""
        stale = [
            cid for cid, session in self._sessions.items()
            if session.is_stale(max_age, now)
        ]
        for cid in stale:
            self.remove_session(cid)
        if stale:
            logger.info(f"Swept {len(stale)} stale channels")
        return stale

    def list_sessions(self) -> list[ChannelSession]:
        return list(self._sessions.values())

    async def start_sweep_task(self, interval: float, max_age: float) -> None:
        """Start background task evicting stale sessions."""
        async def sweep_loop():
            while True:
                await asyncio.sleep(interval)
                self.sweep(max_age)

        self._sweep_task = asyncio.create_task(sweep_loop())

    def stop_sweep_task(self) -> None:
        """Stop the sweep background task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            self._sweep_task = None

    @property
    def session_count(self) -> int:
        """Return the number of active sessions."""
        return len(self._sessions)


# Global session manager
_session_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get the global session manager."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager(get_settings().documentation_partition)
    return _session_manager


def reset_session_manager() -> None:
    """Reset the global session manager (useful for testing)."""
    global _session_manager
    if _session_manager is not None:
        _session_manager.stop_sweep_task()
    _session_manager = None


async def channel_event_stream(
    session: ChannelSession,
    init_body: dict[str, Any],
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
) -> AsyncGenerator[bytes, None]:
    """
    Yield the encoded frames of one push channel.

    The first frame is always ``init``. After that, queued frames are relayed
    as they arrive and a ``heartbeat-ping`` is emitted whenever the stream has
    been idle for ``heartbeat_interval`` seconds.
    """
    yield encode_envelope(EnvelopeKind.INIT, session.channel_id, init_body)

    while session.connected:
        try:
            frame = await asyncio.wait_for(
                session.queue.get(), timeout=heartbeat_interval
            )
            yield frame
        except asyncio.TimeoutError:
            yield encode_envelope(EnvelopeKind.HEARTBEAT_PING, session.channel_id, {})


async def create_sse_response(
    session: ChannelSession,
    manager: SessionManager,
    init_body: dict[str, Any],
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
) -> EventSourceResponse:
    """Create an SSE response streaming one channel session."""

    async def event_generator() -> AsyncGenerator[bytes, None]:
        try:
            async for frame in channel_event_stream(session, init_body, heartbeat_interval):
                yield frame
        except asyncio.CancelledError:
            logger.info(f"SSE stream cancelled for channel {session.channel_id}")
            raise
        finally:
            manager.remove_session(session.channel_id)

    return EventSourceResponse(
        event_generator(),
        headers={"X-Channel-Id": session.channel_id},
    )
