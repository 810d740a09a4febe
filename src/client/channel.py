"""Push channel client: JSON-RPC over an SSE push stream plus POST side channel.

Requests go out as HTTP POSTs tagged with the channel id. Replies arrive
either synchronously in the POST body or asynchronously as ``payload`` /
``fault`` envelopes on the push stream; whichever reaches the pending table
first settles the request and the other is dropped.

Usage::

    async with PushChannelClient("http://localhost:8000") as client:
        await client.initialize()
        tools = await client.list_tools()
        result = await client.call_tool("echo", {"message": "hi"})
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.client.pending import PendingRequestTable, Scheduler
from src.client.state import ChannelState, ConnectionState
from src.config.loader import get_settings
from src.mcp.codec import (
    FrameReader,
    decode_envelope,
    decode_message,
    dump_envelope,
    encode_message,
)
from src.mcp.errors import (
    ChannelClosed,
    ChannelError,
    ChannelUnavailable,
    ConnectTimeout,
    InvalidTransition,
    MalformedFrame,
    NotConnected,
    ReconnectExhausted,
    RemoteError,
)
from src.mcp.handlers import PROTOCOL_VERSION
from src.mcp.models import (
    EnvelopeKind,
    JsonRpcRequest,
    JsonRpcResponse,
    PushEnvelope,
    RequestId,
    is_response_shape,
    now_ms,
)
from src.utils.http import CHANNEL_ID_HEADER, create_http_client, post_signal
from src.utils.logging import bind_channel_id

logger = logging.getLogger(__name__)

# Failures worth another connection attempt
RECONNECTABLE_ERRORS = (httpx.TransportError, ChannelUnavailable)

CLIENT_INFO = {"name": "split-channel-mcp-client", "version": "1.0.0"}


class PushChannelClient:
    """Client side of one split-channel JSON-RPC session."""

    def __init__(
        self,
        base_url: str,
        *,
        request_timeout: float = 30.0,
        connect_timeout: float = 30.0,
        reconnect_interval: float = 5.0,
        max_reconnect_attempts: int = 10,
        http_client: httpx.AsyncClient | None = None,
        scheduler: Scheduler | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        sse_path: str = "/sse",
        message_path: str = "/message",
        pong_path: str = "/pong",
    ):
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.connect_timeout = connect_timeout
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_attempts = max_reconnect_attempts
        self.sse_path = sse_path
        self.message_path = message_path
        self.pong_path = pong_path

        self._owns_http = http_client is None
        self._http = http_client or create_http_client(connect_timeout)
        self._sleep = sleep
        self._pending = PendingRequestTable(scheduler)
        self._state = ConnectionState()
        self._ids = itertools.count(1)

        self._opened: asyncio.Future | None = None
        self._reader: asyncio.Task | None = None
        self._recovery: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closing = False

        self.server_info: dict[str, Any] = {}
        self.last_error: BaseException | None = None

    @classmethod
    def from_settings(cls, base_url: str, **kwargs: Any) -> "PushChannelClient":
        """Create a client using the configured channel defaults."""
        settings = get_settings()
        options: dict[str, Any] = {
            "request_timeout": settings.channel_request_timeout,
            "connect_timeout": settings.channel_connect_timeout,
            "reconnect_interval": settings.channel_reconnect_interval,
            "max_reconnect_attempts": settings.channel_max_reconnect_attempts,
        }
        options.update(kwargs)
        return cls(base_url, **options)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ChannelState:
        return self._state.state

    @property
    def channel_id(self) -> str | None:
        return self._state.channel_id

    @property
    def partition(self) -> str | None:
        return self._state.partition

    @property
    def retry_count(self) -> int:
        return self._state.retry_count

    @property
    def is_connected(self) -> bool:
        return self._state.connected

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        """
        Open the push channel.

        Raises:
            ConnectTimeout: If an attempt does not reach OPEN in time.
            ReconnectExhausted: If the initial attempt and every retry failed.
        """
        if self._state.state is ChannelState.OPEN:
            return
        if self._state.state is not ChannelState.DISCONNECTED:
            raise ChannelError(f"Cannot open channel in state {self._state.state.value}")

        self._closing = False
        self.last_error = None
        if self._owns_http and self._http.is_closed:
            self._http = create_http_client(self.connect_timeout)

        logger.info(f"Connecting to push stream {self._url(self.sse_path)}")
        try:
            await self._connect_with_retries(self.max_reconnect_attempts + 1)
        except (Exception, asyncio.CancelledError) as e:
            self.last_error = e
            await self._teardown(f"Open failed: {e}")
            raise

        bind_channel_id(self.channel_id)
        logger.info(f"Push channel open: {self.channel_id}")

    async def close(self, reason: str = "Connection closed") -> None:
        """Close the channel and fail every pending request. Safe to call repeatedly."""
        self._closing = True
        await self._teardown(reason)
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()

    async def __aenter__(self) -> "PushChannelClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _teardown(self, reason: str) -> None:
        if self._state.state is not ChannelState.DISCONNECTED:
            logger.info(f"Tearing down push channel {self.channel_id}: {reason}")
        self._state.transition(ChannelState.DISCONNECTED)
        self._pending.drain_all(reason)

        if self._opened is not None and not self._opened.done():
            self._opened.cancel()
        self._opened = None

        current = asyncio.current_task()
        tasks = [
            task for task in (self._reader, self._recovery, *self._background)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._reader = None
        self._recovery = None
        self._background.clear()
        bind_channel_id(None)

    # =========================================================================
    # Connection state machine
    # =========================================================================

    def _before_reconnect(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self._state.transition(ChannelState.DEGRADED)
        logger.warning(
            f"Push stream attempt {retry_state.attempt_number} failed: {error}; "
            f"reconnecting in {self.reconnect_interval}s "
            f"(retry {self._state.retry_count}/{self.max_reconnect_attempts})"
        )

    async def _connect_with_retries(self, attempts: int) -> None:
        """Run up to `attempts` connection attempts, sleeping between them."""
        if attempts < 1:
            raise ReconnectExhausted(self.max_reconnect_attempts)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.reconnect_interval),
            retry=retry_if_exception_type(RECONNECTABLE_ERRORS),
            before_sleep=self._before_reconnect,
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._connect_once()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"Giving up on push stream after {attempts} attempts: {last_error}")
            raise ReconnectExhausted(self.max_reconnect_attempts, last_error) from last_error

    async def _connect_once(self) -> None:
        """One connection attempt: start the reader and wait for the init frame."""
        if self._closing:
            raise ChannelClosed("Client closed while connecting")
        self._state.transition(ChannelState.CONNECTING)

        opened = asyncio.get_running_loop().create_future()
        reader = asyncio.create_task(self._read_stream())
        self._opened = opened
        self._reader = reader

        done, _ = await asyncio.wait(
            {opened, reader},
            timeout=self.connect_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if opened.cancelled():
            raise ChannelClosed("Client closed while connecting")

        if opened in done:
            reader.add_done_callback(self._on_reader_done)
            return

        if reader in done:
            opened.cancel()
            if reader.cancelled():
                raise ChannelClosed("Client closed while connecting")
            raise reader.exception() or ChannelUnavailable("Push stream ended before init")

        opened.cancel()
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)
        raise ConnectTimeout(self.connect_timeout)

    def _on_reader_done(self, task: asyncio.Task) -> None:
        """Start background recovery when an open push stream drops."""
        if task is not self._reader or task.cancelled():
            return
        if self._closing or self._state.state is not ChannelState.OPEN:
            return

        error = task.exception()
        idle = self._state.idle_for() or 0.0
        logger.warning(f"Push stream lost {idle:.1f}s after the last frame: {error or 'stream ended'}")
        self._state.transition(ChannelState.DEGRADED)
        self._recovery = asyncio.create_task(self._recover())

    async def _recover(self) -> None:
        try:
            await self._sleep(self.reconnect_interval)
            await self._connect_with_retries(self.max_reconnect_attempts)
        except ChannelError as e:
            self.last_error = e
            logger.error(f"Push channel lost for good: {e}")
            await self._teardown(str(e))
        else:
            bind_channel_id(self.channel_id)
            logger.info(f"Push channel re-opened: {self.channel_id}")

    # =========================================================================
    # Push stream
    # =========================================================================

    async def _read_stream(self) -> None:
        async with self._http.stream(
            "GET",
            self._url(self.sse_path),
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        ) as response:
            if response.status_code != 200:
                raise ChannelUnavailable(
                    f"Push endpoint returned HTTP {response.status_code}"
                )

            frames = FrameReader()
            async for line in response.aiter_lines():
                payload = frames.feed_line(line)
                if payload is not None:
                    self._handle_frame(payload)

    def _handle_frame(self, payload: str) -> None:
        try:
            envelope = decode_envelope(payload)
        except MalformedFrame as e:
            logger.warning(f"Skipping frame: {e.detail}")
            return

        self._state.heartbeat()
        handlers = {
            EnvelopeKind.INIT: self._on_init,
            EnvelopeKind.HEARTBEAT_PING: self._on_ping,
            EnvelopeKind.HEARTBEAT_PONG: self._on_pong,
            EnvelopeKind.PAYLOAD: self._on_payload,
            EnvelopeKind.FAULT: self._on_fault,
        }
        handlers[envelope.kind](envelope)

    def _on_init(self, envelope: PushEnvelope) -> None:
        body = envelope.body if isinstance(envelope.body, dict) else {}
        self.server_info = body
        experimental = body.get("capabilities", {}).get("experimental", {})
        try:
            self._state.mark_open(envelope.channelId, experimental.get("partition"))
        except InvalidTransition as e:
            logger.warning(f"Ignoring init frame: {e}")
            return
        logger.debug(f"Connection initialized with id {envelope.channelId}")
        if self._opened is not None and not self._opened.done():
            self._opened.set_result(envelope.channelId)

    def _on_ping(self, envelope: PushEnvelope) -> None:
        task = asyncio.create_task(self._send_pong())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_pong(self, envelope: PushEnvelope) -> None:
        logger.debug(f"Heartbeat pong from server on {envelope.channelId}")

    def _on_payload(self, envelope: PushEnvelope) -> None:
        self._settle_reply(envelope.body, "push")

    def _on_fault(self, envelope: PushEnvelope) -> None:
        body = envelope.body
        if not isinstance(body, dict) or body.get("id") is None:
            logger.error(f"Server fault on channel {envelope.channelId}: {body}")
            return
        self._settle_reply(body, "push")

    async def _send_pong(self) -> None:
        """Signal liveness on the side channel. Failures are only logged."""
        channel_id = self.channel_id
        if channel_id is None:
            return
        pong = PushEnvelope(kind=EnvelopeKind.HEARTBEAT_PONG, channelId=channel_id, body={})
        try:
            await post_signal(
                self._http,
                self._url(self.pong_path),
                channel_id,
                dump_envelope(pong).encode("utf-8"),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver pong for {channel_id}: {e}")

    # =========================================================================
    # Correlation
    # =========================================================================

    def _settle_reply(self, body: Any, source: str) -> bool:
        """Resolve or reject the pending request a JSON-RPC response answers."""
        if not isinstance(body, dict) or not is_response_shape(body):
            logger.warning(f"Dropping non-response {source} message: {body!r}")
            return False
        try:
            response = JsonRpcResponse.model_validate(body)
        except ValidationError as e:
            logger.warning(f"Dropping invalid {source} response: {e.error_count()} invalid field(s)")
            return False
        if response.id is None:
            logger.warning(f"Dropping {source} response without id")
            return False

        if response.error is not None:
            settled = self._pending.reject(
                response.id,
                RemoteError(response.error.code, response.error.message, response.error.data),
            )
        else:
            settled = self._pending.resolve(response.id, response.result)
        if not settled:
            logger.debug(f"Dropped duplicate or late {source} reply for {response.id!r}")
        return settled

    def _settle_sync_reply(self, request_id: RequestId, response: httpx.Response) -> None:
        """Settle a request from the synchronous reply of its POST, if any."""
        if response.status_code == 202 or not response.content:
            return
        try:
            body = decode_message(response.content)
        except MalformedFrame as e:
            if response.is_error:
                self._reject_http_error(request_id, response)
            else:
                logger.debug(f"Ignoring non JSON-RPC reply to {request_id!r}: {e.detail}")
            return

        if not is_response_shape(body):
            if response.is_error:
                self._reject_http_error(request_id, response)
            else:
                logger.debug(f"Ignoring non-response reply to {request_id!r}")
            return
        if body.get("id") is None:
            # an id-less error in the POST reply still answers this exact call
            body = {**body, "id": request_id}
        self._settle_reply(body, "sync")

    def _reject_http_error(self, request_id: RequestId, response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Side channel rejected {request_id!r}: HTTP {response.status_code}")
            self._pending.reject(request_id, e)

    def next_id(self) -> str:
        return f"msg_{now_ms()}_{next(self._ids)}"

    # =========================================================================
    # Requests
    # =========================================================================

    async def send(self, request: JsonRpcRequest | dict[str, Any]) -> Any:
        """
        Send a request and wait for its correlated result.

        Raises:
            NotConnected: If the channel is not open.
            DuplicateId: If the request id is already pending.
            RequestTimeout: If no reply arrives within request_timeout.
            ChannelClosed: If the channel is torn down first.
            RemoteError: If the server answered with a JSON-RPC error.
        """
        if not self._state.connected:
            raise NotConnected("Not connected to server")

        if isinstance(request, dict):
            request = JsonRpcRequest.model_validate(request)
        if request.id is None:
            request = request.model_copy(update={"id": self.next_id()})

        request_id = request.id
        future = self._pending.register(request_id, self.request_timeout)
        # the POST runs beside the wait; only the pending timer bounds the call
        post = asyncio.create_task(self._post_request(request_id, request))
        self._background.add(post)
        post.add_done_callback(self._background.discard)
        try:
            return await future
        except asyncio.CancelledError:
            # a cancelled caller must not keep its id pending
            self._pending.reject(request_id, ChannelClosed("Request cancelled"))
            raise
        finally:
            if not post.done():
                post.cancel()

    async def _post_request(self, request_id: RequestId, request: JsonRpcRequest) -> None:
        try:
            response = await self._post_message(request)
        except httpx.HTTPError as e:
            logger.warning(f"Side channel failed for {request_id!r}: {e}")
            self._pending.reject(request_id, e)
        else:
            self._settle_sync_reply(request_id, response)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification. Nothing is registered and no reply is awaited."""
        if not self._state.connected:
            raise NotConnected("Not connected to server")

        response = await self._post_message(JsonRpcRequest(method=method, params=params))
        response.raise_for_status()

    async def _post_message(self, message: JsonRpcRequest) -> httpx.Response:
        return await self._http.post(
            self._url(self.message_path),
            content=encode_message(message),
            headers={
                CHANNEL_ID_HEADER: self.channel_id or "",
                "Content-Type": "application/json",
            },
        )

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        return await self.send(JsonRpcRequest(id=self.next_id(), method=method, params=params))

    # =========================================================================
    # MCP conveniences
    # =========================================================================

    async def initialize(self, client_info: dict[str, Any] | None = None) -> Any:
        """Run the MCP initialize handshake."""
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "experimental": {"sse": True}},
                "clientInfo": client_info or CLIENT_INFO,
            },
        )
        await self.notify("notifications/initialized")
        return result

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self.request("tools/list")
        return result.get("tools", [])

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.request(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )
