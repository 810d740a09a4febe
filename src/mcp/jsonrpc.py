"""JSON-RPC 2.0 message processing for the request endpoint."""

import logging

from src.mcp.codec import decode_message
from src.mcp.errors import PARSE_ERROR, MalformedFrame, make_error_data
from src.mcp.models import JsonRpcResponse, JsonRpcError
from src.mcp.router import ServerDispatchRouter
from src.mcp.transport_sse import ChannelSession

logger = logging.getLogger(__name__)


class JsonRpcProcessor:
    """Parse raw side-channel bodies and route them through the dispatcher."""

    def __init__(self, router: ServerDispatchRouter):
        self.router = router

    async def handle_message(self, raw_data: str | bytes) -> JsonRpcResponse | None:
        """
        Handle a raw JSON-RPC message end-to-end.

        Returns a response, or None for notifications.
        """
        try:
            message = decode_message(raw_data)
        except MalformedFrame as e:
            # Parse errors don't have a request id
            return JsonRpcResponse(
                id=None,
                error=JsonRpcError(**make_error_data(PARSE_ERROR, "Parse error", e.detail)),
            )

        return await self.router.dispatch(message)

    async def handle_channel_message(
        self, raw_data: str | bytes, session: ChannelSession | None
    ) -> JsonRpcResponse | None:
        """
        Handle a message sent on behalf of a push channel.

        The sender's channel is marked alive and the response is also queued
        on its push stream; the client keeps whichever copy arrives first.
        """
        if session is not None:
            session.touch()

        response = await self.handle_message(raw_data)
        if response is not None and session is not None:
            await session.push_response(response)
        return response
