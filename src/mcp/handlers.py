"""MCP method handlers registered on the dispatch router."""

import logging
from typing import Any

from pydantic import ValidationError

from src.mcp.errors import InvalidParams
from src.mcp.models import (
    InitializeParams,
    InitializeResult,
    JsonRpcRequest,
    ServerInfo,
    Capabilities,
    ToolsListResult,
    ToolCallParams,
)
from src.mcp.registry import ToolInvoker, get_registry
from src.mcp.router import ServerDispatchRouter
from src.mcp.transport_sse import SessionManager, get_session_manager
from src.config.loader import get_settings

logger = logging.getLogger(__name__)

# MCP protocol version we support
PROTOCOL_VERSION = "2024-11-05"
SERVER_DESCRIPTION = "Documentation MCP server with split-channel SSE support"


def server_capabilities(partition: str) -> Capabilities:
    return Capabilities(
        tools={"listChanged": False},
        experimental={"sse": True, "partition": partition},
    )


def init_payload(partition: str) -> dict[str, Any]:
    """Body of the init envelope that opens every push channel."""
    settings = get_settings()
    return InitializeResult(
        protocolVersion=PROTOCOL_VERSION,
        capabilities=server_capabilities(partition),
        serverInfo=ServerInfo(
            name=settings.server_name,
            version=settings.server_version,
            description=SERVER_DESCRIPTION,
        ),
    ).model_dump()


def _params(request: JsonRpcRequest) -> dict[str, Any]:
    return request.params if isinstance(request.params, dict) else {}


class MCPHandlers:
    """Handlers for MCP protocol methods."""

    def __init__(self, tools: ToolInvoker, partition: str = "aws"):
        self.tools = tools
        self.partition = partition

    async def handle_initialize(self, request: JsonRpcRequest) -> dict[str, Any]:
        """Handle the initialize request."""
        try:
            init_params = InitializeParams(**_params(request))
            logger.info(
                f"Initializing client {init_params.clientInfo.name} "
                f"{init_params.clientInfo.version}"
            )
        except ValidationError as e:
            # Still proceed with defaults
            logger.warning(f"Invalid initialize params: {e}")

        return init_payload(self.partition)

    async def handle_initialized(self, request: JsonRpcRequest) -> dict[str, Any]:
        """Handle the notifications/initialized notification."""
        logger.info("Client confirmed initialization")
        return {}

    async def handle_tools_list(self, request: JsonRpcRequest) -> dict[str, Any]:
        """Handle the tools/list request."""
        result = ToolsListResult(tools=self.tools.list_tools())
        return result.model_dump()

    async def handle_tools_call(self, request: JsonRpcRequest) -> dict[str, Any]:
        """Handle the tools/call request."""
        try:
            call_params = ToolCallParams(**_params(request))
        except ValidationError as e:
            raise InvalidParams(f"Invalid tools/call params: {e.error_count()} invalid field(s)") from e

        logger.info(f"Calling tool: {call_params.name}")
        result = await self.tools.invoke(call_params.name, call_params.arguments)
        return result.model_dump()

    def register_on(self, router: ServerDispatchRouter) -> None:
        router.register("initialize", self.handle_initialize)
        router.register("notifications/initialized", self.handle_initialized)
        router.register("tools/list", self.handle_tools_list)
        router.register("tools/call", self.handle_tools_call)


def build_router(
    tools: ToolInvoker, sessions: SessionManager
) -> ServerDispatchRouter:
    """Create a router with the MCP methods registered."""
    router = ServerDispatchRouter(sessions)
    MCPHandlers(tools, sessions.partition).register_on(router)
    return router


# Global router instance
_router: ServerDispatchRouter | None = None


def get_router() -> ServerDispatchRouter:
    """Get the global router, wired to the global registry and session manager."""
    global _router
    if _router is None:
        _router = build_router(get_registry(), get_session_manager())
    return _router


def reset_router() -> None:
    """Reset the global router (useful for testing)."""
    global _router
    _router = None
