"""MCP (Model Context Protocol) server side: JSON-RPC 2.0 over a split SSE channel."""

from src.mcp.models import (
    EnvelopeKind,
    JsonRpcRequest,
    JsonRpcResponse,
    JsonRpcError,
    PushEnvelope,
    Tool,
    TextContent,
    ToolCallResult,
)
from src.mcp.registry import ToolInvoker, ToolRegistry
from src.mcp.router import ServerDispatchRouter
from src.mcp.errors import (
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
)

__all__ = [
    "EnvelopeKind",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "JsonRpcError",
    "PushEnvelope",
    "Tool",
    "TextContent",
    "ToolCallResult",
    "ToolInvoker",
    "ToolRegistry",
    "ServerDispatchRouter",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
]
