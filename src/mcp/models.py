"""Pydantic models for JSON-RPC 2.0, push envelopes and the MCP protocol."""

import time
from enum import Enum
from typing import Any, Literal
from pydantic import BaseModel, Field


RequestId = int | str


# =============================================================================
# JSON-RPC 2.0 Base Models
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request object."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None = None  # None for notifications
    method: str
    params: dict[str, Any] | list[Any] | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Serialize without the id for notifications and without empty params."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.id is not None:
            data["id"] = self.id
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            data["data"] = self.data
        return data


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response object."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None = None
    result: Any = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Custom serialization: exactly one of result or error."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump()
        else:
            data["result"] = self.result
        return data


def is_response_shape(message: dict[str, Any]) -> bool:
    """True when a raw message carries result or error and no method."""
    return "method" not in message and ("result" in message or "error" in message)


# =============================================================================
# Push Envelope
# =============================================================================


class EnvelopeKind(str, Enum):
    """Kinds of frames sent over the push stream."""

    INIT = "init"
    HEARTBEAT_PING = "heartbeat-ping"
    HEARTBEAT_PONG = "heartbeat-pong"
    PAYLOAD = "payload"
    FAULT = "fault"


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class PushEnvelope(BaseModel):
    """Outer frame wrapping every push-stream message."""

    kind: EnvelopeKind
    channelId: str
    body: Any = None
    emittedAt: int = Field(default_factory=now_ms)


# =============================================================================
# MCP Content Types
# =============================================================================


class TextContent(BaseModel):
    """Text content returned by tools."""

    type: Literal["text"] = "text"
    text: str


class Tool(BaseModel):
    """MCP tool definition."""

    name: str = Field(..., description="Tool name")
    description: str = Field(..., description="Human-readable description")
    inputSchema: dict[str, Any] = Field(
        ..., description="JSON Schema for tool input"
    )


class ToolCallResult(BaseModel):
    """Result of a tool call."""

    content: list[TextContent]
    isError: bool = False


# =============================================================================
# MCP Protocol Models
# =============================================================================


class ClientInfo(BaseModel):
    """Client information sent during initialization."""

    name: str
    version: str


class ServerInfo(BaseModel):
    """Server information returned during initialization."""

    name: str
    version: str
    description: str | None = None


class Capabilities(BaseModel):
    """Server capabilities."""

    tools: dict[str, Any] = Field(default_factory=lambda: {"listChanged": False})
    experimental: dict[str, Any] = Field(default_factory=dict)


class InitializeParams(BaseModel):
    """Parameters for initialize request."""

    protocolVersion: str
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: ClientInfo


class InitializeResult(BaseModel):
    """Result of initialize request."""

    protocolVersion: str
    capabilities: Capabilities
    serverInfo: ServerInfo


class ToolsListResult(BaseModel):
    """Result of tools/list request."""

    tools: list[Tool]


class ToolCallParams(BaseModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
