"""Diagnostics provider tools - exercise the tools/call path end to end."""

from typing import Any

from src.mcp.models import TextContent
from src.mcp.registry import ToolRegistry


async def ping_handler(arguments: dict[str, Any]) -> list[TextContent]:
    """Handle the ping tool call."""
    return [TextContent(text="pong")]


async def echo_handler(arguments: dict[str, Any]) -> list[TextContent]:
    """Handle the echo tool call."""
    message = arguments.get("message", "")
    if not message:
        raise ValueError("'message' argument is required")
    return [TextContent(text=f"Echo: {message}")]


def register_tools(registry: ToolRegistry) -> None:
    """Register all diagnostics tools with the registry."""

    registry.register(
        name="ping",
        description="Returns pong. Use this to check that the channel round-trips tool calls.",
        input_schema={
            "type": "object",
            "properties": {},
            "required": [],
        },
        handler=ping_handler,
    )

    registry.register(
        name="echo",
        description="Echoes back the provided message. Use this to test tool argument passing.",
        input_schema={
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The message to echo back",
                },
            },
            "required": ["message"],
        },
        handler=echo_handler,
    )
