"""FastAPI MCP Server - push stream, request and pong endpoints."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config.loader import get_settings, load_api_config, get_enabled_providers
from src.mcp.codec import decode_envelope
from src.mcp.errors import PARSE_ERROR, MalformedFrame, make_error_data
from src.mcp.handlers import PROTOCOL_VERSION, get_router, init_payload, server_capabilities
from src.mcp.jsonrpc import JsonRpcProcessor
from src.mcp.models import EnvelopeKind
from src.mcp.registry import get_registry
from src.mcp.transport_sse import get_session_manager, create_sse_response
from src.utils.http import CHANNEL_ID_HEADER
from src.utils.logging import setup_logging, set_request_id, get_logger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    setup_logging()
    log = get_logger("startup")

    settings = get_settings()
    log.info(
        "Starting MCP server",
        server_name=settings.server_name,
        version=settings.server_version,
        partition=settings.documentation_partition,
    )

    # Load provider configuration and register tools
    config = load_api_config()
    enabled_providers = get_enabled_providers(config)
    log.info("Loading providers", providers=enabled_providers)

    registry = get_registry()
    results = registry.load_providers(enabled_providers)

    for provider, success in results.items():
        if success:
            log.info("Loaded provider", provider=provider)
        else:
            log.warning("Failed to load provider", provider=provider)

    log.info(
        "Tool registry ready",
        tool_count=registry.tool_count,
        provider_count=registry.provider_count,
    )

    router = get_router()
    log.info("Dispatch router ready", methods=router.methods)

    # Start stale channel sweep
    session_manager = get_session_manager()
    await session_manager.start_sweep_task(
        settings.sweep_interval, settings.session_max_age
    )

    yield

    # Shutdown
    log.info("Shutting down MCP server")
    session_manager.stop_sweep_task()


# Create FastAPI app
app = FastAPI(
    title="Split-Channel MCP Server",
    description="MCP server speaking JSON-RPC over an SSE push stream and a POST side channel",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Cache-Control", CHANNEL_ID_HEADER],
    expose_headers=[CHANNEL_ID_HEADER, "X-Request-ID"],
    max_age=86400,
)


# Request ID middleware
@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next):
    """Add request ID to all requests."""
    request_id = request.headers.get("X-Request-ID") or set_request_id()
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# =============================================================================
# Health and Info Endpoints
# =============================================================================


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "partition": settings.documentation_partition,
        "version": settings.server_version,
    }


@app.get("/")
async def root() -> dict:
    """Root endpoint with server info."""
    settings = get_settings()
    registry = get_registry()

    return {
        "name": settings.server_name,
        "version": settings.server_version,
        "description": "MCP server with split-channel SSE transport",
        "endpoints": {
            "health": "/health",
            "capabilities": "/capabilities",
            "sse": "/sse",
            "message": "/message",
            "pong": "/pong",
            "connections": "/connections",
        },
        "tools_available": registry.tool_count,
        "mcp_protocol_version": PROTOCOL_VERSION,
    }


@app.get("/capabilities")
async def capabilities() -> dict:
    """Server capabilities, including the partition tag."""
    settings = get_settings()
    return {
        "capabilities": server_capabilities(settings.documentation_partition).model_dump()
    }


# =============================================================================
# MCP Endpoints
# =============================================================================


@app.get("/sse")
async def sse_endpoint(request: Request):
    """
    Push stream endpoint.

    Opens a channel and streams envelopes:
    1. An 'init' envelope carrying the channel id and capabilities
    2. 'payload' / 'fault' envelopes for responses to channel requests
    3. 'heartbeat-ping' envelopes while the stream is idle
    """
    settings = get_settings()
    session_manager = get_session_manager()
    session = session_manager.create_session()

    log = get_logger("sse")
    log.info("Channel opened", channel_id=session.channel_id, partition=session.partition)

    return await create_sse_response(
        session,
        session_manager,
        init_payload(session.partition),
        settings.heartbeat_interval,
    )


@app.post("/message")
async def message_endpoint(request: Request) -> JSONResponse:
    """
    Request endpoint for JSON-RPC messages.

    Replies synchronously. When the X-Channel-Id header names a live channel,
    the response is also pushed on that channel's stream.
    """
    channel_id = request.headers.get(CHANNEL_ID_HEADER)

    try:
        body = await request.body()
    except Exception as e:
        return JSONResponse(
            status_code=400,
            content={
                "jsonrpc": "2.0",
                "id": None,
                "error": make_error_data(PARSE_ERROR, "Could not read request body", str(e)),
            },
        )

    session_manager = get_session_manager()
    session = session_manager.get_session(channel_id) if channel_id else None
    if channel_id and session is None:
        logger.debug(f"Message for unknown channel {channel_id}, replying synchronously only")

    router = get_router()
    processor = JsonRpcProcessor(router)

    response = await processor.handle_channel_message(body, session)

    if response is None:
        # Notification - no response needed
        return JSONResponse(content={"status": "ok"}, status_code=202)

    response_data = response.model_dump()
    if response.is_error and response.error.code == PARSE_ERROR:
        return JSONResponse(content=response_data, status_code=400)
    return JSONResponse(content=response_data)


@app.post("/pong")
async def pong_endpoint(request: Request) -> JSONResponse:
    """Heartbeat answer: marks the channel alive."""
    channel_id = request.headers.get(CHANNEL_ID_HEADER)

    if not channel_id:
        body = await request.body()
        if body:
            try:
                envelope = decode_envelope(body)
            except MalformedFrame as e:
                return JSONResponse(status_code=400, content={"error": e.detail})
            if envelope.kind is EnvelopeKind.HEARTBEAT_PONG:
                channel_id = envelope.channelId

    if not channel_id:
        return JSONResponse(status_code=400, content={"error": "Missing connection ID"})

    if not get_session_manager().touch(channel_id):
        return JSONResponse(status_code=404, content={"error": "Unknown connection ID"})
    return JSONResponse(content={"status": "ok"})


@app.get("/connections")
async def connections() -> dict:
    """List live channels and their heartbeat age."""
    sessions = get_session_manager().list_sessions()
    return {
        "count": len(sessions),
        "connections": [session.describe() for session in sessions],
    }


@app.post("/cleanup")
async def cleanup() -> dict:
    """Evict stale channels now."""
    settings = get_settings()
    router = get_router()
    removed = router.sweep(settings.session_max_age)
    return {"status": "cleanup completed", "removed": removed}


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> None:
    """Run the server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
