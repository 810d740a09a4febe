"""HTTP client utilities for the push and side channels."""

import logging

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from src.config.loader import get_settings

logger = logging.getLogger(__name__)

CHANNEL_ID_HEADER = "X-Channel-Id"


def create_http_client(
    timeout: float | None = None,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create an async HTTP client with sensible defaults.

    The read timeout is disabled: the push stream stays idle between
    heartbeats and must not be cut by the client.

    Args:
        timeout: Connect/write/pool timeout in seconds. Uses settings if None.
        base_url: Optional base URL for all requests.
        transport: Optional transport override (e.g. httpx.MockTransport).

    Returns:
        Configured httpx.AsyncClient instance.
    """
    settings = get_settings()

    if timeout is None:
        timeout = settings.channel_connect_timeout

    return httpx.AsyncClient(
        base_url=base_url or "",
        timeout=httpx.Timeout(timeout, read=None),
        follow_redirects=True,
        headers={
            "User-Agent": f"{settings.server_name}-client/{settings.server_version}",
        },
        transport=transport,
    )


# Retry decorator for one-way side-channel signals (pong); requests are never retried
side_channel_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


@side_channel_retry
async def post_signal(
    client: httpx.AsyncClient,
    url: str,
    channel_id: str,
    content: bytes,
) -> httpx.Response:
    """
    POST a one-way signal tagged with its channel id, with retries.

    Raises:
        httpx.HTTPStatusError: On HTTP error status.
        httpx.TransportError: When every attempt failed.
    """
    response = await client.post(
        url,
        content=content,
        headers={CHANNEL_ID_HEADER: channel_id, "Content-Type": "application/json"},
    )
    response.raise_for_status()
    return response
