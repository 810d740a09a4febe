"""Utility modules: logging, HTTP client."""

from src.utils.logging import setup_logging, get_logger, bind_channel_id
from src.utils.http import create_http_client, post_signal

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_channel_id",
    "create_http_client",
    "post_signal",
]
