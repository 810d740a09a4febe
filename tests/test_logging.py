"""Tests for log context helpers."""

import structlog

from src.utils.logging import bind_channel_id, get_request_id, set_request_id


def test_bind_and_unbind_channel_id():
    bind_channel_id("conn_1")
    assert structlog.contextvars.get_contextvars()["channel_id"] == "conn_1"

    bind_channel_id(None)
    assert "channel_id" not in structlog.contextvars.get_contextvars()


def test_request_id_is_generated():
    request_id = set_request_id()
    assert len(request_id) == 8
    assert get_request_id() == request_id
    assert set_request_id("abc") == "abc"
