"""Tests for health, info and channel housekeeping endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from src.mcp.transport_sse import get_session_manager


def test_health_endpoint(client: TestClient):
    """Test that health endpoint reports healthy with the partition."""
    response = client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert data["partition"] == "aws"
    assert "timestamp" in data
    assert "version" in data


def test_root_endpoint(client: TestClient):
    """Test that root endpoint returns server info."""
    response = client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert "name" in data
    assert "version" in data
    assert data["endpoints"]["health"] == "/health"
    assert data["endpoints"]["sse"] == "/sse"
    assert data["endpoints"]["message"] == "/message"
    assert data["endpoints"]["pong"] == "/pong"
    assert data["tools_available"] == 2


def test_root_endpoint_has_mcp_version(client: TestClient):
    """Test that root endpoint includes MCP protocol version."""
    data = client.get("/").json()
    assert data["mcp_protocol_version"] == "2024-11-05"


def test_capabilities_carry_partition(client: TestClient):
    capabilities = client.get("/capabilities").json()["capabilities"]
    assert capabilities["experimental"] == {"sse": True, "partition": "aws"}
    assert "tools" in capabilities


class TestPong:
    """Tests for the heartbeat answer endpoint."""

    def test_missing_channel_id(self, client: TestClient):
        response = client.post("/pong")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing connection ID"

    def test_unknown_channel(self, client: TestClient):
        response = client.post("/pong", headers={"X-Channel-Id": "conn_missing"})
        assert response.status_code == 404

    def test_header_marks_channel_alive(self, client: TestClient):
        session = get_session_manager().create_session()
        session.touch(now=0.0)
        response = client.post("/pong", headers={"X-Channel-Id": session.channel_id})
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert session.last_heartbeat > 0.0

    def test_channel_id_from_envelope_body(self, client: TestClient):
        session = get_session_manager().create_session()
        session.touch(now=0.0)
        body = {"kind": "heartbeat-pong", "channelId": session.channel_id, "body": {}, "emittedAt": 1}
        response = client.post("/pong", content=json.dumps(body))
        assert response.status_code == 200
        assert session.last_heartbeat > 0.0

    def test_malformed_body(self, client: TestClient):
        response = client.post("/pong", content="{not json")
        assert response.status_code == 400


class TestConnections:
    """Tests for channel listing and cleanup."""

    def test_lists_live_channels(self, client: TestClient):
        session = get_session_manager().create_session()
        data = client.get("/connections").json()
        assert data["count"] == 1
        connection = data["connections"][0]
        assert connection["id"] == session.channel_id
        assert connection["connected"] is True
        assert connection["partition"] == "aws"

    def test_cleanup_removes_stale_channels(self, client: TestClient):
        manager = get_session_manager()
        stale = manager.create_session()
        fresh = manager.create_session()
        stale.touch(now=0.0)

        data = client.post("/cleanup").json()

        assert data["status"] == "cleanup completed"
        assert data["removed"] == [stale.channel_id]
        assert manager.get_session(fresh.channel_id) is fresh
        assert client.get("/connections").json()["count"] == 1
