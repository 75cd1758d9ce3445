"""
HTTP Control Surface Tests
==========================

Runs the FastAPI app in-process with a registry wired to fake transports.
"""

import pytest
from fastapi.testclient import TestClient

from mcp_bridge.bridge import SessionRegistry
from mcp_bridge.config import Settings
from mcp_bridge.main import create_app


@pytest.fixture
def registry(transports):
    return SessionRegistry(
        max_reconnect_attempts=3,
        reconnect_delay_ms=0,
        source_factory=transports.source,
        sink_factory=transports.sink,
    )


@pytest.fixture
def client(registry):
    app = create_app(Settings(), registry=registry)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def connection_id(client, valid_payload):
    response = client.post("/connect", json=valid_payload)
    assert response.status_code == 200
    return response.json()["connection_id"]


class TestServiceEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "MCP-Xiaozhi Bridge"
        assert "POST /connect" in body["endpoints"]
        assert body["active_connections"] == 0

    def test_health_empty(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["connections"] == {
            "total": 0,
            "fully_connected": 0,
            "partially_connected": 0,
        }

    def test_health_counts_sessions(self, client, connection_id):
        body = client.get("/health").json()
        assert body["connections"]["total"] == 1
        assert body["connections"]["fully_connected"] == 1


class TestConnect:

    def test_connect_success(self, client, valid_payload):
        response = client.post("/connect", json=valid_payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["connection_id"].startswith("bridge-")
        assert body["status"]["state"] == "connected"
        assert body["status"]["is_fully_connected"] is True
        assert body["instructions"]["send"] == f"POST /send/{body['connection_id']}"

    def test_connect_missing_fields(self, client, transports):
        response = client.post("/connect", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert "Missing required fields" in response.json()["detail"]
        assert transports.calls == []

    def test_connect_without_body(self, client):
        assert client.post("/connect").status_code == 400

    def test_connect_bad_scheme(self, client):
        response = client.post("/connect", json={
            "mcpServerUrl": "https://mcp.example.com/sse",
            "xiaozhiWssUrl": "http://api.xiaozhi.me/mcp/",
        })
        assert response.status_code == 400
        assert "Invalid URL format" in response.json()["detail"]

    def test_connect_upstream_failure(self, client, transports, valid_payload):
        transports.fail_sink = True

        response = client.post("/connect", json=valid_payload)

        assert response.status_code == 502
        assert response.json()["error"] == "connection_error"
        assert client.get("/connections").json()["count"] == 0


class TestSessionEndpoints:

    def test_list_and_get(self, client, connection_id):
        listing = client.get("/connections").json()
        assert listing["count"] == 1
        assert listing["connections"][0]["connection_id"] == connection_id

        body = client.get(f"/connection/{connection_id}").json()
        assert body["success"] is True
        assert body["connection"]["state"] == "connected"
        assert body["connection"]["reconnect_attempts"] == 0

    def test_send(self, client, transports, connection_id):
        response = client.post(f"/send/{connection_id}", json={"type": "ping"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert len(transports.sinks[0].sent) == 1

    def test_send_with_sink_down(self, client, transports, connection_id):
        transports.sinks[0].opened = False

        response = client.post(f"/send/{connection_id}", json={"type": "ping"})

        assert response.status_code == 503
        assert response.json()["error"] == "forward_error"

        messages = client.get(f"/connection/{connection_id}/messages").json()
        assert messages["message_count"] == 1
        assert messages["messages"][0]["direction"] == "error"

    def test_messages_and_clear(self, client, transports, connection_id):
        transports.sinks[0].opened = False
        client.post(f"/send/{connection_id}", json="a")
        client.post(f"/send/{connection_id}", json="b")

        messages = client.get(f"/connection/{connection_id}/messages?limit=1").json()
        assert messages["message_count"] == 2
        assert len(messages["messages"]) == 1
        assert messages["messages"][0]["data"]["content"] == "b"

        cleared = client.delete(f"/connection/{connection_id}/messages").json()
        assert cleared["cleared"] == 2
        assert client.get(f"/connection/{connection_id}/messages").json()["messages"] == []

    @pytest.mark.parametrize("limit", [0, 101, -5])
    def test_messages_limit_bounds(self, client, connection_id, limit):
        response = client.get(f"/connection/{connection_id}/messages?limit={limit}")
        assert response.status_code == 422

    def test_disconnect(self, client, transports, connection_id):
        response = client.delete(f"/disconnect/{connection_id}")

        assert response.status_code == 200
        assert response.json()["remaining_connections"] == 0
        assert transports.live() == 0

        missing = client.get(f"/connection/{connection_id}")
        assert missing.status_code == 404
        assert missing.json()["error"] == "not_found"

    def test_disconnect_all(self, client, valid_payload):
        for _ in range(3):
            client.post("/connect", json=valid_payload)

        body = client.delete("/connections").json()
        assert body["disconnected_count"] == 3
        assert client.get("/connections").json()["count"] == 0

    @pytest.mark.parametrize("method,path", [
        ("get", "/connection/bridge-missing"),
        ("get", "/connection/bridge-missing/messages"),
        ("delete", "/connection/bridge-missing/messages"),
        ("delete", "/disconnect/bridge-missing"),
    ])
    def test_unknown_session(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 404
        assert response.json()["connection_id"] == "bridge-missing"

    def test_send_unknown_session(self, client):
        response = client.post("/send/bridge-missing", json={"type": "ping"})
        assert response.status_code == 404


def test_injected_registry_used_even_when_empty(registry):
    app = create_app(Settings(), registry=registry)
    with TestClient(app):
        assert len(registry) == 0
        assert app.state.registry is registry


def test_lifespan_shutdown_disconnects_sessions(registry, transports, valid_payload):
    app = create_app(Settings(), registry=registry)
    with TestClient(app) as client:
        client.post("/connect", json=valid_payload)
        assert transports.live() == 2

    assert registry.closed
    assert len(registry) == 0
    assert transports.live() == 0
