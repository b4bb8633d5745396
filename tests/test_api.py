"""Tests for the HTTP and WebSocket surfaces."""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import Hold, ScriptedTransport, ToolRound, record
from turnstream.application.api.api_server import create_app
from turnstream.domain.context.state.turn_persistence import InMemoryTurnPersistence
from turnstream.domain.errors import TransportError
from turnstream.domain.tool.tool_models import ToolCall
from turnstream.infrastructure.config.settings import Settings


def make_client(*script) -> TestClient:
    settings = Settings(LOG_FORMAT="console", LOG_LEVEL="WARNING", MEMORY_BACKEND="memory")
    return TestClient(create_app(settings, transport=ScriptedTransport(*script)))


def ndjson(response) -> list:
    return [json.loads(line) for line in response.text.splitlines() if line]


def remember(client: TestClient, path: str, text: str):
    """Create a memory file by running a turn that calls the memory tool."""
    client.app.state.services.orchestrator.transport.script = [
        ToolRound(ToolCall(name="memory", input={"command": "create", "path": path, "file_text": text})),
        record({"content": "Saved."}),
    ]
    response = client.post(
        "/api/v1/agent/turn",
        json={"conversation_id": f"conv-{path}", "content": "remember", "user_id": "user-1"},
    )
    assert response.status_code == 200


class BrokenSavePersistence(InMemoryTurnPersistence):
    async def save_turn(self, turn, container_id):
        raise RuntimeError("database unavailable")


def break_persistence(client: TestClient):
    client.app.state.services.orchestrator.persistence = BrokenSavePersistence()


class TestHealth:
    def test_health(self):
        client = make_client()

        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["active_connections"] == 0
        assert body["active_turns"] == 0
        assert "timestamp" in body


class TestTurnRoute:
    def test_streams_snapshots_then_completion(self):
        client = make_client(record({"content": "Hel"}), record({"content": "lo"}))

        response = client.post("/api/v1/agent/turn", json={"conversation_id": "conv-1", "content": "hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        records = ndjson(response)
        assert [item["type"] for item in records] == ["turn_snapshot", "turn_snapshot", "turn_complete"]
        assert [item["payload"]["content"] for item in records[:2]] == ["Hel", "Hello"]
        assert records[-1]["status"] == "complete"
        assert records[-1]["cancelled"] is False
        assert records[-1]["message"]["content"] == "Hello"
        assert len({item["turn_id"] for item in records}) == 1

    def test_failed_turn_is_reported_in_completion(self):
        client = make_client(TransportError("Provider returned HTTP 503", 503))

        records = ndjson(client.post("/api/v1/agent/turn", json={"conversation_id": "conv-1", "content": "hi"}))

        assert records[-1]["status"] == "error"
        assert records[-1]["message"]["is_error"] is True
        assert records[-1]["message"]["content"] == "Provider returned HTTP 503"

    def test_stream_ends_with_error_record_when_turn_raises(self):
        client = make_client(record({"content": "Hi"}))
        break_persistence(client)

        records = ndjson(client.post("/api/v1/agent/turn", json={"conversation_id": "conv-1", "content": "hi"}))

        assert [item["type"] for item in records] == ["turn_snapshot", "error"]
        assert records[-1]["message"] == "Turn failed: database unavailable"
        assert records[-1]["turn_id"] == records[0]["turn_id"]

    def test_cancel_without_active_turn(self):
        client = make_client()

        response = client.post("/api/v1/agent/turn/conv-1/cancel")

        assert response.json() == {"conversation_id": "conv-1", "cancelled": False}

    def test_missing_content_is_rejected(self):
        client = make_client()

        response = client.post("/api/v1/agent/turn", json={"conversation_id": "conv-1"})

        assert response.status_code == 422


class TestMemoriesRoute:
    def test_list_and_delete(self):
        client = make_client()
        remember(client, "/memories/notes.md", "likes tea")

        listing = client.get("/api/v1/memories/user-1").json()
        assert [item["path"] for item in listing["files"]] == ["/memories/notes.md"]
        assert "content" not in listing["files"][0]
        assert listing["usage"]["file_count"] == 1
        assert listing["usage"]["total_bytes"] == len("likes tea")

        deleted = client.delete("/api/v1/memories/user-1", params={"path": "/memories/notes.md"})
        assert deleted.status_code == 200
        assert deleted.json() == {"deleted": "/memories/notes.md", "message": "Deleted: /memories/notes.md"}
        assert client.get("/api/v1/memories/user-1").json()["files"] == []

    def test_other_users_see_nothing(self):
        client = make_client()
        remember(client, "/memories/notes.md", "likes tea")

        assert client.get("/api/v1/memories/user-2").json()["files"] == []

    def test_delete_missing_file_is_404(self):
        client = make_client()

        response = client.delete("/api/v1/memories/user-1", params={"path": "/memories/nothing"})

        assert response.status_code == 404
        assert response.json()["detail"] == "File or directory not found: /memories/nothing"

    @pytest.mark.parametrize("path", ["/memories", "/etc/passwd", "/memories/../secrets"])
    def test_delete_invalid_path_is_400(self, path):
        client = make_client()

        response = client.delete("/api/v1/memories/user-1", params={"path": path})

        assert response.status_code == 400


class TestWebSocket:
    def test_user_message_streams_turn(self):
        client = make_client(record({"content": "Hi there"}))

        with client.websocket_connect("/ws/agent/user-1/conv-1") as websocket:
            connected = websocket.receive_json()
            websocket.send_json({"type": "user_message", "content": "hello"})
            snapshot = websocket.receive_json()
            complete = websocket.receive_json()

        assert connected["type"] == "connection"
        assert connected["status"] == "connected"
        assert snapshot["type"] == "turn_snapshot"
        assert snapshot["payload"]["content"] == "Hi there"
        assert complete["type"] == "turn_complete"
        assert complete["status"] == "complete"
        assert complete["message"]["content"] == "Hi there"
        assert complete["turn_id"] == snapshot["turn_id"]

    def test_cancel_event_stops_the_turn(self):
        client = make_client(record({"content": "partial"}), Hold())

        with client.websocket_connect("/ws/agent/user-1/conv-1") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "user_message", "content": "hello"})
            snapshot = websocket.receive_json()
            websocket.send_json({"type": "cancel"})
            complete = websocket.receive_json()

        assert snapshot["payload"]["content"] == "partial"
        assert complete["type"] == "turn_complete"
        assert complete["cancelled"] is True
        assert complete["status"] == "streaming"
        assert complete["message"]["content"] == "partial"

    def test_unsupported_event_type(self):
        client = make_client()

        with client.websocket_connect("/ws/agent/user-1/conv-1") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "bogus"})
            error = websocket.receive_json()

        assert error["type"] == "error"
        assert error["payload"]["message"] == "Unsupported event type: bogus"

    def test_invalid_user_message(self):
        client = make_client()

        with client.websocket_connect("/ws/agent/user-1/conv-1") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "user_message"})
            error = websocket.receive_json()

        assert error["type"] == "error"
        assert error["error_code"] == "invalid_event"

    def test_malformed_frames_keep_the_socket_open(self):
        client = make_client()

        with client.websocket_connect("/ws/agent/user-1/conv-1") as websocket:
            websocket.receive_json()
            websocket.send_text("{not json")
            not_json = websocket.receive_json()
            websocket.send_json(["not", "an", "object"])
            not_object = websocket.receive_json()
            websocket.send_json({"type": "bogus"})
            still_open = websocket.receive_json()

        assert not_json["error_code"] == "invalid_event"
        assert not_object["error_code"] == "invalid_event"
        assert not_object["payload"]["message"] == "Invalid event: expected a JSON object"
        assert still_open["payload"]["message"] == "Unsupported event type: bogus"

    def test_turn_failure_is_reported_as_error_event(self):
        client = make_client(record({"content": "Hi"}))
        break_persistence(client)

        with client.websocket_connect("/ws/agent/user-1/conv-1") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "user_message", "content": "hello"})
            snapshot = websocket.receive_json()
            error = websocket.receive_json()

        assert snapshot["type"] == "turn_snapshot"
        assert error["type"] == "error"
        assert error["error_code"] == "turn_failed"
        assert error["payload"]["message"] == "Turn failed: database unavailable"
