"""REST and websocket surface, served from the in-memory store."""
import pytest
from fastapi.testclient import TestClient

from app import app


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


def receive_until(ws, predicate, limit=20):
    """Read frames until one matches ``predicate``."""
    for _ in range(limit):
        frame = ws.receive_json()
        if predicate(frame):
            return frame
    raise AssertionError("expected frame never arrived")


def test_health_reports_backend(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["backend"] == "memory"


def test_create_room_then_read_details(client):
    response = client.post("/rooms/")
    assert response.status_code == 201
    room_id = response.json()["room_id"]
    assert len(room_id) == 7

    details = client.get(f"/rooms/{room_id}")

    assert details.status_code == 200
    body = details.json()
    assert body["room_id"] == room_id
    assert body["created_at"] == response.json()["created_at"]
    assert body["online_count"] == 0


def test_unknown_room_is_404(client):
    response = client.get("/rooms/nope123")

    assert response.status_code == 404


def test_session_join_send_over_websocket(client):
    with client.websocket_connect("/ws?identity_id=alice&display_name=Alice") as ws:
        identity = ws.receive_json()
        assert identity == {"type": "identity", "id": "alice", "persisted": True}
        initial = ws.receive_json()
        assert initial["type"] == "state"
        assert initial["status"] == "idle"

        ws.send_json({"type": "join", "room_id": "r1"})
        joined = receive_until(ws, lambda f: f["type"] == "state" and f["joined"])
        assert joined["room_id"] == "r1"
        assert [p["id"] for p in joined["participants"]] == ["alice"]
        assert joined["participants"][0]["name"] == "Alice"

        ws.send_json({"type": "send", "text": "hi"})
        state = receive_until(ws, lambda f: f["type"] == "state" and f["messages"])
        assert state["messages"][0]["text"] == "hi"
        assert state["messages"][0]["fromId"] == "alice"

        details = client.get("/rooms/r1").json()
        assert details["online_count"] == 1

        ws.send_json({"type": "leave"})
        left = receive_until(ws, lambda f: f["type"] == "state" and f["status"] == "idle")
        assert left["room_id"] is None
        assert left["messages"] == []


def test_create_over_websocket_reports_room_id(client):
    with client.websocket_connect("/ws") as ws:
        identity = ws.receive_json()
        assert identity["id"]

        ws.send_json({"type": "create"})
        created = receive_until(ws, lambda f: f["type"] == "created")

        assert len(created["room_id"]) == 7


def test_websocket_rejects_invalid_intents(client):
    with client.websocket_connect("/ws?identity_id=bob") as ws:
        receive_until(ws, lambda f: f["type"] == "state")

        ws.send_json({"type": "send", "text": "hello"})
        error = receive_until(ws, lambda f: f["type"] == "error")
        assert error["error"] == "validation"

        ws.send_text("not json")
        error = receive_until(ws, lambda f: f["type"] == "error")
        assert error["error"] == "validation"

        ws.send_json({"type": "join", "room_id": ""})
        error = receive_until(ws, lambda f: f["type"] == "error")
        assert error["error"] == "validation"


def test_connection_without_identity_gets_session_only_identity(client):
    with client.websocket_connect("/ws") as ws:
        identity = ws.receive_json()

        assert identity["type"] == "identity"
        assert identity["id"]
        assert identity["persisted"] is False
