import anyio
import pytest
import socketio
from fastapi.testclient import TestClient

import collab.main
from collab.core.security import get_token_verifier
from collab.db.session import get_db
from collab.main import app
from collab.realtime.gateways import PresenceGateway, VideoConferenceGateway
from collab.realtime.server import RealtimeHub, get_hub


@pytest.fixture
def hub(transport, verifier):
    hub = RealtimeHub(socketio.AsyncServer(async_mode="asgi"), verifier)
    hub.presence = PresenceGateway(transport, verifier)
    hub.video = VideoConferenceGateway(transport, verifier)
    return hub


@pytest.fixture
def client(session_factory, verifier, hub):
    def override_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_token_verifier] = lambda: verifier
    app.dependency_overrides[get_hub] = lambda: hub
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth(make_token):
    def factory(sub="host-1", **claims):
        return {"Authorization": f"Bearer {make_token(sub=sub, **claims)}"}

    return factory


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_token_are_rejected(client):
    response = client.post("/api/meetings", json={"title": "Standup"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Access token required"

    response = client.get("/api/profile", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_profile_returns_token_identity(client, auth):
    response = client.get("/api/profile", headers=auth(sub="u-7", email="gale@example.com", full_name="Gale"))

    assert response.json() == {"id": "u-7", "email": "gale@example.com", "name": "Gale"}


def test_meeting_lifecycle(client, auth, transport, hub, make_connection):
    host, guest = auth("host-1"), auth("guest-1", email="guest@example.com", full_name="Gus")

    created = client.post("/api/meetings", json={"title": "Standup", "password": "pw"}, headers=host)
    assert created.status_code == 201
    meeting = created.json()
    meeting_id = meeting["meeting_id"]
    assert meeting["requires_password"] is True
    assert "password" not in meeting

    refused = client.post(f"/api/meetings/{meeting_id}/join", json={"password": "nope"}, headers=guest)
    assert refused.status_code == 401

    joined = client.post(f"/api/meetings/{meeting_id}/join", json={"password": "pw"}, headers=guest)
    assert joined.status_code == 200
    assert joined.json()["role"] == "participant"
    assert joined.json()["user_name"] == "Gus"

    participants = client.get(f"/api/meetings/{meeting_id}/participants", headers=host).json()
    assert [p["user_id"] for p in participants] == ["guest-1"]

    anyio.run(hub.video.store.join_meeting, meeting_id, make_connection("sid-1", "guest-1", "Gus"))
    live = client.get(f"/api/meetings/{meeting_id}/live", headers=host).json()
    assert [p["id"] for p in live] == ["sid-1"]

    assert client.post(f"/api/meetings/{meeting_id}/end", headers=guest).status_code == 403
    ended = client.post(f"/api/meetings/{meeting_id}/end", headers=host)
    assert ended.json()["meeting_status"] == "ended"
    assert transport.last("sid-1", "meeting-ended") == {"meetingId": meeting_id, "endedBy": "host-1"}

    assert client.get(f"/api/meetings/{meeting_id}", headers=guest).json()["meeting_status"] == "ended"


def test_meeting_chat_is_stored_and_announced(client, auth, transport, hub, make_connection):
    host = auth("host-1")
    meeting_id = client.post("/api/meetings", json={"title": "Retro"}, headers=host).json()["meeting_id"]
    anyio.run(hub.video.store.join_meeting, meeting_id, make_connection("sid-1"))

    posted = client.post(f"/api/meetings/{meeting_id}/chat", json={"content": "hello"}, headers=host)
    assert posted.status_code == 201
    assert transport.last("sid-1", "chat-message")["content"] == "hello"

    outsider = client.post(f"/api/meetings/{meeting_id}/chat", json={"content": "hi"}, headers=auth("nobody"))
    assert outsider.status_code == 403

    history = client.get(f"/api/meetings/{meeting_id}/chat", headers=host).json()
    assert [m["content"] for m in history] == ["hello"]


def test_unknown_meeting_is_404(client, auth):
    assert client.get("/api/meetings/ZZZZZZZZZZ", headers=auth()).status_code == 404


def test_presence_lists_connected_users(client, auth, hub, make_connection):
    anyio.run(hub.presence.registry.register, make_connection("s1", "alice", "Alice"))

    response = client.get("/api/presence", headers=auth())

    assert response.json() == [{"id": "alice", "email": "alice@example.com", "name": "Alice"}]


def test_startup_creates_tables_through_socket_wrapper(monkeypatch):
    calls = []
    monkeypatch.setattr(collab.main, "init_db", lambda: calls.append("init_db"))

    with TestClient(collab.main.application) as client:
        assert client.get("/health").json() == {"status": "ok"}

    assert calls == ["init_db"]
