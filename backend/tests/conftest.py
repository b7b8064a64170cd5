from __future__ import annotations

import time

import jwt
import pytest

from collab.core.security import Principal, TokenVerifier
from collab.db.session import build_engine, build_session_factory, init_db
from collab.realtime.models import Connection

TEST_SECRET = "test-secret"


class RecordingTransport:
    """Stands in for one socketio namespace.

    Keeps a room table like the server's and expands room-addressed emits,
    so ``sent`` holds one ``(sid, event, data)`` entry per delivery while
    ``emits`` holds the calls as made.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, object]] = []
        self.emits: list[tuple[str, str, object, str | None]] = []
        self.rooms: dict[str, set[str]] = {}

    async def emit(self, event, data=None, *, to=None, skip_sid=None):
        self.emits.append((to, event, data, skip_sid))
        recipients = sorted(self.rooms[to]) if to in self.rooms else [to]
        for sid in recipients:
            if sid != skip_sid:
                self.sent.append((sid, event, data))

    async def enter_room(self, sid, room):
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room):
        members = self.rooms.get(room, set())
        members.discard(sid)
        if not members:
            self.rooms.pop(room, None)

    def received(self, sid: str) -> list[tuple[str, object]]:
        return [(event, data) for to, event, data in self.sent if to == sid]

    def events(self, sid: str) -> list[str]:
        return [event for event, _ in self.received(sid)]

    def last(self, sid: str, event: str):
        matches = [data for name, data in self.received(sid) if name == event]
        return matches[-1] if matches else None

    def clear(self) -> None:
        self.sent.clear()
        self.emits.clear()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def make_connection():
    def factory(sid: str, user_id: str | None = None, name: str | None = None, email: str | None = None):
        user_id = user_id or f"user-{sid}"
        principal = Principal(id=user_id, email=email or f"{user_id}@example.com", full_name=name)
        return Connection(sid=sid, principal=principal)

    return factory


@pytest.fixture
def verifier():
    return TokenVerifier(secret=TEST_SECRET)


@pytest.fixture
def make_token():
    def factory(sub: str = "user-1", email: str = "alice@example.com", full_name: str | None = "Alice", **claims):
        payload = {"sub": sub, "email": email, "exp": int(time.time()) + 3600, **claims}
        if full_name:
            payload["user_metadata"] = {"full_name": full_name}
        return jwt.encode(payload, TEST_SECRET, algorithm="HS256")

    return factory


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
