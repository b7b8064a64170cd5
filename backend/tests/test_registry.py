import pytest

from collab.realtime.registry import PRESENCE_ROOM, ConnectionRegistry
from collab.realtime.rooms import RoomManager

pytestmark = pytest.mark.anyio


async def test_register_announces_to_everyone_else(transport, make_connection):
    registry = ConnectionRegistry(RoomManager(transport))
    alice = make_connection("s1", "alice", "Alice")
    bob = make_connection("s2", "bob", "Bob")

    assert await registry.register(alice) is True
    assert await registry.register(bob) is True

    assert transport.received("s1") == [("user-online", {"userId": "bob", "userEmail": "bob@example.com"})]
    assert transport.received("s2") == []
    assert registry.snapshot() == {
        "users": [
            {"id": "alice", "email": "alice@example.com", "name": "Alice"},
            {"id": "bob", "email": "bob@example.com", "name": "Bob"},
        ]
    }


async def test_second_connection_overwrites_record_without_second_online(transport, make_connection):
    registry = ConnectionRegistry(RoomManager(transport))
    watcher = make_connection("w", "watcher")
    first = make_connection("s1", "alice")
    second = make_connection("s2", "alice")
    await registry.register(watcher)

    await registry.register(first)
    assert await registry.register(second) is False

    online = [event for event in transport.events("w") if event == "user-online"]
    assert online == ["user-online"]
    assert registry.get("alice").sid == "s2"
    assert len(registry) == 2


async def test_old_connection_closing_keeps_principal_online(transport, make_connection):
    registry = ConnectionRegistry(RoomManager(transport))
    watcher = make_connection("w", "watcher")
    first = make_connection("s1", "alice")
    second = make_connection("s2", "alice")
    for connection in (watcher, first, second):
        await registry.register(connection)
    transport.clear()

    assert await registry.unregister(first) is False
    assert registry.is_online("alice")
    assert registry.get("alice").sid == "s2"
    assert transport.sent == []

    assert await registry.unregister(second) is True
    assert not registry.is_online("alice")
    assert transport.received("w") == [("user-offline", {"userId": "alice", "userEmail": "alice@example.com"})]


async def test_newer_connection_closing_falls_back_to_older(transport, make_connection):
    registry = ConnectionRegistry(RoomManager(transport))
    first = make_connection("s1", "alice")
    second = make_connection("s2", "alice")
    await registry.register(first)
    await registry.register(second)

    await registry.unregister(second)
    assert registry.get("alice").sid == "s1"


async def test_unregister_unknown_connection_is_noop(transport, make_connection):
    registry = ConnectionRegistry(RoomManager(transport))
    await registry.register(make_connection("s1", "alice"))
    transport.clear()

    assert await registry.unregister(make_connection("ghost", "alice")) is False
    assert registry.is_online("alice")
    assert transport.sent == []


async def test_presence_changes_go_out_as_one_room_emit(transport, make_connection):
    registry = ConnectionRegistry(RoomManager(transport))
    for sid, user in (("s1", "alice"), ("s2", "bob")):
        await registry.register(make_connection(sid, user))
    transport.clear()

    await registry.register(make_connection("s3", "carol"))

    assert transport.emits == [
        (PRESENCE_ROOM, "user-online", {"userId": "carol", "userEmail": "carol@example.com"}, "s3")
    ]
    assert transport.rooms[PRESENCE_ROOM] == {"s1", "s2", "s3"}

    await registry.unregister(make_connection("s1", "alice"))
    await registry.rooms.flush()
    assert transport.rooms[PRESENCE_ROOM] == {"s2", "s3"}
