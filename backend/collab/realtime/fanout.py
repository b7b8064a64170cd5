"""Room-scoped relay of inbound events.

Every relayed event targets exactly one room, derived from an identifier in
the payload, and is never echoed back to the sender. Payloads without a
usable identifier are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from collab.realtime.models import Connection
from collab.realtime.rooms import RoomManager

logger = logging.getLogger(__name__)

PayloadBuilder = Callable[[Connection, Any], Any]


def scope_id(data: Any, key: str) -> str | None:
    """Return the scope identifier carried by ``data``.

    Clients send either ``{key: id, ...}`` or the bare id.
    """
    value = data.get(key) if isinstance(data, dict) else data
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    value = str(value).strip()
    return value or None


def without(data: Any, *keys: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if k not in keys}


@dataclass(frozen=True)
class EventRoute:
    inbound: str
    scope_key: str
    room: Callable[[str], str]
    outbound: str | None = None
    build: PayloadBuilder | None = None

    @property
    def event(self) -> str:
        return self.outbound or self.inbound


class FanoutEngine:
    def __init__(self, rooms: RoomManager) -> None:
        self.rooms = rooms

    async def relay(self, route: EventRoute, connection: Connection, data: Any) -> int:
        scope = scope_id(data, route.scope_key) if isinstance(data, dict) else None
        if scope is None:
            logger.debug(
                "Dropping %s from %s: missing %s", route.inbound, connection.sid, route.scope_key
            )
            return 0
        payload = route.build(connection, data) if route.build else data
        return await self.rooms.broadcast(route.room(scope), route.event, payload, exclude=connection.sid)

    async def publish(self, room: str, event: str, payload: Any, sender: str | None = None) -> int:
        return await self.rooms.broadcast(room, event, payload, exclude=sender)
