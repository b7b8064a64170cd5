"""Process-wide presence.

Presence is tracked per connection: a principal stays online while any of
its connections is registered. The presence record always describes the
most recent live connection, so a second tab overwrites the first record,
and closing the older tab neither announces ``user-offline`` nor loses the
newer record.
"""

from __future__ import annotations

import logging
from typing import Any

from collab.realtime.models import Connection, PresenceRecord
from collab.realtime.rooms import RoomManager

logger = logging.getLogger(__name__)

# Every registered connection, so presence changes go out as one room emit.
PRESENCE_ROOM = "presence"


class ConnectionRegistry:
    def __init__(self, rooms: RoomManager) -> None:
        self.rooms = rooms
        self._connections: dict[str, Connection] = {}
        self._sids_by_principal: dict[str, list[str]] = {}
        self._presence: dict[str, PresenceRecord] = {}

    def __len__(self) -> int:
        return len(self._presence)

    def is_online(self, principal_id: str) -> bool:
        return principal_id in self._presence

    def get(self, principal_id: str) -> PresenceRecord | None:
        return self._presence.get(principal_id)

    def connection(self, sid: str) -> Connection | None:
        return self._connections.get(sid)

    async def register(self, connection: Connection) -> bool:
        """Register ``connection``; returns True when its principal just came online."""
        principal = connection.principal
        sids = self._sids_by_principal.setdefault(principal.id, [])
        came_online = not sids
        if connection.sid not in sids:
            sids.append(connection.sid)
        self._connections[connection.sid] = connection
        self.rooms.add(connection.sid, PRESENCE_ROOM)
        self._presence[principal.id] = PresenceRecord.for_connection(connection)

        logger.info("%s online (%s connection(s), %s user(s) online)", principal.email, len(sids), len(self))
        if came_online:
            await self._broadcast(
                "user-online",
                {"userId": principal.id, "userEmail": principal.email},
                exclude=connection.sid,
            )
        return came_online

    async def unregister(self, connection: Connection) -> bool:
        """Forget ``connection``; returns True when its principal went offline."""
        if self._connections.pop(connection.sid, None) is None:
            logger.debug("Unregister of unknown connection %s ignored", connection.sid)
            return False

        principal = connection.principal
        sids = self._sids_by_principal.get(principal.id, [])
        if connection.sid in sids:
            sids.remove(connection.sid)
        self.rooms.discard(connection.sid, PRESENCE_ROOM)

        if sids:
            latest = self._connections[sids[-1]]
            self._presence[principal.id] = PresenceRecord.for_connection(latest)
            logger.info("%s closed a connection, %s still open", principal.email, len(sids))
            return False

        self._sids_by_principal.pop(principal.id, None)
        self._presence.pop(principal.id, None)
        logger.info("%s offline (%s user(s) online)", principal.email, len(self))
        await self._broadcast(
            "user-offline",
            {"userId": principal.id, "userEmail": principal.email},
            exclude=connection.sid,
        )
        return True

    def list(self) -> list[dict[str, Any]]:
        return [{"id": r.id, "email": r.email, "name": r.name} for r in self._presence.values()]

    def snapshot(self) -> dict[str, Any]:
        return {"users": self.list()}

    async def _broadcast(self, event: str, payload: dict[str, Any], exclude: str | None = None) -> None:
        await self.rooms.broadcast(PRESENCE_ROOM, event, payload, exclude=exclude)
