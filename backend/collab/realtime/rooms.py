"""Named broadcast scopes within one namespace.

A room exists while it has at least one member; the last leave deletes it.
All membership changes are plain dict/set operations completed before the
first ``await``, so handlers never observe a half-applied join or leave.

The socket server keeps its own room table. Changes are queued and replayed
onto it, in order, before any room-addressed delivery and at the end of
every handler, so a broadcast is a single ``emit(to=room, skip_sid=...)``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any

from collab.realtime.models import Transport

logger = logging.getLogger(__name__)


def room_for_meeting(meeting_id: str) -> str:
    return f"meeting:{meeting_id}"


def room_for_document(doc_id: str) -> str:
    return f"doc:{doc_id}"


def room_for_conversation(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def room_for_task_stream(team_id: str) -> str:
    return f"tasks:{team_id}"


def room_for_signaling(room_id: str) -> str:
    return f"signal:{room_id}"


class RoomManager:
    def __init__(self, transport: Transport, namespace: str = "/") -> None:
        self.namespace = namespace
        self.transport = transport
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = {}
        self._pending: deque[tuple[bool, str, str]] = deque()
        self._flush_lock = asyncio.Lock()

    def __contains__(self, room: str) -> bool:
        return room in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    def rooms_of(self, sid: str) -> set[str]:
        return set(self._memberships.get(sid, ()))

    def is_member(self, sid: str, room: str) -> bool:
        return sid in self._rooms.get(room, ())

    def add(self, sid: str, room: str) -> bool:
        members = self._rooms.setdefault(room, set())
        if sid in members:
            return False
        members.add(sid)
        self._memberships.setdefault(sid, set()).add(room)
        self._pending.append((True, sid, room))
        return True

    def discard(self, sid: str, room: str) -> bool:
        members = self._rooms.get(room)
        if not members or sid not in members:
            return False
        members.remove(sid)
        if not members:
            del self._rooms[room]
        rooms = self._memberships.get(sid)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                del self._memberships[sid]
        self._pending.append((False, sid, room))
        return True

    async def flush(self) -> None:
        """Replay queued membership changes onto the socket server."""
        async with self._flush_lock:
            while self._pending:
                entered, sid, room = self._pending.popleft()
                if entered:
                    await self.transport.enter_room(sid, room)
                else:
                    await self.transport.leave_room(sid, room)

    async def join(
        self,
        sid: str,
        room: str,
        event: str | None = "user-joined",
        payload: Any = None,
    ) -> bool:
        """Add ``sid`` to ``room`` and tell the other members.

        Joining twice is a no-op and sends nothing. Pass ``event=None`` for a
        silent join.
        """
        added = self.add(sid, room)
        if added and event is not None:
            await self.broadcast(room, event, payload if payload is not None else {}, exclude=sid)
        return added

    async def leave(
        self,
        sid: str,
        room: str,
        event: str | None = "user-left",
        payload: Any = None,
    ) -> bool:
        removed = self.discard(sid, room)
        if removed and event is not None:
            await self.broadcast(room, event, payload if payload is not None else {}, exclude=sid)
        return removed

    def leave_all(self, sid: str) -> list[str]:
        """Drop every membership of ``sid`` without notifying anyone."""
        rooms = sorted(self._memberships.get(sid, ()))
        for room in rooms:
            self.discard(sid, room)
        return rooms

    async def broadcast(self, room: str, event: str, payload: Any, exclude: str | None = None) -> int:
        recipients = len(self._rooms.get(room, set()) - {exclude})
        if not recipients:
            logger.debug("No recipients for %s in %s%s", event, self.namespace, room)
            return 0
        await self.flush()
        await self.transport.emit(event, payload, to=room, skip_sid=exclude)
        return recipients
