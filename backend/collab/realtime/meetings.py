"""In-memory meeting rosters.

One mapping per meeting, keyed by connection id. Unknown meetings and
participants are ordinary outcomes of disconnect races and are treated as
misses, never as errors. Each operation applies its whole state change
before awaiting any delivery.

Disconnect cleanup scans every tracked meeting, O(meetings x participants).
That is fine for tens of meetings with tens of participants each; a larger
deployment would keep a connection -> meetings index instead.
"""

from __future__ import annotations

import logging
from typing import Any

from collab.realtime.models import MEDIA_FLAGS, ROLE_PARTICIPANT, Connection, ParticipantRecord
from collab.realtime.rooms import RoomManager, room_for_meeting

logger = logging.getLogger(__name__)


class MeetingSessionStore:
    def __init__(self, rooms: RoomManager) -> None:
        self.rooms = rooms
        self._meetings: dict[str, dict[str, ParticipantRecord]] = {}

    def __contains__(self, meeting_id: str) -> bool:
        return meeting_id in self._meetings

    def __len__(self) -> int:
        return len(self._meetings)

    def meeting_ids(self) -> list[str]:
        return list(self._meetings)

    def participant_count(self, meeting_id: str) -> int:
        return len(self._meetings.get(meeting_id, {}))

    def get_participant(self, meeting_id: str, sid: str) -> ParticipantRecord | None:
        return self._meetings.get(meeting_id, {}).get(sid)

    def get_roster(self, meeting_id: str, excluding: str | None = None) -> list[ParticipantRecord]:
        participants = self._meetings.get(meeting_id)
        if not participants:
            return []
        return [record for sid, record in participants.items() if sid != excluding]

    async def join_meeting(
        self, meeting_id: str, connection: Connection, role: str = ROLE_PARTICIPANT
    ) -> list[ParticipantRecord]:
        """Record ``connection`` in the meeting and announce it to the others.

        Returns the roster of the other participants for delivery to the
        joiner; the announcement is built from the new record only.
        """
        participants = self._meetings.setdefault(meeting_id, {})
        record = ParticipantRecord.for_connection(connection, role)
        participants[connection.sid] = record
        room = room_for_meeting(meeting_id)
        self.rooms.add(connection.sid, room)
        roster = self.get_roster(meeting_id, excluding=connection.sid)

        logger.info(
            "%s joined meeting %s (%s participant(s))",
            connection.principal.email,
            meeting_id,
            len(participants),
        )
        await self.rooms.broadcast(room, "participant-joined", record.to_payload(), exclude=connection.sid)
        return roster

    async def set_peer_id(self, meeting_id: str, sid: str, peer_id: str) -> bool:
        record = self.get_participant(meeting_id, sid)
        if record is None:
            logger.debug("peer-connected for %s in %s ignored: not a participant", sid, meeting_id)
            return False
        record.peer_id = peer_id
        await self.rooms.broadcast(
            room_for_meeting(meeting_id),
            "peer-connected",
            {"participantId": sid, "peerId": peer_id},
            exclude=sid,
        )
        return True

    def update_participant(self, meeting_id: str, sid: str, changes: dict[str, Any]) -> ParticipantRecord | None:
        record = self.get_participant(meeting_id, sid)
        if record is None:
            return None
        for flag in MEDIA_FLAGS:
            if isinstance(changes.get(flag), bool):
                setattr(record, flag, changes[flag])
        return record

    async def leave_meeting(self, meeting_id: str, sid: str) -> bool:
        record = self._remove(meeting_id, sid)
        if record is None:
            logger.debug("leave-meeting for %s in %s ignored: not a participant", sid, meeting_id)
            return False
        await self._announce_departure(meeting_id, record)
        return True

    async def disconnect_all(self, sid: str) -> list[str]:
        """Remove ``sid`` from every meeting whose roster contains it."""
        departed = []
        for meeting_id in list(self._meetings):
            record = self._remove(meeting_id, sid)
            if record is not None:
                departed.append((meeting_id, record))

        for meeting_id, record in departed:
            await self._announce_departure(meeting_id, record)
        return [meeting_id for meeting_id, _ in departed]

    def _remove(self, meeting_id: str, sid: str) -> ParticipantRecord | None:
        participants = self._meetings.get(meeting_id)
        if participants is None:
            return None
        record = participants.pop(sid, None)
        if not participants:
            del self._meetings[meeting_id]
            logger.info("Meeting %s has no participants left, dropping its roster", meeting_id)
        self.rooms.discard(sid, room_for_meeting(meeting_id))
        return record

    async def _announce_departure(self, meeting_id: str, record: ParticipantRecord) -> None:
        logger.info("%s left meeting %s", record.user_email, meeting_id)
        await self.rooms.broadcast(
            room_for_meeting(meeting_id),
            "participant-left",
            {"id": record.id, "user_id": record.user_id},
        )
