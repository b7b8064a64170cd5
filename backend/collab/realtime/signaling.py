"""WebRTC signaling relay for meeting rooms.

Messages go to every other member of the meeting room. ``to`` and
``toParticipantId`` travel along as metadata and receivers ignore messages
addressed to someone else; the relay does not resolve targets, store
payloads or redeliver.
"""

from __future__ import annotations

import logging
from typing import Any

from collab.realtime.fanout import scope_id
from collab.realtime.meetings import MeetingSessionStore
from collab.realtime.models import Connection
from collab.realtime.rooms import room_for_meeting

logger = logging.getLogger(__name__)

SIGNAL_FIELDS = {
    "webrtc-offer": "offer",
    "webrtc-answer": "answer",
    "webrtc-ice-candidate": "candidate",
    "peer-ready": "peerId",
}


class SignalingRelay:
    def __init__(self, store: MeetingSessionStore) -> None:
        self.store = store

    def sender_name(self, meeting_id: str, connection: Connection) -> str:
        record = self.store.get_participant(meeting_id, connection.sid)
        if record is not None:
            return record.user_name
        return connection.principal.display_name

    async def relay(self, kind: str, connection: Connection, data: Any) -> int:
        field = SIGNAL_FIELDS.get(kind)
        if field is None:
            raise ValueError(f"Unknown signaling message: {kind}")

        meeting_id = scope_id(data, "meetingId")
        if meeting_id is None or not isinstance(data, dict):
            logger.debug("Dropping %s from %s: missing meetingId", kind, connection.sid)
            return 0

        payload = {
            field: data.get(field),
            "from": self.sender_name(meeting_id, connection),
            "fromParticipantId": connection.sid,
            "to": data.get("to"),
            "toParticipantId": data.get("toParticipantId"),
        }
        return await self.store.rooms.broadcast(
            room_for_meeting(meeting_id), kind, payload, exclude=connection.sid
        )
