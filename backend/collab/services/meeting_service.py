from __future__ import annotations

import random
import string
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from collab.core.config import settings
from collab.core.security import Principal
from collab.models.meeting import Meeting, MeetingMessage, MeetingParticipant
from collab.schemas.meeting import MeetingCreate

STATUS_SCHEDULED = "scheduled"
STATUS_ACTIVE = "active"
STATUS_ENDED = "ended"

ROLE_HOST = "host"
ROLE_PARTICIPANT = "participant"

MEETING_ID_LENGTH = 10
MEETING_ID_ATTEMPTS = 10


def _generate_meeting_id(length: int = MEETING_ID_LENGTH) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MeetingService:
    def __init__(self, db: Session):
        self.db = db

    def create_meeting(self, principal: Principal, payload: MeetingCreate) -> Meeting:
        meeting_id = self._unique_meeting_id()
        scheduled = payload.scheduled_start is not None
        meeting = Meeting(
            meeting_id=meeting_id,
            title=payload.title,
            description=payload.description,
            host_id=principal.id,
            password=payload.password or None,
            max_participants=payload.max_participants or settings.default_max_participants,
            meeting_status=STATUS_SCHEDULED if scheduled else STATUS_ACTIVE,
            meeting_type="scheduled" if scheduled else "instant",
            scheduled_start=payload.scheduled_start,
            started_at=None if scheduled else _now(),
        )
        self.db.add(meeting)
        self.db.commit()
        self.db.refresh(meeting)
        return meeting

    def get_meeting(self, meeting_id: str) -> Meeting:
        meeting = self.db.get(Meeting, meeting_id)
        if not meeting:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meeting not found")
        return meeting

    def authorize_join(self, meeting_id: str, principal: Principal, password: str | None = None) -> str:
        """Check whether ``principal`` may enter the meeting and return its role.

        Nothing is written; the realtime layer calls this before touching its
        in-memory roster so a refusal leaves no partial state behind.
        """
        meeting = self.get_meeting(meeting_id)
        if meeting.meeting_status == STATUS_ENDED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Meeting has ended")

        is_host = meeting.host_id == principal.id
        if meeting.password and not is_host and meeting.password != password:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect meeting password")

        if self._active_participant(meeting_id, principal.id) is None:
            if self._count_active(meeting_id) >= meeting.max_participants:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Meeting is full")

        return ROLE_HOST if is_host else ROLE_PARTICIPANT

    def join_meeting(
        self, meeting_id: str, principal: Principal, password: str | None = None
    ) -> MeetingParticipant:
        role = self.authorize_join(meeting_id, principal, password)
        meeting = self.get_meeting(meeting_id)

        participant = self._active_participant(meeting_id, principal.id)
        if participant is None:
            participant = MeetingParticipant(
                meeting_id=meeting_id,
                user_id=principal.id,
                user_name=principal.display_name,
                user_email=principal.email,
                role=role,
                joined_at=_now(),
            )
            self.db.add(participant)

        if meeting.meeting_status == STATUS_SCHEDULED:
            meeting.meeting_status = STATUS_ACTIVE
            meeting.started_at = _now()
            self.db.add(meeting)

        self.db.commit()
        self.db.refresh(participant)
        return participant

    def leave_meeting(self, meeting_id: str, principal: Principal) -> MeetingParticipant:
        self.get_meeting(meeting_id)
        participant = self._active_participant(meeting_id, principal.id)
        if participant is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Participant not found")

        participant.left_at = _now()
        self.db.add(participant)
        self.db.commit()
        return participant

    def end_meeting(self, meeting_id: str, principal: Principal) -> Meeting:
        meeting = self.get_meeting(meeting_id)
        if meeting.host_id != principal.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the host can end the meeting")
        if meeting.meeting_status == STATUS_ENDED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Meeting has ended")

        ended_at = _now()
        meeting.meeting_status = STATUS_ENDED
        meeting.ended_at = ended_at
        for participant in self.list_participants(meeting_id):
            participant.left_at = ended_at
            self.db.add(participant)
        self.db.add(meeting)
        self.db.commit()
        self.db.refresh(meeting)
        return meeting

    def list_participants(self, meeting_id: str) -> list[MeetingParticipant]:
        self.get_meeting(meeting_id)
        participants = (
            self.db.execute(
                select(MeetingParticipant)
                .where(MeetingParticipant.meeting_id == meeting_id, MeetingParticipant.left_at.is_(None))
                .order_by(MeetingParticipant.joined_at)
            )
            .scalars()
            .all()
        )
        return list(participants)

    def post_message(self, meeting_id: str, principal: Principal, content: str) -> MeetingMessage:
        if not content or not content.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is required")

        meeting = self.get_meeting(meeting_id)
        if meeting.host_id != principal.id and self._active_participant(meeting_id, principal.id) is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="You are not a participant in this meeting"
            )

        message = MeetingMessage(
            meeting_id=meeting_id,
            user_id=principal.id,
            user_name=principal.display_name,
            content=content.strip(),
            created_at=_now(),
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def list_messages(self, meeting_id: str, limit: int = 100) -> list[MeetingMessage]:
        self.get_meeting(meeting_id)
        messages = (
            self.db.execute(
                select(MeetingMessage)
                .where(MeetingMessage.meeting_id == meeting_id)
                .order_by(MeetingMessage.created_at)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return list(messages)

    def _active_participant(self, meeting_id: str, user_id: str) -> MeetingParticipant | None:
        return self.db.scalar(
            select(MeetingParticipant).where(
                MeetingParticipant.meeting_id == meeting_id,
                MeetingParticipant.user_id == user_id,
                MeetingParticipant.left_at.is_(None),
            )
        )

    def _count_active(self, meeting_id: str) -> int:
        return (
            self.db.scalar(
                select(func.count())
                .select_from(MeetingParticipant)
                .where(MeetingParticipant.meeting_id == meeting_id, MeetingParticipant.left_at.is_(None))
            )
            or 0
        )

    def _unique_meeting_id(self) -> str:
        for _ in range(MEETING_ID_ATTEMPTS):
            meeting_id = _generate_meeting_id()
            if not self.db.get(Meeting, meeting_id):
                return meeting_id
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to generate unique meeting ID"
        )
