from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from collab.api.deps import get_current_principal
from collab.core.security import Principal
from collab.db.session import get_db
from collab.models.meeting import Meeting
from collab.realtime.server import RealtimeHub, get_hub
from collab.schemas.meeting import (
    JoinMeetingRequest,
    LiveParticipant,
    MeetingCreate,
    MeetingRead,
    MessageCreate,
    MessageRead,
    ParticipantRead,
)
from collab.services.meeting_service import MeetingService

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


def _serialize_meeting(meeting: Meeting) -> MeetingRead:
    data = MeetingRead.model_validate(meeting)
    data.requires_password = bool(meeting.password)
    return data


@router.post("", response_model=MeetingRead, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    payload: MeetingCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service = MeetingService(db)
    meeting = await run_in_threadpool(service.create_meeting, principal, payload)
    return _serialize_meeting(meeting)


@router.get("/{meeting_id}", response_model=MeetingRead)
async def meeting_detail(
    meeting_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service = MeetingService(db)
    meeting = await run_in_threadpool(service.get_meeting, meeting_id)
    return _serialize_meeting(meeting)


@router.post("/{meeting_id}/join", response_model=ParticipantRead)
async def join_meeting(
    meeting_id: str,
    payload: JoinMeetingRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service = MeetingService(db)
    participant = await run_in_threadpool(service.join_meeting, meeting_id, principal, payload.password)
    return ParticipantRead.model_validate(participant)


@router.post("/{meeting_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_meeting(
    meeting_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service = MeetingService(db)
    await run_in_threadpool(service.leave_meeting, meeting_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{meeting_id}/end", response_model=MeetingRead)
async def end_meeting(
    meeting_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    hub: RealtimeHub = Depends(get_hub),
):
    service = MeetingService(db)
    meeting = await run_in_threadpool(service.end_meeting, meeting_id, principal)
    await hub.video.announce(
        meeting_id,
        "meeting-ended",
        {"meetingId": meeting_id, "endedBy": principal.id},
    )
    return _serialize_meeting(meeting)


@router.get("/{meeting_id}/participants", response_model=list[ParticipantRead])
async def list_participants(
    meeting_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service = MeetingService(db)
    participants = await run_in_threadpool(service.list_participants, meeting_id)
    return [ParticipantRead.model_validate(p) for p in participants]


@router.get("/{meeting_id}/live", response_model=list[LiveParticipant])
async def live_participants(
    meeting_id: str,
    principal: Principal = Depends(get_current_principal),
    hub: RealtimeHub = Depends(get_hub),
):
    roster = hub.video.store.get_roster(meeting_id)
    return [LiveParticipant(**record.to_payload()) for record in roster]


@router.post("/{meeting_id}/chat", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def post_message(
    meeting_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    hub: RealtimeHub = Depends(get_hub),
):
    service = MeetingService(db)
    message = await run_in_threadpool(service.post_message, meeting_id, principal, payload.content)
    message_data = MessageRead.model_validate(message)
    await hub.video.announce(meeting_id, "chat-message", message_data.model_dump(mode="json"))
    return message_data


@router.get("/{meeting_id}/chat", response_model=list[MessageRead])
async def list_messages(
    meeting_id: str,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service = MeetingService(db)
    messages = await run_in_threadpool(service.list_messages, meeting_id, limit)
    return [MessageRead.model_validate(m) for m in messages]
