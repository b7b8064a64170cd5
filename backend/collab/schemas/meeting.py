from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class MeetingCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    password: str | None = None
    max_participants: int | None = Field(default=None, ge=1, le=1000)
    scheduled_start: datetime | None = None


class MeetingRead(BaseModel):
    meeting_id: str
    title: str
    description: str | None = None
    host_id: str
    max_participants: int
    meeting_status: str
    meeting_type: str
    scheduled_start: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    created_at: datetime | None = None
    requires_password: bool = False

    class Config:
        from_attributes = True


class JoinMeetingRequest(BaseModel):
    password: str | None = None


class ParticipantRead(BaseModel):
    id: str
    user_id: str
    user_name: str
    user_email: str
    role: str
    joined_at: datetime | None = None

    class Config:
        from_attributes = True


class LiveParticipant(BaseModel):
    id: str
    user_id: str
    user_name: str
    user_email: str
    peer_id: str | None = None
    role: str
    is_muted: bool
    is_video_on: bool
    is_hand_raised: bool


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=4000)


class MessageRead(BaseModel):
    id: str
    meeting_id: str
    user_id: str
    user_name: str
    content: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PrincipalRead(BaseModel):
    id: str
    email: str
    name: str


class OnlineUser(BaseModel):
    id: str
    email: str
    name: str
