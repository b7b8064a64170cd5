from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Protocol

from collab.core.security import Principal

ROLE_HOST = "host"
ROLE_PARTICIPANT = "participant"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Transport(Protocol):
    """Socket server operations scoped to one namespace.

    ``to`` is a connection id or a room name, as in ``sio.emit``.
    """

    def emit(
        self, event: str, data: Any = None, *, to: str | None = None, skip_sid: str | None = None
    ) -> Awaitable[Any]: ...

    def enter_room(self, sid: str, room: str) -> Awaitable[Any]: ...

    def leave_room(self, sid: str, room: str) -> Awaitable[Any]: ...


@dataclass
class Connection:
    sid: str
    principal: Principal
    connected_at: datetime = field(default_factory=_now)


@dataclass
class PresenceRecord:
    id: str
    email: str
    name: str
    sid: str
    connected_at: datetime

    @classmethod
    def for_connection(cls, connection: Connection) -> PresenceRecord:
        principal = connection.principal
        return cls(
            id=principal.id,
            email=principal.email,
            name=principal.display_name,
            sid=connection.sid,
            connected_at=connection.connected_at,
        )


MEDIA_FLAGS = ("is_muted", "is_video_on", "is_hand_raised")


@dataclass
class ParticipantRecord:
    id: str
    user_id: str
    user_name: str
    user_email: str
    role: str = ROLE_PARTICIPANT
    peer_id: str | None = None
    is_muted: bool = False
    is_video_on: bool = True
    is_hand_raised: bool = False
    joined_at: datetime = field(default_factory=_now)

    @classmethod
    def for_connection(cls, connection: Connection, role: str = ROLE_PARTICIPANT) -> ParticipantRecord:
        principal = connection.principal
        return cls(
            id=connection.sid,
            user_id=principal.id,
            user_name=principal.display_name,
            user_email=principal.email,
            role=role,
        )

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["joined_at"] = self.joined_at.isoformat()
        return payload
