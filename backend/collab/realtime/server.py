"""Global Socket.IO server.

One ``AsyncServer`` carries every namespace. Clients authenticate each
namespace with ``auth: { token }`` (``?token=`` also works). The server keeps
its state in this process only; running several instances would need a
shared coordination layer.
"""

from __future__ import annotations

from typing import Any

import socketio
from fastapi.concurrency import run_in_threadpool

from collab.core.config import settings
from collab.core.security import Principal, TokenVerifier, get_token_verifier
from collab.db.session import db_session
from collab.realtime.gateways import (
    ChatGateway,
    DocsGateway,
    MeetingAccess,
    NamespaceGateway,
    PresenceGateway,
    SignalingGateway,
    TasksGateway,
    VideoConferenceGateway,
)
from collab.services.meeting_service import MeetingService


async def authorize_meeting_join(meeting_id: str, principal: Principal, password: str | None) -> str:
    def _authorize() -> str:
        with db_session() as db:
            return MeetingService(db).authorize_join(meeting_id, principal, password)

    return await run_in_threadpool(_authorize)


class NamespaceTransport:
    """``sio`` operations bound to one namespace."""

    def __init__(self, sio: socketio.AsyncServer, namespace: str) -> None:
        self.sio = sio
        self.namespace = namespace

    async def emit(
        self, event: str, data: Any = None, *, to: str | None = None, skip_sid: str | None = None
    ) -> None:
        await self.sio.emit(event, data, to=to, skip_sid=skip_sid, namespace=self.namespace)

    async def enter_room(self, sid: str, room: str) -> None:
        await self.sio.enter_room(sid, room, namespace=self.namespace)

    async def leave_room(self, sid: str, room: str) -> None:
        await self.sio.leave_room(sid, room, namespace=self.namespace)


def build_server() -> socketio.AsyncServer:
    origins = settings.cors_origins
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins="*" if origins == ["*"] else origins,
        logger=False,
        engineio_logger=False,
        # Connections run concurrently; NamespaceGateway.dispatch keeps each
        # connection's own events in arrival order.
        async_handlers=True,
    )


class RealtimeHub:
    def __init__(
        self,
        sio: socketio.AsyncServer,
        verifier: TokenVerifier,
        meeting_access: MeetingAccess | None = None,
    ) -> None:
        self.sio = sio

        def transport(namespace: str) -> NamespaceTransport:
            return NamespaceTransport(sio, namespace)

        self.presence = PresenceGateway(transport(PresenceGateway.namespace), verifier)
        self.chat = ChatGateway(transport(ChatGateway.namespace), verifier)
        self.signaling = SignalingGateway(transport(SignalingGateway.namespace), verifier)
        self.tasks = TasksGateway(transport(TasksGateway.namespace), verifier)
        self.docs = DocsGateway(transport(DocsGateway.namespace), verifier)
        self.video = VideoConferenceGateway(
            transport(VideoConferenceGateway.namespace), verifier, access=meeting_access
        )

    @property
    def gateways(self) -> tuple[NamespaceGateway, ...]:
        return (self.presence, self.chat, self.signaling, self.tasks, self.docs, self.video)

    def bind(self) -> None:
        for gateway in self.gateways:
            gateway.bind(self.sio)


sio = build_server()
hub = RealtimeHub(
    sio,
    get_token_verifier(),
    meeting_access=authorize_meeting_join if settings.meeting_validation else None,
)
hub.bind()


def get_hub() -> RealtimeHub:
    return hub
