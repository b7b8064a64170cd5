"""Socket.IO namespaces.

Each gateway owns one namespace: it authenticates the handshake, keeps the
live connections of that namespace, and maps inbound events onto the core
(rooms, fan-out, presence, meetings, signaling). Handlers never let an
exception escape: the requester gets an ``error`` event and every other
connection keeps being served.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import socketio
from fastapi import HTTPException
from socketio.exceptions import ConnectionRefusedError

from collab.core.security import AuthenticationError, Principal, TokenVerifier, extract_handshake_token
from collab.realtime.fanout import EventRoute, FanoutEngine, scope_id, without
from collab.realtime.meetings import MeetingSessionStore
from collab.realtime.models import ROLE_PARTICIPANT, Connection, Transport
from collab.realtime.registry import ConnectionRegistry
from collab.realtime.rooms import (
    RoomManager,
    room_for_conversation,
    room_for_document,
    room_for_meeting,
    room_for_signaling,
    room_for_task_stream,
)
from collab.realtime.signaling import SIGNAL_FIELDS, SignalingRelay

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Any], Awaitable[Any]]
MeetingAccess = Callable[[str, Principal, Optional[str]], Awaitable[str]]


class NamespaceGateway:
    namespace = "/"
    routes: tuple[EventRoute, ...] = ()

    def __init__(self, transport: Transport, verifier: TokenVerifier) -> None:
        self.transport = transport
        self.verifier = verifier
        self.rooms = RoomManager(transport, namespace=self.namespace)
        self.fanout = FanoutEngine(self.rooms)
        self.connections: dict[str, Connection] = {}
        # One lock per connection: socketio runs each event in its own task.
        self._locks: dict[str, asyncio.Lock] = {}
        self._handlers = self.build_handlers()

    def build_handlers(self) -> dict[str, Handler]:
        handlers: dict[str, Handler] = {}
        for route in self.routes:
            handlers[route.inbound] = self._route_handler(route)
        return handlers

    def _route_handler(self, route: EventRoute) -> Handler:
        async def handler(connection: Connection, data: Any) -> None:
            await self.fanout.relay(route, connection, data)

        return handler

    @property
    def events(self) -> list[str]:
        return list(self._handlers)

    async def connect(self, sid: str, environ: dict[str, Any], auth: Any | None = None) -> None:
        token = extract_handshake_token(environ, auth)
        try:
            principal = self.verifier.verify(token)
        except AuthenticationError as exc:
            logger.warning("Rejected %s handshake for %s: %s", self.namespace, sid, exc.reason)
            raise ConnectionRefusedError(exc.reason) from exc

        connection = Connection(sid=sid, principal=principal)
        self.connections[sid] = connection
        self._locks[sid] = asyncio.Lock()
        logger.info("%s connected to %s as %s", principal.email, self.namespace, sid)
        await self.on_connect(connection)
        await self.rooms.flush()

    async def disconnect(self, sid: str, reason: Any = None) -> None:
        connection = self.connections.pop(sid, None)
        self._locks.pop(sid, None)
        if connection is None:
            return
        try:
            await self.on_disconnect(connection)
        except Exception:
            logger.exception("Cleanup failed for %s on %s", sid, self.namespace)
        finally:
            self.rooms.leave_all(sid)
            await self.rooms.flush()
        logger.info("%s disconnected from %s (%s)", connection.principal.email, self.namespace, reason)

    async def on_connect(self, connection: Connection) -> None:
        pass

    async def on_disconnect(self, connection: Connection) -> None:
        pass

    async def dispatch(self, event: str, sid: str, data: Any = None) -> None:
        """Run the handler for ``event``; events of one connection run in arrival order."""
        lock = self._locks.get(sid)
        handler = self._handlers.get(event)
        if lock is None or handler is None:
            logger.debug("Ignoring %s from unknown connection %s on %s", event, sid, self.namespace)
            return
        async with lock:
            connection = self.connections.get(sid)
            if connection is None:
                logger.debug("Ignoring %s from %s: disconnected while queued", event, sid)
                return
            try:
                await handler(connection, data)
            except Exception:
                logger.exception("Error handling %s from %s on %s", event, sid, self.namespace)
                await self.send(sid, "error", {"event": event, "message": "Internal server error"})
            finally:
                await self.rooms.flush()

    async def send(self, sid: str, event: str, data: Any) -> None:
        await self.transport.emit(event, data, to=sid)

    def bind(self, sio: socketio.AsyncServer) -> None:
        sio.on("connect", self.connect, namespace=self.namespace)
        sio.on("disconnect", self.disconnect, namespace=self.namespace)
        for event in self._handlers:
            sio.on(event, self._socket_handler(event), namespace=self.namespace)

    def _socket_handler(self, event: str) -> Callable[..., Awaitable[None]]:
        async def on_event(sid: str, data: Any = None) -> None:
            await self.dispatch(event, sid, data)

        return on_event

    async def _join_silently(self, connection: Connection, data: Any, key: str, room_for) -> None:
        scope = scope_id(data, key)
        if scope is None:
            return
        if await self.rooms.join(connection.sid, room_for(scope), event=None):
            logger.info("%s joined %s", connection.principal.email, room_for(scope))

    async def _leave_silently(self, connection: Connection, data: Any, key: str, room_for) -> None:
        scope = scope_id(data, key)
        if scope is None:
            return
        if await self.rooms.leave(connection.sid, room_for(scope), event=None):
            logger.info("%s left %s", connection.principal.email, room_for(scope))


def _identity(connection: Connection, data: Any) -> dict[str, Any]:
    principal = connection.principal
    return {"userId": principal.id, "userEmail": principal.email}


class PresenceGateway(NamespaceGateway):
    namespace = "/"

    def __init__(self, transport: Transport, verifier: TokenVerifier) -> None:
        super().__init__(transport, verifier)
        self.registry = ConnectionRegistry(self.rooms)

    def build_handlers(self) -> dict[str, Handler]:
        handlers = super().build_handlers()
        handlers["join-presence"] = self.send_snapshot
        return handlers

    async def on_connect(self, connection: Connection) -> None:
        await self.registry.register(connection)
        await self.send_snapshot(connection)

    async def on_disconnect(self, connection: Connection) -> None:
        await self.registry.unregister(connection)

    async def send_snapshot(self, connection: Connection, data: Any = None) -> None:
        await self.send(connection.sid, "online-users-list", self.registry.snapshot())


class ChatGateway(NamespaceGateway):
    namespace = "/chat"
    routes = (
        EventRoute(
            "send-message",
            "conversationId",
            room_for_conversation,
            outbound="new-message",
            build=lambda connection, data: data.get("message"),
        ),
        EventRoute("typing", "conversationId", room_for_conversation, outbound="user-typing", build=_identity),
        EventRoute(
            "stop-typing", "conversationId", room_for_conversation, outbound="user-stop-typing", build=_identity
        ),
        EventRoute(
            "messages-read",
            "conversationId",
            room_for_conversation,
            build=lambda connection, data: {
                "conversationId": data.get("conversationId"),
                "messageIds": data.get("messageIds"),
                "readAt": data.get("readAt"),
                "readBy": connection.principal.id,
            },
        ),
    )

    def build_handlers(self) -> dict[str, Handler]:
        handlers = super().build_handlers()
        handlers["join-conversation"] = self.join_conversation
        handlers["leave-conversation"] = self.leave_conversation
        return handlers

    async def join_conversation(self, connection: Connection, data: Any) -> None:
        await self._join_silently(connection, data, "conversationId", room_for_conversation)

    async def leave_conversation(self, connection: Connection, data: Any) -> None:
        await self._leave_silently(connection, data, "conversationId", room_for_conversation)


class SignalingGateway(NamespaceGateway):
    namespace = "/signaling"
    routes = (
        EventRoute(
            "offer",
            "roomId",
            room_for_signaling,
            build=lambda connection, data: {"offer": data.get("offer"), "from": connection.principal.id},
        ),
        EventRoute(
            "answer",
            "roomId",
            room_for_signaling,
            build=lambda connection, data: {"answer": data.get("answer"), "from": connection.principal.id},
        ),
    )

    def build_handlers(self) -> dict[str, Handler]:
        handlers = super().build_handlers()
        handlers["join-room"] = self.join_room
        handlers["leave-room"] = self.leave_room
        return handlers

    async def join_room(self, connection: Connection, data: Any) -> None:
        room_id = scope_id(data, "roomId")
        if room_id is None:
            return
        principal = connection.principal
        await self.rooms.join(
            connection.sid,
            room_for_signaling(room_id),
            event="user-joined",
            payload={"user_id": principal.id, "user_name": principal.display_name},
        )

    async def leave_room(self, connection: Connection, data: Any) -> None:
        room_id = scope_id(data, "roomId")
        if room_id is None:
            return
        await self.rooms.leave(
            connection.sid,
            room_for_signaling(room_id),
            event="user-left",
            payload={"user_id": connection.principal.id},
        )


class TasksGateway(NamespaceGateway):
    namespace = "/tasks"
    routes = tuple(
        EventRoute(event, "teamId", room_for_task_stream)
        for event in ("task-created", "task-updated", "task-deleted")
    )

    def build_handlers(self) -> dict[str, Handler]:
        handlers = super().build_handlers()
        handlers["join-tasks"] = self.join_stream
        handlers["leave-tasks"] = self.leave_stream
        return handlers

    async def join_stream(self, connection: Connection, data: Any) -> None:
        await self._join_silently(connection, data, "teamId", room_for_task_stream)

    async def leave_stream(self, connection: Connection, data: Any) -> None:
        await self._leave_silently(connection, data, "teamId", room_for_task_stream)


class DocsGateway(NamespaceGateway):
    namespace = "/docs"
    routes = (
        EventRoute("document-update", "docId", room_for_document),
        EventRoute(
            "cursor-update",
            "docId",
            room_for_document,
            build=lambda connection, data: {
                "user_id": connection.principal.id,
                "user_name": connection.principal.display_name,
                **data,
            },
        ),
    )

    def build_handlers(self) -> dict[str, Handler]:
        handlers = super().build_handlers()
        handlers["join-document"] = self.join_document
        handlers["leave-document"] = self.leave_document
        return handlers

    async def join_document(self, connection: Connection, data: Any) -> None:
        await self._join_silently(connection, data, "docId", room_for_document)

    async def leave_document(self, connection: Connection, data: Any) -> None:
        await self._leave_silently(connection, data, "docId", room_for_document)


_FLAG_ALIASES = {
    "is_muted": "is_muted",
    "isMuted": "is_muted",
    "is_video_on": "is_video_on",
    "isVideoOn": "is_video_on",
    "is_hand_raised": "is_hand_raised",
    "isHandRaised": "is_hand_raised",
}


def _media_flags(data: dict[str, Any]) -> dict[str, bool]:
    return {_FLAG_ALIASES[k]: v for k, v in data.items() if k in _FLAG_ALIASES and isinstance(v, bool)}


def _meeting_id(data: Any) -> str | None:
    return scope_id(data, "meetingId") if isinstance(data, dict) else None


class VideoConferenceGateway(NamespaceGateway):
    namespace = "/video-conference"
    routes = (
        EventRoute(
            "speaking-status",
            "meetingId",
            room_for_meeting,
            build=lambda connection, data: {
                "participantId": data.get("participantId", connection.sid),
                "isSpeaking": data.get("isSpeaking"),
            },
        ),
        EventRoute("chat-message", "meetingId", room_for_meeting),
        EventRoute(
            "reaction",
            "meetingId",
            room_for_meeting,
            build=lambda connection, data: {
                **without(data, "meetingId"),
                "user_name": connection.principal.display_name,
            },
        ),
        EventRoute("remove-participant", "meetingId", room_for_meeting, outbound="participant-removed"),
    )

    def __init__(
        self, transport: Transport, verifier: TokenVerifier, access: MeetingAccess | None = None
    ) -> None:
        super().__init__(transport, verifier)
        self.access = access
        self.store = MeetingSessionStore(self.rooms)
        self.relay = SignalingRelay(self.store)

    def build_handlers(self) -> dict[str, Handler]:
        handlers = super().build_handlers()
        handlers.update(
            {
                "join-meeting": self.join_meeting,
                "peer-connected": self.peer_connected,
                "get-participants": self.get_participants,
                "leave-meeting": self.leave_meeting,
                "participant-update": self.participant_update,
                "raise-hand": self.raise_hand,
                "mute-participant": self.mute_participant,
            }
        )
        for kind in SIGNAL_FIELDS:
            handlers[kind] = self._signal_handler(kind)
        return handlers

    def _signal_handler(self, kind: str) -> Handler:
        async def handler(connection: Connection, data: Any) -> None:
            await self.relay.relay(kind, connection, data)

        return handler

    async def on_disconnect(self, connection: Connection) -> None:
        await self.store.disconnect_all(connection.sid)

    async def join_meeting(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        if meeting_id is None:
            return
        password = data.get("password")

        role = ROLE_PARTICIPANT
        if self.access is not None:
            try:
                role = await self.access(meeting_id, connection.principal, password)
            except HTTPException as exc:
                logger.warning(
                    "%s refused from meeting %s: %s", connection.principal.email, meeting_id, exc.detail
                )
                await self.send(
                    connection.sid,
                    "meeting-error",
                    {"meetingId": meeting_id, "status": exc.status_code, "error": exc.detail},
                )
                return
            if self.connections.get(connection.sid) is not connection:
                logger.info("%s disconnected before joining meeting %s", connection.principal.email, meeting_id)
                return

        roster = await self.store.join_meeting(meeting_id, connection, role)
        await self.send(connection.sid, "existing-participants", [r.to_payload() for r in roster])

    async def peer_connected(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        peer_id = scope_id(data, "peerId")
        if meeting_id is None or peer_id is None:
            return
        await self.store.set_peer_id(meeting_id, connection.sid, peer_id)

    async def get_participants(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        if meeting_id is None:
            return
        roster = self.store.get_roster(meeting_id, excluding=connection.sid)
        await self.send(connection.sid, "existing-participants", [r.to_payload() for r in roster])

    async def leave_meeting(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        if meeting_id is None:
            return
        await self.store.leave_meeting(meeting_id, connection.sid)

    async def participant_update(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        if meeting_id is None:
            return
        participant_id = connection.sid
        if data.get("participantId") not in (None, ""):
            participant_id = scope_id(data, "participantId")
            if participant_id is None:
                return
        updates = without(data, "meetingId", "participantId")
        self.store.update_participant(meeting_id, participant_id, _media_flags(updates))
        await self.fanout.publish(
            room_for_meeting(meeting_id),
            "participant-updated",
            {"id": participant_id, **updates},
            sender=connection.sid,
        )

    async def raise_hand(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        if meeting_id is None:
            return
        raised = data.get("raised", True)
        if not isinstance(raised, bool):
            return
        self.store.update_participant(meeting_id, connection.sid, {"is_hand_raised": raised})
        await self.fanout.publish(room_for_meeting(meeting_id), "hand-raised", data, sender=connection.sid)

    async def mute_participant(self, connection: Connection, data: Any) -> None:
        meeting_id = _meeting_id(data)
        if meeting_id is None:
            return
        target = scope_id(data, "participantId")
        muted = data.get("muted", True)
        if target is None or not isinstance(muted, bool):
            return
        self.store.update_participant(meeting_id, target, {"is_muted": muted})
        await self.fanout.publish(
            room_for_meeting(meeting_id), "participant-muted", data, sender=connection.sid
        )

    async def announce(self, meeting_id: str, event: str, payload: Any) -> int:
        """Fan an event out to a live meeting from outside the socket layer."""
        return await self.fanout.publish(room_for_meeting(meeting_id), event, payload)
