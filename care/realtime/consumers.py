import json
import logging

import bleach
from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from rest_framework.exceptions import APIException

from care.models import ChatGroupMember
from care.realtime.presence import registry
from care.realtime.rooms import (
    GROUP, PATIENT, PRESENCE_ROOM, USER, broker, control_group, room_name, scope_from_payload,
)
from care.services.grants import actor_can_view
from care.services.presence import persist_presence

logger = logging.getLogger(__name__)


def _is_active_member(group_id: int, user_id: int) -> bool:
    return ChatGroupMember.objects.filter(
        group_id=group_id, user_id=user_id, left_at__isnull=True, group__is_active=True,
    ).exists()


def _int_arg(data, key: str):
    """Accept either a bare id or ``{key: id}``."""
    value = data.get(key) if isinstance(data, dict) else data
    if isinstance(value, bool):
        raise ValueError(key)
    return int(value)


class FrameError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ClinicConsumer(AsyncWebsocketConsumer):
    """One socket per client tab; frames are ``{"event": ..., "data": ...}``.

    Connections without an authenticated user are closed before the
    handshake completes.  Every accepted connection listens to the
    presence room; other rooms are joined by explicit events and each
    join is acknowledged with ``room-joined``.  It also listens on its
    user's control group, through which it is evicted from rooms the
    user can no longer read.
    """

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4401)
            return
        self.user = user
        self.actor = user.actor
        self.rooms = set()
        self.registered = False
        await broker.subscribe(PRESENCE_ROOM, self.channel_name)
        await broker.subscribe(control_group(user.id), self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        if not hasattr(self, "rooms"):
            return
        await broker.unsubscribe(PRESENCE_ROOM, self.channel_name)
        await broker.unsubscribe(control_group(self.user.id), self.channel_name)
        for room in list(self.rooms):
            await broker.unsubscribe(room, self.channel_name)
        self.rooms.clear()
        if not self.registered:
            return
        self.registered = False
        uid = self.user.id
        if not registry.leave(uid, self.channel_name):
            return
        await persist_presence(uid, False)
        # another socket of this user may have joined during the write
        if registry.is_online(uid):
            await persist_presence(uid, True)
            return
        if registry.announce_offline(uid):
            await broker.publish(PRESENCE_ROOM, "user-offline", {"userId": uid})

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return
        try:
            frame = json.loads(text_data)
        except ValueError:
            await self.send_error("invalid_json", "Frame is not valid JSON")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.send_error("invalid_payload", "Frame must be an object with an event name")
            return

        handler = self.handlers.get(frame["event"])
        if handler is None:
            await self.send_error("unsupported_event", f"Unknown event {frame['event']}")
            return
        try:
            await handler(self, frame.get("data"))
        except FrameError as e:
            await self.send_error(e.code, e.message)
        except APIException as e:
            code = e.get_codes() if isinstance(e.get_codes(), str) else "invalid"
            await self.send_error(code, str(e.detail))
        except Exception:
            logger.exception("socket event %s from user %s failed", frame["event"], self.user.id)
            await self.send_error("server_error", "Internal server error")

    async def send_event(self, event: str, data):
        await self.send(json.dumps({"event": event, "data": data}))

    async def send_error(self, code: str, message: str):
        await self.send_event("error", {"code": code, "message": message})

    async def _join(self, room: str):
        if room not in self.rooms:
            await broker.subscribe(room, self.channel_name)
            self.rooms.add(room)
        await self.send_event("room-joined", {"room": room})

    # ------------------------------------------------------------------
    # inbound events
    # ------------------------------------------------------------------
    async def on_join_user_room(self, data):
        try:
            user_id = _int_arg(data, "userId")
        except (TypeError, ValueError):
            raise FrameError("invalid_payload", "userId must be an integer")
        if user_id != self.user.id:
            raise FrameError("forbidden", "Cannot join another user's room")

        await self._join(room_name(USER, user_id))
        registry.join(user_id, self.channel_name)
        self.registered = True
        await persist_presence(user_id, True)
        # no broadcast if the socket dropped during the write, or if a
        # sibling socket is still settling its offline write
        if registry.announce_online(user_id):
            await broker.publish(PRESENCE_ROOM, "user-online", {"userId": user_id}, exclude=self.channel_name)

    async def on_join_patient_room(self, data):
        patient_id = data.get("patientId") if isinstance(data, dict) else data
        allowed = await sync_to_async(actor_can_view)(self.actor, patient_id)
        if not allowed:
            raise FrameError("forbidden", "No access to this patient")
        await self._join(room_name(PATIENT, patient_id))

    async def on_join_group_room(self, data):
        try:
            group_id = _int_arg(data, "groupId")
        except (TypeError, ValueError):
            raise FrameError("invalid_payload", "groupId must be an integer")
        if not await sync_to_async(_is_active_member)(group_id, self.user.id):
            raise FrameError("forbidden", "Not a member of this group")
        await self._join(room_name(GROUP, group_id))

    async def on_leave_group_room(self, data):
        try:
            group_id = _int_arg(data, "groupId")
        except (TypeError, ValueError):
            raise FrameError("invalid_payload", "groupId must be an integer")
        room = room_name(GROUP, group_id)
        if room in self.rooms:
            await broker.unsubscribe(room, self.channel_name)
            self.rooms.discard(room)
        await self.send_event("room-left", {"room": room})

    async def on_send_message(self, data):
        scope = scope_from_payload(data)
        if scope.room not in self.rooms:
            raise FrameError("not_in_room", "Join the room before sending to it")
        payload = dict(data)
        content = payload.get("content")
        if content is not None:
            if not isinstance(content, str):
                raise FrameError("invalid_content_type", "content must be a string")
            content = bleach.clean(content.strip(), tags=[], strip=True)
            if len(content) > settings.MESSAGE_MAX_CHARS:
                raise FrameError("message_too_long", "Message is too long")
            payload["content"] = content
        payload["senderId"] = self.user.id
        await broker.publish(scope.room, "new-message", payload)

    async def _typing(self, data, typing: bool):
        scope = scope_from_payload(data)
        if scope.room not in self.rooms:
            raise FrameError("not_in_room", "Join the room before sending to it")
        await broker.publish(
            scope.room, "user-typing", {"userId": self.user.id, "typing": typing},
            exclude=self.channel_name,
        )

    async def on_typing_start(self, data):
        await self._typing(data, True)

    async def on_typing_stop(self, data):
        await self._typing(data, False)

    handlers = {
        "join-user-room": on_join_user_room,
        "join-patient-room": on_join_patient_room,
        "join-group-room": on_join_group_room,
        "leave-group-room": on_leave_group_room,
        "send-message": on_send_message,
        "typing-start": on_typing_start,
        "typing-stop": on_typing_stop,
    }

    # ------------------------------------------------------------------
    # channel layer -> client
    # ------------------------------------------------------------------
    async def room_event(self, event):
        """Relay a broker publish; see :class:`care.realtime.rooms.RoomBroker`."""
        if event.get("exclude") and event["exclude"] == self.channel_name:
            return
        await self.send(json.dumps({
            "event": event["event"],
            "data": event["data"],
            "room": event["room"],
            "seq": event["seq"],
        }))

    async def room_evict(self, event):
        """Access to a room was withdrawn while this socket sat in it."""
        room = event["room"]
        if room not in self.rooms:
            return
        await broker.unsubscribe(room, self.channel_name)
        self.rooms.discard(room)
        await self.send_event("room-left", {"room": room, "reason": event.get("reason")})
