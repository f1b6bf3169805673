"""
Rooms as named pub/sub topics over the Channels layer.

Every event travels as a single channel-layer message type,
``room.event``, carrying the client-facing ``event`` name, its ``data``
and a per-room ``seq``.  The sequence number is assigned synchronously
when the broker accepts the publish, before any await, so two publishes
to the same room are numbered in acceptance order and a client can
detect reordering or gaps.

Counters live in the broker, i.e. per process.  Publishes from
synchronous code (HTTP worker threads) are serialized per broker so they
leave in seq order; across processes ``seq`` only detects reordering, it
does not prevent it.

Besides rooms, every socket listens on a private control group of its
user (:func:`control_group`); :meth:`RoomBroker.evict` uses it to pull a
user's sockets out of a room they may no longer read.
"""
from __future__ import annotations

import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from care.exceptions import InvalidScope

logger = logging.getLogger(__name__)

PATIENT = 'patient'
GROUP = 'group'
USER = 'user'

PRESENCE_ROOM = 'presence'
CONTROL = 'control'


@dataclass(frozen=True)
class Scope:
    kind: str
    key: int

    @property
    def room(self) -> str:
        return room_name(self.kind, self.key)


def room_name(kind: str, key) -> str:
    if kind not in (PATIENT, GROUP, USER):
        raise ValueError(f"unknown room kind {kind!r}")
    return f"{kind}.{int(key)}"


def control_group(user_id) -> str:
    return f"{CONTROL}.{int(user_id)}"


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidScope(f'{field} must be an integer')
    try:
        key = int(value)
    except (TypeError, ValueError):
        raise InvalidScope(f'{field} must be an integer')
    if key <= 0:
        raise InvalidScope(f'{field} must be an integer')
    return key


def scope_from_payload(payload) -> Scope:
    """Pick the single scope a message payload is addressed to.

    Exactly one of ``groupId``/``patientId`` must be present; both or
    neither raise :class:`InvalidScope`.
    """
    if not isinstance(payload, dict):
        raise InvalidScope('payload must be an object')
    group_id = payload.get('groupId')
    patient_id = payload.get('patientId')
    if (group_id is None) == (patient_id is None):
        raise InvalidScope()
    if group_id is not None:
        return Scope(GROUP, _positive_int(group_id, 'groupId'))
    return Scope(PATIENT, _positive_int(patient_id, 'patientId'))


class RoomBroker:
    """Subscribe/unsubscribe/publish over a channel layer.

    ``layer`` defaults to the project's configured channel layer and is
    resolved lazily so tests can swap settings.
    """
    message_type = 'room.event'
    evict_type = 'room.evict'

    def __init__(self, layer=None):
        self._layer = layer
        self._seq: dict[str, itertools.count] = defaultdict(lambda: itertools.count(1))
        self._seq_lock = threading.Lock()
        # held only by publish_sync; never taken on the event loop
        self._send_lock = threading.Lock()

    @property
    def layer(self):
        return self._layer if self._layer is not None else get_channel_layer()

    def next_seq(self, room: str) -> int:
        with self._seq_lock:
            return next(self._seq[room])

    async def subscribe(self, room: str, channel_name: str) -> None:
        await self.layer.group_add(room, channel_name)

    async def unsubscribe(self, room: str, channel_name: str) -> None:
        await self.layer.group_discard(room, channel_name)

    def envelope(self, room: str, event: str, data: Any, exclude: Optional[str] = None) -> dict:
        return {
            'type': self.message_type,
            'room': room,
            'event': event,
            'data': data,
            'seq': self.next_seq(room),
            'exclude': exclude,
        }

    async def publish(self, room: str, event: str, data: Any, *, exclude: Optional[str] = None) -> int:
        """Deliver ``event`` to every connection subscribed to ``room``.

        ``exclude`` names a channel that should not receive its own
        event (typing indicators, presence).  Returns the assigned seq.
        """
        message = self.envelope(room, event, data, exclude)
        layer = self.layer
        if layer is None:
            logger.debug("no channel layer configured, dropping %s to %s", event, room)
            return message['seq']
        await layer.group_send(room, message)
        return message['seq']

    def publish_sync(self, room: str, event: str, data: Any, *, exclude: Optional[str] = None) -> int:
        """Publish from synchronous code (HTTP views, services)."""
        with self._send_lock:
            return async_to_sync(self.publish)(room, event, data, exclude=exclude)

    async def evict(self, user_id: int, room: str, reason: str) -> None:
        """Ask every socket of ``user_id`` to leave ``room``."""
        layer = self.layer
        if layer is None:
            return
        await layer.group_send(control_group(user_id), {
            'type': self.evict_type, 'room': room, 'reason': reason,
        })

    def evict_sync(self, user_id: int, room: str, reason: str) -> None:
        async_to_sync(self.evict)(user_id, room, reason)

    def reset(self) -> None:
        with self._seq_lock:
            self._seq.clear()


broker = RoomBroker()
