"""
Notification fan-out for domain events.

A dispatch has two independent legs:

1. the live event is published to the scope's room, reaching whoever
   has joined it right now;
2. one :class:`~care.models.Notification` row is written per intended
   recipient, and pushed to that recipient's user room.

The recipient set comes from membership policy (patient plus viewing
operators, or active group members), never from who happens to be
connected, so offline recipients still get a durable record.  Mentioned
users additionally get a MENTION row and, when the event carries one,
a live ``mention-notification`` on their user room.  Both legs
run after the domain mutation has been committed and neither can undo
it: failures are logged and swallowed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from care.models import ChatGroupMember
from care.realtime.rooms import GROUP, PATIENT, USER, RoomBroker, Scope, broker as default_broker, room_name
from care.services import notifications
from care.services.grants import viewer_ids

logger = logging.getLogger(__name__)


@dataclass
class FanoutEvent:
    scope: Scope
    event: str
    payload: Any
    notification_type: str
    title: str
    message: str
    data: dict = field(default_factory=dict)
    sender_id: Optional[int] = None
    mentions: Iterable[int] = ()
    mention_title: Optional[str] = None
    # pushed live as ``mention-notification`` to each mentioned user
    mention_event: Optional[dict] = None
    # overrides the membership policy when set
    recipients: Optional[Iterable[int]] = None


@dataclass
class DispatchResult:
    seq: Optional[int] = None
    notified: list[int] = field(default_factory=list)
    mentioned: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def scope_recipients(scope: Scope) -> list[int]:
    if scope.kind == PATIENT:
        return [scope.key, *viewer_ids(scope.key)]
    if scope.kind == GROUP:
        return list(
            ChatGroupMember.objects
            .filter(group_id=scope.key, left_at__isnull=True, group__is_active=True)
            .order_by('user_id')
            .values_list('user_id', flat=True)
        )
    if scope.kind == USER:
        return [scope.key]
    return []


def _unique(ids: Iterable[int], exclude: Optional[int]) -> list[int]:
    seen = []
    for uid in ids:
        if uid is None or uid == exclude or uid in seen:
            continue
        seen.append(uid)
    return seen


class NotificationFanout:

    def __init__(self, broker: RoomBroker = None):
        self.broker = broker or default_broker

    def recipients_for(self, event: FanoutEvent) -> list[int]:
        ids = event.recipients if event.recipients is not None else scope_recipients(event.scope)
        return _unique(ids, event.sender_id)

    def _notify(self, recipient_id: int, *, title: str, message: str, type: str, data: dict) -> bool:
        try:
            notifications.send_notification(
                recipient_id=recipient_id, title=title, message=message, type=type, data=data,
            )
            return True
        except Exception:
            logger.exception("notification %s for user %s not persisted", type, recipient_id)
            return False

    def _push_mention(self, recipient_id: int, body: dict) -> None:
        try:
            self.broker.publish_sync(room_name(USER, recipient_id), 'mention-notification', body)
        except Exception:
            logger.warning("mention push to user %s failed", recipient_id, exc_info=True)

    def dispatch(self, event: FanoutEvent) -> DispatchResult:
        result = DispatchResult()
        try:
            result.seq = self.broker.publish_sync(event.scope.room, event.event, event.payload)
        except Exception:
            logger.exception("live publish of %s to %s failed", event.event, event.scope.room)

        try:
            recipients = self.recipients_for(event)
        except Exception:
            logger.exception("recipient lookup for %s failed", event.scope.room)
            recipients = []

        for uid in recipients:
            ok = self._notify(uid, title=event.title, message=event.message,
                              type=event.notification_type, data=event.data)
            (result.notified if ok else result.failed).append(uid)

        for uid in _unique(event.mentions, event.sender_id):
            ok = self._notify(uid, title=event.mention_title or event.title, message=event.message,
                              type=notifications.MENTION, data=event.data)
            (result.mentioned if ok else result.failed).append(uid)
            if event.mention_event is not None:
                self._push_mention(uid, event.mention_event)

        logger.info("fanout %s to %s: seq=%s notified=%d mentioned=%d failed=%d",
                    event.event, event.scope.room, result.seq,
                    len(result.notified), len(result.mentioned), len(result.failed))
        return result


fanout = NotificationFanout()
