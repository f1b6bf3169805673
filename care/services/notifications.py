import logging
from typing import Optional, Any, Dict

from django.conf import settings
from django.utils import timezone

from care.models import Notification
from care.realtime.rooms import USER, broker, room_name

logger = logging.getLogger(__name__)

NEW_MESSAGE = 'NEW_MESSAGE'
MENTION = 'MENTION'
PATIENT_ASSIGNED = 'PATIENT_ASSIGNED'
OPERATOR_ASSIGNED = 'OPERATOR_ASSIGNED'
ACCESS_REVOKED = 'ACCESS_REVOKED'
SESSION_SCHEDULED = 'SESSION_SCHEDULED'
SESSION_UPDATED = 'SESSION_UPDATED'
GROUP_ADDED = 'GROUP_ADDED'


def preview(text: str, limit: Optional[int] = None) -> str:
    limit = limit or settings.NOTIFICATION_PREVIEW_CHARS
    text = text or ''
    return text[:limit] + ('...' if len(text) > limit else '')


def format_notification(n: Notification) -> dict:
    return {
        'id': n.id,
        'title': n.title,
        'message': n.message,
        'type': n.type,
        'data': n.data,
        'isRead': n.is_read,
        'sentAt': n.sent_at.isoformat() if n.sent_at else None,
        'readAt': n.read_at.isoformat() if n.read_at else None,
    }


def create_notification(*, recipient_id: int, title: str, message: str, type: str, data: Optional[Dict[str, Any]]=None) -> Notification:
    return Notification.objects.create(
        recipient_id=recipient_id, title=title, message=message, type=type, data=data or {},
    )


def push_to_user(user_id: int, event: str, data: Any) -> None:
    """Live delivery to every open socket of ``user_id``; skipped if none."""
    broker.publish_sync(room_name(USER, user_id), event, data)


def evict_from_room(user_id: int, room: str, reason: str) -> None:
    """Pull every open socket of ``user_id`` out of ``room``.

    Called after the user lost the right to read the room; the change
    itself is already committed, so a failed eviction is only logged.
    """
    try:
        broker.evict_sync(user_id, room, reason)
    except Exception:
        logger.warning("eviction of user %s from %s failed", user_id, room, exc_info=True)


def send_notification(*, recipient_id: int, title: str, message: str, type: str, data: Optional[Dict[str, Any]]=None) -> Notification:
    """Persist a notification, then push it live to the recipient.

    The row is written whether or not the recipient is connected; it is
    what an offline client fetches on its next visit.
    """
    n = create_notification(recipient_id=recipient_id, title=title, message=message, type=type, data=data)
    try:
        push_to_user(recipient_id, 'notification', format_notification(n))
    except Exception:
        logger.warning("live push of notification %s to user %s failed", n.id, recipient_id, exc_info=True)
    return n


def list_notifications(user, *, unread_only: bool = False, page: int = 1, page_size: int = 20):
    qs = Notification.objects.filter(recipient=user)
    if unread_only:
        qs = qs.filter(is_read=False)
    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page-1)*page_size
    items = [format_notification(n) for n in qs.order_by('-sent_at', '-id')[start:start+page_size]]
    return items, total


def unread_count(user) -> int:
    return Notification.objects.filter(recipient=user, is_read=False).count()


def mark_read(user, notification_id: int) -> Optional[Notification]:
    n = Notification.objects.filter(id=notification_id, recipient=user).first()
    if n is None:
        return None
    if not n.is_read:
        n.is_read = True
        n.read_at = timezone.now()
        n.save(update_fields=['is_read', 'read_at'])
    return n


def mark_all_read(user) -> int:
    return Notification.objects.filter(recipient=user, is_read=False).update(is_read=True, read_at=timezone.now())
