import logging
import re
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Q
from rest_framework.exceptions import NotFound, ValidationError

from care.access import require_view
from care.exceptions import AccessDenied
from care.models import Message
from care.realtime.fanout import FanoutEvent, fanout, scope_recipients
from care.realtime.rooms import PATIENT, Scope
from care.services import notifications
from care.services.audit import try_log_action
from care.services.grants import find_grant

User = get_user_model()
logger = logging.getLogger(__name__)


def format_message(m: Message) -> dict:
    sender = m.sender
    return {
        'id': m.id,
        'patientId': m.patient_id,
        'operatorId': m.operator_id,
        'groupId': m.group_id,
        'senderId': m.sender_id,
        'sender': {
            'id': sender.id,
            'name': sender.display_name,
            'userType': sender.user_type,
            'role': sender.role,
        },
        'content': m.content,
        'mentions': m.mentions or [],
        'replyToId': m.reply_to_id,
        'isRead': m.is_read,
        'createdAt': m.created_at.isoformat(),
    }


def paginate(qs, page, page_size):
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 50)))
    total = qs.count()
    start = (page-1)*page_size
    # newest page first, returned oldest-first for display
    items = list(qs.order_by('-created_at', '-id')[start:start+page_size])
    items.reverse()
    return items, total


def _thread_filter(user, other_participant_id: Optional[int]):
    """1:1 narrowing: an operator sees the shared thread (no operator)
    plus their own; a patient may narrow to one operator."""
    if user.user_type == User.TYPE_OPERATOR and not user.actor.is_admin:
        return Q(operator__isnull=True) | Q(operator_id=user.id)
    if other_participant_id:
        return Q(operator__isnull=True) | Q(operator_id=other_participant_id)
    return Q()


def patient_thread(user, patient_id: int, *, other_participant_id=None, page=1, page_size=50):
    qs = (
        Message.objects
        .filter(patient_id=patient_id)
        .filter(_thread_filter(user, other_participant_id))
        .select_related('sender')
    )
    items, total = paginate(qs, page, page_size)
    return [format_message(m) for m in items], total


def unread_thread_count(user, patient_id: int) -> int:
    return (
        Message.objects
        .filter(patient_id=patient_id, is_read=False)
        .filter(_thread_filter(user, None))
        .exclude(sender_id=user.id)
        .count()
    )


def _push_badge(user_id: int, patient_id: int) -> None:
    try:
        user = User.objects.get(id=user_id)
        notifications.push_to_user(user_id, 'badge-update', {
            'type': 'message', 'patientId': patient_id, 'count': unread_thread_count(user, patient_id),
        })
    except Exception:
        logger.warning("badge update for user %s failed", user_id, exc_info=True)


MENTION_TOKEN = re.compile(r'@(\w+)')


def mentioned_by_name(content: str, candidates) -> list[int]:
    """Ids among ``candidates`` (``(id, first_name, last_name)`` rows)
    whose first or last name contains one of the ``@name`` tokens in
    ``content``, compared case-insensitively."""
    found = []
    for token in MENTION_TOKEN.findall(content or ''):
        token = token.lower()
        for uid, first, last in candidates:
            if uid not in found and (token in (first or '').lower() or token in (last or '').lower()):
                found.append(uid)
    return found


def _mention_candidates(scope: Scope, allowed) -> list[tuple]:
    qs = User.objects.filter(id__in=allowed, is_active=True)
    if scope.kind == PATIENT:
        # only the care team; administrators do not take part in patient chat
        qs = qs.filter(user_type=User.TYPE_OPERATOR).exclude(role=User.ROLE_ADMIN)
    return list(qs.order_by('id').values_list('id', 'first_name', 'last_name'))


def resolve_mentions(scope: Scope, content: str, mentions=None) -> list[int]:
    """Explicit mention ids limited to the scope's audience, followed by
    anyone named with ``@name`` in the text."""
    allowed = scope_recipients(scope)
    explicit = [uid for uid in (mentions or []) if uid in allowed]
    named = mentioned_by_name(content, _mention_candidates(scope, allowed)) if '@' in (content or '') else []
    return list(dict.fromkeys([*explicit, *named]))


def mention_event(msg: Message, sender, content: str) -> dict:
    """Body of the live ``mention-notification`` pushed to each mentioned user."""
    event = {
        'type': 'mention',
        'messageId': msg.id,
        'senderName': sender.display_name,
        'content': notifications.preview(content),
        'timestamp': msg.created_at.isoformat(),
    }
    if msg.group_id:
        event['groupId'] = msg.group_id
    else:
        event['patientId'] = msg.patient_id
    return event


def send_patient_message(sender, *, patient_id: int, content: str, operator_id=None, mentions=None, reply_to_id=None, ip=None) -> Message:
    """Persist a patient-thread message, then fan it out.

    Administrators can read every thread but never post clinical chat.
    """
    actor = sender.actor
    if actor.is_admin:
        raise AccessDenied('Administrators cannot send patient messages')
    require_view(actor, patient_id, find_grant)

    patient = User.objects.filter(id=patient_id, user_type=User.TYPE_PATIENT).first()
    if patient is None:
        raise NotFound('Patient not found')

    if actor.is_patient:
        if not operator_id:
            raise ValidationError({'operatorId': 'operatorId is required to identify the 1:1 thread'})
        if not User.objects.filter(id=operator_id, user_type=User.TYPE_OPERATOR).exists():
            raise NotFound('Operator not found')
        thread_operator_id = operator_id
    else:
        thread_operator_id = sender.id

    reply_to = None
    if reply_to_id:
        reply_to = Message.objects.filter(id=reply_to_id, patient_id=patient_id).first()
        if reply_to is None:
            raise ValidationError({'replyToId': 'Reply target is not in this thread'})

    scope = Scope(PATIENT, patient_id)
    mention_ids = resolve_mentions(scope, content, mentions)

    with transaction.atomic():
        msg = Message.objects.create(
            patient=patient, operator_id=thread_operator_id, sender=sender,
            content=content, mentions=mention_ids, reply_to=reply_to,
        )
    msg = Message.objects.select_related('sender').get(id=msg.id)

    try_log_action(user=sender, action='message_create', object_type='message', object_id=msg.id,
                   detail={'patientId': patient_id, 'hasMentions': bool(mention_ids), 'ip': ip})

    name = sender.display_name
    fanout.dispatch(FanoutEvent(
        scope=scope,
        event='new-message',
        payload=format_message(msg),
        notification_type=notifications.NEW_MESSAGE,
        title=f'New message from {name}',
        message=notifications.preview(content),
        data={'messageId': msg.id, 'patientId': patient_id, 'senderId': sender.id},
        sender_id=sender.id,
        mentions=mention_ids,
        mention_title=f'{name} mentioned you',
        mention_event=mention_event(msg, sender, content) if mention_ids else None,
    ))

    _push_badge(thread_operator_id if actor.is_patient else patient_id, patient_id)
    return msg


def mark_message_read(user, message_id: int) -> Message:
    msg = Message.objects.select_related('sender').filter(id=message_id).first()
    if msg is None:
        raise NotFound('Message not found')
    if msg.patient_id:
        require_view(user.actor, msg.patient_id, find_grant)
    elif not msg.group.members.filter(user=user, left_at__isnull=True).exists():
        raise AccessDenied('Not a member of this group')
    if not msg.is_read and msg.sender_id != user.id:
        msg.is_read = True
        msg.save(update_fields=['is_read', 'updated_at'])
    if msg.patient_id:
        _push_badge(user.id, msg.patient_id)
    return msg


def mark_thread_read(user, patient_id: int, *, other_participant_id=None) -> int:
    n = (
        Message.objects
        .filter(patient_id=patient_id, is_read=False)
        .filter(_thread_filter(user, other_participant_id))
        .exclude(sender_id=user.id)
        .update(is_read=True)
    )
    try:
        notifications.push_to_user(user.id, 'badge-update', {'type': 'message', 'patientId': patient_id, 'count': 0})
    except Exception:
        logger.warning("badge reset for user %s failed", user.id, exc_info=True)
    return n


def thread_operators(patient_id: int) -> list[dict]:
    """Operators a patient can talk to: those holding a view grant."""
    qs = (
        User.objects
        .filter(accesses_as_operator__patient_id=patient_id, accesses_as_operator__can_view=True)
        .order_by('last_name', 'first_name', 'id')
    )
    return [{
        'id': u.id,
        'name': u.display_name,
        'role': u.role,
        'isOnline': u.is_online,
        'lastSeenAt': u.last_seen_at.isoformat() if u.last_seen_at else None,
    } for u in qs]
