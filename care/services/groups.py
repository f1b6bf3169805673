import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from care.exceptions import AccessDenied
from care.models import ChatGroup, ChatGroupMember, Message
from care.realtime.fanout import FanoutEvent, fanout
from care.realtime.rooms import GROUP, Scope, room_name
from care.services import notifications
from care.services.audit import try_log_action
from care.services.messages import format_message, mention_event, paginate, resolve_mentions

User = get_user_model()
logger = logging.getLogger(__name__)


def format_group(g: ChatGroup, *, member_count=None) -> dict:
    return {
        'id': g.id,
        'name': g.name,
        'description': g.description,
        'createdById': g.created_by_id,
        'isActive': g.is_active,
        'memberCount': member_count if member_count is not None else g.members.filter(left_at__isnull=True).count(),
        'createdAt': g.created_at.isoformat(),
    }


def active_membership(group_id: int, user) -> ChatGroupMember | None:
    return ChatGroupMember.objects.filter(
        group_id=group_id, user=user, left_at__isnull=True, group__is_active=True,
    ).first()


def get_group_or_404(group_id: int) -> ChatGroup:
    g = ChatGroup.objects.filter(id=group_id, is_active=True).first()
    if not g:
        raise NotFound('Group not found')
    return g


def groups_for(user) -> list[dict]:
    ids = ChatGroupMember.objects.filter(user=user, left_at__isnull=True).values_list('group_id', flat=True)
    qs = ChatGroup.objects.filter(id__in=ids, is_active=True).order_by('-updated_at', '-id')
    return [format_group(g) for g in qs]


def _add_members(group: ChatGroup, user_ids, role: str) -> list[int]:
    added = []
    for user in User.objects.filter(id__in=set(user_ids), is_active=True):
        member, created = ChatGroupMember.objects.get_or_create(group=group, user=user, defaults={'role': role})
        if not created and member.left_at is not None:
            # rejoin after leaving
            member.left_at = None
            member.role = role
            member.save(update_fields=['left_at', 'role'])
            created = True
        if created:
            added.append(user.id)
    return added


def _notify_added(group: ChatGroup, by, user_ids) -> None:
    for uid in user_ids:
        if uid == by.id:
            continue
        try:
            notifications.send_notification(
                recipient_id=uid,
                title=f'Added to {group.name}',
                message=f'{by.display_name} added you to the group {group.name}',
                type=notifications.GROUP_ADDED,
                data={'groupId': group.id},
            )
        except Exception:
            logger.exception("group-added notification for user %s failed", uid)


def create_group(creator, *, name: str, description: str = '', member_ids=()) -> ChatGroup:
    if creator.actor.is_patient:
        raise AccessDenied('Patients cannot create groups')
    with transaction.atomic():
        group = ChatGroup.objects.create(name=name, description=description, created_by=creator)
        ChatGroupMember.objects.create(group=group, user=creator, role=ChatGroupMember.ROLE_ADMIN)
        added = _add_members(group, [uid for uid in member_ids if uid != creator.id], ChatGroupMember.ROLE_MEMBER)
    try_log_action(user=creator, action='group_create', object_type='group', object_id=group.id,
                   detail={'members': added})
    _notify_added(group, creator, added)
    return group


def add_members(actor_user, group: ChatGroup, user_ids, role: str = ChatGroupMember.ROLE_MEMBER) -> list[int]:
    member = active_membership(group.id, actor_user)
    if member is None or member.role not in (ChatGroupMember.ROLE_ADMIN, ChatGroupMember.ROLE_MODERATOR):
        raise AccessDenied('Only group admins or moderators can add members')
    with transaction.atomic():
        added = _add_members(group, user_ids, role)
    try_log_action(user=actor_user, action='group_add_members', object_type='group', object_id=group.id,
                   detail={'added': added})
    _notify_added(group, actor_user, added)
    return added


def leave_group(user, group: ChatGroup) -> bool:
    member = active_membership(group.id, user)
    if member is None:
        return False
    member.left_at = timezone.now()
    member.save(update_fields=['left_at'])
    notifications.evict_from_room(user.id, room_name(GROUP, group.id), 'left_group')
    return True


def group_history(user, group: ChatGroup, *, page=1, page_size=50):
    if active_membership(group.id, user) is None:
        raise AccessDenied('Not a member of this group')
    qs = Message.objects.filter(group=group).select_related('sender')
    items, total = paginate(qs, page, page_size)
    return [format_message(m) for m in items], total


def send_group_message(sender, group: ChatGroup, *, content: str, mentions=None, reply_to_id=None) -> Message:
    if active_membership(group.id, sender) is None:
        raise AccessDenied('Not a member of this group')
    reply_to = None
    if reply_to_id:
        reply_to = Message.objects.filter(id=reply_to_id, group=group).first()
        if reply_to is None:
            raise ValidationError({'replyToId': 'Reply target is not in this group'})
    mention_ids = resolve_mentions(Scope(GROUP, group.id), content, mentions)

    msg = Message.objects.create(group=group, sender=sender, content=content, mentions=mention_ids, reply_to=reply_to)
    ChatGroup.objects.filter(id=group.id).update(updated_at=timezone.now())
    msg = Message.objects.select_related('sender').get(id=msg.id)

    name = sender.display_name
    fanout.dispatch(FanoutEvent(
        scope=Scope(GROUP, group.id),
        event='new-message',
        payload=format_message(msg),
        notification_type=notifications.NEW_MESSAGE,
        title=f'{name} in {group.name}',
        message=notifications.preview(content),
        data={'messageId': msg.id, 'groupId': group.id, 'senderId': sender.id},
        sender_id=sender.id,
        mentions=mention_ids,
        mention_title=f'{name} mentioned you in {group.name}',
        mention_event=mention_event(msg, sender, content) if mention_ids else None,
    ))
    return msg
