"""
Group conversation endpoints.

Groups are closed rooms: only active members read history, post, or
receive the group's fan-out.  Any operator can create a group and
becomes its admin; group admins and moderators add members, and anyone
may leave.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle

from care.serializers.groups import GroupCreateSerializer, GroupMembersSerializer
from care.serializers.messages import GroupMessageCreateSerializer, ThreadQuerySerializer
from care.services.groups import (
    add_members,
    create_group,
    format_group,
    get_group_or_404,
    group_history,
    groups_for,
    leave_group,
    send_group_message,
)
from care.services.messages import format_message


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def groups(request):
    if request.method == 'GET':
        return Response({'ok': True, 'data': groups_for(request.user)})
    s = GroupCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    group = create_group(
        request.user,
        name=s.validated_data['name'],
        description=s.validated_data.get('description', ''),
        member_ids=s.validated_data.get('memberIds', []),
    )
    return Response({'ok': True, 'group': format_group(group)}, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def group_members(request, group_id: int):
    group = get_group_or_404(group_id)
    s = GroupMembersSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    added = add_members(request.user, group, s.validated_data['userIds'], s.validated_data['role'])
    return Response({'ok': True, 'added': added})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def group_leave(request, group_id: int):
    group = get_group_or_404(group_id)
    return Response({'ok': True, 'left': leave_group(request.user, group)})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([ScopedRateThrottle])
def group_messages(request, group_id: int):
    group = get_group_or_404(group_id)
    if request.method == 'GET':
        q = ThreadQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        items, total = group_history(
            request.user, group, page=q.validated_data.get('page', 1), page_size=q.validated_data.get('pageSize', 50),
        )
        return Response({'ok': True, 'data': items, 'pagination': {'total': total}})
    s = GroupMessageCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    msg = send_group_message(
        request.user, group,
        content=s.validated_data['content'],
        mentions=s.validated_data.get('mentions'),
        reply_to_id=s.validated_data.get('replyToId'),
    )
    return Response({'ok': True, 'message': format_message(msg)}, status=201)

group_messages.cls.throttle_scope = 'messages'
