from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from care.services.notifications import format_notification, list_notifications, mark_all_read, mark_read, unread_count


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications(request):
    unread_only = str(request.query_params.get('unread') or '').lower() in {'1', 'true', 'yes'}
    try:
        page = int(request.query_params.get('page') or 1)
        page_size = int(request.query_params.get('pageSize') or 20)
    except ValueError:
        page, page_size = 1, 20
    items, total = list_notifications(request.user, unread_only=unread_only, page=page, page_size=page_size)
    return Response({'ok': True, 'data': items, 'pagination': {'total': total, 'page': page, 'pageSize': page_size}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications_unread_count(request):
    return Response({'ok': True, 'count': unread_count(request.user)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def notification_read(request, notification_id: int):
    n = mark_read(request.user, notification_id)
    if n is None:
        raise NotFound('Notification not found')
    return Response({'ok': True, 'notification': format_notification(n)})


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def notifications_mark_all_read(request):
    return Response({'ok': True, 'updated': mark_all_read(request.user)})
