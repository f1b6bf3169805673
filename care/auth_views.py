"""
Authentication views.

Login issues a simplejwt refresh/access pair whose claims carry the
user's ``role`` and ``user_type``.  Refresh and logout are thin wrappers
around simplejwt so responses keep the project's ``ok`` envelope.  By
isolating these views from the authentication class (see
``care.authentication``) we prevent circular imports when Django REST
framework initialises authentication classes.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from care.authentication import tokens_for_user
from care.serializers.auth import LoginSerializer, LogoutSerializer
from care.services.audit import client_ip, try_log_action

from .models import User

logger = logging.getLogger(__name__)


def format_user(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'name': user.display_name,
        'email': user.email,
        'role': user.role,
        'userType': user.user_type,
        'isOnline': user.is_online,
        'lastSeenAt': user.last_seen_at.isoformat() if user.last_seen_at else None,
    }


# ---------------------------------------------------------------------
# Username/password login (no role bypass)
# ---------------------------------------------------------------------
@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([ScopedRateThrottle])
def login_view(request):
    """
    Login with username/password only; any ``role`` or ``user_type``
    sent by the client is ignored.
    """
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    ip = client_ip(request)

    user = authenticate(request, username=username, password=s.validated_data['password'])
    if not user:
        # only the username is recorded for failed attempts
        try_log_action(user=None, action='login', object_type='user',
                       detail={'result': 'fail', 'username': username, 'ip': ip})
        return Response({'ok': False, 'error': {'code': 'invalid_credentials', 'message': 'Invalid username or password'}}, status=401)

    User.objects.filter(id=user.id).update(last_login=timezone.now())
    try_log_action(user=user, action='login', object_type='user', object_id=user.id,
                   detail={'result': 'ok', 'ip': ip})

    tokens = tokens_for_user(user)
    return Response({
        'ok': True,
        'access': tokens['access'],
        'refresh': tokens['refresh'],
        'user': format_user(user),
    }, status=200)

# ScopedRateThrottle reads throttle_scope from the wrapped APIView class
login_view.cls.throttle_scope = 'login'


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token from a refresh token."""
    s = TokenRefreshSerializer(data=request.data)
    try:
        s.is_valid(raise_exception=True)
    except TokenError as e:
        return Response({'ok': False, 'error': {'code': 'token_not_valid', 'message': str(e)}}, status=401)
    return Response({'ok': True, **s.validated_data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or all of the user's tokens."""
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    refresh = s.validated_data.get('refresh')
    count = 0
    if refresh:
        try:
            token = RefreshToken(refresh)
        except TokenError as e:
            return Response({'ok': False, 'error': {'code': 'token_not_valid', 'message': str(e)}}, status=400)
        if str(token.get('user_id')) != str(request.user.id):
            return Response({'ok': False, 'error': {'code': 'forbidden', 'message': 'Token belongs to another user'}}, status=403)
        token.blacklist()
        count = 1
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    try_log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id,
                   detail={'blacklisted': count})
    return Response({'ok': True, 'blacklisted': count})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'ok': True, 'user': format_user(request.user)})
