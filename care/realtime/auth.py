"""
JWT authentication for WebSocket connections.

Browsers cannot set headers on a WebSocket handshake, so the access
token travels as ``?token=<jwt>``; an ``Authorization: Bearer`` header
is accepted too for non-browser clients.  A missing, invalid or expired
token leaves ``scope["user"]`` anonymous, and the consumer refuses the
connection before accepting it.
"""
from __future__ import annotations

import logging
from urllib.parse import parse_qs

from asgiref.sync import sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError

from care.authentication import BearerAuthentication

logger = logging.getLogger(__name__)


def token_from_scope(scope) -> str | None:
    query = parse_qs((scope.get("query_string") or b"").decode("latin-1"))
    values = query.get("token")
    if values and values[0]:
        return values[0]
    for name, value in scope.get("headers") or []:
        if name == b"authorization":
            parts = value.decode("latin-1").split()
            if len(parts) == 2 and parts[0].lower() == "bearer":
                return parts[1]
    return None


def user_for_token(raw: str):
    auth = BearerAuthentication()
    try:
        validated = auth.get_validated_token(raw)
        return auth.get_user(validated)
    except (InvalidToken, AuthenticationFailed, TokenError) as exc:
        logger.info("socket token rejected: %s", exc)
        return AnonymousUser()


class JWTAuthMiddleware(BaseMiddleware):

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        raw = token_from_scope(scope)
        if raw:
            scope["user"] = await sync_to_async(user_for_token)(raw)
        else:
            scope["user"] = AnonymousUser()
        return await super().__call__(scope, receive, send)


def JWTAuthMiddlewareStack(inner):
    return JWTAuthMiddleware(inner)
