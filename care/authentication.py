"""
Bearer token authentication for the care API.

Access tokens are simplejwt JWTs that carry the user's ``role`` and
``user_type`` as extra claims, so clients (and the socket layer) can
read the actor's identity without another round trip.  The
authentication class lives in its own module so that DRF can import it
from settings without pulling in any views.
"""
from __future__ import annotations

from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.tokens import RefreshToken


class BearerAuthentication(JWTAuthentication):
    """JWT authentication using the ``Bearer`` keyword.

    The keyword itself is configured by ``SIMPLE_JWT['AUTH_HEADER_TYPES']``.
    This subclass exists to provide a stable import path for the
    project's configuration and to allow later customisation.
    """


def tokens_for_user(user) -> dict[str, str]:
    """Issue a refresh/access pair with the actor claims attached.

    Claims set on the refresh token are copied onto the access token it
    derives, including access tokens minted later by the refresh view.
    """
    refresh = RefreshToken.for_user(user)
    refresh['role'] = user.role
    refresh['user_type'] = user.user_type
    return {'access': str(refresh.access_token), 'refresh': str(refresh)}
