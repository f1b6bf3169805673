import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class PatientIdRequired(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Patient ID required'
    default_code = 'patient_id_required'


class AuthenticationRequired(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Authentication required'
    default_code = 'not_authenticated'


class AccessDenied(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Access denied'
    default_code = 'forbidden'


class AccessCheckFailed(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Access check failed'
    default_code = 'access_check_failed'


class InvalidScope(APIException):
    """A real-time or message payload carried both or neither scope key."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Exactly one of groupId or patientId is required'
    default_code = 'invalid_scope'


def _error_code(exc) -> str:
    codes = getattr(exc, 'get_codes', None)
    if callable(codes):
        c = codes()
        if isinstance(c, str):
            return c
        if isinstance(c, dict) and 'detail' in c and isinstance(c['detail'], str):
            return c['detail']
        if isinstance(c, (dict, list)):
            return 'invalid'
    return 'api_error'


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        view = context.get('view') if context else None
        logger.error("unhandled error in %s", type(view).__name__, exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}}, status=500)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    if resp.status_code >= 500:
        logger.error("api error %s: %s", resp.status_code, detail)
    headers = {h: resp[h] for h in ('WWW-Authenticate', 'Retry-After') if resp.has_header(h)}
    return Response(
        {'ok': False, 'error': {'code': _error_code(exc), 'message': detail}},
        status=resp.status_code,
        headers=headers,
    )
