import logging
from typing import Optional, Any, Dict

from django.contrib.auth import get_user_model

from care.models import AuditEvent

User = get_user_model()
logger = logging.getLogger(__name__)


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        user=user if getattr(user, 'pk', None) else None,
        action=action,
        object_type=object_type,
        object_id=str(object_id) if object_id is not None else None,
        detail=detail or {},
    )


def try_log_action(**kwargs) -> Optional[AuditEvent]:
    """``log_action`` that never masks the caller's result."""
    try:
        return log_action(**kwargs)
    except Exception:
        logger.warning("audit write failed for action=%s", kwargs.get('action'), exc_info=True)
        return None


def client_ip(request) -> Optional[str]:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')
