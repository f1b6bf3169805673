import asyncio
import logging
from typing import Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone

from care.realtime.presence import registry

User = get_user_model()
logger = logging.getLogger(__name__)


def set_presence(user_id: int, online: bool) -> int:
    return User.objects.filter(id=user_id).update(is_online=online, last_seen_at=timezone.now())


async def persist_presence(user_id: int, online: bool, timeout: Optional[float] = None) -> bool:
    """Write the presence fields, waiting at most ``timeout`` seconds.

    Returns False (after logging) on timeout or failure; the caller
    broadcasts regardless.
    """
    if timeout is None:
        timeout = settings.PRESENCE_PERSIST_TIMEOUT
    try:
        await asyncio.wait_for(sync_to_async(set_presence)(user_id, online), timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("presence write for user %s (online=%s) timed out after %ss", user_id, online, timeout)
    except Exception:
        logger.exception("presence write for user %s (online=%s) failed", user_id, online)
    return False


def reset_all() -> int:
    """Mark every user offline and forget all registered connections."""
    registry.clear()
    return User.objects.filter(is_online=True).update(is_online=False, last_seen_at=timezone.now())
