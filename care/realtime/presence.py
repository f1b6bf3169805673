"""
Process-wide registry of users reachable over the socket channel.

A user is ONLINE while at least one of their connections is registered.
``latest`` remembers the most recent connection per user
(last-writer-wins); it is informational only, so a stale value after a
reconnect race is harmless.

All methods are synchronous and never await, so each call completes
atomically with respect to the event loop.  Callers that await between
reading and acting on this state (e.g. persisting to the database before
broadcasting) must re-check :meth:`PresenceRegistry.is_online` afterwards.

``announced`` tracks which users watchers currently believe are online.
The online and offline broadcasts are gated on it so they strictly
alternate per user, even when a reconnect lands while another socket of
the same user is still writing its offline state.
"""
from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class PresenceRegistry:

    def __init__(self):
        self._connections: dict[int, set[str]] = {}
        self._latest: dict[int, str] = {}
        self._announced: set[int] = set()

    def join(self, user_id: int, channel_name: str) -> bool:
        """Register ``channel_name`` for ``user_id``.

        Returns True when this join took the user from OFFLINE to ONLINE.
        Re-joining with an already registered channel is a no-op apart
        from refreshing the latest connection.
        """
        conns = self._connections.setdefault(user_id, set())
        came_online = not conns
        conns.add(channel_name)
        self._latest[user_id] = channel_name
        if came_online:
            logger.info("presence: user %s online via %s", user_id, channel_name)
        return came_online

    def leave(self, user_id: int, channel_name: Optional[str] = None) -> bool:
        """Drop one connection, or every connection when none is given.

        Returns True only when this call took the user from ONLINE to
        OFFLINE; unknown users and already-removed connections are a
        no-op returning False.
        """
        conns = self._connections.get(user_id)
        if not conns:
            return False
        if channel_name is None:
            conns.clear()
        else:
            conns.discard(channel_name)
        if conns:
            if self._latest.get(user_id) == channel_name:
                self._latest[user_id] = next(iter(conns))
            return False
        del self._connections[user_id]
        self._latest.pop(user_id, None)
        logger.info("presence: user %s offline", user_id)
        return True

    def is_online(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    def connection_for(self, user_id: int) -> Optional[str]:
        return self._latest.get(user_id)

    def connection_count(self, user_id: int) -> int:
        return len(self._connections.get(user_id, ()))

    def online_user_ids(self) -> list[int]:
        return sorted(self._connections)

    def announce_online(self, user_id: int) -> bool:
        """True when an online broadcast is due: connected and not yet announced."""
        if not self.is_online(user_id) or user_id in self._announced:
            return False
        self._announced.add(user_id)
        return True

    def announce_offline(self, user_id: int) -> bool:
        """True when an offline broadcast is due: disconnected but still announced."""
        if self.is_online(user_id) or user_id not in self._announced:
            return False
        self._announced.discard(user_id)
        return True

    def clear(self) -> None:
        self._connections.clear()
        self._latest.clear()
        self._announced.clear()


registry = PresenceRegistry()
