"""
Live driver session registry.

Tracks which drivers currently hold an open WebSocket. The driver directory
treats this as authoritative for liveness: a driver whose profile says
"online" but who has no registered session is never offered a booking.

Two implementations share the same interface:
    - RedisSessionRegistry: shared across ASGI workers, entries expire if a
      worker dies without deregistering
    - InMemorySessionRegistry: single process, used by tests and local runs
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Optional, Set

import redis
from django.conf import settings

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Interface consumed by the driver directory and the WebSocket consumers."""

    def register(self, driver_id: int, channel_name: str) -> None:
        raise NotImplementedError

    def deregister(self, driver_id: int, channel_name: str) -> None:
        raise NotImplementedError

    def is_connected(self, driver_id: int) -> bool:
        raise NotImplementedError

    def refresh(self, driver_id: int) -> None:
        """Extend the liveness window (heartbeat)."""

    def connected_drivers(self, driver_ids: Iterable[int]) -> Set[int]:
        return {driver_id for driver_id in driver_ids if self.is_connected(driver_id)}


class InMemorySessionRegistry(SessionRegistry):

    def __init__(self):
        self._sessions: Dict[int, Set[str]] = {}
        self._lock = threading.Lock()

    def register(self, driver_id, channel_name):
        with self._lock:
            self._sessions.setdefault(int(driver_id), set()).add(channel_name)

    def deregister(self, driver_id, channel_name):
        with self._lock:
            channels = self._sessions.get(int(driver_id))
            if not channels:
                return
            channels.discard(channel_name)
            if not channels:
                del self._sessions[int(driver_id)]

    def is_connected(self, driver_id):
        return bool(self._sessions.get(int(driver_id)))

    def clear(self):
        with self._lock:
            self._sessions.clear()


class RedisSessionRegistry(SessionRegistry):
    """
    One Redis set per driver holding its channel names, with a TTL refreshed on
    register and heartbeat.
    """

    KEY_PREFIX = "driver:sessions:"

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        self.client = client or redis.Redis.from_url(
            getattr(settings, "DRIVER_SESSION_REDIS_URL", settings.REDIS_URL),
            decode_responses=True,
        )
        self.ttl = ttl_seconds or getattr(settings, "DRIVER_SESSION_TTL_SECONDS", 120)

    def _key(self, driver_id) -> str:
        return f"{self.KEY_PREFIX}{int(driver_id)}"

    def register(self, driver_id, channel_name):
        key = self._key(driver_id)
        pipe = self.client.pipeline()
        pipe.sadd(key, channel_name)
        pipe.expire(key, self.ttl)
        pipe.execute()

    def deregister(self, driver_id, channel_name):
        self.client.srem(self._key(driver_id), channel_name)

    def refresh(self, driver_id):
        self.client.expire(self._key(driver_id), self.ttl)

    def is_connected(self, driver_id):
        return self.client.scard(self._key(driver_id)) > 0

    def connected_drivers(self, driver_ids):
        driver_ids = list(driver_ids)
        if not driver_ids:
            return set()
        pipe = self.client.pipeline()
        for driver_id in driver_ids:
            pipe.scard(self._key(driver_id))
        counts = pipe.execute()
        return {driver_id for driver_id, count in zip(driver_ids, counts) if count}


_registry: Optional[SessionRegistry] = None
_registry_lock = threading.Lock()


def get_session_registry() -> SessionRegistry:
    """Process-wide default registry selected by settings.DRIVER_SESSION_REGISTRY."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                backend = getattr(settings, "DRIVER_SESSION_REGISTRY", "redis")
                if backend == "memory":
                    _registry = InMemorySessionRegistry()
                else:
                    _registry = RedisSessionRegistry()
                logger.info("Driver session registry: %s", type(_registry).__name__)
    return _registry
