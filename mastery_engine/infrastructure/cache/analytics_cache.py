# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Injectable cache used by aggregators and the query service.

Nothing in the engine holds a process-wide cache. Each component receives
an AnalyticsCache and owns its keys, TTLs and invalidation:

- NullCache: never stores anything; the default and the test double.
- InMemoryTTLCache: per-instance dict with expiry from an injectable clock.
- RedisAnalyticsCache: shared cache backed by RedisClient.

Cache failures never fail a computation; Redis errors are logged and the
caller falls back to the store.
"""

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from mastery_engine.infrastructure.cache.redis_client import RedisClient, RedisError

logger = logging.getLogger(__name__)


@runtime_checkable
class AnalyticsCache(Protocol):
    """Minimal async key/value cache with TTL and explicit invalidation."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ...

    async def invalidate(self, *keys: str) -> None:
        ...


class NullCache:
    """A cache that never hits."""

    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        return None

    async def invalidate(self, *keys: str) -> None:
        return None


class InMemoryTTLCache:
    """Per-instance TTL cache.

    Attributes:
        default_ttl: TTL applied when set() is called without one.
    """

    def __init__(
        self,
        default_ttl: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        self._entries[key] = (self._clock() + ttl, value)

    async def invalidate(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisAnalyticsCache:
    """AnalyticsCache over the namespaced RedisClient."""

    KEY_PREFIX = "cache"

    def __init__(self, client: RedisClient, default_ttl: int = 300) -> None:
        self._client = client
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            return await self._client.get(self._key(key))
        except RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        try:
            await self._client.set(self._key(key), value, expire_seconds=ttl)
        except RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    async def invalidate(self, *keys: str) -> None:
        try:
            await self._client.delete(*(self._key(key) for key in keys))
        except RedisError as e:
            logger.warning("Cache invalidation failed for %s: %s", ", ".join(keys), e)


def topic_mastery_key(student_id: str, topic_id: str) -> str:
    return f"topic_mastery:{student_id}:{topic_id}"


def progression_key(student_id: str, subject_id: str) -> str:
    return f"progression:{student_id}:{subject_id}"


def student_level_key(student_id: str) -> str:
    return f"student_level:{student_id}"


def leaderboard_key(class_id: str) -> str:
    return f"leaderboard:{class_id}"


def account_key(student_id: str) -> str:
    return f"account:{student_id}"
