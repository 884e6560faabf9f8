# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cache infrastructure.

Example:
    from mastery_engine.infrastructure.cache import (
        InMemoryTTLCache,
        RedisAnalyticsCache,
        init_redis,
    )

    client = await init_redis(settings)
    cache = RedisAnalyticsCache(client, default_ttl=300)
"""

from mastery_engine.infrastructure.cache.analytics_cache import (
    AnalyticsCache,
    InMemoryTTLCache,
    NullCache,
    RedisAnalyticsCache,
    account_key,
    leaderboard_key,
    progression_key,
    student_level_key,
    topic_mastery_key,
)
from mastery_engine.infrastructure.cache.redis_client import (
    RedisClient,
    RedisError,
    close_redis,
    get_redis,
    get_redis_or_none,
    init_redis,
)

__all__ = [
    "AnalyticsCache",
    "NullCache",
    "InMemoryTTLCache",
    "RedisAnalyticsCache",
    "topic_mastery_key",
    "progression_key",
    "student_level_key",
    "leaderboard_key",
    "account_key",
    "RedisClient",
    "RedisError",
    "close_redis",
    "get_redis",
    "get_redis_or_none",
    "init_redis",
]
