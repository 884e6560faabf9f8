# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for caching and dashboard pub/sub.

This module provides an async Redis client wrapper. Every key and channel
is prefixed with a namespace so that several engine deployments can share
one Redis instance.

Example:
    from mastery_engine.infrastructure.cache import init_redis, get_redis

    # Initialize at startup
    await init_redis(settings)

    # Use the client
    redis = get_redis()
    await redis.set("leaderboard:class-1", entries, expire_seconds=300)
"""

import json
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from mastery_engine.core.config.settings import Settings

_redis_client: Optional["RedisClient"] = None


class RedisError(Exception):
    """Exception raised for Redis operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Redis error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class RedisClient:
    """Async Redis client with namespaced keys and JSON values.

    Attributes:
        namespace: Prefix applied to every key and channel.

    Example:
        client = RedisClient(settings)
        await client.connect()
        await client.set("key", {"a": 1})
        value = await client.get("key")
        await client.close()
    """

    DEFAULT_NAMESPACE = "mastery"

    def __init__(self, settings: "Settings", namespace: str = DEFAULT_NAMESPACE) -> None:
        self._settings = settings
        self.namespace = namespace
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def connect(self) -> None:
        """Create the Redis connection pool.

        Raises:
            RedisError: If connection fails.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)

            await self._redis.ping()
        except BaseRedisError as e:
            raise RedisError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _serialize(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=str)

    def _deserialize(self, value: Optional[str]) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(
        self,
        key: str,
        value: Any,
        expire_seconds: Optional[int] = None,
    ) -> None:
        """Set a key-value pair.

        Args:
            key: The key, without namespace.
            value: The value (will be JSON serialized if not a string).
            expire_seconds: Optional expiration time in seconds.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            await redis.set(self._key(key), self._serialize(value), ex=expire_seconds)
        except BaseRedisError as e:
            raise RedisError(f"Failed to set key: {key}", e) from e

    async def get(self, key: str) -> Any:
        """Get a deserialized value by key, or None if missing.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            value = await redis.get(self._key(key))
            return self._deserialize(value)
        except BaseRedisError as e:
            raise RedisError(f"Failed to get key: {key}", e) from e

    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed.

        Raises:
            RedisError: If the operation fails.
        """
        if not keys:
            return 0
        redis = self._ensure_connected()
        try:
            return await redis.delete(*(self._key(key) for key in keys))
        except BaseRedisError as e:
            raise RedisError(f"Failed to delete keys: {', '.join(keys)}", e) from e

    async def publish(self, channel: str, message: Any) -> int:
        """Publish a message to a namespaced channel.

        Returns:
            Number of subscribers that received the message.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.publish(self._key(channel), self._serialize(message))
        except BaseRedisError as e:
            raise RedisError(f"Failed to publish to channel: {channel}", e) from e

    async def listen(self, channel: str) -> AsyncIterator[Any]:
        """Subscribe to a namespaced channel and yield its messages, deserialized.

        The subscription holds its own connection until the iterator is
        closed.

        Raises:
            RedisError: If subscribing fails or the connection drops.
        """
        redis = self._ensure_connected()
        pubsub = redis.pubsub()
        try:
            await pubsub.subscribe(self._key(channel))
            async for message in pubsub.listen():
                if message["type"] == "message":
                    yield self._deserialize(message["data"])
        except BaseRedisError as e:
            raise RedisError(f"Subscription to channel failed: {channel}", e) from e
        finally:
            await pubsub.aclose()

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            redis = self._ensure_connected()
            await redis.ping()
            return True
        except (RedisError, BaseRedisError):
            return False


async def init_redis(settings: "Settings") -> RedisClient:
    """Initialize the global Redis client.

    Raises:
        RedisError: If connection fails.
    """
    global _redis_client

    _redis_client = RedisClient(settings)
    await _redis_client.connect()
    return _redis_client


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def get_redis() -> RedisClient:
    """Get the global Redis client.

    Raises:
        RedisError: If Redis has not been initialized.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def get_redis_or_none() -> RedisClient | None:
    return _redis_client
