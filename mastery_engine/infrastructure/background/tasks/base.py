# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base utilities for Dramatiq tasks.

Thread-Local Event Loop Management:
    Dramatiq workers use multiple threads (--threads N). SQLAlchemy async
    engines and asyncpg connections are bound to the event loop that
    created them, so each worker thread keeps one persistent loop and one
    WorkerRuntime (engine, session factory, cache, dispatcher) bound to it.
    When a thread's loop is replaced, its runtime is discarded with it.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Coroutine, TypeVar

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mastery_engine.core.config import Settings, get_settings
from mastery_engine.domains.analytics.rebuild import AggregateRebuilder
from mastery_engine.domains.realtime.dispatcher import RealtimeDispatcher
from mastery_engine.infrastructure.cache import (
    AnalyticsCache,
    NullCache,
    RedisAnalyticsCache,
    RedisClient,
    RedisError,
)
from mastery_engine.infrastructure.database import create_engine_for_url, create_sessionmaker
from mastery_engine.infrastructure.events import get_event_bus
from mastery_engine.infrastructure.notifications import (
    BaseChannel,
    DashboardNotifier,
    EventBusChannel,
    RedisPubSubChannel,
)
from mastery_engine.utils.logging import setup_logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Thread-local storage for event loops and runtimes
_thread_local = threading.local()


@dataclass
class WorkerRuntime:
    """Collaborators a worker thread needs to run the pipeline."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    cache: AnalyticsCache
    dispatcher: RealtimeDispatcher
    rebuilder: AggregateRebuilder
    redis: RedisClient | None = None

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.close()
        await self.engine.dispose()


async def build_worker_runtime(settings: Settings) -> WorkerRuntime:
    """Create a runtime bound to the running event loop.

    Redis is optional: when it is disabled or unreachable the worker runs
    with a NullCache and publishes on the in-process bus only.
    """
    engine = create_engine_for_url(
        settings.db.url,
        pool_size=settings.db.pool_size,
        max_overflow=settings.db.max_overflow,
        sqlite_busy_timeout=settings.db.sqlite_busy_timeout,
    )
    session_factory = create_sessionmaker(engine)

    redis: RedisClient | None = None
    if settings.redis.enabled:
        redis = RedisClient(settings)
        try:
            await redis.connect()
        except RedisError as e:
            logger.warning("Worker running without Redis: %s", e)
            redis = None

    cache: AnalyticsCache = (
        RedisAnalyticsCache(redis, default_ttl=settings.analytics.cache_ttl_seconds)
        if redis is not None
        else NullCache()
    )
    channels: list[BaseChannel] = [EventBusChannel(get_event_bus())]
    if redis is not None:
        channels.append(RedisPubSubChannel(redis))

    notifier = DashboardNotifier(channels, timeout=settings.analytics.notification_timeout_seconds)
    dispatcher = RealtimeDispatcher(
        session_factory,
        notifier=notifier,
        settings=settings.analytics,
        cache=cache,
    )
    return WorkerRuntime(
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        dispatcher=dispatcher,
        rebuilder=AggregateRebuilder(session_factory, cache=cache),
        redis=redis,
    )


async def get_worker_runtime() -> WorkerRuntime:
    """Runtime of the current worker thread, created on first use."""
    runtime = getattr(_thread_local, "runtime", None)
    if runtime is None:
        settings = get_settings()
        setup_logging(settings)
        runtime = await build_worker_runtime(settings)
        _thread_local.runtime = runtime
        logger.debug("Created worker runtime for thread %s", threading.current_thread().name)
    return runtime


def _get_thread_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the current thread.

    A new loop drops the thread's runtime, whose engine and Redis pool
    belonged to the previous loop.

    Returns:
        Event loop for current thread.
    """
    loop = getattr(_thread_local, "event_loop", None)

    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.event_loop = loop
        _thread_local.runtime = None

        logger.debug(
            "Created new event loop for thread %s",
            threading.current_thread().name,
        )

    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run async coroutine in sync Dramatiq worker context.

    Args:
        coro: Coroutine to run.

    Returns:
        Result of coroutine.

    Example:
        @dramatiq.actor
        def my_task(class_id: str):
            async def _process():
                runtime = await get_worker_runtime()
                return await runtime.dispatcher.reconcile_class(class_id)
            return run_async(_process())
    """
    loop = _get_thread_event_loop()
    return loop.run_until_complete(coro)


def close_thread_runtime() -> None:
    """Dispose the current thread's runtime, if any."""
    runtime = getattr(_thread_local, "runtime", None)
    if runtime is not None:
        run_async(runtime.close())
        _thread_local.runtime = None
