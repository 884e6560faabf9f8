# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

The engine's collaborators are bundled in an EngineRuntime stored on
``app.state.runtime``. The lifespan builds it from settings; tests pass a
prebuilt runtime to create_app().

Example:
    @router.get("/students/{student_id}/level")
    async def get_level(
        student_id: str,
        service: AnalyticsQueryService = Depends(get_query_service),
    ):
        ...
"""

import logging
from dataclasses import dataclass, field
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mastery_engine.core.config import Settings
from mastery_engine.domains.analytics.service import AnalyticsQueryService
from mastery_engine.domains.realtime import LiveBroadcaster, MetricsRelay, RealtimeDispatcher
from mastery_engine.infrastructure.cache import (
    AnalyticsCache,
    InMemoryTTLCache,
    RedisAnalyticsCache,
    RedisError,
    close_redis,
    init_redis,
)
from mastery_engine.infrastructure.database import (
    close_database,
    get_sessionmaker,
    init_database,
)
from mastery_engine.infrastructure.events import EventBus, get_event_bus
from mastery_engine.infrastructure.notifications import (
    BaseChannel,
    DashboardNotifier,
    EventBusChannel,
    RedisPubSubChannel,
)

logger = logging.getLogger(__name__)


@dataclass
class EngineRuntime:
    """Collaborators shared by every request of one API process.

    relay is set when Redis is up; it feeds live metrics published by
    workers and other replicas into this process's broadcaster.
    """

    session_factory: async_sessionmaker[AsyncSession]
    dispatcher: RealtimeDispatcher
    broadcaster: LiveBroadcaster
    cache: AnalyticsCache
    bus: EventBus = field(default_factory=get_event_bus)
    cache_ttl: int = 300
    relay: MetricsRelay | None = None


def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: AnalyticsCache,
    channels: list[BaseChannel],
    bus: EventBus,
) -> EngineRuntime:
    """Wire the dispatcher and broadcaster around a session factory."""
    analytics = settings.analytics
    broadcaster = LiveBroadcaster(
        send_timeout=analytics.notification_timeout_seconds,
        max_pending=analytics.broadcast_queue_limit,
    )
    notifier = DashboardNotifier(channels, timeout=analytics.notification_timeout_seconds)
    dispatcher = RealtimeDispatcher(
        session_factory,
        notifier=notifier,
        broadcaster=broadcaster,
        settings=analytics,
        cache=cache,
    )
    return EngineRuntime(
        session_factory=session_factory,
        dispatcher=dispatcher,
        broadcaster=broadcaster,
        cache=cache,
        bus=bus,
        cache_ttl=analytics.cache_ttl_seconds,
    )


async def init_runtime(settings: Settings) -> EngineRuntime:
    """Initialize the database, Redis when enabled, and the runtime.

    Without Redis the API falls back to an in-process TTL cache, publishes
    on the in-process event bus only, and has no relay: live dashboards
    then see metrics from this process's own dispatcher only.
    """
    await init_database(settings)

    bus = get_event_bus()
    channels: list[BaseChannel] = [EventBusChannel(bus)]
    cache: AnalyticsCache = InMemoryTTLCache(default_ttl=settings.analytics.cache_ttl_seconds)
    redis = None
    origin = str(uuid4())

    if settings.redis.enabled:
        try:
            redis = await init_redis(settings)
            cache = RedisAnalyticsCache(redis, default_ttl=settings.analytics.cache_ttl_seconds)
            channels.append(RedisPubSubChannel(redis, origin=origin))
            logger.info("Redis connection initialized")
        except RedisError as e:
            redis = None
            logger.warning("Failed to initialize Redis, using in-process cache: %s", str(e))

    runtime = build_runtime(settings, get_sessionmaker(), cache, channels, bus)
    if redis is not None:
        runtime.relay = MetricsRelay(redis, runtime.broadcaster, origin=origin)
    return runtime


async def close_runtime() -> None:
    await close_redis()
    await close_database()


def get_runtime(request: Request) -> EngineRuntime:
    """Get the runtime of the current application.

    Raises:
        HTTPException: 503 if the runtime is not initialized.
    """
    runtime: EngineRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not initialized",
        )
    return runtime


async def get_db(
    runtime: EngineRuntime = Depends(get_runtime),
) -> AsyncGenerator[AsyncSession, None]:
    """Read-only session for query endpoints.

    Raises:
        HTTPException: 503 if the store is unavailable.
    """
    async with runtime.session_factory() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error("Database error while serving request: %s", e)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Store unavailable",
            ) from e


def get_dispatcher(runtime: EngineRuntime = Depends(get_runtime)) -> RealtimeDispatcher:
    return runtime.dispatcher


def get_query_service(
    db: AsyncSession = Depends(get_db),
    runtime: EngineRuntime = Depends(get_runtime),
) -> AnalyticsQueryService:
    return AnalyticsQueryService(db, cache=runtime.cache, cache_ttl=runtime.cache_ttl)
