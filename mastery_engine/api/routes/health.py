# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides health and readiness endpoints for the API.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from mastery_engine import __version__
from mastery_engine.core.config import get_settings
from mastery_engine.infrastructure.background import get_scheduler_or_none
from mastery_engine.infrastructure.cache import get_redis_or_none

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class ComponentHealth(BaseModel):
    """Individual component health status."""
    status: str = Field(description="Component status")
    latency_ms: float | None = Field(None, description="Response latency in ms")
    message: str | None = Field(None, description="Additional status message")


class ComponentsHealth(BaseModel):
    """All components health status."""
    database: ComponentHealth | None = None
    redis: ComponentHealth | None = None
    broadcaster: dict[str, Any] = Field(default_factory=dict)
    relay: dict[str, Any] = Field(default_factory=dict)
    scheduler: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(description="Overall health status")
    version: str = Field(description="API version")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    checked_at: datetime = Field(description="When health was checked")
    components: ComponentsHealth = Field(default_factory=ComponentsHealth)


class ReadinessResponse(BaseModel):
    """Readiness check response model."""
    ready: bool = Field(description="Whether the service is ready")
    checks: dict[str, Any] = Field(description="Individual check results")


async def check_database(request: Request) -> ComponentHealth:
    """Check the store through the runtime's session factory."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return ComponentHealth(status="unhealthy", message="Engine not initialized")

    start = time.time()
    try:
        async with runtime.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return ComponentHealth(status="unhealthy", message=str(e))

    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


async def check_redis() -> ComponentHealth:
    """Check Redis connection; disabled Redis is reported, not failed."""
    client = get_redis_or_none()
    if client is None:
        return ComponentHealth(status="disabled", message="Running without Redis")

    start = time.time()
    if not await client.ping():
        return ComponentHealth(status="unhealthy", message="Ping failed")

    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check if the API is healthy with component details.

    Returns:
        HealthResponse with detailed status.
    """
    settings = get_settings()
    db_health = await check_database(request)
    redis_health = await check_redis()

    statuses = [db_health.status, redis_health.status]
    if "unhealthy" in statuses:
        overall_status = "unhealthy" if db_health.status == "unhealthy" else "degraded"
    else:
        overall_status = "healthy"

    runtime = getattr(request.app.state, "runtime", None)
    scheduler = get_scheduler_or_none()
    return HealthResponse(
        status=overall_status,
        version=__version__,
        environment=settings.environment,
        uptime_seconds=int(time.time() - _server_start_time),
        checked_at=datetime.now(timezone.utc),
        components=ComponentsHealth(
            database=db_health,
            redis=redis_health,
            broadcaster=runtime.broadcaster.get_stats() if runtime else {},
            relay=runtime.relay.get_stats() if runtime and runtime.relay else {},
            scheduler=scheduler.get_stats() if scheduler else {},
        ),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Check if the API is ready to accept traffic.

    Returns:
        ReadinessResponse with individual check results.
    """
    db_health = await check_database(request)
    redis_health = await check_redis()

    checks = {
        "database": {"status": db_health.status, "latency_ms": db_health.latency_ms},
        "redis": {"status": redis_health.status, "latency_ms": redis_health.latency_ms},
    }
    ready = db_health.status == "healthy" and redis_health.status != "unhealthy"
    return ReadinessResponse(ready=ready, checks=checks)
