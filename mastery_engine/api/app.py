# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the application factory for the mastery engine API.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mastery_engine import __version__
from mastery_engine.api.dependencies import EngineRuntime, close_runtime, init_runtime
from mastery_engine.api.routes import health
from mastery_engine.api.v1 import router as v1_router
from mastery_engine.core.config import get_settings
from mastery_engine.infrastructure.background import (
    setup_dramatiq,
    shutdown_dramatiq,
    start_scheduler,
    stop_scheduler,
)
from mastery_engine.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Initializes and cleans up:
    - Database connections and Redis (unless a runtime was injected)
    - Dramatiq broker
    - Live broadcaster drain task and the Redis metrics relay
    - APScheduler for the periodic re-rank

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings = get_settings()
    setup_logging(settings)
    logger.info("Starting mastery engine API (environment=%s)", settings.environment)

    # =========================================================================
    # Startup
    # =========================================================================
    owns_runtime = getattr(app.state, "runtime", None) is None
    if owns_runtime:
        app.state.runtime = await init_runtime(settings)
        logger.info("Engine runtime initialized")

    runtime: EngineRuntime = app.state.runtime
    await runtime.broadcaster.start()
    if runtime.relay is not None:
        await runtime.relay.start()

    if owns_runtime:
        try:
            setup_dramatiq()
            logger.info("Dramatiq broker initialized")
        except Exception as e:
            logger.warning("Failed to setup Dramatiq: %s", str(e))

        try:
            await start_scheduler(settings.analytics.reconciliation_interval_minutes)
            logger.info("Scheduler started")
        except Exception as e:
            logger.warning("Failed to start scheduler: %s", str(e))

    yield

    # =========================================================================
    # Shutdown
    # =========================================================================
    if owns_runtime:
        await stop_scheduler()
        shutdown_dramatiq()

    if runtime.relay is not None:
        await runtime.relay.stop()
    await runtime.broadcaster.stop()

    if owns_runtime:
        await close_runtime()
        app.state.runtime = None

    logger.info("Shutting down mastery engine API")


def create_app(runtime: EngineRuntime | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        runtime: Prebuilt runtime; when given, the lifespan leaves the
            database, Redis, broker and scheduler alone.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Mastery Engine API",
        description="Learning mastery analytics and class ranking",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.runtime = runtime

    # =========================================================================
    # Middleware
    # =========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins_list,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
    )

    # =========================================================================
    # Routes
    # =========================================================================
    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app
