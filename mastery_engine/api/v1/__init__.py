# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    analytics: Event ingestion and mastery, level, points and leaderboard queries.
    realtime: Live dashboard WebSocket.
"""

from fastapi import APIRouter

from mastery_engine.api.v1 import analytics, realtime

# Create the main v1 router
router = APIRouter(prefix="/api/v1")

router.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])
router.include_router(realtime.router, prefix="/analytics", tags=["Realtime"])

__all__ = ["router"]
