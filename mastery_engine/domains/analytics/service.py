# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read-only query surface over the aggregates.

Reads go through the injected AnalyticsCache first; the aggregators and
the dispatcher invalidate the matching keys whenever they rewrite a row.

Usage:
    service = AnalyticsQueryService(db, cache=cache)
    mastery = await service.get_topic_mastery("student-1", "topic-1")
    board = await service.get_class_leaderboard("class-1", limit=10)
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.mastery import TopicMasterySnapshot
from mastery_engine.domains.analytics.progression import ProgressionSnapshot
from mastery_engine.domains.rewards.ledger import PointsHistoryItem, PointsLedger, PointsSummary
from mastery_engine.domains.rewards.points import StudentLevel, derive_student_level
from mastery_engine.domains.rewards.ranking import RankedStanding, RankingService
from mastery_engine.infrastructure.cache import (
    AnalyticsCache,
    NullCache,
    progression_key,
    student_level_key,
    topic_mastery_key,
)
from mastery_engine.infrastructure.database.models import (
    BloomsProgression,
    PointsAggregate,
    StudentLevelRecord,
    TopicMastery,
)
from mastery_engine.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class AnalyticsQueryService:
    """Serves topic mastery, progression, levels, points and leaderboards.

    Attributes:
        cache_ttl: TTL for values this service caches.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: AnalyticsCache | None = None,
        cache_ttl: int = 300,
    ) -> None:
        self._db = db
        self._cache = cache or NullCache()
        self.cache_ttl = cache_ttl
        self._ranking = RankingService(self._cache)
        self._ledger = PointsLedger(self._cache)

    async def _cached(self, key: str, load) -> dict[str, Any] | None:
        cached = await self._cache.get(key)
        if cached is not None:
            return cached
        value = await load()
        if value is not None:
            await self._cache.set(key, value, self.cache_ttl)
        return value

    async def get_topic_mastery(
        self, student_id: str, topic_id: str
    ) -> TopicMasterySnapshot | None:
        """Mastery of a topic, or None when the student has no records in it."""

        async def load() -> dict[str, Any] | None:
            row = await self._db.get(TopicMastery, (student_id, topic_id))
            return TopicMasterySnapshot.from_row(row).to_dict() if row else None

        data = await self._cached(topic_mastery_key(student_id, topic_id), load)
        if data is None:
            return None
        return TopicMasterySnapshot.from_dict(data)

    async def get_subject_progression(
        self, student_id: str, subject_id: str
    ) -> ProgressionSnapshot | None:
        """Level distribution in a subject, or None before the first record."""

        async def load() -> dict[str, Any] | None:
            row = await self._db.get(BloomsProgression, (student_id, subject_id))
            return ProgressionSnapshot.from_row(row).to_dict() if row else None

        data = await self._cached(progression_key(student_id, subject_id), load)
        if data is None:
            return None
        return ProgressionSnapshot.from_dict(data)

    async def get_student_level(self, student_id: str) -> StudentLevel:
        """Stored level, or level 1 with zero points for an unknown student."""

        async def load() -> dict[str, Any]:
            row = await self._db.get(StudentLevelRecord, student_id)
            if row is None:
                return derive_student_level(0).to_dict()
            return StudentLevel(
                level=row.level,
                label=row.label,
                total_points=row.total_points,
                points_to_next_level=row.points_to_next_level,
            ).to_dict()

        data = await self._cached(student_level_key(student_id), load)
        return StudentLevel(**data)

    async def get_points_aggregate(self, student_id: str) -> PointsAggregate | None:
        return await self._db.get(PointsAggregate, student_id)

    async def get_class_leaderboard(
        self, class_id: str, limit: int | None = None
    ) -> list[RankedStanding]:
        """Standings ordered by rank."""
        return await self._ranking.get_class_leaderboard(self._db, class_id, limit)

    async def get_point_history(self, student_id: str, limit: int = 50) -> list[PointsHistoryItem]:
        return await self._ledger.get_point_history(self._db, student_id, limit)

    async def get_point_summary(
        self, student_id: str, now: datetime | None = None
    ) -> PointsSummary:
        return await self._ledger.get_point_summary(self._db, student_id, now or utc_now())
