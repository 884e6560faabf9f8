# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Aggregate rebuild.

Every aggregate is a function of performance_records and points_entries,
so the aggregate tables can be emptied and replayed at any time. This is
the recovery path after a schema change or a suspected drift.

Usage:
    rebuilder = AggregateRebuilder(get_sessionmaker(), cache=cache)
    stats = await rebuilder.rebuild_all()
"""

import logging
from dataclasses import asdict, dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mastery_engine.domains.analytics.exceptions import TransientStoreFailure
from mastery_engine.domains.analytics.mastery import TopicMasteryAggregator
from mastery_engine.domains.analytics.progression import SubjectProgressionAggregator
from mastery_engine.domains.rewards.ledger import PointsLedger
from mastery_engine.domains.rewards.ranking import RankingService
from mastery_engine.infrastructure.cache import AnalyticsCache, NullCache
from mastery_engine.infrastructure.database.models import (
    ENROLLMENT_ACTIVE,
    BloomsProgression,
    ClassEnrollment,
    ClassLeaderboardEntry,
    PerformanceRecord,
    PointsAggregate,
    PointsEntry,
    SchoolClass,
    StudentLevelRecord,
    TopicMastery,
)

logger = logging.getLogger(__name__)

AGGREGATE_MODELS = (
    TopicMastery,
    BloomsProgression,
    ClassLeaderboardEntry,
    StudentLevelRecord,
    PointsAggregate,
)


@dataclass
class RebuildStats:
    topic_masteries: int = 0
    progressions: int = 0
    students: int = 0
    classes: int = 0
    campuses: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class AggregateRebuilder:
    """Empties the aggregate tables and replays them from the source rows.

    The whole rebuild runs in one transaction, so readers never observe a
    half-rebuilt state. It should not run concurrently with the dispatcher.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: AnalyticsCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache or NullCache()
        self._mastery = TopicMasteryAggregator(self._cache)
        self._progression = SubjectProgressionAggregator(self._cache)
        self._ledger = PointsLedger(self._cache)
        self._ranking = RankingService(self._cache)

    async def rebuild_all(self) -> RebuildStats:
        """Rebuild every aggregate.

        Returns:
            Counts of the rows rebuilt.

        Raises:
            TransientStoreFailure: If the store fails; nothing is committed.
        """
        try:
            async with self._session_factory() as db:
                try:
                    stats = await self._rebuild(db)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        except SQLAlchemyError as e:
            raise TransientStoreFailure("Aggregate rebuild failed", e) from e

        logger.info("Aggregates rebuilt: %s", stats.to_dict())
        return stats

    async def _rebuild(self, db: AsyncSession) -> RebuildStats:
        stats = RebuildStats()
        for model in AGGREGATE_MODELS:
            await db.execute(delete(model))
        await db.flush()

        topic_pairs = await db.execute(
            select(PerformanceRecord.student_id, PerformanceRecord.topic_id).distinct()
        )
        for student_id, topic_id in sorted(topic_pairs.all()):
            await self._mastery.recompute_topic_mastery(db, student_id, topic_id)
            stats.topic_masteries += 1

        subject_pairs = await db.execute(
            select(PerformanceRecord.student_id, PerformanceRecord.subject_id).distinct()
        )
        for student_id, subject_id in sorted(subject_pairs.all()):
            await self._progression.recompute_progression(db, student_id, subject_id)
            stats.progressions += 1

        students = await db.execute(select(PointsEntry.student_id).distinct())
        for student_id in sorted(students.scalars().all()):
            aggregate = await self._ledger.recompute_aggregate(db, student_id)
            await self._ledger.refresh_student_level(db, student_id, aggregate.total_points)
            stats.students += 1

        classes = await db.execute(
            select(ClassEnrollment.class_id)
            .where(ClassEnrollment.status == ENROLLMENT_ACTIVE)
            .distinct()
        )
        for class_id in sorted(classes.scalars().all()):
            await self._ranking.rerank_class(db, class_id)
            stats.classes += 1

        campuses = await db.execute(
            select(SchoolClass.campus_id).where(SchoolClass.campus_id.is_not(None)).distinct()
        )
        for campus_id in sorted(campuses.scalars().all()):
            await self._ranking.rerank_campus(db, campus_id)
            stats.campuses += 1

        return stats
