# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Points ledger.

Every award is a PointsEntry keyed by (student, source type, source id).
Grade entries are replaced when a submission is re-graded; achievement
entries are written once. PointsAggregate and StudentLevel are recomputed
from the entries, never incremented.

Usage:
    ledger = PointsLedger(cache=cache)
    await ledger.award_grade_points(db, draft)
    aggregate = await ledger.recompute_aggregate(db, draft.student_id)
    level = await ledger.refresh_student_level(db, draft.student_id, aggregate.total_points)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.events import AchievementUnlocked
from mastery_engine.domains.analytics.records import RecordDraft
from mastery_engine.domains.rewards.points import (
    ACHIEVEMENT_POINTS,
    PointsSourceType,
    StudentLevel,
    achievement_description,
    derive_student_level,
    grade_description,
    grade_points,
)
from mastery_engine.infrastructure.cache import AnalyticsCache, NullCache, student_level_key
from mastery_engine.infrastructure.database.models import (
    PerformanceRecord,
    PointsAggregate,
    PointsEntry,
    StudentLevelRecord,
)
from mastery_engine.utils.datetime import (
    ensure_utc,
    format_iso,
    start_of_day,
    start_of_month,
    start_of_week,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointsHistoryItem:
    source_type: str
    source_id: str
    points: int
    description: str
    earned_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "points": self.points,
            "description": self.description,
            "earned_at": format_iso(self.earned_at),
        }


@dataclass(frozen=True)
class PointsSummary:
    """Points earned per period, plus the current level."""

    student_id: str
    total: int
    today: int
    this_week: int
    this_month: int
    level: StudentLevel

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "total": self.total,
            "today": self.today,
            "this_week": self.this_week,
            "this_month": self.this_month,
            "level": self.level.to_dict(),
        }


class PointsLedger:
    """Writes ledger entries and derives per-student totals and levels."""

    def __init__(self, cache: AnalyticsCache | None = None) -> None:
        self._cache = cache or NullCache()

    async def _get_entry(
        self,
        db: AsyncSession,
        student_id: str,
        source_type: PointsSourceType,
        source_id: str,
    ) -> PointsEntry | None:
        result = await db.execute(
            select(PointsEntry).where(
                and_(
                    PointsEntry.student_id == student_id,
                    PointsEntry.source_type == source_type.value,
                    PointsEntry.source_id == source_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def award_grade_points(
        self, db: AsyncSession, draft: RecordDraft | PerformanceRecord
    ) -> PointsEntry:
        """Insert or replace the activity_grade entry for a submission.

        Args:
            db: Database session.
            draft: The draft or stored record the points are derived from.

        Returns:
            The stored entry.
        """
        points = grade_points(draft.percentage, draft.score, draft.max_score)
        entry = await self._get_entry(
            db, draft.student_id, PointsSourceType.ACTIVITY_GRADE, draft.submission_id
        )
        if entry is None:
            entry = PointsEntry(
                student_id=draft.student_id,
                source_type=PointsSourceType.ACTIVITY_GRADE.value,
                source_id=draft.submission_id,
            )
            db.add(entry)

        entry.points = points
        entry.description = grade_description(draft.activity_id, draft.percentage)
        entry.earned_at = ensure_utc(draft.graded_at)
        await db.flush()

        logger.info(
            "Grade points recorded: student=%s, submission=%s, points=%d",
            draft.student_id,
            draft.submission_id,
            points,
        )
        return entry

    async def award_achievement(
        self, db: AsyncSession, event: AchievementUnlocked
    ) -> tuple[PointsEntry, bool]:
        """Record the flat achievement award once.

        Returns:
            Tuple of (entry, created). created is False when the achievement
            had already been awarded; the existing entry is left untouched.
        """
        existing = await self._get_entry(
            db, event.student_id, PointsSourceType.ACHIEVEMENT, event.achievement_id
        )
        if existing is not None:
            logger.info(
                "Achievement already awarded: student=%s, achievement=%s",
                event.student_id,
                event.achievement_id,
            )
            return existing, False

        entry = PointsEntry(
            student_id=event.student_id,
            source_type=PointsSourceType.ACHIEVEMENT.value,
            source_id=event.achievement_id,
            points=ACHIEVEMENT_POINTS,
            description=achievement_description(event.achievement_id, event.title),
            earned_at=event.unlocked_at,
        )
        db.add(entry)
        await db.flush()
        logger.info(
            "Achievement points recorded: student=%s, achievement=%s",
            event.student_id,
            event.achievement_id,
        )
        return entry, True

    async def remove_grade_entry(
        self, db: AsyncSession, student_id: str, submission_id: str
    ) -> None:
        """Drop a grade entry left behind when a submission moved to another student."""
        await db.execute(
            delete(PointsEntry).where(
                and_(
                    PointsEntry.student_id == student_id,
                    PointsEntry.source_type == PointsSourceType.ACTIVITY_GRADE.value,
                    PointsEntry.source_id == submission_id,
                )
            )
        )

    async def recompute_aggregate(self, db: AsyncSession, student_id: str) -> PointsAggregate:
        """Replace total_points and last_earned_at from the student's entries.

        Rank fields are left for the ranking service.
        """
        result = await db.execute(
            select(
                func.coalesce(func.sum(PointsEntry.points), 0),
                func.max(PointsEntry.earned_at),
            ).where(PointsEntry.student_id == student_id)
        )
        total, last_earned_at = result.one()

        aggregate = await db.get(PointsAggregate, student_id)
        if aggregate is None:
            aggregate = PointsAggregate(student_id=student_id)
            db.add(aggregate)

        aggregate.total_points = int(total)
        aggregate.last_earned_at = ensure_utc(last_earned_at)
        await db.flush()

        logger.info(
            "Points aggregate recomputed: student=%s, total=%d",
            student_id,
            aggregate.total_points,
        )
        return aggregate

    async def refresh_student_level(
        self, db: AsyncSession, student_id: str, total_points: int
    ) -> StudentLevel:
        """Persist the level derived from a points total."""
        level = derive_student_level(total_points)

        row = await db.get(StudentLevelRecord, student_id)
        if row is None:
            row = StudentLevelRecord(student_id=student_id)
            db.add(row)

        row.level = level.level
        row.label = level.label
        row.total_points = level.total_points
        row.points_to_next_level = level.points_to_next_level
        await db.flush()
        await self._cache.invalidate(student_level_key(student_id))
        return level

    async def get_point_history(
        self, db: AsyncSession, student_id: str, limit: int = 50
    ) -> list[PointsHistoryItem]:
        """Most recent ledger entries first."""
        result = await db.execute(
            select(PointsEntry)
            .where(PointsEntry.student_id == student_id)
            .order_by(PointsEntry.earned_at.desc(), PointsEntry.source_id)
            .limit(limit)
        )
        return [
            PointsHistoryItem(
                source_type=entry.source_type,
                source_id=entry.source_id,
                points=entry.points,
                description=entry.description,
                earned_at=ensure_utc(entry.earned_at),
            )
            for entry in result.scalars().all()
        ]

    async def get_point_summary(
        self, db: AsyncSession, student_id: str, now: datetime
    ) -> PointsSummary:
        """Points earned today, this week, this month and overall, as of now."""
        result = await db.execute(
            select(PointsEntry.points, PointsEntry.earned_at).where(
                PointsEntry.student_id == student_id
            )
        )
        day_start = start_of_day(now)
        week_start = start_of_week(now)
        month_start = start_of_month(now)

        total = today = this_week = this_month = 0
        for points, earned_at in result.all():
            earned_at = ensure_utc(earned_at)
            total += points
            if earned_at >= day_start:
                today += points
            if earned_at >= week_start:
                this_week += points
            if earned_at >= month_start:
                this_month += points

        return PointsSummary(
            student_id=student_id,
            total=total,
            today=today,
            this_week=this_week,
            this_month=this_month,
            level=derive_student_level(total),
        )
