# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Class and campus leaderboards.

Standings are a strict total order on
(total points desc, last earned at asc, student id asc): the student who
reached a total first ranks higher, and the id settles the rest. Students
who have never earned points sort after everyone who has.

Ranks are dense 1..N and percentile = round_half_up(100 * (N - rank + 1) / N).
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.infrastructure.cache import AnalyticsCache, NullCache, leaderboard_key
from mastery_engine.infrastructure.database.models import (
    ENROLLMENT_ACTIVE,
    ClassEnrollment,
    ClassLeaderboardEntry,
    PointsAggregate,
    SchoolClass,
)
from mastery_engine.utils.datetime import ensure_utc, format_iso

logger = logging.getLogger(__name__)

NEVER_EARNED = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Standing:
    student_id: str
    total_points: int
    last_earned_at: datetime | None

    @property
    def sort_key(self) -> tuple[int, datetime, str]:
        return (
            -self.total_points,
            ensure_utc(self.last_earned_at) or NEVER_EARNED,
            self.student_id,
        )


@dataclass(frozen=True)
class RankedStanding:
    student_id: str
    total_points: int
    last_earned_at: datetime | None
    rank: int
    percentile: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "total_points": self.total_points,
            "last_earned_at": format_iso(self.last_earned_at),
            "rank": self.rank,
            "percentile": self.percentile,
        }


def percentile_for(rank: int, population: int) -> int:
    """Round-half-up of 100 * (N - rank + 1) / N using integer arithmetic."""
    if population <= 0:
        raise ValueError("population must be positive")
    return (200 * (population - rank + 1) + population) // (2 * population)


def rank_standings(standings: Iterable[Standing]) -> list[RankedStanding]:
    """Sort standings by the leaderboard order and assign ranks and percentiles."""
    ordered = sorted(standings, key=lambda standing: standing.sort_key)
    population = len(ordered)
    return [
        RankedStanding(
            student_id=standing.student_id,
            total_points=standing.total_points,
            last_earned_at=ensure_utc(standing.last_earned_at),
            rank=position + 1,
            percentile=percentile_for(position + 1, population),
        )
        for position, standing in enumerate(ordered)
    ]


class RankingService:
    """Re-ranks classes and campuses and serves leaderboards.

    The caller holds the per-class (or per-campus) lock around each
    re-rank and owns the transaction.
    """

    def __init__(self, cache: AnalyticsCache | None = None) -> None:
        self._cache = cache or NullCache()

    async def get_active_student_ids(self, db: AsyncSession, class_id: str) -> list[str]:
        result = await db.execute(
            select(ClassEnrollment.student_id).where(
                and_(
                    ClassEnrollment.class_id == class_id,
                    ClassEnrollment.status == ENROLLMENT_ACTIVE,
                )
            )
        )
        return sorted(set(result.scalars().all()))

    async def get_active_class_ids(self, db: AsyncSession, student_id: str) -> list[str]:
        result = await db.execute(
            select(ClassEnrollment.class_id).where(
                and_(
                    ClassEnrollment.student_id == student_id,
                    ClassEnrollment.status == ENROLLMENT_ACTIVE,
                )
            )
        )
        return sorted(set(result.scalars().all()))

    async def get_campus_id(self, db: AsyncSession, class_id: str) -> str | None:
        school_class = await db.get(SchoolClass, class_id)
        return school_class.campus_id if school_class else None

    async def _load_aggregates(
        self, db: AsyncSession, student_ids: Sequence[str]
    ) -> dict[str, PointsAggregate]:
        if not student_ids:
            return {}
        result = await db.execute(
            select(PointsAggregate).where(PointsAggregate.student_id.in_(student_ids))
        )
        aggregates = {row.student_id: row for row in result.scalars().all()}
        for student_id in student_ids:
            if student_id not in aggregates:
                aggregate = PointsAggregate(student_id=student_id, total_points=0)
                db.add(aggregate)
                aggregates[student_id] = aggregate
        return aggregates

    async def rerank_class(self, db: AsyncSession, class_id: str) -> list[RankedStanding]:
        """Recompute ranks for every actively enrolled student of a class.

        Args:
            db: Database session.
            class_id: Class identifier.

        Returns:
            Standings ordered by rank.
        """
        student_ids = await self.get_active_student_ids(db, class_id)
        aggregates = await self._load_aggregates(db, student_ids)
        ranked = rank_standings(
            Standing(a.student_id, a.total_points or 0, a.last_earned_at)
            for a in aggregates.values()
        )

        result = await db.execute(
            select(ClassLeaderboardEntry).where(ClassLeaderboardEntry.class_id == class_id)
        )
        entries = {row.student_id: row for row in result.scalars().all()}
        ranked_ids = {standing.student_id for standing in ranked}
        for student_id, stale in entries.items():
            if student_id not in ranked_ids:
                await db.delete(stale)

        for standing in ranked:
            aggregate = aggregates[standing.student_id]
            aggregate.ranked_class_id = class_id
            aggregate.class_rank = standing.rank
            aggregate.class_percentile = standing.percentile

            entry = entries.get(standing.student_id)
            if entry is None:
                entry = ClassLeaderboardEntry(class_id=class_id, student_id=standing.student_id)
                db.add(entry)
            entry.rank = standing.rank
            entry.percentile = standing.percentile
            entry.total_points = standing.total_points
            entry.last_earned_at = standing.last_earned_at

        await db.flush()
        await self._cache.invalidate(leaderboard_key(class_id))
        logger.info("Class re-ranked: class=%s, students=%d", class_id, len(ranked))
        return ranked

    async def rerank_campus(self, db: AsyncSession, campus_id: str) -> list[RankedStanding]:
        """Recompute campus ranks over the distinct active students of its classes."""
        result = await db.execute(
            select(ClassEnrollment.student_id)
            .join(SchoolClass, SchoolClass.id == ClassEnrollment.class_id)
            .where(
                and_(
                    SchoolClass.campus_id == campus_id,
                    ClassEnrollment.status == ENROLLMENT_ACTIVE,
                )
            )
        )
        student_ids = sorted(set(result.scalars().all()))
        aggregates = await self._load_aggregates(db, student_ids)
        ranked = rank_standings(
            Standing(a.student_id, a.total_points or 0, a.last_earned_at)
            for a in aggregates.values()
        )

        for standing in ranked:
            aggregate = aggregates[standing.student_id]
            aggregate.campus_id = campus_id
            aggregate.campus_rank = standing.rank
            aggregate.campus_percentile = standing.percentile

        await db.flush()
        logger.info("Campus re-ranked: campus=%s, students=%d", campus_id, len(ranked))
        return ranked

    async def get_class_leaderboard(
        self, db: AsyncSession, class_id: str, limit: int | None = None
    ) -> list[RankedStanding]:
        """Stored standings of a class ordered by rank."""
        key = leaderboard_key(class_id)
        cached = await self._cache.get(key)
        if cached is None:
            result = await db.execute(
                select(ClassLeaderboardEntry)
                .where(ClassLeaderboardEntry.class_id == class_id)
                .order_by(ClassLeaderboardEntry.rank)
            )
            cached = [
                RankedStanding(
                    student_id=row.student_id,
                    total_points=row.total_points,
                    last_earned_at=ensure_utc(row.last_earned_at),
                    rank=row.rank,
                    percentile=row.percentile,
                ).to_dict()
                for row in result.scalars().all()
            ]
            await self._cache.set(key, cached)

        standings = [
            RankedStanding(
                student_id=item["student_id"],
                total_points=item["total_points"],
                last_earned_at=(
                    datetime.fromisoformat(item["last_earned_at"])
                    if item["last_earned_at"]
                    else None
                ),
                rank=item["rank"],
                percentile=item["percentile"],
            )
            for item in cached
        ]
        return standings[:limit] if limit is not None else standings
