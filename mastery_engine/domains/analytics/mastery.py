# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Topic mastery aggregation.

TopicMastery(student, topic) is a pure function of the student's records
in that topic. Every recompute reads the full record set, folds it and
replaces the row; nothing is updated incrementally, so replaying any
number of events in any order converges on the same row.

Usage:
    aggregator = TopicMasteryAggregator(cache=cache)
    snapshot = await aggregator.recompute_topic_mastery(db, "student-1", "topic-1")
"""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.taxonomy import (
    ORDERED_LEVELS,
    MasteryLabel,
    TaxonomyLevel,
    level_index,
    mastery_label_for,
)
from mastery_engine.infrastructure.cache import AnalyticsCache, NullCache, topic_mastery_key
from mastery_engine.infrastructure.database.models import PerformanceRecord, TopicMastery
from mastery_engine.utils.datetime import ensure_utc, format_iso

logger = logging.getLogger(__name__)


class RecordLike(Protocol):
    submission_id: str
    percentage: float
    level_scores: dict[str, float]
    demonstrated_level: str
    time_spent_minutes: float
    graded_at: datetime


def _mean(values: Sequence[float]) -> float:
    # fsum is exact, so the mean does not depend on record order
    return math.fsum(values) / len(values)


def sort_records(records: Iterable[RecordLike]) -> list[RecordLike]:
    return sorted(records, key=lambda record: record.submission_id)


@dataclass(frozen=True)
class TopicMasterySnapshot:
    """Computed mastery of one topic by one student."""

    student_id: str
    topic_id: str
    mastery_percentage: float
    mastery_label: MasteryLabel
    level_distribution: dict[TaxonomyLevel, float]
    highest_demonstrated_level: TaxonomyLevel
    activities_completed: int
    total_time_spent_minutes: float
    last_activity_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "topic_id": self.topic_id,
            "mastery_percentage": round(self.mastery_percentage, 2),
            "mastery_label": self.mastery_label.value,
            "level_distribution": {
                level.value: round(score, 2) for level, score in self.level_distribution.items()
            },
            "highest_demonstrated_level": self.highest_demonstrated_level.value,
            "activities_completed": self.activities_completed,
            "total_time_spent_minutes": self.total_time_spent_minutes,
            "last_activity_at": format_iso(self.last_activity_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TopicMasterySnapshot":
        return cls(
            student_id=data["student_id"],
            topic_id=data["topic_id"],
            mastery_percentage=data["mastery_percentage"],
            mastery_label=MasteryLabel(data["mastery_label"]),
            level_distribution={
                TaxonomyLevel(level): score
                for level, score in data["level_distribution"].items()
            },
            highest_demonstrated_level=TaxonomyLevel(data["highest_demonstrated_level"]),
            activities_completed=data["activities_completed"],
            total_time_spent_minutes=data["total_time_spent_minutes"],
            last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
        )

    @classmethod
    def from_row(cls, row: TopicMastery) -> "TopicMasterySnapshot":
        return cls(
            student_id=row.student_id,
            topic_id=row.topic_id,
            mastery_percentage=row.mastery_percentage,
            mastery_label=MasteryLabel(row.mastery_label),
            level_distribution={
                TaxonomyLevel(level): score for level, score in row.level_distribution.items()
            },
            highest_demonstrated_level=TaxonomyLevel(row.highest_demonstrated_level),
            activities_completed=row.activities_completed,
            total_time_spent_minutes=row.total_time_spent_minutes,
            last_activity_at=ensure_utc(row.last_activity_at),
        )


def compute_level_distribution(records: Sequence[RecordLike]) -> dict[TaxonomyLevel, float]:
    """Mean sub-score per level over the records that include it; 0 when none do."""
    distribution: dict[TaxonomyLevel, float] = {}
    for level in ORDERED_LEVELS:
        scores = [
            record.level_scores[level.value]
            for record in records
            if level.value in record.level_scores
        ]
        distribution[level] = _mean(scores) if scores else 0.0
    return distribution


def compute_topic_mastery(
    student_id: str,
    topic_id: str,
    records: Iterable[RecordLike],
) -> TopicMasterySnapshot | None:
    """Fold a record set into a mastery snapshot.

    Args:
        student_id: Student the records belong to.
        topic_id: Topic the records belong to.
        records: Every performance record for the pair.

    Returns:
        The snapshot, or None when there are no records.
    """
    ordered = sort_records(records)
    if not ordered:
        return None

    mastery_percentage = _mean([record.percentage for record in ordered])
    highest = max(
        (TaxonomyLevel(record.demonstrated_level) for record in ordered),
        key=level_index,
    )

    return TopicMasterySnapshot(
        student_id=student_id,
        topic_id=topic_id,
        mastery_percentage=mastery_percentage,
        mastery_label=mastery_label_for(mastery_percentage),
        level_distribution=compute_level_distribution(ordered),
        highest_demonstrated_level=highest,
        activities_completed=len(ordered),
        total_time_spent_minutes=round(
            math.fsum(record.time_spent_minutes for record in ordered), 2
        ),
        last_activity_at=max(ensure_utc(record.graded_at) for record in ordered),
    )


class TopicMasteryAggregator:
    """Recomputes and persists TopicMastery rows.

    The caller holds the per-student lock and owns the transaction.
    """

    def __init__(self, cache: AnalyticsCache | None = None) -> None:
        self._cache = cache or NullCache()

    async def recompute_topic_mastery(
        self,
        db: AsyncSession,
        student_id: str,
        topic_id: str,
    ) -> TopicMasterySnapshot | None:
        """Replace TopicMastery(student, topic) with a fresh fold of its records.

        Args:
            db: Database session.
            student_id: Student identifier.
            topic_id: Topic identifier.

        Returns:
            The new snapshot, or None when the row was deleted because the
            pair has no records left.
        """
        result = await db.execute(
            select(PerformanceRecord).where(
                and_(
                    PerformanceRecord.student_id == student_id,
                    PerformanceRecord.topic_id == topic_id,
                )
            )
        )
        snapshot = compute_topic_mastery(student_id, topic_id, result.scalars().all())

        if snapshot is None:
            await db.execute(
                delete(TopicMastery).where(
                    and_(
                        TopicMastery.student_id == student_id,
                        TopicMastery.topic_id == topic_id,
                    )
                )
            )
            logger.info(
                "Topic mastery cleared: student=%s, topic=%s", student_id, topic_id
            )
        else:
            await self._save(db, snapshot)
            logger.info(
                "Topic mastery recomputed: student=%s, topic=%s, percentage=%.2f, label=%s",
                student_id,
                topic_id,
                snapshot.mastery_percentage,
                snapshot.mastery_label.value,
            )

        await db.flush()
        await self._cache.invalidate(topic_mastery_key(student_id, topic_id))
        return snapshot

    async def _save(self, db: AsyncSession, snapshot: TopicMasterySnapshot) -> None:
        existing = await db.get(TopicMastery, (snapshot.student_id, snapshot.topic_id))
        if existing is None:
            existing = TopicMastery(student_id=snapshot.student_id, topic_id=snapshot.topic_id)
            db.add(existing)

        existing.mastery_percentage = snapshot.mastery_percentage
        existing.mastery_label = snapshot.mastery_label.value
        existing.level_distribution = {
            level.value: score for level, score in snapshot.level_distribution.items()
        }
        existing.highest_demonstrated_level = snapshot.highest_demonstrated_level.value
        existing.activities_completed = snapshot.activities_completed
        existing.total_time_spent_minutes = snapshot.total_time_spent_minutes
        existing.last_activity_at = snapshot.last_activity_at
