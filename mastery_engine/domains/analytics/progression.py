# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Subject progression aggregation.

BloomsProgression(student, subject) counts how often each level was
demonstrated in the subject. Like topic mastery it is rebuilt from the
full record set on every recompute.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.events import BloomsProgressionUpdated
from mastery_engine.domains.analytics.mastery import RecordLike
from mastery_engine.domains.taxonomy import (
    ORDERED_LEVELS,
    TaxonomyLevel,
    level_index,
    lowest_level,
)
from mastery_engine.infrastructure.cache import AnalyticsCache, NullCache, progression_key
from mastery_engine.infrastructure.database.models import BloomsProgression, PerformanceRecord
from mastery_engine.utils.datetime import ensure_utc, format_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressionSnapshot:
    """Computed level distribution of one student in one subject."""

    student_id: str
    subject_id: str
    level_counts: dict[TaxonomyLevel, int]
    last_demonstrated_level: TaxonomyLevel
    total_records: int
    last_activity_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "subject_id": self.subject_id,
            "level_counts": {level.value: count for level, count in self.level_counts.items()},
            "last_demonstrated_level": self.last_demonstrated_level.value,
            "total_records": self.total_records,
            "last_activity_at": format_iso(self.last_activity_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProgressionSnapshot":
        last_activity_at = data.get("last_activity_at")
        return cls(
            student_id=data["student_id"],
            subject_id=data["subject_id"],
            level_counts={
                level: int(data["level_counts"].get(level.value, 0)) for level in ORDERED_LEVELS
            },
            last_demonstrated_level=TaxonomyLevel(data["last_demonstrated_level"]),
            total_records=data["total_records"],
            last_activity_at=datetime.fromisoformat(last_activity_at) if last_activity_at else None,
        )

    @classmethod
    def from_row(cls, row: BloomsProgression) -> "ProgressionSnapshot":
        return cls(
            student_id=row.student_id,
            subject_id=row.subject_id,
            level_counts={
                level: int(row.level_counts.get(level.value, 0)) for level in ORDERED_LEVELS
            },
            last_demonstrated_level=TaxonomyLevel(row.last_demonstrated_level),
            total_records=row.total_records,
            last_activity_at=ensure_utc(row.last_activity_at),
        )


def compute_progression(
    student_id: str,
    subject_id: str,
    records: Iterable[RecordLike],
) -> ProgressionSnapshot:
    """Count demonstrated levels.

    The last demonstrated level is the highest level with a nonzero count,
    or the lowest level when the record set is empty.
    """
    counts = {level: 0 for level in ORDERED_LEVELS}
    last_activity_at: datetime | None = None
    total = 0

    for record in records:
        counts[TaxonomyLevel(record.demonstrated_level)] += 1
        total += 1
        graded_at = ensure_utc(record.graded_at)
        if last_activity_at is None or graded_at > last_activity_at:
            last_activity_at = graded_at

    demonstrated = [level for level, count in counts.items() if count > 0]
    last_level = max(demonstrated, key=level_index) if demonstrated else lowest_level()

    return ProgressionSnapshot(
        student_id=student_id,
        subject_id=subject_id,
        level_counts=counts,
        last_demonstrated_level=last_level,
        total_records=total,
        last_activity_at=last_activity_at,
    )


def detect_progression_change(
    student_id: str,
    subject_id: str,
    previous_level: TaxonomyLevel | None,
    new_level: TaxonomyLevel,
) -> BloomsProgressionUpdated | None:
    """Compare a newly demonstrated level with the subject's previous level.

    A higher level is an achievement. Dropping by more than one level is a
    regression; a single-step dip is normal variation and is ignored.
    """
    if previous_level is None:
        return None

    delta = level_index(new_level) - level_index(previous_level)
    if delta > 0:
        change = "level_achieved"
    elif delta < -1:
        change = "regression_detected"
    else:
        return None

    return BloomsProgressionUpdated(
        student_id=student_id,
        subject_id=subject_id,
        change=change,
        previous_level=previous_level,
        new_level=new_level,
    )


class SubjectProgressionAggregator:
    """Recomputes and persists BloomsProgression rows."""

    def __init__(self, cache: AnalyticsCache | None = None) -> None:
        self._cache = cache or NullCache()

    async def get_last_level(
        self, db: AsyncSession, student_id: str, subject_id: str
    ) -> TaxonomyLevel | None:
        row = await db.get(BloomsProgression, (student_id, subject_id))
        if row is None or row.total_records == 0:
            return None
        return TaxonomyLevel(row.last_demonstrated_level)

    async def recompute_progression(
        self,
        db: AsyncSession,
        student_id: str,
        subject_id: str,
    ) -> ProgressionSnapshot:
        """Replace BloomsProgression(student, subject) from its records.

        Args:
            db: Database session.
            student_id: Student identifier.
            subject_id: Subject identifier.

        Returns:
            The new snapshot. An empty record set yields zero counts and the
            lowest level.
        """
        result = await db.execute(
            select(PerformanceRecord).where(
                and_(
                    PerformanceRecord.student_id == student_id,
                    PerformanceRecord.subject_id == subject_id,
                )
            )
        )
        snapshot = compute_progression(student_id, subject_id, result.scalars().all())

        existing = await db.get(BloomsProgression, (student_id, subject_id))
        if existing is None:
            existing = BloomsProgression(student_id=student_id, subject_id=subject_id)
            db.add(existing)

        existing.level_counts = {
            level.value: count for level, count in snapshot.level_counts.items()
        }
        existing.last_demonstrated_level = snapshot.last_demonstrated_level.value
        existing.total_records = snapshot.total_records
        existing.last_activity_at = snapshot.last_activity_at

        await db.flush()
        await self._cache.invalidate(progression_key(student_id, subject_id))
        logger.info(
            "Subject progression recomputed: student=%s, subject=%s, level=%s, records=%d",
            student_id,
            subject_id,
            snapshot.last_demonstrated_level.value,
            snapshot.total_records,
        )
        return snapshot
