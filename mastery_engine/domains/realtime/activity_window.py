# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Recent-activity window and the live metrics derived from it.

The window is the student's most recent graded records, read from the
store rather than kept in memory, so every worker process sees the same
window and a restart loses nothing.
"""

import math
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.events import RecentActivity
from mastery_engine.domains.taxonomy import TaxonomyLevel, level_index, lowest_level
from mastery_engine.infrastructure.database.models import PerformanceRecord
from mastery_engine.utils.datetime import ensure_utc

NEUTRAL_CONSISTENCY = 50.0
MIN_ENTRIES_FOR_CONSISTENCY = 3
VARIANCE_PENALTY = 20.0


async def load_recent_activity(
    db: AsyncSession, student_id: str, size: int = 5
) -> list[RecentActivity]:
    """Most recent records of a student, newest first."""
    result = await db.execute(
        select(PerformanceRecord)
        .where(PerformanceRecord.student_id == student_id)
        .order_by(PerformanceRecord.graded_at.desc(), PerformanceRecord.submission_id.desc())
        .limit(size)
    )
    return [
        RecentActivity(
            submission_id=record.submission_id,
            activity_id=record.activity_id,
            topic_id=record.topic_id,
            percentage=round(record.percentage, 2),
            demonstrated_level=TaxonomyLevel(record.demonstrated_level),
            graded_at=ensure_utc(record.graded_at),
        )
        for record in result.scalars().all()
    ]


def current_level(window: Sequence[RecentActivity]) -> TaxonomyLevel:
    """Level demonstrated by the newest entry, or the lowest level when empty."""
    if not window:
        return lowest_level()
    return window[0].demonstrated_level


def consistency_score(window: Sequence[RecentActivity]) -> float:
    """How steady the demonstrated level has been across the window.

    100 means every entry demonstrated the same level. Each unit of
    variance in level index costs 20 points. Windows with fewer than three
    entries are too short to judge and score a neutral 50.
    """
    if len(window) < MIN_ENTRIES_FOR_CONSISTENCY:
        return NEUTRAL_CONSISTENCY

    indices = [level_index(entry.demonstrated_level) for entry in window]
    mean = math.fsum(indices) / len(indices)
    variance = math.fsum((index - mean) ** 2 for index in indices) / len(indices)
    return round(max(0.0, min(100.0, 100.0 - VARIANCE_PENALTY * variance)), 2)
