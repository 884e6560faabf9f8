# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Performance alert detection.

After a record is stored, the student's recent records in the same subject
are checked for patterns a teacher should hear about:

- struggling_student: mean percentage below 60
- exceptional_performance: mean percentage above 95
- significant_improvement: newer half beats the older half by more than 15

The window is anchored on the triggering record's graded_at, not on the
wall clock, so replaying an old event reproduces the same alerts.
"""

import logging
import math
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.events import AlertType, PerformanceAlertTriggered
from mastery_engine.infrastructure.database.models import PerformanceRecord
from mastery_engine.utils.datetime import days_before, ensure_utc

logger = logging.getLogger(__name__)

STRUGGLING_BELOW = 60.0
EXCEPTIONAL_ABOVE = 95.0
IMPROVEMENT_ABOVE = 15.0


def _mean(values: Sequence[float]) -> float:
    return math.fsum(values) / len(values)


def detect_alerts(
    student_id: str,
    subject_id: str,
    class_id: str,
    records: Sequence[PerformanceRecord],
    min_records: int = 3,
) -> list[PerformanceAlertTriggered]:
    """Evaluate alert rules over a window of records.

    Args:
        student_id: Student the records belong to.
        subject_id: Subject the records belong to.
        class_id: Class reported on the alert.
        records: Records inside the lookback window.
        min_records: Below this count no alert is raised.

    Returns:
        Alerts in rule order; empty when nothing applies.
    """
    if len(records) < min_records:
        return []

    ordered = sorted(records, key=lambda r: (ensure_utc(r.graded_at), r.submission_id))
    percentages = [record.percentage for record in ordered]
    average = _mean(percentages)
    alerts: list[PerformanceAlertTriggered] = []

    def alert(alert_type: AlertType, **details: object) -> PerformanceAlertTriggered:
        return PerformanceAlertTriggered(
            student_id=student_id,
            subject_id=subject_id,
            class_id=class_id,
            alert_type=alert_type,
            average_percentage=round(average, 2),
            record_count=len(ordered),
            details={"recent_scores": [round(p, 2) for p in percentages], **details},
        )

    if average < STRUGGLING_BELOW:
        alerts.append(alert(AlertType.STRUGGLING_STUDENT))
    if average > EXCEPTIONAL_ABOVE:
        alerts.append(alert(AlertType.EXCEPTIONAL_PERFORMANCE))

    half = len(ordered) // 2
    older = percentages[:half]
    newer = percentages[len(percentages) - half:]
    if older and newer:
        improvement = _mean(newer) - _mean(older)
        if improvement > IMPROVEMENT_ABOVE:
            alerts.append(
                alert(AlertType.SIGNIFICANT_IMPROVEMENT, improvement=round(improvement, 2))
            )

    return alerts


class PerformanceAlertDetector:
    """Loads the lookback window and applies detect_alerts."""

    def __init__(self, lookback_days: int = 7, min_records: int = 3) -> None:
        self.lookback_days = lookback_days
        self.min_records = min_records

    async def check(
        self,
        db: AsyncSession,
        student_id: str,
        subject_id: str,
        class_id: str,
        as_of: datetime,
    ) -> list[PerformanceAlertTriggered]:
        """Return alerts for the window ending at as_of."""
        window_start = days_before(as_of, self.lookback_days)
        result = await db.execute(
            select(PerformanceRecord).where(
                and_(
                    PerformanceRecord.student_id == student_id,
                    PerformanceRecord.subject_id == subject_id,
                    PerformanceRecord.graded_at >= window_start,
                    PerformanceRecord.graded_at <= ensure_utc(as_of),
                )
            )
        )
        alerts = detect_alerts(
            student_id,
            subject_id,
            class_id,
            result.scalars().all(),
            min_records=self.min_records,
        )
        for item in alerts:
            logger.info(
                "Performance alert: type=%s, student=%s, subject=%s, average=%.2f",
                item.alert_type.value,
                student_id,
                subject_id,
                item.average_percentage,
            )
        return alerts
