# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Performance record construction and persistence.

A SubmissionGraded event is validated, normalized into a RecordDraft and
upserted into performance_records keyed by submission_id. Re-grading the
same submission replaces the row, so the record set always holds exactly
one record per submission.

Usage:
    builder = PerformanceRecordBuilder.from_settings(settings.analytics)
    outcome = await builder.upsert(db, event)
    outcome.affected_topics  # {(student_id, topic_id), ...}
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.events import SubmissionGraded
from mastery_engine.domains.analytics.exceptions import MalformedSubmission
from mastery_engine.domains.analytics.policies import (
    EngagementPolicy,
    LevelTaggingPolicy,
    ParticipationEngagementPolicy,
    TaggedLevelPolicy,
    clamp,
)
from mastery_engine.domains.taxonomy import (
    DEFAULT_DEMONSTRATION_THRESHOLD,
    TaxonomyLevel,
    determine_demonstrated_level,
)
from mastery_engine.infrastructure.database.models import PerformanceRecord

if TYPE_CHECKING:
    from mastery_engine.core.config.settings import AnalyticsSettings

logger = logging.getLogger(__name__)


def compute_percentage(score: float, max_score: float) -> float:
    """Score as a percentage of max_score, clamped to [0, 100].

    The value is not rounded. Point bands, mastery labels and level
    thresholds all compare against the exact percentage; only outputs round.
    """
    return clamp(100.0 * score / max(max_score, 1.0))


@dataclass(frozen=True)
class RecordDraft:
    """Normalized values for one performance record."""

    submission_id: str
    student_id: str
    activity_id: str
    topic_id: str
    subject_id: str
    class_id: str
    score: float
    max_score: float
    percentage: float
    time_spent_minutes: float
    engagement_score: float
    level_scores: dict[TaxonomyLevel, float]
    demonstrated_level: TaxonomyLevel
    submitted_at: datetime
    graded_at: datetime

    def serialized_level_scores(self) -> dict[str, float]:
        return {level.value: score for level, score in self.level_scores.items()}


@dataclass
class UpsertOutcome:
    """Result of upserting one record.

    Attributes:
        record: The stored row.
        created: False when an existing row for the submission was replaced.
        previous_topic_id: Topic before a re-grade, if it changed.
        previous_subject_id: Subject before a re-grade, if it changed.
        previous_student_id: Student before a re-grade, if it changed.
    """

    record: PerformanceRecord
    draft: RecordDraft
    created: bool
    previous_topic_id: str | None = None
    previous_subject_id: str | None = None
    previous_student_id: str | None = None
    affected_topics: set[tuple[str, str]] = field(default_factory=set)
    affected_subjects: set[tuple[str, str]] = field(default_factory=set)


class PerformanceRecordBuilder:
    """Builds and upserts performance records from graded submissions.

    Attributes:
        engagement_policy: Computes the engagement score.
        tagging_policy: Picks a level when no sub-scores are given.
        threshold: Demonstration threshold passed to the taxonomy model.
    """

    def __init__(
        self,
        engagement_policy: EngagementPolicy | None = None,
        tagging_policy: LevelTaggingPolicy | None = None,
        threshold: float = DEFAULT_DEMONSTRATION_THRESHOLD,
    ) -> None:
        self.engagement_policy = engagement_policy or ParticipationEngagementPolicy()
        self.tagging_policy = tagging_policy or TaggedLevelPolicy()
        self.threshold = threshold

    @classmethod
    def from_settings(cls, settings: "AnalyticsSettings") -> "PerformanceRecordBuilder":
        return cls(
            engagement_policy=ParticipationEngagementPolicy(
                expected_duration_minutes=settings.expected_duration_minutes,
                max_adjustment=settings.engagement_max_adjustment,
            ),
            tagging_policy=TaggedLevelPolicy(
                default_level=TaxonomyLevel(settings.default_tagged_level),
            ),
            threshold=settings.demonstration_threshold,
        )

    def validate(self, event: SubmissionGraded) -> None:
        """Reject submissions that cannot produce a record.

        Raises:
            MalformedSubmission: On non-positive max score, negative score,
                or a missing topic or subject.
        """
        if event.max_score <= 0:
            raise MalformedSubmission(event.submission_id, "max_score must be positive")
        if event.score < 0:
            raise MalformedSubmission(event.submission_id, "score must not be negative")
        if not event.topic_id:
            raise MalformedSubmission(event.submission_id, "topic_id is required")
        if not event.subject_id:
            raise MalformedSubmission(event.submission_id, "subject_id is required")

    def build(self, event: SubmissionGraded) -> RecordDraft:
        """Validate and normalize a submission without touching the store.

        Raises:
            MalformedSubmission: If the submission is invalid.
        """
        self.validate(event)

        percentage = compute_percentage(event.score, event.max_score)

        if event.explicit_level_scores:
            level_scores = dict(event.explicit_level_scores)
        else:
            level_scores = {self.tagging_policy.level_for(event, percentage): percentage}

        return RecordDraft(
            submission_id=event.submission_id,
            student_id=event.student_id,
            activity_id=event.activity_id,
            topic_id=event.topic_id,
            subject_id=event.subject_id,
            class_id=event.class_id,
            score=event.score,
            max_score=event.max_score,
            percentage=percentage,
            time_spent_minutes=event.time_spent_minutes or 0.0,
            engagement_score=self.engagement_policy.score(event, percentage),
            level_scores=level_scores,
            demonstrated_level=determine_demonstrated_level(level_scores, self.threshold),
            submitted_at=event.submitted_at,
            graded_at=event.graded_at,
        )

    async def upsert(self, db: AsyncSession, event: SubmissionGraded) -> UpsertOutcome:
        """Build the record and insert or replace it by submission_id.

        The caller owns the transaction. A concurrent insert of the same
        submission surfaces as an IntegrityError at flush or commit.

        Raises:
            MalformedSubmission: If the submission is invalid.
        """
        draft = self.build(event)

        result = await db.execute(
            select(PerformanceRecord).where(
                PerformanceRecord.submission_id == draft.submission_id
            )
        )
        existing = result.scalar_one_or_none()

        outcome: UpsertOutcome
        if existing is not None:
            outcome = UpsertOutcome(
                record=existing,
                draft=draft,
                created=False,
                previous_topic_id=existing.topic_id if existing.topic_id != draft.topic_id else None,
                previous_subject_id=(
                    existing.subject_id if existing.subject_id != draft.subject_id else None
                ),
                previous_student_id=(
                    existing.student_id if existing.student_id != draft.student_id else None
                ),
            )
            outcome.affected_topics.add((existing.student_id, existing.topic_id))
            outcome.affected_subjects.add((existing.student_id, existing.subject_id))
            self._apply(existing, draft)
            logger.info(
                "Performance record replaced: submission=%s, student=%s",
                draft.submission_id,
                draft.student_id,
            )
        else:
            record = PerformanceRecord(submission_id=draft.submission_id)
            self._apply(record, draft)
            db.add(record)
            outcome = UpsertOutcome(record=record, draft=draft, created=True)
            logger.info(
                "Performance record created: submission=%s, student=%s",
                draft.submission_id,
                draft.student_id,
            )

        outcome.affected_topics.add((draft.student_id, draft.topic_id))
        outcome.affected_subjects.add((draft.student_id, draft.subject_id))
        await db.flush()
        return outcome

    @staticmethod
    def _apply(record: PerformanceRecord, draft: RecordDraft) -> None:
        record.student_id = draft.student_id
        record.activity_id = draft.activity_id
        record.topic_id = draft.topic_id
        record.subject_id = draft.subject_id
        record.class_id = draft.class_id
        record.score = draft.score
        record.max_score = draft.max_score
        record.percentage = draft.percentage
        record.time_spent_minutes = draft.time_spent_minutes
        record.engagement_score = draft.engagement_score
        record.level_scores = draft.serialized_level_scores()
        record.demonstrated_level = draft.demonstrated_level.value
        record.submitted_at = draft.submitted_at
        record.graded_at = draft.graded_at
