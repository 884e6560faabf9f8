# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Inbound and outbound event contracts of the analytics pipeline.

Inbound:
    SubmissionGraded: a submission received its final score.
    AchievementUnlocked: a student unlocked an achievement.

Outbound:
    DashboardUpdateRequired: a dashboard should refresh its data.
    RealtimeMetricsUpdated: live metrics for a student changed.
    BloomsProgressionUpdated: a student's level in a subject moved.
    PerformanceAlertTriggered: a recent performance pattern needs attention.

All contracts are pydantic models so the same types validate HTTP bodies,
Dramatiq payloads and bus messages.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mastery_engine.domains.taxonomy import TaxonomyLevel
from mastery_engine.utils.datetime import ensure_utc, utc_now


class SubmissionGraded(BaseModel):
    """A graded submission entering the pipeline.

    Score bounds are validated by the record builder rather than here so
    that a bad payload still produces a MalformedSubmission outcome the
    dispatcher can report.
    """

    model_config = ConfigDict(frozen=True)

    submission_id: str = Field(min_length=1)
    student_id: str = Field(min_length=1)
    activity_id: str = Field(min_length=1)
    topic_id: str | None = None
    subject_id: str | None = None
    class_id: str = Field(min_length=1)
    score: float
    max_score: float
    explicit_level_scores: dict[TaxonomyLevel, float] | None = None
    tagged_level: TaxonomyLevel | None = None
    time_spent_minutes: float | None = Field(default=None, ge=0)
    expected_duration_minutes: float | None = Field(default=None, gt=0)
    submitted_at: datetime = Field(default_factory=utc_now)
    graded_at: datetime = Field(default_factory=utc_now)

    @field_validator("explicit_level_scores")
    @classmethod
    def validate_level_scores(
        cls, value: dict[TaxonomyLevel, float] | None
    ) -> dict[TaxonomyLevel, float] | None:
        if value is None:
            return None
        for level, score in value.items():
            if not 0.0 <= score <= 100.0:
                raise ValueError(f"Sub-score for {level.value} must be in [0, 100], got {score}")
        return value or None

    @field_validator("submitted_at", "graded_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class AchievementUnlocked(BaseModel):
    """An achievement unlocked by a student."""

    model_config = ConfigDict(frozen=True)

    student_id: str = Field(min_length=1)
    achievement_id: str = Field(min_length=1)
    title: str | None = None
    unlocked_at: datetime = Field(default_factory=utc_now)

    @field_validator("unlocked_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class DashboardType(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class DashboardUpdateRequired(BaseModel):
    """Tells a dashboard owner that their view is stale."""

    account_id: str
    class_id: str
    subject_id: str | None = None
    student_id: str
    dashboard_type: DashboardType = DashboardType.STUDENT
    triggered_at: datetime = Field(default_factory=utc_now)


class RecentActivity(BaseModel):
    """One entry of the bounded recent-activity window."""

    submission_id: str
    activity_id: str
    topic_id: str
    percentage: float
    demonstrated_level: TaxonomyLevel
    graded_at: datetime


class RealtimeMetricsUpdated(BaseModel):
    """Live metrics for a student, broadcast to dashboard subscribers."""

    student_id: str
    class_id: str
    current_level: TaxonomyLevel
    consistency_score: float
    recent_activity_window: list[RecentActivity]
    total_points: int | None = None
    class_rank: int | None = None
    updated_at: datetime = Field(default_factory=utc_now)


class BloomsProgressionUpdated(BaseModel):
    """A student moved up, or fell back, within a subject."""

    student_id: str
    subject_id: str
    change: Literal["level_achieved", "regression_detected"]
    previous_level: TaxonomyLevel
    new_level: TaxonomyLevel
    detected_at: datetime = Field(default_factory=utc_now)


class AlertType(str, Enum):
    STRUGGLING_STUDENT = "struggling_student"
    EXCEPTIONAL_PERFORMANCE = "exceptional_performance"
    SIGNIFICANT_IMPROVEMENT = "significant_improvement"


class PerformanceAlertTriggered(BaseModel):
    """A recent performance pattern detected for one student in one subject."""

    student_id: str
    subject_id: str
    class_id: str
    alert_type: AlertType
    average_percentage: float
    record_count: int
    details: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime = Field(default_factory=utc_now)
