# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Performance records and the mastery aggregates derived from them.

PerformanceRecord is the source of truth. TopicMastery and
BloomsProgression are fully recomputed from records and can be dropped and
rebuilt at any time.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mastery_engine.infrastructure.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    new_id,
)


class PerformanceRecord(Base, TimestampMixin):
    """One graded submission, normalized.

    level_scores maps taxonomy level values to sub-scores in [0, 100].
    """

    __tablename__ = "performance_records"
    __table_args__ = (
        UniqueConstraint("submission_id", name="uq_performance_records_submission"),
        Index("ix_performance_records_student_topic", "student_id", "topic_id"),
        Index("ix_performance_records_student_subject", "student_id", "subject_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    submission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    activity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    class_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    max_score: Mapped[float] = mapped_column(Float, nullable=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False)
    time_spent_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    engagement_score: Mapped[float] = mapped_column(Float, nullable=False)
    level_scores: Mapped[dict] = mapped_column(JSONType, nullable=False)
    demonstrated_level: Mapped[str] = mapped_column(String(20), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    graded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TopicMastery(Base, TimestampMixin):
    """Mastery of one topic by one student."""

    __tablename__ = "topic_masteries"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    topic_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mastery_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    mastery_label: Mapped[str] = mapped_column(String(20), nullable=False)
    level_distribution: Mapped[dict] = mapped_column(JSONType, nullable=False)
    highest_demonstrated_level: Mapped[str] = mapped_column(String(20), nullable=False)
    activities_completed: Mapped[int] = mapped_column(Integer, nullable=False)
    total_time_spent_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BloomsProgression(Base, TimestampMixin):
    """Distribution of demonstrated levels for one student in one subject."""

    __tablename__ = "blooms_progressions"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    level_counts: Mapped[dict] = mapped_column(JSONType, nullable=False)
    last_demonstrated_level: Mapped[str] = mapped_column(String(20), nullable=False)
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
