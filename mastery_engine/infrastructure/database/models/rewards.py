# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Points ledger, per-student aggregates and class leaderboards."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mastery_engine.infrastructure.database.models.base import Base, TimestampMixin, new_id


class PointsEntry(Base, TimestampMixin):
    """A single award in the ledger.

    (student_id, source_type, source_id) is unique: a re-graded submission
    replaces its activity_grade entry and an achievement is awarded once.
    """

    __tablename__ = "points_entries"
    __table_args__ = (
        UniqueConstraint(
            "student_id", "source_type", "source_id", name="uq_points_entries_source"
        ),
        Index("ix_points_entries_student_earned", "student_id", "earned_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[str] = mapped_column(String(64), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PointsAggregate(Base, TimestampMixin):
    """Total points and most recent ranks for one student.

    class_rank/class_percentile reflect ranked_class_id, the class most
    recently re-ranked for this student. Per-class standings live in
    class_leaderboard_entries.
    """

    __tablename__ = "points_aggregates"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_earned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ranked_class_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    class_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    class_percentile: Mapped[int | None] = mapped_column(Integer, nullable=True)
    campus_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    campus_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    campus_percentile: Mapped[int | None] = mapped_column(Integer, nullable=True)


class StudentLevelRecord(Base, TimestampMixin):
    """Gamified level derived from total points."""

    __tablename__ = "student_levels"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    label: Mapped[str] = mapped_column(String(20), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_to_next_level: Mapped[int] = mapped_column(Integer, nullable=False)


class ClassLeaderboardEntry(Base, TimestampMixin):
    """Standing of one student within one class, written by rerank_class."""

    __tablename__ = "class_leaderboard_entries"

    class_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    percentile: Mapped[int] = mapped_column(Integer, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False)
    last_earned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
