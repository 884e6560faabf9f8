# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Initial schema.

Creates the source tables (performance_records, points_entries), the
aggregates derived from them (topic_masteries, blooms_progressions,
points_aggregates, student_levels, class_leaderboard_entries) and the
school collaborator tables the engine reads (student_profiles, classes,
class_enrollments, class_teachers).

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-11-03
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create all mastery engine tables."""

    # =========================================================================
    # Source tables
    # =========================================================================
    op.create_table(
        "performance_records",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("submission_id", sa.String(64), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("activity_id", sa.String(64), nullable=False),
        sa.Column("topic_id", sa.String(64), nullable=False),
        sa.Column("subject_id", sa.String(64), nullable=False),
        sa.Column("class_id", sa.String(64), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("max_score", sa.Float(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("time_spent_minutes", sa.Float(), nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Float(), nullable=False),
        sa.Column("level_scores", JSON_TYPE, nullable=False),
        sa.Column("demonstrated_level", sa.String(20), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("submission_id", name="uq_performance_records_submission"),
    )
    op.create_index(
        "ix_performance_records_student_id", "performance_records", ["student_id"]
    )
    op.create_index("ix_performance_records_class_id", "performance_records", ["class_id"])
    op.create_index(
        "ix_performance_records_student_topic",
        "performance_records",
        ["student_id", "topic_id"],
    )
    op.create_index(
        "ix_performance_records_student_subject",
        "performance_records",
        ["student_id", "subject_id"],
    )

    op.create_table(
        "points_entries",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("source_id", sa.String(64), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "student_id", "source_type", "source_id", name="uq_points_entries_source"
        ),
    )
    op.create_index(
        "ix_points_entries_student_earned", "points_entries", ["student_id", "earned_at"]
    )

    # =========================================================================
    # Aggregates
    # =========================================================================
    op.create_table(
        "topic_masteries",
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("topic_id", sa.String(64), nullable=False),
        sa.Column("mastery_percentage", sa.Float(), nullable=False),
        sa.Column("mastery_label", sa.String(20), nullable=False),
        sa.Column("level_distribution", JSON_TYPE, nullable=False),
        sa.Column("highest_demonstrated_level", sa.String(20), nullable=False),
        sa.Column("activities_completed", sa.Integer(), nullable=False),
        sa.Column("total_time_spent_minutes", sa.Float(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("student_id", "topic_id"),
    )

    op.create_table(
        "blooms_progressions",
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("subject_id", sa.String(64), nullable=False),
        sa.Column("level_counts", JSON_TYPE, nullable=False),
        sa.Column("last_demonstrated_level", sa.String(20), nullable=False),
        sa.Column("total_records", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("student_id", "subject_id"),
    )

    op.create_table(
        "points_aggregates",
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_earned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ranked_class_id", sa.String(64), nullable=True),
        sa.Column("class_rank", sa.Integer(), nullable=True),
        sa.Column("class_percentile", sa.Integer(), nullable=True),
        sa.Column("campus_id", sa.String(64), nullable=True),
        sa.Column("campus_rank", sa.Integer(), nullable=True),
        sa.Column("campus_percentile", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("student_id"),
    )

    op.create_table(
        "student_levels",
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("label", sa.String(20), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_to_next_level", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("student_id"),
    )

    op.create_table(
        "class_leaderboard_entries",
        sa.Column("class_id", sa.String(64), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("percentile", sa.Integer(), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False),
        sa.Column("last_earned_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("class_id", "student_id"),
    )

    # =========================================================================
    # School collaborator tables
    # =========================================================================
    op.create_table(
        "student_profiles",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "classes",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("campus_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_classes_campus_id", "classes", ["campus_id"])

    op.create_table(
        "class_enrollments",
        sa.Column("class_id", sa.String(64), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("class_id", "student_id"),
    )
    op.create_index("ix_class_enrollments_student", "class_enrollments", ["student_id"])

    op.create_table(
        "class_teachers",
        sa.Column("class_id", sa.String(64), nullable=False),
        sa.Column("teacher_account_id", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("class_id", "teacher_account_id"),
    )


def downgrade() -> None:
    """Drop all mastery engine tables."""
    op.drop_table("class_teachers")
    op.drop_index("ix_class_enrollments_student", table_name="class_enrollments")
    op.drop_table("class_enrollments")
    op.drop_index("ix_classes_campus_id", table_name="classes")
    op.drop_table("classes")
    op.drop_table("student_profiles")
    op.drop_table("class_leaderboard_entries")
    op.drop_table("student_levels")
    op.drop_table("points_aggregates")
    op.drop_table("blooms_progressions")
    op.drop_table("topic_masteries")
    op.drop_index("ix_points_entries_student_earned", table_name="points_entries")
    op.drop_table("points_entries")
    op.drop_index("ix_performance_records_student_subject", table_name="performance_records")
    op.drop_index("ix_performance_records_student_topic", table_name="performance_records")
    op.drop_index("ix_performance_records_class_id", table_name="performance_records")
    op.drop_index("ix_performance_records_student_id", table_name="performance_records")
    op.drop_table("performance_records")
