# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the mastery engine."""

from mastery_engine.infrastructure.database.models.analytics import (
    BloomsProgression,
    PerformanceRecord,
    TopicMastery,
)
from mastery_engine.infrastructure.database.models.base import Base, TimestampMixin
from mastery_engine.infrastructure.database.models.locks import AggregateLock
from mastery_engine.infrastructure.database.models.rewards import (
    ClassLeaderboardEntry,
    PointsAggregate,
    PointsEntry,
    StudentLevelRecord,
)
from mastery_engine.infrastructure.database.models.school import (
    ENROLLMENT_ACTIVE,
    ClassEnrollment,
    ClassTeacher,
    SchoolClass,
    StudentProfile,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "PerformanceRecord",
    "TopicMastery",
    "BloomsProgression",
    "PointsEntry",
    "PointsAggregate",
    "StudentLevelRecord",
    "ClassLeaderboardEntry",
    "ENROLLMENT_ACTIVE",
    "StudentProfile",
    "SchoolClass",
    "ClassEnrollment",
    "ClassTeacher",
    "AggregateLock",
]
