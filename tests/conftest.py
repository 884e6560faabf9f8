# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests (pure functions, mocked collaborators)
- Integration tests (SQLite store through aiosqlite, the API app)
"""

import os
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mastery_engine.core.config.settings import AnalyticsSettings
from mastery_engine.domains.analytics.events import SubmissionGraded
from mastery_engine.domains.taxonomy import TaxonomyLevel
from mastery_engine.infrastructure.database.connection import (
    create_engine_for_url,
    create_sessionmaker,
)
from mastery_engine.infrastructure.database.models import (
    Base,
    ClassEnrollment,
    ClassTeacher,
    SchoolClass,
    StudentProfile,
)
from mastery_engine.infrastructure.events import reset_event_bus

# Actor modules declare against the broker at import; use the stub broker.
os.environ.setdefault("DRAMATIQ_TEST_MODE", "true")

BASE_TIME = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (uses a SQLite store)"
    )


@pytest.fixture(autouse=True)
def clean_event_bus() -> None:
    """Give every test a fresh process event bus."""
    reset_event_bus()
    yield
    reset_event_bus()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine with the full schema created."""
    db_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'mastery.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def analytics_settings() -> AnalyticsSettings:
    """Analytics settings with fast retries and short lock waits."""
    return AnalyticsSettings(
        lock_timeout_seconds=1.0,
        step_retry_attempts=3,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        conflict_jitter_seconds=0.0,
        notification_timeout_seconds=1.0,
    )


class RecordingSleep:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def no_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# Seed Helpers
# =============================================================================


@pytest.fixture
def seed_school(session_factory: async_sessionmaker[AsyncSession]):
    """Create classes, enrollments, profiles and teachers.

    Usage:
        await seed_school(
            classes={"class-1": "campus-1"},
            enrollments={"class-1": ["s-1", "s-2"]},
            teachers={"class-1": ["t-1"]},
        )
    """

    async def seed(
        classes: dict[str, str | None] | None = None,
        enrollments: dict[str, list[str]] | None = None,
        teachers: dict[str, list[str]] | None = None,
        accounts: dict[str, str] | None = None,
    ) -> None:
        async with session_factory() as session:
            for class_id, campus_id in (classes or {}).items():
                session.add(SchoolClass(id=class_id, name=class_id, campus_id=campus_id))
            for class_id, student_ids in (enrollments or {}).items():
                for student_id in student_ids:
                    session.add(ClassEnrollment(class_id=class_id, student_id=student_id))
            for class_id, account_ids in (teachers or {}).items():
                for account_id in account_ids:
                    session.add(ClassTeacher(class_id=class_id, teacher_account_id=account_id))
            for student_id, user_id in (accounts or {}).items():
                session.add(StudentProfile(id=student_id, user_id=user_id))
            await session.commit()

    return seed


# =============================================================================
# Event Factories
# =============================================================================


@pytest.fixture
def make_submission() -> Callable[..., SubmissionGraded]:
    """Build SubmissionGraded events with sensible defaults."""
    counter = {"value": 0}

    def make(**overrides: Any) -> SubmissionGraded:
        counter["value"] += 1
        minutes = counter["value"]
        data: dict[str, Any] = {
            "submission_id": f"sub-{counter['value']}",
            "student_id": "student-1",
            "activity_id": f"activity-{counter['value']}",
            "topic_id": "topic-1",
            "subject_id": "subject-1",
            "class_id": "class-1",
            "score": 80.0,
            "max_score": 100.0,
            "tagged_level": TaxonomyLevel.APPLY,
            "submitted_at": BASE_TIME + timedelta(minutes=minutes),
            "graded_at": BASE_TIME + timedelta(minutes=minutes, seconds=30),
        }
        data.update(overrides)
        return SubmissionGraded(**data)

    return make
