# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics background tasks.

Actors take the JSON form of an inbound event, run it through the
RealtimeDispatcher and return the dispatch result. A transient store
failure that outlasted the dispatcher's own retries is raised again so
that Dramatiq redelivers the message; the pipeline is idempotent, so a
redelivery converges on the same aggregates.
"""

import logging
from typing import Any

import dramatiq
from sqlalchemy import select

from mastery_engine.domains.analytics.events import AchievementUnlocked, SubmissionGraded
from mastery_engine.domains.analytics.exceptions import TransientStoreFailure
from mastery_engine.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from mastery_engine.infrastructure.background.tasks.base import get_worker_runtime, run_async
from mastery_engine.infrastructure.database.models import ENROLLMENT_ACTIVE, ClassEnrollment

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


def _raise_if_retryable(result: dict[str, Any]) -> dict[str, Any]:
    if result.get("retryable"):
        raise TransientStoreFailure(
            f"Dispatch of {result['source_id']} failed: {result.get('error')}"
        )
    return result


@dramatiq.actor(
    queue_name=Queues.ANALYTICS,
    max_retries=5,
    time_limit=60000,  # 60 seconds
    priority=Priority.HIGH,
)
def process_submission_graded(event: dict[str, Any]) -> dict[str, Any]:
    """Run a graded submission through the pipeline.

    Args:
        event: SubmissionGraded in its JSON form.

    Returns:
        The dispatch result as a dict.
    """
    submission = SubmissionGraded.model_validate(event)

    async def _process() -> dict[str, Any]:
        runtime = await get_worker_runtime()
        result = await runtime.dispatcher.handle_submission_graded(submission)
        return result.to_dict()

    return _raise_if_retryable(run_async(_process()))


@dramatiq.actor(
    queue_name=Queues.ANALYTICS,
    max_retries=5,
    time_limit=30000,  # 30 seconds
    priority=Priority.NORMAL,
)
def process_achievement_unlocked(event: dict[str, Any]) -> dict[str, Any]:
    """Award achievement points and re-rank the student's classes."""
    achievement = AchievementUnlocked.model_validate(event)

    async def _process() -> dict[str, Any]:
        runtime = await get_worker_runtime()
        result = await runtime.dispatcher.handle_achievement_unlocked(achievement)
        return result.to_dict()

    return _raise_if_retryable(run_async(_process()))


@dramatiq.actor(
    queue_name=Queues.RANKING,
    max_retries=2,
    time_limit=300000,  # 5 minutes
    priority=Priority.LOW,
)
def reconcile_class_rankings(class_id: str | None = None) -> dict[str, Any]:
    """Re-rank one class, or every class with active enrollments.

    Args:
        class_id: Class to re-rank; None re-ranks all classes.

    Returns:
        Map of class id to number of ranked students.
    """

    async def _process() -> dict[str, Any]:
        runtime = await get_worker_runtime()
        if class_id is not None:
            class_ids = [class_id]
        else:
            async with runtime.session_factory() as db:
                result = await db.execute(
                    select(ClassEnrollment.class_id)
                    .where(ClassEnrollment.status == ENROLLMENT_ACTIVE)
                    .distinct()
                )
                class_ids = sorted(result.scalars().all())

        ranked: dict[str, int] = {}
        for item in class_ids:
            ranked[item] = await runtime.dispatcher.reconcile_class(item)

        logger.info("Reconciled %d classes", len(ranked))
        return {"classes": ranked}

    return run_async(_process())


@dramatiq.actor(
    queue_name=Queues.MAINTENANCE,
    max_retries=1,
    time_limit=3600000,  # 1 hour
    priority=Priority.LOW,
)
def rebuild_all_aggregates() -> dict[str, Any]:
    """Drop and replay every aggregate from records and ledger entries."""

    async def _process() -> dict[str, Any]:
        runtime = await get_worker_runtime()
        stats = await runtime.rebuilder.rebuild_all()
        return stats.to_dict()

    return run_async(_process())


def get_analytics_actors() -> list:
    """Get all analytics actors."""
    return [
        process_submission_graded,
        process_achievement_unlocked,
        reconcile_class_rankings,
        rebuild_all_aggregates,
    ]
