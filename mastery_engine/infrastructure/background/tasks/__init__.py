# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors for the mastery engine.

Usage:
    from mastery_engine.infrastructure.background.tasks import process_submission_graded

    process_submission_graded.send(event.model_dump(mode="json"))

Running Workers:
    dramatiq mastery_engine.infrastructure.background.tasks --processes 2 --threads 4
"""

from mastery_engine.infrastructure.background.tasks.analytics import (
    get_analytics_actors,
    process_achievement_unlocked,
    process_submission_graded,
    rebuild_all_aggregates,
    reconcile_class_rankings,
)
from mastery_engine.infrastructure.background.tasks.base import (
    WorkerRuntime,
    build_worker_runtime,
    get_worker_runtime,
    run_async,
)


def get_all_actors() -> list:
    """Get all actors for worker registration."""
    return get_analytics_actors()


__all__ = [
    "process_submission_graded",
    "process_achievement_unlocked",
    "reconcile_class_rankings",
    "rebuild_all_aggregates",
    "get_analytics_actors",
    "get_all_actors",
    "WorkerRuntime",
    "build_worker_runtime",
    "get_worker_runtime",
    "run_async",
]
