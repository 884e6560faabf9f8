# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the analytics actors.

Actor bodies run on a separate thread, the way Dramatiq worker threads
run them, so run_async gets its own event loop.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from dramatiq.brokers.stub import StubBroker

from mastery_engine.domains.analytics.exceptions import TransientStoreFailure
from mastery_engine.domains.analytics.rebuild import RebuildStats
from mastery_engine.domains.realtime import DispatchResult, DispatchState
from mastery_engine.infrastructure.background import WorkerRuntimeMiddleware, get_broker
from mastery_engine.infrastructure.background.tasks import (
    get_all_actors,
    process_achievement_unlocked,
    process_submission_graded,
    rebuild_all_aggregates,
    reconcile_class_rankings,
)
from mastery_engine.infrastructure.background.tasks import base


def run_in_worker_thread(fn, *args, **kwargs):
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(fn, *args, **kwargs).result()


@pytest.fixture
def runtime() -> MagicMock:
    runtime = MagicMock()
    runtime.dispatcher.handle_submission_graded = AsyncMock()
    runtime.dispatcher.handle_achievement_unlocked = AsyncMock()
    runtime.dispatcher.reconcile_class = AsyncMock(return_value=3)
    runtime.rebuilder.rebuild_all = AsyncMock(return_value=RebuildStats(topic_masteries=2))
    return runtime


@pytest.fixture
def patched_runtime(runtime):
    with patch(
        "mastery_engine.infrastructure.background.tasks.analytics.get_worker_runtime",
        AsyncMock(return_value=runtime),
    ):
        yield runtime


def submission_payload() -> dict:
    return {
        "submission_id": "sub-1",
        "student_id": "student-1",
        "activity_id": "activity-1",
        "topic_id": "topic-1",
        "subject_id": "subject-1",
        "class_id": "class-1",
        "score": 80,
        "max_score": 100,
        "graded_at": "2025-03-10T09:01:00Z",
        "submitted_at": "2025-03-10T09:00:00Z",
    }


class TestAnalyticsActors:
    """Tests for the analytics actor bodies."""

    def test_submission_result_is_returned(self, patched_runtime) -> None:
        result = DispatchResult(source_id="sub-1", student_id="student-1")
        result.advance(DispatchState.SUCCESS)
        patched_runtime.dispatcher.handle_submission_graded.return_value = result

        output = run_in_worker_thread(process_submission_graded.fn, submission_payload())

        event = patched_runtime.dispatcher.handle_submission_graded.await_args.args[0]
        assert event.submission_id == "sub-1"
        assert output["state"] == "success"

    def test_retryable_failure_is_raised_for_redelivery(self, patched_runtime) -> None:
        result = DispatchResult(source_id="sub-1", student_id="student-1")
        result.fail("transient_store_failure: store down", retryable=True)
        patched_runtime.dispatcher.handle_submission_graded.return_value = result

        with pytest.raises(TransientStoreFailure, match="sub-1"):
            run_in_worker_thread(process_submission_graded.fn, submission_payload())

    def test_delayed_result_is_not_redelivered(self, patched_runtime) -> None:
        result = DispatchResult(source_id="ach-1", student_id="student-1")
        result.fail("analytics_delayed", delayed=True)
        patched_runtime.dispatcher.handle_achievement_unlocked.return_value = result

        output = run_in_worker_thread(
            process_achievement_unlocked.fn,
            {"student_id": "student-1", "achievement_id": "ach-1"},
        )

        assert output["delayed"] is True

    def test_reconcile_single_class(self, patched_runtime) -> None:
        output = run_in_worker_thread(reconcile_class_rankings.fn, "class-1")

        assert output == {"classes": {"class-1": 3}}
        patched_runtime.dispatcher.reconcile_class.assert_awaited_once_with("class-1")

    def test_rebuild_returns_stats(self, patched_runtime) -> None:
        output = run_in_worker_thread(rebuild_all_aggregates.fn)

        assert output["topic_masteries"] == 2

    def test_actor_registration(self) -> None:
        names = {actor.actor_name for actor in get_all_actors()}

        assert names == {
            "process_submission_graded",
            "process_achievement_unlocked",
            "reconcile_class_rankings",
            "rebuild_all_aggregates",
        }
        assert process_submission_graded.queue_name == "analytics"
        assert reconcile_class_rankings.queue_name == "ranking"

    def test_test_mode_uses_stub_broker(self) -> None:
        assert isinstance(get_broker(), StubBroker)
        assert "analytics" in get_broker().get_declared_queues()


class TestWorkerRuntimeLifecycle:
    """Tests for per-thread runtime disposal."""

    def test_broker_carries_runtime_middleware(self) -> None:
        assert any(isinstance(m, WorkerRuntimeMiddleware) for m in get_broker().middleware)

    def test_thread_shutdown_closes_the_runtime(self) -> None:
        with patch(
            "mastery_engine.infrastructure.background.tasks.base.close_thread_runtime"
        ) as close:
            WorkerRuntimeMiddleware().before_worker_thread_shutdown(
                get_broker(), threading.current_thread()
            )

        close.assert_called_once_with()

    def test_close_thread_runtime_disposes_and_forgets(self) -> None:
        runtime = MagicMock()
        runtime.close = AsyncMock()

        def work() -> object:
            base._thread_local.runtime = runtime
            base.close_thread_runtime()
            return base._thread_local.runtime

        remaining = run_in_worker_thread(work)

        runtime.close.assert_awaited_once()
        assert remaining is None
