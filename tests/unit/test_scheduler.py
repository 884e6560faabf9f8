# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the Dramatiq scheduler."""

from unittest.mock import MagicMock

import pytest

from mastery_engine.infrastructure.background.scheduler import (
    DramatiqScheduler,
    get_scheduler_or_none,
    start_scheduler,
    stop_scheduler,
)


@pytest.fixture
def actor() -> MagicMock:
    return MagicMock()


@pytest.fixture
def resolver(actor) -> MagicMock:
    return MagicMock(side_effect=lambda name: actor if name == "reconcile_class_rankings" else None)


@pytest.fixture
async def scheduler(resolver):
    scheduler = DramatiqScheduler(actor_resolver=resolver)
    yield scheduler
    await scheduler.stop()


class TestDramatiqScheduler:
    """Tests for DramatiqScheduler."""

    async def test_execute_task_sends_actor(self, scheduler, actor) -> None:
        task = scheduler.add_interval_task(
            name="Class Ranking Reconciliation",
            actor_name="reconcile_class_rankings",
            minutes=30,
            kwargs={"class_id": "c-1"},
        )

        await scheduler._execute_task(task.id)

        actor.send.assert_called_once_with(class_id="c-1")
        assert task.run_count == 1
        assert task.last_run is not None

    async def test_unknown_actor_counts_error(self, scheduler) -> None:
        task = scheduler.add_interval_task(name="Missing", actor_name="does_not_exist", minutes=5)

        await scheduler._execute_task(task.id)

        assert task.error_count == 1
        assert task.run_count == 0

    async def test_disabled_task_is_skipped(self, scheduler, actor) -> None:
        task = scheduler.add_interval_task(
            name="Reconcile", actor_name="reconcile_class_rankings", minutes=5
        )
        task.enabled = False

        await scheduler._execute_task(task.id)

        actor.send.assert_not_called()

    async def test_start_registers_jobs_and_stop(self, scheduler) -> None:
        await scheduler.start()
        task = scheduler.add_interval_task(
            name="Class Ranking Reconciliation",
            actor_name="reconcile_class_rankings",
            minutes=60,
        )

        assert scheduler.is_running
        job = scheduler._scheduler.get_job(task.id)
        assert job is not None
        assert job.next_run_time is not None

        await scheduler.stop()
        assert not scheduler.is_running

    async def test_stats(self, scheduler) -> None:
        first = scheduler.add_interval_task(name="A", actor_name="reconcile_class_rankings", hours=1)
        second = scheduler.add_interval_task(name="B", actor_name="does_not_exist", hours=1)
        await scheduler._execute_task(first.id)
        await scheduler._execute_task(second.id)

        stats = scheduler.get_stats()

        assert stats["task_count"] == 2
        assert stats["total_runs"] == 1
        assert stats["total_errors"] == 1
        assert {t["name"] for t in stats["tasks"]} == {"A", "B"}


class TestSchedulerLifecycle:
    """Tests for the module-level scheduler helpers."""

    async def test_start_scheduler_registers_reconciliation(self) -> None:
        scheduler = await start_scheduler(reconciliation_interval_minutes=15)
        try:
            assert get_scheduler_or_none() is scheduler
            assert [t["actor_name"] for t in scheduler.get_stats()["tasks"]] == [
                "reconcile_class_rankings"
            ]
        finally:
            await stop_scheduler()

        assert get_scheduler_or_none() is None
