# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Scheduler for periodic Dramatiq tasks.

Uses APScheduler to send Dramatiq actors on a fixed interval.
The default job is the periodic re-rank of every class, which repairs
leaderboards left stale by an event whose ranking step was delayed.

Example:
    from mastery_engine.infrastructure.background.scheduler import get_scheduler

    scheduler = get_scheduler()
    await scheduler.start()
    scheduler.add_interval_task(
        name="Class Ranking Reconciliation",
        actor_name="reconcile_class_rankings",
        minutes=60,
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """Configuration for a scheduled Dramatiq task.

    Attributes:
        id: Unique task identifier.
        name: Human-readable task name.
        actor_name: Name of the Dramatiq actor to call.
        args: Positional arguments for the actor.
        kwargs: Keyword arguments for the actor.
        enabled: Whether the task is enabled.
        last_run: Last run timestamp.
        run_count: Total number of runs.
        error_count: Number of failed runs.
    """

    name: str
    actor_name: str
    args: tuple = field(default_factory=tuple)
    kwargs: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    enabled: bool = True
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "actor_name": self.actor_name,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


class DramatiqScheduler:
    """Sends Dramatiq actors on APScheduler triggers.

    Attributes:
        _scheduler: APScheduler instance, present while running.
        _tasks: Scheduled tasks by id.
        _running: Whether scheduler is running.
    """

    def __init__(self, actor_resolver: Callable[[str], Any] | None = None) -> None:
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._actor_resolver = actor_resolver or _resolve_task_actor

    @property
    def is_running(self) -> bool:
        return self._running

    def add_interval_task(
        self,
        name: str,
        actor_name: str,
        seconds: int = 0,
        minutes: int = 0,
        hours: int = 0,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        start_immediately: bool = False,
    ) -> ScheduledTask:
        """Add an interval-scheduled task.

        Args:
            name: Task name.
            actor_name: Dramatiq actor to call.
            seconds: Interval seconds.
            minutes: Interval minutes.
            hours: Interval hours.
            args: Actor arguments.
            kwargs: Actor keyword arguments.
            start_immediately: Run immediately on start.
        """
        task = ScheduledTask(name=name, actor_name=actor_name, args=args, kwargs=kwargs or {})
        self._tasks[task.id] = task

        if self._scheduler is not None:
            # APScheduler pauses a job added with next_run_time=None.
            job_options: dict[str, Any] = {}
            if start_immediately:
                job_options["next_run_time"] = datetime.now(timezone.utc)
            self._scheduler.add_job(
                self._execute_task,
                trigger=IntervalTrigger(seconds=seconds, minutes=minutes, hours=hours),
                args=[task.id],
                id=task.id,
                name=name,
                **job_options,
            )

        logger.info(
            "Added interval task: %s (every %dh %dm %ds)", name, hours, minutes, seconds
        )
        return task

    async def _execute_task(self, task_id: str) -> None:
        """Send the task's actor to the broker."""
        task = self._tasks.get(task_id)
        if not task or not task.enabled:
            return

        try:
            actor = self._actor_resolver(task.actor_name)
            if actor is None:
                raise ValueError(f"Actor not found: {task.actor_name}")

            actor.send(*task.args, **task.kwargs)

            task.last_run = datetime.now(timezone.utc)
            task.run_count += 1
            logger.debug("Scheduled task %s sent to queue", task.name)

        except Exception as e:
            task.error_count += 1
            logger.error("Scheduled task %s failed: %s", task.name, str(e))

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.start()
        self._running = True
        logger.info("Dramatiq scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Dramatiq scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "task_count": len(self._tasks),
            "total_runs": sum(t.run_count for t in self._tasks.values()),
            "total_errors": sum(t.error_count for t in self._tasks.values()),
            "tasks": [t.to_dict() for t in self._tasks.values()],
        }


def _resolve_task_actor(actor_name: str) -> Any:
    from mastery_engine.infrastructure.background import tasks

    return getattr(tasks, actor_name, None)


# Singleton instance
_scheduler: DramatiqScheduler | None = None


def get_scheduler() -> DramatiqScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DramatiqScheduler()
    return _scheduler


def get_scheduler_or_none() -> DramatiqScheduler | None:
    """Get the scheduler if one was started, without creating it."""
    return _scheduler


async def start_scheduler(reconciliation_interval_minutes: int = 60) -> DramatiqScheduler:
    """Start the scheduler and register the default jobs.

    Args:
        reconciliation_interval_minutes: Period of the class re-rank pass.

    Returns:
        Started scheduler instance.
    """
    scheduler = get_scheduler()
    await scheduler.start()

    scheduler.add_interval_task(
        name="Class Ranking Reconciliation",
        actor_name="reconcile_class_rankings",
        minutes=reconciliation_interval_minutes,
    )
    return scheduler


async def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
