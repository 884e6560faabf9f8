# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Real-time dispatcher.

Drives one inbound event through the pipeline:

    received -> record_upserted -> aggregates_refreshed
             -> points_refreshed -> notified -> success

Each step runs in its own transaction and is retried in isolation, so a
failure while refreshing aggregates never re-inserts the record. Every
step recomputes from stored rows, which makes re-running the whole
pipeline for the same submission a no-op on the aggregates.

Locks: aggregate steps hold the per-student key, re-ranks hold the
per-class (or per-campus) key, and no transaction holds two keys. A key
is held twice over: the in-process KeyedLockRegistry orders coroutines
sharing this dispatcher, and the key's aggregate_locks row, locked FOR
UPDATE inside the transaction, orders API replicas and workers. No lock
is held while notifications or broadcasts are sent.

Usage:
    dispatcher = RealtimeDispatcher(session_factory, notifier=notifier)
    result = await dispatcher.handle_submission_graded(event)
    result.state  # DispatchState.SUCCESS
"""

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mastery_engine.core.config.settings import AnalyticsSettings
from mastery_engine.domains.analytics.alerts import PerformanceAlertDetector
from mastery_engine.domains.analytics.events import (
    AchievementUnlocked,
    BloomsProgressionUpdated,
    DashboardType,
    DashboardUpdateRequired,
    RealtimeMetricsUpdated,
    SubmissionGraded,
)
from mastery_engine.domains.analytics.exceptions import (
    AnalyticsDelayed,
    ConcurrencyConflict,
    MalformedSubmission,
    TransientStoreFailure,
)
from mastery_engine.domains.analytics.mastery import TopicMasteryAggregator
from mastery_engine.domains.analytics.progression import (
    SubjectProgressionAggregator,
    detect_progression_change,
)
from mastery_engine.domains.analytics.records import PerformanceRecordBuilder, UpsertOutcome
from mastery_engine.domains.realtime.activity_window import (
    consistency_score,
    current_level,
    load_recent_activity,
)
from mastery_engine.domains.realtime.broadcaster import LiveBroadcaster
from mastery_engine.domains.rewards.ledger import PointsLedger
from mastery_engine.domains.rewards.ranking import RankingService
from mastery_engine.domains.taxonomy import TaxonomyLevel
from mastery_engine.infrastructure.cache import (
    AnalyticsCache,
    NullCache,
    account_key,
    leaderboard_key,
    progression_key,
    student_level_key,
    topic_mastery_key,
)
from mastery_engine.infrastructure.concurrency import (
    KeyedLockRegistry,
    campus_key,
    class_key,
    lock_aggregate_key,
    student_key,
)
from mastery_engine.infrastructure.database.models import (
    ClassTeacher,
    PerformanceRecord,
    StudentProfile,
)
from mastery_engine.infrastructure.notifications import DashboardNotifier
from mastery_engine.utils.logging import event_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DispatchState(str, Enum):
    RECEIVED = "received"
    RECORD_UPSERTED = "record_upserted"
    AGGREGATES_REFRESHED = "aggregates_refreshed"
    POINTS_REFRESHED = "points_refreshed"
    NOTIFIED = "notified"
    SUCCESS = "success"
    FAILED_BUT_GRADED = "failed_but_graded"


@dataclass
class DispatchResult:
    """Outcome of dispatching one event.

    Attributes:
        source_id: Submission id, or achievement id for achievements.
        student_id: Student the event belongs to.
        state: Terminal state reached.
        completed_steps: States passed through, in order.
        error: Reason when the state is failed_but_graded.
        delayed: Lock conflicts outlasted every retry; aggregates will
            catch up on the next event or reconciliation.
        retryable: The failure was transient and redelivering the event
            may succeed.
    """

    source_id: str
    student_id: str
    state: DispatchState = DispatchState.RECEIVED
    completed_steps: list[DispatchState] = field(default_factory=list)
    error: str | None = None
    delayed: bool = False
    retryable: bool = False
    total_points: int | None = None
    class_rank: int | None = None
    alerts: int = 0

    def advance(self, state: DispatchState) -> None:
        self.state = state
        self.completed_steps.append(state)

    def fail(self, error: str, retryable: bool = False, delayed: bool = False) -> None:
        self.state = DispatchState.FAILED_BUT_GRADED
        self.error = error
        self.retryable = retryable
        self.delayed = delayed

    @property
    def succeeded(self) -> bool:
        return self.state == DispatchState.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "student_id": self.student_id,
            "state": self.state.value,
            "completed_steps": [step.value for step in self.completed_steps],
            "error": self.error,
            "delayed": self.delayed,
            "retryable": self.retryable,
            "total_points": self.total_points,
            "class_rank": self.class_rank,
            "alerts": self.alerts,
        }


@dataclass
class _PointsOutcome:
    total_points: int
    class_ranks: dict[str, int]


class RealtimeDispatcher:
    """Runs graded submissions and achievements through the pipeline."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: DashboardNotifier | None = None,
        broadcaster: LiveBroadcaster | None = None,
        settings: AnalyticsSettings | None = None,
        cache: AnalyticsCache | None = None,
        locks: KeyedLockRegistry | None = None,
        builder: PerformanceRecordBuilder | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or AnalyticsSettings()
        self._cache = cache or NullCache()
        self._locks = locks or KeyedLockRegistry(timeout=self._settings.lock_timeout_seconds)
        self._notifier = notifier or DashboardNotifier([], self._settings.notification_timeout_seconds)
        self._broadcaster = broadcaster
        self._builder = builder or PerformanceRecordBuilder.from_settings(self._settings)
        self._topic_aggregator = TopicMasteryAggregator(self._cache)
        self._progression_aggregator = SubjectProgressionAggregator(self._cache)
        self._ledger = PointsLedger(self._cache)
        self._ranking = RankingService(self._cache)
        self._alerts = PerformanceAlertDetector(
            lookback_days=self._settings.alert_lookback_days,
            min_records=self._settings.alert_min_records,
        )
        self._sleep = sleep
        self._rng = rng

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    # ========== Plumbing ==========

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and maps store errors to TransientStoreFailure."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise TransientStoreFailure("Store operation failed", e) from e
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def _locked_transaction(self, key: str) -> AsyncIterator[AsyncSession]:
        """Transaction holding key in this process and in the store.

        Raises:
            ConcurrencyConflict: If either lock is not acquired within
                lock_timeout_seconds.
        """
        async with self._locks.hold(key):
            async with self._transaction() as db:
                await lock_aggregate_key(db, key, self._settings.lock_timeout_seconds)
                yield db

    def _backoff(self, attempt: int) -> float:
        base = self._settings.retry_base_delay_seconds * (2 ** (attempt - 1))
        capped = min(base, self._settings.retry_max_delay_seconds)
        return capped + self._rng() * self._settings.conflict_jitter_seconds

    async def _run_step(
        self,
        source_id: str,
        step: DispatchState,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run one step with retries.

        TransientStoreFailure backs off exponentially; ConcurrencyConflict
        waits a short random delay. When conflicts outlast every attempt
        the step raises AnalyticsDelayed.
        """
        attempts = max(1, self._settings.step_retry_attempts)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except TransientStoreFailure as e:
                last_error = e
                delay = self._backoff(attempt)
            except ConcurrencyConflict as e:
                last_error = e
                delay = self._rng() * self._settings.conflict_jitter_seconds

            if attempt < attempts:
                logger.info(
                    "Retrying step %s for %s (attempt %d/%d) after %.3fs: %s",
                    step.value,
                    source_id,
                    attempt,
                    attempts,
                    delay,
                    last_error,
                )
                await self._sleep(delay)

        if isinstance(last_error, ConcurrencyConflict):
            raise AnalyticsDelayed(source_id, step.value) from last_error
        raise last_error

    async def _invalidate(self, *keys: str) -> None:
        # Aggregators invalidate inside their transaction; repeat after commit
        # so a reader that refilled the cache mid-transaction is corrected.
        if keys:
            await self._cache.invalidate(*keys)

    # ========== Inbound: SubmissionGraded ==========

    async def handle_submission_graded(self, event: SubmissionGraded) -> DispatchResult:
        """Process one graded submission end to end.

        Args:
            event: The graded submission.

        Returns:
            DispatchResult describing the state reached. MalformedSubmission,
            exhausted store failures and exhausted lock conflicts end in
            failed_but_graded; they are reported, never raised.
        """
        result = DispatchResult(source_id=event.submission_id, student_id=event.student_id)
        result.advance(DispatchState.RECEIVED)

        with event_context(submission_id=event.submission_id, student_id=event.student_id):
            return await self._dispatch_submission(event, result)

    async def _dispatch_submission(
        self, event: SubmissionGraded, result: DispatchResult
    ) -> DispatchResult:
        try:
            try:
                outcome = await self._run_step(
                    event.submission_id,
                    DispatchState.RECORD_UPSERTED,
                    lambda: self._upsert_record(event),
                )
            except MalformedSubmission as e:
                logger.warning("Submission rejected: %s", e)
                result.fail(f"malformed_submission: {e.reason}")
                return result
            result.advance(DispatchState.RECORD_UPSERTED)

            # Read once, before any recompute, so a retried refresh cannot
            # observe its own earlier write.
            previous_level = await self._run_step(
                event.submission_id,
                DispatchState.AGGREGATES_REFRESHED,
                lambda: self._load_progression_baseline(outcome),
            )
            await self._run_step(
                event.submission_id,
                DispatchState.AGGREGATES_REFRESHED,
                lambda: self._refresh_aggregates(outcome),
            )
            result.advance(DispatchState.AGGREGATES_REFRESHED)

            points = await self._run_step(
                event.submission_id,
                DispatchState.POINTS_REFRESHED,
                lambda: self._refresh_points(outcome),
            )
            result.total_points = points.total_points
            result.class_rank = points.class_ranks.get(event.class_id)
            result.advance(DispatchState.POINTS_REFRESHED)

            result.alerts = await self._notify_submission(outcome, previous_level, points)
            result.advance(DispatchState.NOTIFIED)
            result.advance(DispatchState.SUCCESS)
            return result

        except AnalyticsDelayed as e:
            logger.warning("Analytics delayed: %s", e)
            result.fail("analytics_delayed", delayed=True)
            return result
        except TransientStoreFailure as e:
            logger.error("Dispatch failed after retries: %s", e)
            result.fail(f"transient_store_failure: {e}", retryable=True)
            return result

    async def _upsert_record(self, event: SubmissionGraded) -> UpsertOutcome:
        async with self._transaction() as db:
            outcome = await self._builder.upsert(db, event)
            if outcome.previous_student_id:
                await self._ledger.remove_grade_entry(
                    db, outcome.previous_student_id, event.submission_id
                )
            return outcome

    async def _load_progression_baseline(self, outcome: UpsertOutcome) -> TaxonomyLevel | None:
        """The subject's last demonstrated level before this event's refresh."""
        draft = outcome.draft
        async with self._transaction() as db:
            return await self._progression_aggregator.get_last_level(
                db, draft.student_id, draft.subject_id
            )

    async def _refresh_aggregates(self, outcome: UpsertOutcome) -> None:
        """Recompute topic mastery and subject progression for every affected pair."""
        students = sorted(
            {student for student, _ in outcome.affected_topics}
            | {student for student, _ in outcome.affected_subjects}
        )

        for student_id in students:
            async with self._locked_transaction(student_key(student_id)) as db:
                for topic_student, topic_id in sorted(outcome.affected_topics):
                    if topic_student == student_id:
                        await self._topic_aggregator.recompute_topic_mastery(
                            db, student_id, topic_id
                        )
                for subject_student, subject_id in sorted(outcome.affected_subjects):
                    if subject_student == student_id:
                        await self._progression_aggregator.recompute_progression(
                            db, student_id, subject_id
                        )

        await self._invalidate(
            *(topic_mastery_key(s, t) for s, t in outcome.affected_topics),
            *(progression_key(s, subj) for s, subj in outcome.affected_subjects),
        )

    async def _refresh_student_points(
        self, student_id: str, award: Callable[[AsyncSession], Awaitable[Any]] | None
    ) -> tuple[int, list[str]]:
        async with self._locked_transaction(student_key(student_id)) as db:
            if award is not None:
                await award(db)
            aggregate = await self._ledger.recompute_aggregate(db, student_id)
            await self._ledger.refresh_student_level(db, student_id, aggregate.total_points)
            class_ids = await self._ranking.get_active_class_ids(db, student_id)
            return aggregate.total_points, class_ids

    async def _award_stored_grade(self, db: AsyncSession, submission_id: str, student_id: str) -> None:
        """Award points from the record as stored, not from this event's draft.

        A concurrent re-grade of the same submission may have replaced the
        record since this event upserted it; the last stored grade wins.
        """
        result = await db.execute(
            select(PerformanceRecord).where(PerformanceRecord.submission_id == submission_id)
        )
        record = result.scalar_one_or_none()
        if record is None or record.student_id != student_id:
            logger.info("Submission %s moved before its points were awarded", submission_id)
            return
        await self._ledger.award_grade_points(db, record)

    async def _rerank(self, class_ids: set[str]) -> dict[str, dict[str, int]]:
        """Re-rank classes one lock at a time, then their campuses.

        Returns:
            Map of class id to {student id: rank}.
        """
        ranks: dict[str, dict[str, int]] = {}
        campuses: set[str] = set()

        for class_id in sorted(class_ids):
            async with self._locked_transaction(class_key(class_id)) as db:
                standings = await self._ranking.rerank_class(db, class_id)
                campus_id = await self._ranking.get_campus_id(db, class_id)
            ranks[class_id] = {s.student_id: s.rank for s in standings}
            if campus_id:
                campuses.add(campus_id)

        for campus_id in sorted(campuses):
            async with self._locked_transaction(campus_key(campus_id)) as db:
                await self._ranking.rerank_campus(db, campus_id)

        await self._invalidate(*(leaderboard_key(class_id) for class_id in class_ids))
        return ranks

    async def _refresh_points(self, outcome: UpsertOutcome) -> _PointsOutcome:
        draft = outcome.draft
        total, class_ids = await self._refresh_student_points(
            draft.student_id,
            lambda db: self._award_stored_grade(db, draft.submission_id, draft.student_id),
        )
        affected_classes = {draft.class_id, *class_ids}

        if outcome.previous_student_id:
            _, previous_classes = await self._refresh_student_points(
                outcome.previous_student_id, None
            )
            affected_classes.update(previous_classes)

        ranks = await self._rerank(affected_classes)
        await self._invalidate(student_level_key(draft.student_id))
        return _PointsOutcome(
            total_points=total,
            class_ranks={
                class_id: standings[draft.student_id]
                for class_id, standings in ranks.items()
                if draft.student_id in standings
            },
        )

    # ========== Inbound: AchievementUnlocked ==========

    async def handle_achievement_unlocked(self, event: AchievementUnlocked) -> DispatchResult:
        """Award achievement points, refresh totals and re-rank the student's classes."""
        result = DispatchResult(source_id=event.achievement_id, student_id=event.student_id)
        result.advance(DispatchState.RECEIVED)

        with event_context(achievement_id=event.achievement_id, student_id=event.student_id):
            return await self._dispatch_achievement(event, result)

    async def _dispatch_achievement(
        self, event: AchievementUnlocked, result: DispatchResult
    ) -> DispatchResult:
        try:
            total, class_ids = await self._run_step(
                event.achievement_id,
                DispatchState.RECORD_UPSERTED,
                lambda: self._refresh_student_points(
                    event.student_id,
                    lambda db: self._ledger.award_achievement(db, event),
                ),
            )
            result.advance(DispatchState.RECORD_UPSERTED)
            result.advance(DispatchState.AGGREGATES_REFRESHED)

            ranks = await self._run_step(
                event.achievement_id,
                DispatchState.POINTS_REFRESHED,
                lambda: self._rerank(set(class_ids)),
            )
            await self._invalidate(student_level_key(event.student_id))
            result.total_points = total
            result.advance(DispatchState.POINTS_REFRESHED)

            account_id = await self._resolve_account_id(event.student_id)
            for class_id in sorted(class_ids):
                await self._notifier.notify_dashboard(
                    DashboardUpdateRequired(
                        account_id=account_id,
                        class_id=class_id,
                        student_id=event.student_id,
                    )
                )
            if class_ids:
                result.class_rank = ranks.get(class_ids[0], {}).get(event.student_id)
            result.advance(DispatchState.NOTIFIED)
            result.advance(DispatchState.SUCCESS)
            return result

        except AnalyticsDelayed as e:
            logger.warning("Analytics delayed: %s", e)
            result.fail("analytics_delayed", delayed=True)
            return result
        except TransientStoreFailure as e:
            logger.error("Achievement dispatch failed after retries: %s", e)
            result.fail(f"transient_store_failure: {e}", retryable=True)
            return result

    # ========== Reconciliation ==========

    async def reconcile_class(self, class_id: str) -> int:
        """Re-rank one class outside the event flow.

        Returns:
            Number of ranked students.
        """
        ranks = await self._run_step(
            class_id,
            DispatchState.POINTS_REFRESHED,
            lambda: self._rerank({class_id}),
        )
        return len(ranks.get(class_id, {}))

    # ========== Outbound ==========

    async def _resolve_account_id(self, student_id: str) -> str:
        """Account behind a student profile; the profile id itself when unknown."""
        cached = await self._cache.get(account_key(student_id))
        if cached:
            return cached
        try:
            async with self._transaction() as db:
                profile = await db.get(StudentProfile, student_id)
                account_id = profile.user_id if profile and profile.user_id else student_id
        except TransientStoreFailure as e:
            logger.warning("Account lookup failed for %s, using profile id: %s", student_id, e)
            return student_id
        await self._cache.set(account_key(student_id), account_id, self._settings.cache_ttl_seconds)
        return account_id

    async def _class_teacher_accounts(self, db: AsyncSession, class_id: str) -> list[str]:
        result = await db.execute(
            select(ClassTeacher.teacher_account_id).where(
                and_(ClassTeacher.class_id == class_id, ClassTeacher.is_active.is_(True))
            )
        )
        return sorted(result.scalars().all())

    async def _notify_submission(
        self,
        outcome: UpsertOutcome,
        previous_level: TaxonomyLevel | None,
        points: _PointsOutcome,
    ) -> int:
        """Send dashboard updates, live metrics, progression changes and alerts.

        Failures are logged and dropped.

        Returns:
            Number of performance alerts raised.
        """
        draft = outcome.draft
        account_id = await self._resolve_account_id(draft.student_id)
        await self._notifier.notify_dashboard(
            DashboardUpdateRequired(
                account_id=account_id,
                class_id=draft.class_id,
                subject_id=draft.subject_id,
                student_id=draft.student_id,
            )
        )

        change: BloomsProgressionUpdated | None = detect_progression_change(
            draft.student_id, draft.subject_id, previous_level, draft.demonstrated_level
        )
        if change is not None:
            logger.info(
                "Progression %s: student=%s, subject=%s, %s -> %s",
                change.change,
                draft.student_id,
                draft.subject_id,
                change.previous_level.value,
                change.new_level.value,
            )
            await self._notifier.publish_progression(change)

        alerts = []
        try:
            async with self._transaction() as db:
                teachers = await self._class_teacher_accounts(db, draft.class_id)
                window = await load_recent_activity(
                    db, draft.student_id, self._settings.recent_window_size
                )
                alerts = await self._alerts.check(
                    db, draft.student_id, draft.subject_id, draft.class_id, draft.graded_at
                )
        except TransientStoreFailure as e:
            logger.warning("Skipping live metrics for %s: %s", draft.submission_id, e)
            return 0

        for teacher_account_id in teachers:
            await self._notifier.notify_dashboard(
                DashboardUpdateRequired(
                    account_id=teacher_account_id,
                    class_id=draft.class_id,
                    subject_id=draft.subject_id,
                    student_id=draft.student_id,
                    dashboard_type=DashboardType.TEACHER,
                )
            )

        metrics = RealtimeMetricsUpdated(
            student_id=draft.student_id,
            class_id=draft.class_id,
            current_level=current_level(window),
            consistency_score=consistency_score(window),
            recent_activity_window=window,
            total_points=points.total_points,
            class_rank=points.class_ranks.get(draft.class_id),
        )
        await self._notifier.publish_metrics(metrics)
        if self._broadcaster is not None:
            self._broadcaster.offer(metrics)

        for alert in alerts:
            await self._notifier.publish_alert(alert)
        return len(alerts)
