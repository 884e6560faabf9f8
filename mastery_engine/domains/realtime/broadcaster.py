# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Live dashboard broadcaster.

Dashboards subscribe by student or by class. The dispatcher offers the
latest RealtimeMetricsUpdated for a student and returns immediately; a
background drain task delivers it. While a student's message is pending,
a newer one replaces it, so slow consumers see the most recent state
rather than a backlog and recomputation never waits on delivery.

Usage:
    broadcaster = LiveBroadcaster(send_timeout=2.0)
    await broadcaster.start()
    subscription = broadcaster.subscribe(websocket.send_json, class_id="class-1")
    broadcaster.offer(metrics)
    ...
    broadcaster.unsubscribe(subscription.subscriber_id)
    await broadcaster.stop()
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import uuid4

from mastery_engine.domains.analytics.events import RealtimeMetricsUpdated

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class Subscription:
    """A live consumer interested in a student, a class, or both."""

    send: SendCallable
    student_id: str | None = None
    class_id: str | None = None
    subscriber_id: str = field(default_factory=lambda: str(uuid4()))

    def matches(self, metrics: RealtimeMetricsUpdated) -> bool:
        if self.student_id is not None and self.student_id == metrics.student_id:
            return True
        return self.class_id is not None and self.class_id == metrics.class_id


class LiveBroadcaster:
    """Most-recent-wins fan-out of live metrics to subscribers.

    Attributes:
        send_timeout: Seconds allowed per subscriber send.
        max_pending: Max students with an undelivered message; beyond it the
            oldest pending student is dropped.
    """

    def __init__(self, send_timeout: float = 2.0, max_pending: int = 10_000) -> None:
        self.send_timeout = send_timeout
        self.max_pending = max_pending
        self._subscriptions: dict[str, Subscription] = {}
        self._pending: OrderedDict[str, RealtimeMetricsUpdated] = OrderedDict()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._dropped = 0

    def subscribe(
        self,
        send: SendCallable,
        student_id: str | None = None,
        class_id: str | None = None,
    ) -> Subscription:
        """Register a consumer.

        Raises:
            ValueError: If neither student_id nor class_id is given.
        """
        if student_id is None and class_id is None:
            raise ValueError("subscribe requires student_id or class_id")
        subscription = Subscription(send=send, student_id=student_id, class_id=class_id)
        self._subscriptions[subscription.subscriber_id] = subscription
        logger.debug(
            "Live subscriber added: id=%s, student=%s, class=%s",
            subscription.subscriber_id,
            student_id,
            class_id,
        )
        return subscription

    def unsubscribe(self, subscriber_id: str) -> bool:
        return self._subscriptions.pop(subscriber_id, None) is not None

    def offer(self, metrics: RealtimeMetricsUpdated) -> None:
        """Queue metrics for delivery, replacing any pending message for the student."""
        self._pending.pop(metrics.student_id, None)
        self._pending[metrics.student_id] = metrics
        while len(self._pending) > self.max_pending:
            dropped_student, _ = self._pending.popitem(last=False)
            self._dropped += 1
            logger.warning("Live broadcast dropped under backpressure: student=%s", dropped_student)
        self._wakeup.set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def _deliver(self, subscription: Subscription, payload: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(subscription.send(payload), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Live broadcast timed out: subscriber=%s", subscription.subscriber_id)
        except Exception as e:
            # The consumer is gone (closed socket); stop sending to it.
            logger.info(
                "Live subscriber removed after send failure: subscriber=%s, error=%s",
                subscription.subscriber_id,
                e,
            )
            self.unsubscribe(subscription.subscriber_id)

    async def flush(self) -> int:
        """Deliver every pending message now.

        Returns:
            Number of messages taken off the pending map.
        """
        batch = list(self._pending.values())
        self._pending.clear()
        self._wakeup.clear()

        for metrics in batch:
            payload = metrics.model_dump(mode="json")
            targets = [s for s in list(self._subscriptions.values()) if s.matches(metrics)]
            if targets:
                await asyncio.gather(*(self._deliver(s, payload) for s in targets))
        return len(batch)

    async def _drain(self) -> None:
        while True:
            await self._wakeup.wait()
            await self.flush()

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain(), name="live-broadcaster")

    async def stop(self) -> None:
        """Cancel the drain task and deliver what is still pending."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()

    def get_stats(self) -> dict[str, Any]:
        return {
            "subscribers": len(self._subscriptions),
            "pending": len(self._pending),
            "dropped": self._dropped,
            "running": self._task is not None and not self._task.done(),
        }
