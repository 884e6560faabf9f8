# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the live dashboard broadcaster."""

import asyncio
from typing import Any

import pytest

from mastery_engine.domains.analytics.events import RealtimeMetricsUpdated
from mastery_engine.domains.realtime import LiveBroadcaster
from mastery_engine.domains.taxonomy import TaxonomyLevel


def make_metrics(student_id: str = "s-1", class_id: str = "c-1", points: int = 0) -> RealtimeMetricsUpdated:
    return RealtimeMetricsUpdated(
        student_id=student_id,
        class_id=class_id,
        current_level=TaxonomyLevel.APPLY,
        consistency_score=50.0,
        recent_activity_window=[],
        total_points=points,
    )


class Inbox:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def send(self, payload: dict[str, Any]) -> None:
        self.messages.append(payload)


class TestLiveBroadcaster:
    """Tests for LiveBroadcaster."""

    def test_subscribe_requires_a_filter(self) -> None:
        broadcaster = LiveBroadcaster()

        with pytest.raises(ValueError):
            broadcaster.subscribe(Inbox().send)

    async def test_delivers_to_matching_subscribers_only(self) -> None:
        broadcaster = LiveBroadcaster()
        by_student, by_class, other = Inbox(), Inbox(), Inbox()
        broadcaster.subscribe(by_student.send, student_id="s-1")
        broadcaster.subscribe(by_class.send, class_id="c-1")
        broadcaster.subscribe(other.send, class_id="c-2")

        broadcaster.offer(make_metrics())
        delivered = await broadcaster.flush()

        assert delivered == 1
        assert [m["student_id"] for m in by_student.messages] == ["s-1"]
        assert [m["class_id"] for m in by_class.messages] == ["c-1"]
        assert other.messages == []

    async def test_most_recent_message_wins(self) -> None:
        """Test a newer offer replaces a pending one for the same student."""
        broadcaster = LiveBroadcaster()
        inbox = Inbox()
        broadcaster.subscribe(inbox.send, student_id="s-1")

        broadcaster.offer(make_metrics(points=10))
        broadcaster.offer(make_metrics(points=25))
        assert broadcaster.pending_count == 1

        await broadcaster.flush()

        assert [m["total_points"] for m in inbox.messages] == [25]

    async def test_backpressure_drops_oldest_student(self) -> None:
        broadcaster = LiveBroadcaster(max_pending=2)
        inbox = Inbox()
        broadcaster.subscribe(inbox.send, class_id="c-1")

        for student_id in ("s-1", "s-2", "s-3"):
            broadcaster.offer(make_metrics(student_id=student_id))
        await broadcaster.flush()

        assert [m["student_id"] for m in inbox.messages] == ["s-2", "s-3"]
        assert broadcaster.get_stats()["dropped"] == 1

    async def test_failing_subscriber_is_removed(self) -> None:
        broadcaster = LiveBroadcaster()

        async def closed_socket(payload: dict[str, Any]) -> None:
            raise RuntimeError("socket closed")

        healthy = Inbox()
        broadcaster.subscribe(closed_socket, student_id="s-1")
        broadcaster.subscribe(healthy.send, student_id="s-1")

        broadcaster.offer(make_metrics())
        await broadcaster.flush()

        assert broadcaster.subscriber_count == 1
        assert len(healthy.messages) == 1

    async def test_slow_subscriber_times_out_without_blocking_others(self) -> None:
        broadcaster = LiveBroadcaster(send_timeout=0.01)

        async def slow(payload: dict[str, Any]) -> None:
            await asyncio.sleep(1)

        fast = Inbox()
        broadcaster.subscribe(slow, class_id="c-1")
        broadcaster.subscribe(fast.send, class_id="c-1")

        broadcaster.offer(make_metrics())
        await broadcaster.flush()

        assert len(fast.messages) == 1
        assert broadcaster.subscriber_count == 2

    async def test_background_drain(self) -> None:
        broadcaster = LiveBroadcaster()
        inbox = Inbox()
        broadcaster.subscribe(inbox.send, student_id="s-1")
        await broadcaster.start()

        broadcaster.offer(make_metrics())
        for _ in range(50):
            if inbox.messages:
                break
            await asyncio.sleep(0.01)

        assert broadcaster.get_stats()["running"] is True
        await broadcaster.stop()
        assert len(inbox.messages) == 1
        assert broadcaster.get_stats()["running"] is False

    async def test_stop_flushes_pending(self) -> None:
        broadcaster = LiveBroadcaster()
        inbox = Inbox()
        broadcaster.subscribe(inbox.send, student_id="s-1")

        broadcaster.offer(make_metrics())
        await broadcaster.stop()

        assert len(inbox.messages) == 1

    def test_unsubscribe(self) -> None:
        broadcaster = LiveBroadcaster()
        subscription = broadcaster.subscribe(Inbox().send, student_id="s-1")

        assert broadcaster.unsubscribe(subscription.subscriber_id) is True
        assert broadcaster.unsubscribe(subscription.subscriber_id) is False
