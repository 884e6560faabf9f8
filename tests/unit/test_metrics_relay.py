# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the Redis live metrics relay and Redis subscriptions."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mastery_engine.core.config.settings import Settings
from mastery_engine.domains.analytics.events import RealtimeMetricsUpdated
from mastery_engine.domains.realtime import LiveBroadcaster, MetricsRelay
from mastery_engine.domains.taxonomy import TaxonomyLevel
from mastery_engine.infrastructure.cache.redis_client import RedisClient, RedisError


def metrics_message(student_id: str = "s-1", origin: str | None = None) -> dict[str, Any]:
    metrics = RealtimeMetricsUpdated(
        student_id=student_id,
        class_id="c-1",
        current_level=TaxonomyLevel.ANALYZE,
        consistency_score=72.5,
        recent_activity_window=[],
        total_points=40,
        class_rank=2,
    )
    message: dict[str, Any] = {
        "event_type": "dashboard.realtime.metrics",
        "payload": metrics.model_dump(mode="json"),
    }
    if origin is not None:
        message["origin"] = origin
    return message


class FakeSubscriber:
    """Stands in for RedisClient.listen: one scripted session per subscription."""

    def __init__(self, *sessions: list[Any] | Exception) -> None:
        self._sessions = list(sessions)
        self.channels: list[str] = []

    async def listen(self, channel: str):
        self.channels.append(channel)
        session = self._sessions.pop(0) if self._sessions else []
        if isinstance(session, Exception):
            raise session
        for message in session:
            yield message
        if not self._sessions:
            # Stay subscribed, the way a live connection does.
            await asyncio.Event().wait()


class Inbox:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def send(self, payload: dict[str, Any]) -> None:
        self.messages.append(payload)


class TestMetricsRelay:
    """Tests for MetricsRelay."""

    async def test_worker_metrics_reach_local_subscribers(self) -> None:
        broadcaster = LiveBroadcaster()
        inbox = Inbox()
        broadcaster.subscribe(inbox.send, class_id="c-1")
        relay = MetricsRelay(FakeSubscriber(), broadcaster, origin="api-1")

        assert relay.handle(metrics_message(student_id="s-9")) is True
        await broadcaster.flush()

        assert [(m["student_id"], m["total_points"], m["class_rank"]) for m in inbox.messages] == [
            ("s-9", 40, 2)
        ]

    def test_own_publications_are_skipped(self) -> None:
        broadcaster = LiveBroadcaster()
        relay = MetricsRelay(FakeSubscriber(), broadcaster, origin="api-1")

        assert relay.handle(metrics_message(origin="api-1")) is False
        assert relay.handle(metrics_message(origin="api-2")) is True
        assert broadcaster.pending_count == 1

    @pytest.mark.parametrize(
        "message",
        [
            "not json",
            {"event_type": "dashboard.realtime.metrics", "payload": {"student_id": "s-1"}},
            {"event_type": "dashboard.realtime.metrics"},
        ],
    )
    def test_unreadable_messages_are_dropped(self, message) -> None:
        broadcaster = LiveBroadcaster()
        relay = MetricsRelay(FakeSubscriber(), broadcaster, origin="api-1")

        assert relay.handle(message) is False
        assert broadcaster.pending_count == 0
        assert relay.get_stats()["rejected"] == 1

    async def test_resubscribes_after_redis_failure(self) -> None:
        broadcaster = LiveBroadcaster()
        subscriber = FakeSubscriber(
            RedisError("connection lost"),
            [metrics_message(student_id="s-1"), metrics_message(student_id="s-2")],
        )
        relay = MetricsRelay(subscriber, broadcaster, origin="api-1", reconnect_delay=0.0)

        await relay.start()
        for _ in range(50):
            if broadcaster.pending_count == 2:
                break
            await asyncio.sleep(0.01)
        running = relay.get_stats()["running"]
        await relay.stop()

        assert broadcaster.pending_count == 2
        assert subscriber.channels == ["events:dashboard.realtime.metrics"] * 2
        assert running is True
        assert relay.get_stats() == {"relayed": 2, "rejected": 0, "running": False}


class TestRedisListen:
    """Tests for RedisClient.listen."""

    @pytest.fixture
    def client(self) -> tuple[RedisClient, MagicMock]:
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        redis = MagicMock()
        redis.pubsub.return_value = pubsub
        client = RedisClient(Settings())
        client._redis = redis
        return client, pubsub

    async def test_yields_deserialized_messages_on_the_namespaced_channel(self, client) -> None:
        redis_client, pubsub = client

        async def messages():
            yield {"type": "subscribe", "data": 1}
            yield {"type": "message", "data": '{"event_type": "x", "payload": {"a": 1}}'}

        pubsub.listen.return_value = messages()

        received = [message async for message in redis_client.listen("events:x")]

        pubsub.subscribe.assert_awaited_once_with("mastery:events:x")
        assert received == [{"event_type": "x", "payload": {"a": 1}}]
        pubsub.aclose.assert_awaited_once()

    async def test_connection_loss_becomes_redis_error(self, client) -> None:
        redis_client, pubsub = client
        pubsub.subscribe.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(RedisError, match="events:x"):
            async for _ in redis_client.listen("events:x"):
                pass

        pubsub.aclose.assert_awaited_once()
