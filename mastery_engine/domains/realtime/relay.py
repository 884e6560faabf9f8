# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Live metrics relay from Redis pub/sub.

A dispatcher running in a Dramatiq worker publishes RealtimeMetricsUpdated
on Redis, but dashboards hold their sockets on the API process's
LiveBroadcaster. MetricsRelay subscribes to the metrics channel and offers
each message to the local broadcaster. Messages stamped with this
process's own origin are skipped: the local dispatcher offered them
already.

Usage:
    relay = MetricsRelay(redis, broadcaster, origin=origin)
    await relay.start()
    ...
    await relay.stop()
"""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from mastery_engine.domains.analytics.events import RealtimeMetricsUpdated
from mastery_engine.domains.realtime.broadcaster import LiveBroadcaster
from mastery_engine.infrastructure.cache.redis_client import RedisClient, RedisError
from mastery_engine.infrastructure.events import EventTypes

logger = logging.getLogger(__name__)

METRICS_CHANNEL = f"events:{EventTypes.Dashboard.REALTIME_METRICS}"


class MetricsRelay:
    """Feeds live metrics published by other processes into a LiveBroadcaster.

    Attributes:
        origin: Origin stamped on this process's own publications.
        reconnect_delay: Seconds to wait before resubscribing after a
            Redis failure.
    """

    def __init__(
        self,
        client: RedisClient,
        broadcaster: LiveBroadcaster,
        origin: str,
        channel: str = METRICS_CHANNEL,
        reconnect_delay: float = 1.0,
    ) -> None:
        self.origin = origin
        self.reconnect_delay = reconnect_delay
        self._client = client
        self._broadcaster = broadcaster
        self._channel = channel
        self._task: asyncio.Task | None = None
        self._relayed = 0
        self._rejected = 0

    def handle(self, message: Any) -> bool:
        """Offer one pub/sub message to the broadcaster.

        Returns:
            True if the message was offered; False if it was this process's
            own or could not be read as live metrics.
        """
        if not isinstance(message, dict):
            self._rejected += 1
            logger.warning("Ignoring live metrics message that is not an object")
            return False
        if message.get("origin") == self.origin:
            return False
        try:
            metrics = RealtimeMetricsUpdated.model_validate(message.get("payload"))
        except ValidationError as e:
            self._rejected += 1
            logger.warning("Ignoring malformed live metrics message: %s", e)
            return False
        self._broadcaster.offer(metrics)
        self._relayed += 1
        return True

    async def run(self) -> None:
        """Relay until cancelled, resubscribing after Redis failures."""
        while True:
            try:
                async for message in self._client.listen(self._channel):
                    self.handle(message)
            except RedisError as e:
                logger.warning(
                    "Live metrics relay lost its subscription, retrying in %.1fs: %s",
                    self.reconnect_delay,
                    e,
                )
            await asyncio.sleep(self.reconnect_delay)

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="live-metrics-relay")
            logger.info("Live metrics relay subscribed to %s", self._channel)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "relayed": self._relayed,
            "rejected": self._rejected,
            "running": self._task is not None and not self._task.done(),
        }
