# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dashboard notifier.

Fans each outbound event out to every configured channel under a
per-send timeout. Delivery failures are logged and dropped: aggregates
are already committed by the time anything is sent, and nothing here can
roll them back.

Usage:
    notifier = DashboardNotifier([EventBusChannel(bus)], timeout=2.0)
    await notifier.notify_dashboard(update)
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from mastery_engine.domains.analytics.events import (
    BloomsProgressionUpdated,
    DashboardUpdateRequired,
    PerformanceAlertTriggered,
    RealtimeMetricsUpdated,
)
from mastery_engine.domains.analytics.exceptions import NotificationDeliveryFailure
from mastery_engine.infrastructure.events import EventTypes
from mastery_engine.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    DeliveryStatus,
)
from mastery_engine.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class DashboardNotifier:
    """Publishes outbound analytics events on every channel.

    Attributes:
        timeout: Seconds allowed per channel send.
    """

    def __init__(self, channels: Sequence[BaseChannel], timeout: float = 2.0) -> None:
        self._channels = list(channels)
        self.timeout = timeout

    async def _send_one(
        self, channel: BaseChannel, event_type: str, payload: dict[str, Any]
    ) -> ChannelResult:
        try:
            await asyncio.wait_for(channel.send(event_type, payload), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Notification timed out: channel=%s, event=%s",
                channel.channel_type.value,
                event_type,
            )
            return ChannelResult(
                channel=channel.channel_type,
                status=DeliveryStatus.TIMED_OUT,
                error_message=f"timed out after {self.timeout}s",
            )
        except NotificationDeliveryFailure as e:
            logger.warning(
                "Notification dropped: channel=%s, event=%s, error=%s",
                channel.channel_type.value,
                event_type,
                e,
            )
            return ChannelResult(
                channel=channel.channel_type,
                status=DeliveryStatus.FAILED,
                error_message=str(e),
            )
        return ChannelResult(channel=channel.channel_type, status=DeliveryStatus.SENT, sent_at=utc_now())

    async def publish(self, event_type: str, event: BaseModel) -> list[ChannelResult]:
        """Send one event to all channels concurrently."""
        payload = event.model_dump(mode="json")
        return list(
            await asyncio.gather(
                *(self._send_one(channel, event_type, payload) for channel in self._channels)
            )
        )

    async def notify_dashboard(self, update: DashboardUpdateRequired) -> list[ChannelResult]:
        return await self.publish(EventTypes.Dashboard.UPDATE_REQUIRED, update)

    async def publish_metrics(self, metrics: RealtimeMetricsUpdated) -> list[ChannelResult]:
        return await self.publish(EventTypes.Dashboard.REALTIME_METRICS, metrics)

    async def publish_progression(self, change: BloomsProgressionUpdated) -> list[ChannelResult]:
        return await self.publish(EventTypes.Analytics.PROGRESSION_UPDATED, change)

    async def publish_alert(self, alert: PerformanceAlertTriggered) -> list[ChannelResult]:
        return await self.publish(EventTypes.Analytics.PERFORMANCE_ALERT, alert)
