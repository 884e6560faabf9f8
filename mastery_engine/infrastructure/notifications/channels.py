# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery channels for dashboard notifications.

Each channel delivers an already-serialized event through one medium.
Channels raise NotificationDeliveryFailure; the notifier decides what to
do with it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from mastery_engine.domains.analytics.exceptions import NotificationDeliveryFailure
from mastery_engine.infrastructure.cache.redis_client import RedisClient, RedisError
from mastery_engine.infrastructure.events import EventBus


class ChannelType(str, Enum):
    """Available notification channel types."""

    EVENT_BUS = "event_bus"
    REDIS_PUBSUB = "redis_pubsub"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class ChannelResult:
    """Result of a channel send operation.

    Attributes:
        channel: Which channel was used.
        status: Delivery status.
        error_message: Error message if failed.
        sent_at: When message was sent.
    """

    channel: ChannelType
    status: DeliveryStatus
    error_message: str | None = None
    sent_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.SENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "error_message": self.error_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "metadata": self.metadata,
        }


class BaseChannel(ABC):
    """Abstract base class for notification channels."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """Return the channel type."""
        ...

    @abstractmethod
    async def send(self, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver one event.

        Raises:
            NotificationDeliveryFailure: If the medium rejects the event.
        """
        ...


class EventBusChannel(BaseChannel):
    """Publishes onto the in-process EventBus."""

    def __init__(self, bus: EventBus) -> None:
        super().__init__()
        self._bus = bus

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.EVENT_BUS

    async def send(self, event_type: str, payload: dict[str, Any]) -> None:
        await self._bus.publish(event_type, payload)


class RedisPubSubChannel(BaseChannel):
    """Publishes onto a Redis channel named after the event type.

    When origin is set it travels with every message, so a process relaying
    the channel back to its own subscribers can skip what it published.
    """

    def __init__(
        self, client: RedisClient, channel_prefix: str = "events", origin: str | None = None
    ) -> None:
        super().__init__()
        self._client = client
        self._channel_prefix = channel_prefix
        self._origin = origin

    @property
    def channel_type(self) -> ChannelType:
        return ChannelType.REDIS_PUBSUB

    async def send(self, event_type: str, payload: dict[str, Any]) -> None:
        message: dict[str, Any] = {"event_type": event_type, "payload": payload}
        if self._origin is not None:
            message["origin"] = self._origin
        try:
            await self._client.publish(f"{self._channel_prefix}:{event_type}", message)
        except RedisError as e:
            raise NotificationDeliveryFailure(f"Redis publish failed for {event_type}: {e}") from e
