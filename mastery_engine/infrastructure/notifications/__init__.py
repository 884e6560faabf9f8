# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Outbound notification infrastructure."""

from mastery_engine.infrastructure.notifications.channels import (
    BaseChannel,
    ChannelResult,
    ChannelType,
    DeliveryStatus,
    EventBusChannel,
    RedisPubSubChannel,
)
from mastery_engine.infrastructure.notifications.publisher import DashboardNotifier

__all__ = [
    "BaseChannel",
    "ChannelResult",
    "ChannelType",
    "DeliveryStatus",
    "EventBusChannel",
    "RedisPubSubChannel",
    "DashboardNotifier",
]
