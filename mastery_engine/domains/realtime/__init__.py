# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Realtime domain: event dispatch, live metrics and dashboard broadcast."""

from mastery_engine.domains.realtime.activity_window import (
    consistency_score,
    current_level,
    load_recent_activity,
)
from mastery_engine.domains.realtime.broadcaster import LiveBroadcaster, Subscription
from mastery_engine.domains.realtime.dispatcher import (
    DispatchResult,
    DispatchState,
    RealtimeDispatcher,
)
from mastery_engine.domains.realtime.relay import MetricsRelay

__all__ = [
    "RealtimeDispatcher",
    "DispatchResult",
    "DispatchState",
    "LiveBroadcaster",
    "MetricsRelay",
    "Subscription",
    "load_recent_activity",
    "current_level",
    "consistency_score",
]
