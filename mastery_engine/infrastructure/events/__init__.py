# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event infrastructure: in-memory bus and event type constants."""

from mastery_engine.infrastructure.events.bus import (
    EventBus,
    EventData,
    EventHandler,
    get_event_bus,
    reset_event_bus,
)
from mastery_engine.infrastructure.events.types import EventTypes, get_all_event_types

__all__ = [
    "EventBus",
    "EventData",
    "EventHandler",
    "EventTypes",
    "get_all_event_types",
    "get_event_bus",
    "reset_event_bus",
]
