# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Centralized event type definitions.

Using constants instead of string literals gives a single source of truth
for event names; pattern subscribers (e.g. "dashboard.*") pick up new
events automatically.
"""


class EventTypes:
    """All event types of the engine organized by domain."""

    class Grading:
        """Inbound grading events."""

        SUBMISSION_GRADED = "grading.submission.graded"
        ACHIEVEMENT_UNLOCKED = "grading.achievement.unlocked"

    class Analytics:
        """Aggregate changes."""

        RECORD_UPSERTED = "analytics.record.upserted"
        PROGRESSION_UPDATED = "analytics.progression.updated"
        PERFORMANCE_ALERT = "analytics.performance.alert"
        SUBMISSION_REJECTED = "analytics.submission.rejected"
        DELAYED = "analytics.delayed"

    class Rewards:
        """Points and leaderboard changes."""

        POINTS_AWARDED = "rewards.points.awarded"
        CLASS_RERANKED = "rewards.class.reranked"

    class Dashboard:
        """Outbound dashboard notifications."""

        UPDATE_REQUIRED = "dashboard.update.required"
        REALTIME_METRICS = "dashboard.realtime.metrics"


def get_all_event_types() -> list[str]:
    """Get a flat list of all defined event types."""
    event_types = []
    for domain in vars(EventTypes).values():
        if isinstance(domain, type):
            for name, value in vars(domain).items():
                if not name.startswith("_") and isinstance(value, str):
                    event_types.append(value)
    return event_types
