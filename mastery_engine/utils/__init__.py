# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers for the mastery engine.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations
"""

from mastery_engine.utils.datetime import (
    days_before,
    ensure_utc,
    format_iso,
    start_of_day,
    start_of_month,
    start_of_week,
    utc_now,
)
from mastery_engine.utils.logging import event_context, setup_logging

__all__ = [
    # Logging
    "setup_logging",
    "event_context",
    # Datetime
    "utc_now",
    "ensure_utc",
    "start_of_day",
    "start_of_week",
    "start_of_month",
    "days_before",
    "format_iso",
]
