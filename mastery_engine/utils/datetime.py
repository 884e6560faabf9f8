# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the mastery engine.

All timestamps are stored in UTC and all Python datetimes are
timezone-aware. SQLite drops tzinfo on the way back, so values read from
the store pass through ensure_utc before they are compared.

Usage:
    from mastery_engine.utils.datetime import utc_now

    graded_at = utc_now()
    created_at = mapped_column(DateTime(timezone=True), default=utc_now)
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None. Naive values are assumed UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def start_of_day(dt: datetime) -> datetime:
    """Midnight UTC of the day containing dt."""
    dt = ensure_utc(dt)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(dt: datetime) -> datetime:
    """Monday 00:00 UTC of the ISO week containing dt."""
    day = start_of_day(dt)
    return day - timedelta(days=day.weekday())


def start_of_month(dt: datetime) -> datetime:
    """First day of the month containing dt, 00:00 UTC."""
    return start_of_day(dt).replace(day=1)


def days_before(reference: datetime, days: int) -> datetime:
    """Get a datetime N days before reference.

    Args:
        reference: Anchor datetime.
        days: Number of days to go back.

    Returns:
        Timezone-aware UTC datetime.
    """
    return ensure_utc(reference) - timedelta(days=days)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string, or None."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
