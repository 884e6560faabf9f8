# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exceptions raised by the analytics pipeline.

Only MalformedSubmission and an exhausted ConcurrencyConflict (reported as
AnalyticsDelayed) ever reach operators. TransientStoreFailure is retried by
the dispatcher, and NotificationDeliveryFailure is logged and dropped.
"""


class AnalyticsError(Exception):
    """Base exception for analytics errors."""

    pass


class MalformedSubmission(AnalyticsError):
    """Raised when a graded submission cannot be turned into a record.

    Attributes:
        submission_id: Offending submission.
        reason: Short machine-readable reason.
    """

    def __init__(self, submission_id: str, reason: str) -> None:
        super().__init__(f"Malformed submission {submission_id}: {reason}")
        self.submission_id = submission_id
        self.reason = reason


class TransientStoreFailure(AnalyticsError):
    """Raised when a read or write against the store fails and may succeed later.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying database error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class ConcurrencyConflict(AnalyticsError):
    """Raised when a per-student or per-class lock cannot be acquired in time."""

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.2f}s waiting for lock {key}")
        self.key = key
        self.timeout = timeout


class AnalyticsDelayed(AnalyticsError):
    """Raised when lock conflicts persist past every retry.

    The record is safely stored; aggregates will catch up on the next
    event for the same student or on reconciliation.
    """

    def __init__(self, submission_id: str, step: str) -> None:
        super().__init__(f"Analytics delayed for {submission_id} at step {step}")
        self.submission_id = submission_id
        self.step = step


class NotificationDeliveryFailure(AnalyticsError):
    """Raised when a dashboard notification or live broadcast cannot be sent."""

    pass
