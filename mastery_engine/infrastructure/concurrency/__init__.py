# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Concurrency primitives for aggregate recomputation."""

from mastery_engine.infrastructure.concurrency.locks import (
    KeyedLockRegistry,
    campus_key,
    class_key,
    student_key,
)
from mastery_engine.infrastructure.concurrency.row_locks import lock_aggregate_key

__all__ = [
    "KeyedLockRegistry",
    "campus_key",
    "class_key",
    "lock_aggregate_key",
    "student_key",
]
