# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Keyed async locks.

Aggregate recomputes are serialized per student and leaderboard re-ranks
per class, while unrelated students and classes proceed in parallel.
Locks are created on demand and dropped once nobody holds or waits on
them, so the registry does not grow with the number of keys ever seen.

Example:
    locks = KeyedLockRegistry(timeout=5.0)

    async with locks.hold(student_key("s-1")):
        ...  # read-compute-write the student's aggregates
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mastery_engine.domains.analytics.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


def student_key(student_id: str) -> str:
    return f"student:{student_id}"


def class_key(class_id: str) -> str:
    return f"class:{class_id}"


def campus_key(campus_id: str) -> str:
    return f"campus:{campus_id}"


@dataclass
class _Slot:
    lock: asyncio.Lock
    users: int = 0


class KeyedLockRegistry:
    """Registry of asyncio locks keyed by string.

    Attributes:
        timeout: Default seconds to wait before raising ConcurrencyConflict.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout
        self._slots: dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the lock for key.

        Raises:
            ConcurrencyConflict: If the lock is not acquired within timeout.
        """
        wait = self.timeout if timeout is None else timeout
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot(lock=asyncio.Lock())
        slot.users += 1

        try:
            try:
                await asyncio.wait_for(slot.lock.acquire(), timeout=wait)
            except asyncio.TimeoutError as e:
                logger.warning("Lock wait timed out: key=%s, timeout=%.2fs", key, wait)
                raise ConcurrencyConflict(key, wait) from e

            try:
                yield
            finally:
                slot.lock.release()
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def is_locked(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)
