# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Store-level locks on aggregate keys.

KeyedLockRegistry only orders coroutines inside one process. API replicas
and Dramatiq workers recompute the same students and classes from
separate processes, so every recomputing transaction also locks the key's
row in aggregate_locks. The row stays locked until the transaction
commits or rolls back.

On PostgreSQL the wait is bounded with SET LOCAL lock_timeout. SQLite has
no row locks; there the engine starts every transaction with BEGIN
IMMEDIATE (see create_engine_for_url), which serializes writers on the
database file, and a writer that outwaits its busy timeout fails with
"database is locked".

Example:
    async with session_factory() as db:
        await lock_aggregate_key(db, class_key("class-1"), timeout=5.0)
        ...  # re-rank class-1
        await db.commit()
"""

import logging

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from mastery_engine.domains.analytics.exceptions import ConcurrencyConflict
from mastery_engine.infrastructure.database.models import AggregateLock

logger = logging.getLogger(__name__)

# PostgreSQL lock_not_available, raised when lock_timeout expires.
LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_timeout(error: DBAPIError) -> bool:
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    return isinstance(error, OperationalError) and "database is locked" in str(orig)


async def lock_aggregate_key(db: AsyncSession, key: str, timeout: float) -> None:
    """Lock the aggregate_locks row for key until db's transaction ends.

    The row is created on first use. Two transactions creating the same
    row at once end with an IntegrityError for the loser, which the caller
    treats as a transient store failure and retries.

    Args:
        db: Session whose transaction will hold the lock.
        key: Lock key, e.g. student_key("s-1").
        timeout: Seconds to wait for a competing holder.

    Raises:
        ConcurrencyConflict: If another transaction holds the key past timeout.
    """
    try:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(text(f"SET LOCAL lock_timeout = '{max(1, int(timeout * 1000))}ms'"))
        result = await db.execute(
            select(AggregateLock).where(AggregateLock.lock_key == key).with_for_update()
        )
        if result.scalar_one_or_none() is None:
            db.add(AggregateLock(lock_key=key))
            await db.flush()
    except DBAPIError as e:
        if not _is_lock_timeout(e):
            raise
        logger.warning("Store lock wait timed out: key=%s, timeout=%.2fs", key, timeout)
        raise ConcurrencyConflict(key, timeout) from e
