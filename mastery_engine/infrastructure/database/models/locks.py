# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lock rows for aggregate recomputation.

One row per lock key ("student:<id>", "class:<id>", "campus:<id>"). A
transaction that recomputes a student's aggregates, or re-ranks a class or
campus, first locks the key's row with SELECT ... FOR UPDATE, so workers in
other threads and processes take turns on the same key.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from mastery_engine.infrastructure.database.models.base import Base, utc_now


class AggregateLock(Base):
    __tablename__ = "aggregate_locks"

    lock_key: Mapped[str] = mapped_column(String(160), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
