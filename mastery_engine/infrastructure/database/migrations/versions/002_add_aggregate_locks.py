# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Add aggregate_locks table.

Recomputation transactions lock one row of this table per student, class
or campus key, which serializes workers running in separate processes.
Rows are created on first use and never deleted.

Revision ID: 002_add_aggregate_locks
Revises: 001_initial_schema
Create Date: 2025-11-17
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_add_aggregate_locks"
down_revision: str = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add aggregate_locks table."""
    op.create_table(
        "aggregate_locks",
        sa.Column("lock_key", sa.String(160), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("lock_key"),
    )


def downgrade() -> None:
    """Drop aggregate_locks table."""
    op.drop_table("aggregate_locks")
