# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the migration runner against SQLite."""

from pathlib import Path

import pytest
from sqlalchemy import inspect

from mastery_engine.infrastructure.database.connection import create_engine_for_url
from mastery_engine.infrastructure.database.migrations.runner import (
    MIGRATIONS,
    _get_pending_migrations,
    get_migration_status,
    run_migrations,
)
from mastery_engine.infrastructure.database.models import Base

pytestmark = pytest.mark.integration


class TestPendingMigrations:
    """Tests for pending migration selection."""

    def test_fresh_database_needs_everything(self) -> None:
        assert _get_pending_migrations(None) == MIGRATIONS

    def test_up_to_date(self) -> None:
        assert _get_pending_migrations(MIGRATIONS[-1]) == []

    def test_unknown_current_version(self) -> None:
        assert _get_pending_migrations("999_from_the_future") == []

    def test_unknown_target(self) -> None:
        assert _get_pending_migrations(None, "999_missing") == []


class TestRunMigrations:
    """Tests for run_migrations and get_migration_status."""

    @pytest.fixture
    def db_url(self, tmp_path: Path) -> str:
        return f"sqlite+aiosqlite:///{tmp_path / 'migrated.db'}"

    async def test_applies_initial_schema_once(self, db_url: str) -> None:
        before = await get_migration_status(db_url)
        applied = await run_migrations(db_url)
        again = await run_migrations(db_url)
        after = await get_migration_status(db_url)

        assert before["is_up_to_date"] is False
        assert applied == ["001_initial_schema", "002_add_aggregate_locks"]
        assert again == []
        assert after["current_version"] == "002_add_aggregate_locks"
        assert after["is_up_to_date"] is True

    async def test_schema_matches_models(self, db_url: str) -> None:
        """Test every model table exists with the same columns."""
        await run_migrations(db_url)
        engine = create_engine_for_url(db_url)

        def describe(sync_conn):
            inspector = inspect(sync_conn)
            return {
                table: {column["name"] for column in inspector.get_columns(table)}
                for table in inspector.get_table_names()
            }

        try:
            async with engine.connect() as conn:
                tables = await conn.run_sync(describe)
        finally:
            await engine.dispose()

        for table in Base.metadata.sorted_tables:
            assert table.name in tables
            assert tables[table.name] == {column.name for column in table.columns}
