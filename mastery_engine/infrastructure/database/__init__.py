# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure: connections, models and migrations."""

from mastery_engine.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    create_engine_for_url,
    create_sessionmaker,
    get_engine,
    get_session,
    get_sessionmaker,
    init_database,
)

__all__ = [
    "DatabaseError",
    "init_database",
    "close_database",
    "get_engine",
    "get_sessionmaker",
    "get_session",
    "check_database_connection",
    "create_engine_for_url",
    "create_sessionmaker",
]
