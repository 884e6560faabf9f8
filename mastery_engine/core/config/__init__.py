# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the mastery engine.

Example:
    >>> from mastery_engine.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from mastery_engine.core.config.settings import (
    AnalyticsSettings,
    APISettings,
    CORSSettings,
    DatabaseSettings,
    RedisSettings,
    Settings,
    WorkerSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DatabaseSettings",
    "RedisSettings",
    "WorkerSettings",
    "AnalyticsSettings",
    "CORSSettings",
    "APISettings",
]
