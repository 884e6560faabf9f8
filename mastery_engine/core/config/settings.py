# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the mastery
engine. Settings are loaded from environment variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from mastery_engine.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.analytics.demonstration_threshold
    60.0
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PASSWORD = "mastery_password"


class DatabaseSettings(BaseSettings):
    """Analytics database configuration.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        url_override: Full async connection URL; takes precedence when set.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        sqlite_busy_timeout: Seconds a SQLite writer waits for the database
            write lock before failing with "database is locked".
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
        populate_by_name=True,
    )

    user: str = "mastery"
    password: SecretStr = SecretStr(DEFAULT_DB_PASSWORD)
    host: str = "mastery-db"
    port: int = 5432
    database: str = "mastery_engine"
    url_override: str | None = Field(default=None, validation_alias="DB_URL")
    pool_size: int = 10
    max_overflow: int = 20
    sqlite_busy_timeout: float = 15.0

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"

    @property
    def sync_url(self) -> str:
        """Build the sync database URL for migrations."""
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured URL targets SQLite (pool options differ)."""
        return self.url.startswith("sqlite")


class RedisSettings(BaseSettings):
    """Redis configuration for caching, pub/sub and message brokering.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
        enabled: Whether the engine should use Redis at all.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "mastery-redis"
    port: int = 6379
    password: SecretStr = SecretStr("mastery_redis_password")
    database: int = 0
    max_connections: int = 50
    enabled: bool = True

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class WorkerSettings(BaseSettings):
    """Background worker configuration.

    Attributes:
        processes: Number of worker processes.
        threads: Number of threads per process.
        test_mode: Use Dramatiq's StubBroker instead of Redis.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        extra="ignore",
        populate_by_name=True,
    )

    processes: int = 2
    threads: int = 4
    test_mode: bool = Field(default=False, validation_alias="DRAMATIQ_TEST_MODE")


class AnalyticsSettings(BaseSettings):
    """Mastery, points and dispatch tuning.

    Attributes:
        demonstration_threshold: Sub-score a level must reach to count as demonstrated.
        default_tagged_level: Level assumed for submissions without any level tag.
        expected_duration_minutes: Expected activity duration for engagement scoring.
        engagement_max_adjustment: Bound on the participation term of engagement.
        recent_window_size: Entries kept in the per-student recent-activity window.
        lock_timeout_seconds: Max wait for a per-student or per-class lock.
        step_retry_attempts: Attempts per dispatcher step before giving up.
        retry_base_delay_seconds: First backoff delay for transient failures.
        retry_max_delay_seconds: Backoff ceiling.
        conflict_jitter_seconds: Upper bound of the random delay after a lock conflict.
        notification_timeout_seconds: Per-send timeout for notifications.
        broadcast_queue_limit: Max students with a pending live broadcast.
        cache_ttl_seconds: TTL for cached reads and account lookups.
        alert_lookback_days: Window for performance alert detection.
        alert_min_records: Minimum records in the window before alerting.
        reconciliation_interval_minutes: Period of the background re-rank pass.
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_",
        extra="ignore",
    )

    demonstration_threshold: float = 60.0
    default_tagged_level: Literal[
        "remember", "understand", "apply", "analyze", "evaluate", "create"
    ] = "remember"
    expected_duration_minutes: float = 30.0
    engagement_max_adjustment: float = 10.0
    recent_window_size: int = 5
    lock_timeout_seconds: float = 5.0
    step_retry_attempts: int = 3
    retry_base_delay_seconds: float = 0.1
    retry_max_delay_seconds: float = 2.0
    conflict_jitter_seconds: float = 0.05
    notification_timeout_seconds: float = 2.0
    broadcast_queue_limit: int = 10_000
    cache_ttl_seconds: int = 300
    alert_lookback_days: int = 7
    alert_min_records: int = 3
    reconciliation_interval_minutes: int = 60


class CORSSettings(BaseSettings):
    """CORS configuration for API.

    Attributes:
        origins: Comma-separated list of allowed origins.
        allow_credentials: Whether to allow credentials.
        allow_methods: Allowed HTTP methods.
        allow_headers: Allowed HTTP headers.
    """

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        extra="ignore",
    )

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True
    allow_methods: list[str] = ["*"]
    allow_headers: list[str] = ["*"]

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into a list."""
        return [origin.strip() for origin in self.origins.split(",") if origin.strip()]


class APISettings(BaseSettings):
    """API server configuration.

    Attributes:
        host: Host to bind to.
        port: Port to listen on.
        workers: Number of worker processes.
        reload: Whether to enable auto-reload.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 34100
    workers: int = 2
    reload: bool = False


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        db: Database settings.
        redis: Redis settings.
        worker: Background worker settings.
        analytics: Mastery and ranking tuning.
        cors: CORS settings.
        api: API server settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)
    api: APISettings = Field(default_factory=APISettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            if (
                self.db.url_override is None
                and self.db.password.get_secret_value() == DEFAULT_DB_PASSWORD
            ):
                raise ValueError(
                    "Database password must be changed from default in production. "
                    "Set DB_PASSWORD environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
