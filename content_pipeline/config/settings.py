"""
Environment-aware configuration settings for the content pipeline orchestrator.

Supports dev, test, and prod environments with appropriate defaults.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class LeaseBackend(str, Enum):
    """Where per-run scheduler leases are held."""

    STORE = "store"
    REDIS = "redis"


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis server hostname")
    port: int = Field(default=6379, description="Redis server port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    max_connections: int = Field(default=20, description="Maximum connection pool size")
    socket_timeout: float = Field(default=5.0, description="Socket timeout")
    socket_connect_timeout: float = Field(default=5.0, description="Connection timeout")

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="PostgreSQL server hostname")
    port: int = Field(default=5432, description="PostgreSQL server port")
    database: str = Field(default="content_pipeline", description="Database name")
    user: str = Field(default="postgres", description="Database user")
    password: str = Field(default="postgres", description="Database password")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Max overflow connections")
    pool_timeout: float = Field(default=10.0, description="Pool timeout in seconds (fail fast)")

    @property
    def url(self) -> str:
        """Generate PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def sync_url(self) -> str:
        """Generate synchronous PostgreSQL connection URL for migrations."""
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class SchedulerSettings(BaseSettings):
    """
    Scheduler pass settings.

    Ready tasks are split into batches of ``batch_size``; batches run one
    after another and tasks inside a batch run concurrently, at most
    ``concurrency`` at a time.
    """

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    batch_size: int = Field(default=5, ge=1, description="Ready tasks per batch")
    concurrency: int = Field(default=5, ge=1, description="Concurrent handler calls per batch")
    failure_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Stage failure rate above which advancement is refused",
    )
    handler_timeout: float = Field(
        default=120.0,
        gt=0.0,
        description="Maximum seconds a single handler call may run",
    )
    lease_backend: LeaseBackend = Field(
        default=LeaseBackend.STORE,
        description="Backend holding the per-run pass lease",
    )
    lease_ttl: float = Field(
        default=300.0,
        gt=0.0,
        description="Seconds before an abandoned pass lease expires",
    )
    advance_max_conflicts: int = Field(
        default=3,
        ge=1,
        description="Optimistic-concurrency retries when advancing a stage",
    )


class RetrySettings(BaseSettings):
    """Default retry policy settings."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, ge=1, description="Attempts before a task fails permanently")


class RecoverySettings(BaseSettings):
    """
    Recovery sweep settings.

    ``stale_task_timeout`` is the watchdog: a task left in ``running`` with a
    ``started_at`` older than this is considered abandoned and requeued.
    ``Settings`` rejects values at or below ``SchedulerSettings.handler_timeout``.
    """

    model_config = SettingsConfigDict(env_prefix="RECOVERY_")

    stale_task_timeout: float = Field(default=300.0, gt=0.0, description="Stale running task age (seconds)")
    paused_warning_after: float = Field(
        default=86400.0,
        gt=0.0,
        description="Warn about runs paused longer than this (seconds)",
    )
    degraded_run_fail_after: Optional[float] = Field(
        default=None,
        description="Fail runs stuck on a degraded stage longer than this (seconds); unset keeps them running",
    )


class CronSettings(BaseSettings):
    """Trigger endpoint settings."""

    model_config = SettingsConfigDict(env_prefix="CRON_")

    secret: Optional[str] = Field(default=None, description="Bearer secret for the processor trigger")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Content Pipeline Orchestrator")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    cron: CronSettings = Field(default_factory=CronSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate and convert environment string to enum."""
        if isinstance(v, Environment):
            return v
        return Environment(v.lower())

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        """Leases and the stale-task watchdog must outlive a single handler call."""
        handler_timeout = self.scheduler.handler_timeout
        if self.scheduler.lease_ttl <= handler_timeout:
            raise ValueError(
                f"scheduler.lease_ttl ({self.scheduler.lease_ttl}) must exceed "
                f"scheduler.handler_timeout ({handler_timeout})"
            )
        if self.recovery.stale_task_timeout <= handler_timeout:
            raise ValueError(
                f"recovery.stale_task_timeout ({self.recovery.stale_task_timeout}) must exceed "
                f"scheduler.handler_timeout ({handler_timeout})"
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TEST

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PROD


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
