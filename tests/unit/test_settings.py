"""
Unit tests for environment-driven settings.
"""

import pytest
from pydantic import ValidationError

from content_pipeline.config import Environment, Settings
from content_pipeline.config.settings import (
    LeaseBackend,
    PostgresSettings,
    RecoverySettings,
    RedisSettings,
    SchedulerSettings,
)


class TestSettings:
    """Tests for settings defaults and overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SCHEDULER_BATCH_SIZE", raising=False)
        settings = Settings()

        assert settings.scheduler.batch_size == 5
        assert settings.scheduler.concurrency == 5
        assert settings.scheduler.failure_threshold == 0.5
        assert settings.scheduler.lease_backend == LeaseBackend.STORE
        assert settings.retry.max_attempts == 3
        assert settings.recovery.stale_task_timeout == 300.0
        assert settings.recovery.degraded_run_fail_after is None
        assert settings.cron.secret is None

    def test_environment_prefixes(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_BATCH_SIZE", "8")
        monkeypatch.setenv("SCHEDULER_LEASE_BACKEND", "redis")
        monkeypatch.setenv("RECOVERY_DEGRADED_RUN_FAIL_AFTER", "3600")

        assert SchedulerSettings().batch_size == 8
        assert SchedulerSettings().lease_backend == LeaseBackend.REDIS
        assert RecoverySettings().degraded_run_fail_after == 3600.0

    def test_environment_is_case_insensitive(self):
        settings = Settings(environment="PROD")

        assert settings.environment == Environment.PROD
        assert settings.is_production
        assert not settings.is_development

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerSettings(failure_threshold=1.5)

    def test_connection_urls(self):
        postgres = PostgresSettings(user="app", password="pw", host="db", port=5433, database="cp")
        redis = RedisSettings(host="cache", password="secret", db=2)

        assert postgres.url == "postgresql+asyncpg://app:pw@db:5433/cp"
        assert postgres.sync_url == "postgresql://app:pw@db:5433/cp"
        assert redis.url == "redis://:secret@cache:6379/2"

    def test_lease_must_outlive_handler(self):
        with pytest.raises(ValidationError, match="lease_ttl"):
            Settings(scheduler=SchedulerSettings(handler_timeout=120.0, lease_ttl=60.0))

    def test_watchdog_must_outlive_handler(self):
        with pytest.raises(ValidationError, match="stale_task_timeout"):
            Settings(
                scheduler=SchedulerSettings(handler_timeout=30.0),
                recovery=RecoverySettings(stale_task_timeout=30.0),
            )
