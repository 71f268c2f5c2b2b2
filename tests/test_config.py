"""Tests for configuration settings."""

import pytest
from pydantic import ValidationError

from call_scheduler.config import LoggingConfig, SchedulerConfig, Settings, get_settings
from call_scheduler.enums import RetryPolicy


class TestSchedulerConfig:
    """Tests for SchedulerConfig model."""

    def test_defaults(self):
        """Test default values are correct."""
        config = SchedulerConfig()

        assert config.max_requests_per_minute == 60
        assert config.max_concurrent_requests == 10
        assert config.window_seconds == 60.0
        assert config.retry_attempts == 3
        assert config.initial_backoff_ms == 1000
        assert config.max_backoff_ms == 60000
        assert config.backoff_multiplier == 2.0
        assert config.retry_policy is RetryPolicy.HEAD
        assert config.release_slot_during_backoff is False
        assert config.honor_retry_after is True

    def test_backoff_curve(self):
        """Test backoff grows geometrically and is capped."""
        config = SchedulerConfig(initial_backoff_ms=100, max_backoff_ms=500, backoff_multiplier=2.0)

        assert config.backoff_ms(0) == 100
        assert config.backoff_ms(1) == 200
        assert config.backoff_ms(2) == 400
        assert config.backoff_ms(3) == 500
        assert config.backoff_ms(10) == 500

    def test_backoff_far_past_float_range(self):
        """Test huge retry counts return the cap instead of overflowing."""
        config = SchedulerConfig(initial_backoff_ms=100, max_backoff_ms=500, backoff_multiplier=2.0)

        assert config.backoff_ms(1025) == 500
        assert config.backoff_ms(5000) == 500

    def test_constant_backoff(self):
        """Test multiplier 1.0 keeps the delay flat."""
        config = SchedulerConfig(initial_backoff_ms=250, backoff_multiplier=1.0)

        assert config.backoff_ms(5) == 250

    @pytest.mark.parametrize(
        "field,value",
        [
            ("max_requests_per_minute", 0),
            ("max_concurrent_requests", 0),
            ("window_seconds", 0),
            ("retry_attempts", -1),
            ("initial_backoff_ms", -1),
            ("backoff_multiplier", 0.5),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        """Test out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            SchedulerConfig(**{field: value})

    def test_max_backoff_below_initial_rejected(self):
        """Test the backoff cap cannot be below the initial delay."""
        with pytest.raises(ValidationError, match="max_backoff_ms"):
            SchedulerConfig(initial_backoff_ms=5000, max_backoff_ms=1000)

    def test_unknown_field_rejected(self):
        """Test unknown options are rejected."""
        with pytest.raises(ValidationError):
            SchedulerConfig(max_rpm=10)

    def test_frozen(self):
        """Test config instances cannot be mutated."""
        config = SchedulerConfig()

        with pytest.raises(ValidationError):
            config.max_concurrent_requests = 3

    def test_retry_policy_from_string(self):
        """Test retry policy accepts its string value."""
        assert SchedulerConfig(retry_policy="fair").retry_policy is RetryPolicy.FAIR


class TestSettings:
    """Tests for Settings class."""

    def test_settings_defaults(self):
        """Test default values are correct."""
        settings = Settings(_env_file=None)

        assert settings.environment == "development"
        assert settings.log_level == "INFO"
        assert settings.scheduler == SchedulerConfig()
        assert settings.logging == LoggingConfig()

    def test_settings_from_env(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = Settings(_env_file=None)

        assert settings.environment == "production"
        assert settings.log_level == "DEBUG"

    def test_nested_scheduler_from_env(self, monkeypatch):
        """Test nested scheduler settings use the double-underscore delimiter."""
        monkeypatch.setenv("SCHEDULER__MAX_CONCURRENT_REQUESTS", "4")
        monkeypatch.setenv("SCHEDULER__RETRY_POLICY", "tail")

        settings = Settings(_env_file=None)

        assert settings.scheduler.max_concurrent_requests == 4
        assert settings.scheduler.retry_policy is RetryPolicy.TAIL
        assert settings.scheduler.max_requests_per_minute == 60

    def test_nested_logging_from_env(self, monkeypatch):
        """Test nested logging settings load from the environment."""
        monkeypatch.setenv("LOGGING__LOG_FILE", "/tmp/callsched.log")
        monkeypatch.setenv("LOGGING__SERIALIZE", "true")

        settings = Settings(_env_file=None)

        assert settings.logging.log_file == "/tmp/callsched.log"
        assert settings.logging.serialize is True

    def test_settings_environment_validation(self, monkeypatch):
        """Test that invalid environment value is rejected."""
        monkeypatch.setenv("ENVIRONMENT", "invalid")

        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_invalid_scheduler_env_rejected(self, monkeypatch):
        """Test invalid nested values fail validation."""
        monkeypatch.setenv("SCHEDULER__MAX_REQUESTS_PER_MINUTE", "0")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_cached(self):
        """Test that get_settings returns cached instance."""
        assert get_settings() is get_settings()
