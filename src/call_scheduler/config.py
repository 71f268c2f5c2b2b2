"""Configuration settings for the call scheduler."""

from functools import lru_cache
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from call_scheduler.enums import RetryPolicy


class SchedulerConfig(BaseModel):
    """Admission, rate window and retry settings for one RequestScheduler.

    Instances are immutable; RequestScheduler.update_options() swaps in a
    new validated copy.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Admission
    max_requests_per_minute: int = Field(
        default=60,
        ge=1,
        description="Sliding-window cap on admitted executions",
    )
    max_concurrent_requests: int = Field(
        default=10,
        ge=1,
        description="Maximum simultaneously executing calls",
    )
    window_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Length of the sliding usage window in seconds",
    )

    # Retry curve
    retry_attempts: int = Field(
        default=3,
        ge=0,
        description="Maximum retries after the first attempt",
    )
    initial_backoff_ms: int = Field(
        default=1000,
        ge=0,
        description="Delay before the first retry",
    )
    max_backoff_ms: int = Field(
        default=60000,
        ge=0,
        description="Upper bound on any single retry delay",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Growth factor applied per retry",
    )

    # Retry behavior
    retry_policy: RetryPolicy = Field(
        default=RetryPolicy.HEAD,
        description="Queue placement of retried calls",
    )
    release_slot_during_backoff: bool = Field(
        default=False,
        description="Free the concurrency slot while a call waits out its backoff",
    )
    honor_retry_after: bool = Field(
        default=True,
        description="Stretch the backoff to a server-supplied Retry-After (still capped)",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> Self:
        if self.max_backoff_ms < self.initial_backoff_ms:
            raise ValueError("max_backoff_ms must be >= initial_backoff_ms")
        return self

    def backoff_ms(self, retry_count: int) -> float:
        """Delay in milliseconds before retry number ``retry_count + 1``.

        The growth term overflows a float after ~1024 doublings; any retry
        that far out is at the cap anyway.
        """
        try:
            delay = self.initial_backoff_ms * self.backoff_multiplier**retry_count
        except OverflowError:
            return float(self.max_backoff_ms)
        return min(delay, self.max_backoff_ms)


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Nested fields use a double underscore, e.g.
    ``SCHEDULER__MAX_CONCURRENT_REQUESTS=4``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Scheduling
    # --------------------------------------------------------------------------
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig,
        description="Default scheduler configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
