"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")
    docs_enabled: bool = Field(
        default=True, description="Expose /docs, /redoc and /openapi.json"
    )

    # Database
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL. In-memory stores are used when unset",
    )
    db_pool_min_size: int = Field(default=1, description="Minimum connection pool size")
    db_pool_max_size: int = Field(default=10, description="Maximum connection pool size")
    db_ssl: bool = Field(default=False, description="Require SSL for database connections")

    # Rate limiting (HTTP API)
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_requests_per_minute: int = Field(
        default=120, description="Maximum requests per minute per IP"
    )

    # Request size limits
    max_request_body_size: int = Field(
        default=1024 * 1024,  # 1 MB
        description="Maximum request body size in bytes",
    )

    # API Key Authentication
    api_key: Optional[str] = Field(
        default=None,
        description="Optional API key. If set, all requests must include the API key header",
    )
    api_key_header_name: str = Field(
        default="X-API-Key", description="Header name for API key"
    )

    # Job engine
    jobs_worker_enabled: bool = Field(
        default=True, description="Start the in-process worker pool at startup"
    )
    job_worker_concurrency: int = Field(
        default=2, ge=1, description="Number of concurrent worker tasks"
    )
    job_poll_interval_s: float = Field(
        default=1.0, gt=0, description="Idle wait between queue checks in seconds"
    )
    job_step_timeout_s: float = Field(
        default=120.0,
        gt=0,
        description="Maximum duration of a single workflow step. Must exceed connector_timeout_s",
    )
    job_stale_timeout_minutes: int = Field(
        default=15, description="Running jobs locked longer than this are reaped"
    )
    distribution_stale_timeout_minutes: int = Field(
        default=10, ge=1, description="IN_PROGRESS records older than this are reaped"
    )
    job_dedupe_window_s: int = Field(
        default=300, description="Window in which identical submissions are rejected"
    )
    job_max_attempts: int = Field(
        default=3, ge=1, description="Retry budget for failed jobs"
    )
    job_batch_size: int = Field(
        default=5, ge=1, le=50, description="Default size of an inline processing batch"
    )

    # Distribution
    distribution_enabled: bool = Field(
        default=True, description="Kill switch for all outbound distribution"
    )
    distribution_max_retries: int = Field(
        default=3, ge=0, description="Retry budget per distribution record"
    )
    connector_timeout_s: float = Field(
        default=30.0, gt=0, description="Timeout for a single platform API call"
    )
    breaker_failure_threshold: int = Field(
        default=5, ge=1, description="Consecutive failures that open a channel circuit"
    )
    breaker_failure_window_s: float = Field(
        default=300.0, gt=0, description="Window in which failures are counted"
    )
    breaker_cooldown_s: float = Field(
        default=300.0, gt=0, description="Initial open-circuit cooldown"
    )
    breaker_cooldown_max_s: float = Field(
        default=3600.0, gt=0, description="Upper bound for the open-circuit cooldown"
    )
    breaker_backoff_multiplier: float = Field(
        default=2.0, ge=1.0, description="Cooldown multiplier after a failed trial"
    )
    channel_rate_per_second: float = Field(
        default=1.0, gt=0, description="Token refill rate per channel"
    )
    channel_rate_burst: int = Field(
        default=5, ge=1, description="Token bucket capacity per channel"
    )
    scheduled_batch_size: int = Field(
        default=50, ge=1, description="Scheduled records dispatched per poll"
    )
    scheduled_poll_interval_s: float = Field(
        default=60.0, gt=0, description="Interval of the scheduled distribution poller"
    )
    scheduler_enabled: bool = Field(
        default=True, description="Start the scheduled distribution poller at startup"
    )
    retention_days: int = Field(
        default=90, ge=1, description="Age after which finished records are cleaned up"
    )
    site_base_url: str = Field(
        default="http://localhost:3000", description="Public site URL used for post links"
    )
    utm_source: Optional[str] = Field(
        default="social", description="UTM source appended to shared links"
    )

    # Notifications
    notify_webhook_url: Optional[str] = Field(
        default=None, description="Webhook that receives workflow completion notices"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking and performance monitoring",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry performance tracing sample rate (0.0-1.0)",
    )
    sentry_profiles_sample_rate: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Sentry profiling sample rate (0.0-1.0)",
    )

    @model_validator(mode="after")
    def _step_outlasts_connector(self) -> "Settings":
        # A distribute step makes at least one platform call
        if self.job_step_timeout_s <= self.connector_timeout_s:
            raise ValueError("job_step_timeout_s must be greater than connector_timeout_s")
        return self

    @property
    def site_url(self) -> str:
        """Site base URL without trailing slash."""
        return self.site_base_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
