"""Configuration loading for feedcircle."""

import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedcircle.services.scheduler import is_valid_cron


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="FEEDCIRCLE_")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Interface the HTTP server binds to")
    port: int = Field(default=8080, description="Port the HTTP server listens on")
    secret_key: str = Field(description="Shared secret required by the manual trigger endpoint")
    allowed_origins: list[str] = Field(
        default_factory=list, description="Origins allowed to call the API from a browser"
    )

    # Crawl settings
    friends_url: str = Field(description="URL of the JSON friend directory")
    output_file: str = Field(default="data/feed.json", description="Path of the persisted digest")
    cron_expr: str = Field(
        default="0 0 */6 * * *", description="Crawl schedule (cron, optional leading seconds field)"
    )
    timezone: str = Field(default="Asia/Shanghai", description="Zone used for schedules and timestamps")
    run_on_startup: bool = Field(default=True, description="Start a crawl when the service boots")
    max_items_per_source: int = Field(default=5, ge=1, description="Articles kept per feed")
    fetch_concurrency: int = Field(default=10, ge=1, description="Feeds fetched in parallel")
    fetch_timeout: float = Field(default=30.0, gt=0, description="Per-attempt HTTP timeout in seconds")
    fetch_retries: int = Field(default=2, ge=0, description="Retries after a transport failure")
    fetch_retry_delay: float = Field(default=2.0, ge=0, description="Seconds between fetch attempts")

    # Rate limiting
    trigger_rate: int = Field(default=2, description="Requests per second allowed on /trigger")
    trigger_burst: int = Field(default=10, ge=1, description="Burst allowed on /trigger (capped at the rate)")
    trigger_block_seconds: float = Field(default=24 * 3600, description="Block length after /trigger abuse")
    digest_rate: int = Field(default=5, description="Requests per second allowed on /digest")
    digest_burst: int = Field(default=10, ge=1, description="Burst allowed on /digest (capped at the rate)")
    digest_block_seconds: float = Field(default=120, description="Block length after /digest abuse")
    ratelimit_sweep_interval: float = Field(default=30 * 60, gt=0, description="Seconds between sweeps")
    ratelimit_ttl: float = Field(default=15 * 60, gt=0, description="Idle seconds before eviction")

    # Application settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str | None = Field(default=None, description="Optional file receiving a copy of the logs")

    @field_validator("secret_key", "friends_url")
    @classmethod
    def validate_required(cls, v: str) -> str:
        """Reject empty required values."""
        if not v or not v.strip():
            raise ValueError(
                "FEEDCIRCLE_SECRET_KEY and FEEDCIRCLE_FRIENDS_URL are required and must not be empty."
            )
        return v.strip()

    @field_validator("cron_expr")
    @classmethod
    def validate_cron_expr(cls, v: str) -> str:
        """Validate the crawl schedule."""
        v = v.strip()
        if not is_valid_cron(v):
            raise ValueError(f"FEEDCIRCLE_CRON_EXPR '{v}' is not a valid cron expression.")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the logging level name."""
        if not isinstance(logging.getLevelName(v.upper()), int):
            raise ValueError(f"FEEDCIRCLE_LOG_LEVEL '{v}' is not a valid logging level.")
        return v.upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]
