"""
Configuration for the channel sync engine
Environment-driven settings (prefix CHANNEL_SYNC_) validated with pydantic-settings
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Process-wide settings shared by the workers, scheduler and admin surfaces"""

    model_config = SettingsConfigDict(
        env_prefix="CHANNEL_SYNC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage and transport
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/hotel_pms",
        description="SQLAlchemy async URL of the PMS database",
    )
    database_pool_size: int = Field(default=5, ge=1, le=100)
    redis_url: str = Field(default="redis://localhost:6379/0")
    outbound_queue: str = Field(default="channel_sync.outbound")
    inbound_queue: str = Field(default="channel_sync.inbound")

    # Token bucket per remote account: 100 requests per 5 minutes
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window_seconds: float = Field(default=300.0, gt=0)

    # Circuit breaker per remote account
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_reset_timeout_seconds: float = Field(default=60.0, gt=0)
    breaker_half_open_max_requests: int = Field(default=3, ge=1)

    # Client retries (attempts = max_retries + 1)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Queue redelivery
    queue_max_attempts: int = Field(default=3, ge=1)
    queue_retry_base_delay_seconds: float = Field(default=2.0, ge=0)
    queue_poll_timeout_seconds: float = Field(default=5.0, gt=0)

    # Inbound pulls
    inbound_page_size: int = Field(default=100, ge=1, le=1000)
    run_lock_ttl_seconds: int = Field(default=1800, ge=60)
    scheduler_tick_seconds: float = Field(default=60.0, gt=0)

    # Fernet key for sync_configuration.api_key_encrypted
    encryption_key: Optional[str] = None

    # Dotted path "package.module:factory" returning a PMSStore
    pms_store_factory: Optional[str] = None

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("pms_store_factory")
    @classmethod
    def validate_factory_path(cls, v):
        if v and ":" not in v:
            raise ValueError("pms_store_factory must look like 'package.module:callable'")
        return v


@lru_cache()
def get_settings() -> SyncSettings:
    """Cached settings instance for the running process"""
    return SyncSettings()
