"""
Configuration and settings for the marketdesk service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    environment: str = Field(default="development")

    # Hosted backend service (auth REST API, CSP connect-src)
    supabase_url: str = Field(default="")
    supabase_anon_key: Optional[str] = Field(default=None)
    admin_email: Optional[str] = Field(default=None)

    # Table storage (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible object storage
    storage_endpoint: Optional[str] = Field(default=None)
    storage_region: Optional[str] = Field(default=None)
    storage_bucket: Optional[str] = Field(default=None)
    storage_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Change feed and shared rate-limit counters (Redis)
    redis_url: Optional[str] = Field(default=None)
    realtime_channel_prefix: str = Field(default="marketdesk:changes")

    # Static bundle
    dist_dir: str = Field(default="dist")

    # HTTP protections
    rate_limit_max_requests: int = Field(default=100)
    rate_limit_window_seconds: int = Field(default=15 * 60)

    # Live views
    refresh_interval_seconds: float = Field(default=5 * 60)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="MARKETDESK_USE_IN_MEMORY_BACKENDS"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
