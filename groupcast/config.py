"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_path: Path = Field(default=Path("groupcast.db"), alias="DATABASE_PATH")
    scheduler_poll_interval_seconds: float = Field(default=60.0, gt=0, alias="SCHEDULER_POLL_INTERVAL_SECONDS")
    s3_bucket_name: str = Field(..., alias="S3_BUCKET_NAME")
    aws_region: str = Field(..., alias="AWS_REGION")
    # Overrides the S3 virtual-host URL, e.g. for a CDN or a local MinIO.
    storage_base_url: str | None = Field(default=None, alias="STORAGE_BASE_URL")
    # When unset, notifications go to the in-process connection hub.
    push_gateway_url: str | None = Field(default=None, alias="PUSH_GATEWAY_URL")
    request_timeout_seconds: float = Field(default=10.0, alias="REQUEST_TIMEOUT_SECONDS")
    shutdown_timeout_seconds: float = Field(default=10.0, alias="SHUTDOWN_TIMEOUT_SECONDS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()
