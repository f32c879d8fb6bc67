"""
Configuration and settings for the takeoff listings service.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Set by managed hosts whose filesystem is read-only at request time.
SERVERLESS_ENV_MARKERS = ("VERCEL", "VERCEL_ENV", "VERCEL_URL")


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")
    log_level: str = Field(default="INFO")

    # Auth
    jwt_secret: Optional[str] = Field(default=None)
    jwt_algorithm: str = Field(default="HS256")

    # Document store (any SQLAlchemy URL, e.g. Postgres or SQLite)
    database_url: Optional[str] = Field(default=None)

    # Deployment mode. None means "detect from the environment".
    serverless: Optional[bool] = Field(default=None)
    app_env: str = Field(default="development")
    upload_dir: str = Field(default="uploads")

    # S3-compatible media store
    storage_bucket: Optional[str] = Field(default=None)
    storage_region: Optional[str] = Field(default=None)
    storage_endpoint: Optional[str] = Field(default=None)
    storage_public_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    media_folder: str = Field(default="takeoffs")
    preview_folder: str = Field(default="pdf-previews")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def use_buffer_uploads(self) -> bool:
        """True when uploads must stay in memory instead of touching disk."""
        if self.serverless is not None:
            return self.serverless
        if self.app_env.lower() == "production":
            return True
        return any(os.environ.get(name) for name in SERVERLESS_ENV_MARKERS)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
