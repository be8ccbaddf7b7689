"""
Configuration and settings for the record backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api/v1")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible asset storage
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    # When unset, retrieval URLs are presigned for the token lifetime.
    asset_public_base_url: Optional[str] = Field(default=None)
    asset_key_prefix: str = Field(default="assets")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Sessions
    token_secret: Optional[str] = Field(default=None)
    token_ttl_days: int = Field(default=7, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    session_cookie_name: str = Field(default="jwt")
    session_cookie_secure: bool = Field(default=True)

    # Revocations live in process memory unless explicitly made durable.
    durable_revocations: bool = Field(default=False)
    redis_url: Optional[str] = Field(default=None)
    revocation_key_prefix: str = Field(default="recordkeeper:revoked:")

    # Upper bound on parallel uploads/deletes within one operation
    fanout_workers: int = Field(default=8, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
