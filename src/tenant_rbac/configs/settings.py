from __future__ import annotations

from typing import Any

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """
    Central configuration.

    - Values loaded from environment and `.env`
    - Comma-separated lists for multi-value settings like CORS_ORIGINS
    """

    # ----------------------------
    # Service
    # ----------------------------
    SERVICE_NAME: str = "tenant-rbac-service"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ----------------------------
    # Mongo
    # ----------------------------
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "tenant_rbac"
    # multi-document transactions need a replica set; turning them off is
    # only accepted with a single worker in development (check_guard_settings)
    mongo_transactions: bool = True

    # ----------------------------
    # Redis
    # ----------------------------
    redis_url: str = "redis://localhost:6379/0"
    redis_stream_audit: str = "rbac:stream:audit"
    member_cache_ttl_seconds: int = 300

    # ----------------------------
    # CORS
    # ----------------------------
    # store as raw string list from env; we will normalize in code
    CORS_ORIGINS: Any = Field(default_factory=list)

    # ----------------------------
    # Session JWT
    # ----------------------------
    jwt_alg: str = "HS256"
    jwt_secret: str = "change-me"
    jwt_audience: str | None = "authenticated"
    jwt_issuer: str | None = None

    # ----------------------------
    # Identity provider (admin API)
    # ----------------------------
    identity_base_url: str = "http://localhost:9999"
    identity_service_key: str = "change-me"
    identity_timeout_seconds: float = 10.0

    # ----------------------------
    # Policy
    # ----------------------------
    min_credential_length: int = 6
    safe_redirect_path: str = "/dashboard"
    login_path: str = "/login"

    # Pydantic settings config (v2 style)
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
