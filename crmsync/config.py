"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """crmsync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/crmsync.db"

    # Host application registry, as "package.module:attribute"
    registry: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Auth
    api_token: str = ""

    # Jobs
    redis_url: str = ""
    enqueue_lock_ttl_seconds: int = Field(default=900, ge=1)
    job_max_attempts: int = Field(default=3, ge=1)
    batch_size: int = Field(default=1000, ge=1)

    # HubSpot
    hubspot_access_token: str = ""
    hubspot_api_base: str = "https://api.hubapi.com"
    http_timeout_seconds: float = Field(default=15.0, gt=0)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if len(self.api_token) < 32:
            violations.append("API_TOKEN must be set to a high-entropy value (>=32 chars)")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
