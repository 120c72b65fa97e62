"""Application settings and lazy settings loader."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration.

    Every key has a default so the API can boot without a `.env`; the ATXP
    connection string may also be supplied per request via header.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "env.example"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # ATXP credentials and MCP endpoints
    ATXP_CONNECTION_STRING: str | None = None
    CONNECTION_STRING_HEADER: str = "x-atxp-connection-string"
    IMAGE_MCP_URL: str = "https://image.mcp.atxp.ai"
    FILESTORE_MCP_URL: str = "https://filestore.mcp.atxp.ai"
    TOOL_TIMEOUT_S: float = Field(default=30.0, gt=0)

    # Poller timing: 120 polls * 5s ~= 10 minutes
    POLL_INTERVAL_S: float = Field(default=5.0, ge=0)
    POLL_MAX_ATTEMPTS: int = Field(default=120, ge=1)
    PROGRESS_EVERY_N_POLLS: int = Field(default=6, ge=1)

    # Progress stream
    SUBSCRIBER_QUEUE_SIZE: int = Field(default=256, ge=1)
    HEARTBEAT_INTERVAL_S: float = Field(default=15.0, gt=0)

    SHUTDOWN_GRACE_S: float = Field(default=5.0, ge=0)

    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:3001"]
    FRONTEND_BUILD_DIR: str | None = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance (lazy-loaded)."""
    return Settings()
