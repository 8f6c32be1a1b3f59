# Settings for the authorization server.
# Created: 2026-02-20
#
# Values come from MCPAUTH_* environment variables or a .env file.

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Authorization server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MCPAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    oauth_secret: str = Field(
        default="",
        description="Shared HMAC secret for signing access tokens. Rotating it "
        "invalidates every outstanding access token.",
    )
    authorization_server_url: str | None = Field(
        default=None,
        description="Public issuer URL. Defaults to the request's base URL.",
    )
    resource_path: str = Field(default="/mcp/api", description="Path of the protected API.")
    resource_documentation_path: str = "/mcp/docs"

    access_token_lifetime: int = Field(default=3600, gt=0)
    refresh_token_lifetime: int = Field(default=2_592_000, gt=0)
    authorization_code_lifetime: int = Field(default=1800, gt=0)

    database_path: Path | None = Field(
        default=None,
        description="SQLite database file. Unset keeps everything in memory.",
    )

    user_data_fallback: bool = Field(
        default=True,
        description="Issue tokens with a placeholder identity when the user data lookup fails.",
    )
    fallback_email: str = "unknown@example.com"
    default_client_scope: str = "mcp:read mcp:write"

    cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = "INFO"

    @field_validator("resource_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        value = value.rstrip("/")
        if not value.startswith("/"):
            value = "/" + value
        return value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    def require_secret(self) -> str:
        """Return the signing secret, refusing to run without one."""
        if not self.oauth_secret:
            raise ValueError(
                "MCPAUTH_OAUTH_SECRET is not set. Cannot initialize the token service."
            )
        if len(self.oauth_secret) < _MIN_SECRET_LENGTH:
            logger.warning(
                "MCPAUTH_OAUTH_SECRET is shorter than %d bytes - use a stronger secret!",
                _MIN_SECRET_LENGTH,
            )
        return self.oauth_secret


@lru_cache
def get_settings() -> Settings:
    return Settings()
