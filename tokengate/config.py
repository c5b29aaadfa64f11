from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokengate.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token server and the reference client."""

    access_token_secret: str = env_field(
        None, "ACCESS_TOKEN_SECRET", validate_default=True
    )
    refresh_token_secret: str = env_field(
        None, "REFRESH_TOKEN_SECRET", validate_default=True
    )
    access_token_ttl_minutes: int = env_field(
        15,
        "ACCESS_TOKEN_TTL_MINUTES",
        gt=0,
        description="Lifetime of bearer access tokens",
    )
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60,
        "REFRESH_TOKEN_TTL_MINUTES",
        gt=0,
        description="Lifetime of renewal tokens and of the cookie carrying them",
    )
    rotate_refresh_tokens: bool = env_field(
        False,
        "ROTATE_REFRESH_TOKENS",
        description="Issue a new single-use renewal token on every refresh",
    )
    # Renewal cookie attributes; logout must clear with the same values
    refresh_cookie_name: str = env_field("refreshToken", "REFRESH_COOKIE_NAME")
    refresh_cookie_path: str = env_field("/auth", "REFRESH_COOKIE_PATH")
    cookie_secure: bool = env_field(
        False,
        "COOKIE_SECURE",
        description="Mark the renewal cookie Secure; enable behind HTTPS",
    )
    frontend_url: str = env_field("http://localhost:5173", "FRONTEND_URL")
    # Single user directory entry served by the memory store
    auth_user_id: str = env_field("1", "AUTH_USER_ID")
    auth_username: str = env_field("user", "AUTH_USERNAME")
    auth_password: str = env_field("password", "AUTH_PASSWORD")
    auth_display_name: str = env_field("User", "AUTH_DISPLAY_NAME")
    api_base_url: str = env_field("http://localhost:4000", "API_BASE_URL")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("access_token_secret", "refresh_token_secret", mode="before")
    @classmethod
    def _ensure_secret(cls, value: str | None, info) -> str:
        if value:
            return value
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "signing_secret_generated",
            setting=info.field_name,
            message="No signing secret configured; generated an ephemeral one",
        )
        return secrets.token_urlsafe(64)

    @field_validator("refresh_cookie_path")
    @classmethod
    def _validate_cookie_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("refresh_cookie_path must start with '/'")
        return value

    @model_validator(mode="after")
    def _check_secret_separation(self) -> "Settings":
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError(
                "access_token_secret and refresh_token_secret must differ"
            )
        return self

    @property
    def refresh_cookie_max_age(self) -> int:
        return self.refresh_token_ttl_minutes * 60


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
