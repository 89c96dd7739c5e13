from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from springsso.logging import get_logger

logger = get_logger(__name__)

# Development fallbacks; every one of these must be overridden in production
INSECURE_JWT_SECRET = "supersecretkey"
INSECURE_SESSION_SECRET = "sessionSecretKey"

CALLBACK_PATH = "/api/auth/callback"


class Environment(str, Enum):
    """Deployment environments recognised by the cookie and secret checks."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the auth backend."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "APP_ENV")
    app_url: str = env_field(
        "http://localhost:5000",
        "APP_URL",
        description="Public base URL, used to build the SSO callback redirect URI",
    )
    # Scalekit identity provider
    scalekit_environment_url: str | None = env_field(None, "SCALEKIT_ENVIRONMENT_URL")
    scalekit_client_id: str | None = env_field(None, "SCALEKIT_CLIENT_ID")
    scalekit_client_secret: str | None = env_field(None, "SCALEKIT_CLIENT_SECRET")
    provider_timeout_seconds: float = env_field(
        10.0,
        "PROVIDER_TIMEOUT_SECONDS",
        description="Timeout for token exchange and userinfo calls",
    )
    # Tokens and sessions
    jwt_secret: str = env_field(INSECURE_JWT_SECRET, "JWT_SECRET")
    jwt_ttl_minutes: int = env_field(60, "JWT_TTL_MINUTES")
    session_secret: str = env_field(INSECURE_SESSION_SECRET, "SESSION_SECRET")
    session_cookie_name: str = env_field("session_id", "SESSION_COOKIE_NAME")
    session_ttl_minutes: int = env_field(60, "SESSION_TTL_MINUTES")
    session_sweep_interval_hours: int = env_field(
        24,
        "SESSION_SWEEP_INTERVAL_HOURS",
        description="How often the store prunes expired sessions; independent of session TTL",
    )

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

    @field_validator("environment")
    @classmethod
    def _validate_environment(cls, value: Environment) -> Environment:
        return Environment(value)

    @field_validator("app_url", "scalekit_environment_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/")

    @field_validator("jwt_ttl_minutes", "session_ttl_minutes", "session_sweep_interval_hours")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def _warn_insecure_defaults(self) -> "Settings":
        if self.environment == Environment.PRODUCTION:
            if self.jwt_secret == INSECURE_JWT_SECRET:
                logger.warning("insecure_default_secret", setting="JWT_SECRET")
            if self.session_secret == INSECURE_SESSION_SECRET:
                logger.warning("insecure_default_secret", setting="SESSION_SECRET")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def redirect_uri(self) -> str:
        return f"{self.app_url}{CALLBACK_PATH}"

    @property
    def scalekit_configured(self) -> bool:
        return bool(
            self.scalekit_environment_url
            and self.scalekit_client_id
            and self.scalekit_client_secret
        )


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
