from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

_LOG_LEVELS = {"debug", "info", "warning", "error"}


class Environment(str, Enum):
    """Deployment environments; cookies are only marked secure in production."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Immutable runtime settings, built once at startup and passed explicitly."""

    database_url: str = env_field(
        "postgresql://localhost:5432/todoauth", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    environment: Environment = env_field(Environment.DEVELOPMENT, "APP_ENV")
    domain: str = env_field("localhost", "DOMAIN")
    issuer: str = env_field("todoauth", "TOKEN_ISSUER")
    # RSA key pairs as base64-encoded PEM blocks; reauth tokens reuse the access pair
    access_token_private_key: str | None = env_field(None, "ACCESS_TOKEN_PRIVATE_KEY")
    access_token_public_key: str | None = env_field(None, "ACCESS_TOKEN_PUBLIC_KEY")
    refresh_token_private_key: str | None = env_field(None, "REFRESH_TOKEN_PRIVATE_KEY")
    refresh_token_public_key: str | None = env_field(None, "REFRESH_TOKEN_PUBLIC_KEY")
    session_token_private_key: str | None = env_field(None, "SESSION_TOKEN_PRIVATE_KEY")
    session_token_public_key: str | None = env_field(None, "SESSION_TOKEN_PUBLIC_KEY")
    access_token_expiration: int = env_field(
        15 * 60,
        "ACCESS_TOKEN_EXPIRATION",
        description="Access and reauth token lifetime in seconds",
    )
    refresh_token_expiration: int = env_field(
        7 * 24 * 60 * 60,
        "REFRESH_TOKEN_EXPIRATION",
        description="Refresh token lifetime in seconds",
    )
    session_token_expiration: int = env_field(
        7 * 24 * 60 * 60,
        "SESSION_TOKEN_EXPIRATION",
        description="Session display token lifetime in seconds",
    )
    session_cleanup_grace_seconds: int = env_field(
        30,
        "SESSION_CLEANUP_GRACE_SECONDS",
        description="Ledger rows expiring within this window are removed by housekeeping",
    )
    token_leeway_seconds: int = env_field(0, "TOKEN_LEEWAY_SECONDS")
    registry_operation_timeout: float = env_field(5.0, "REGISTRY_OPERATION_TIMEOUT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors; generates ephemeral key pairs when none are configured",
    )
    avatar_url_template: str = env_field(
        "https://api.dicebear.com/9.x/notionists/svg?seed={seed}", "AVATAR_URL_TEMPLATE"
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")
    log_level: str = env_field("info", "LOG_LEVEL")
    port: int = env_field(8080, "PORT")

    model_config = ConfigDict(extra="ignore", frozen=True)

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

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, value: str) -> str:
        if not value:
            raise ValueError("database url must be provided")
        if not value.startswith(("postgresql://", "postgres://")):
            raise ValueError("please provide a valid postgresql database url")
        return value

    @field_validator(
        "access_token_expiration",
        "refresh_token_expiration",
        "session_token_expiration",
    )
    @classmethod
    def _validate_expiration(cls, value: int) -> int:
        if value < 1:
            raise ValueError("token expiration must be greater than 0")
        return value

    @field_validator("session_cleanup_grace_seconds", "token_leeway_seconds")
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must not be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = (value or "").lower()
        if normalized not in _LOG_LEVELS:
            raise ValueError(f"log level must be one of: {', '.join(sorted(_LOG_LEVELS))}")
        return normalized

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


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
