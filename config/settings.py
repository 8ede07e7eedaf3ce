"""
Configuration management for the latest-values service.

Settings are loaded with pydantic-settings from environment variables
and from `.env` / `.env.<environment>` files. Validation failures are
reported through ConfigurationError listing every missing or invalid
field.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Measurement store implementations."""
    MEMORY = "memory"
    REDIS = "redis"


def _current_environment() -> Environment:
    """ENVIRONMENT variable as an Environment; unknown or unset means development."""
    raw = os.environ.get("ENVIRONMENT", "").strip().lower()
    try:
        return Environment(raw or "development")
    except ValueError:
        return Environment.DEVELOPMENT


def _env_files_for(environment: Environment) -> Tuple[str, ...]:
    # Later files win, so the environment file overrides the base one
    candidates = (".env", f".env.{environment.value}")
    return tuple(name for name in candidates if Path(name).is_file())


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every field has a default so the service starts with the in-memory
    store in development. Staging and production must point at Redis.
    """

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )
    api_name: str = Field(
        default="latest-api",
        description="Service name reported in response meta"
    )

    # Measurement store
    store_backend: StoreBackend = Field(
        default=StoreBackend.MEMORY,
        description="Measurement store backend: 'memory' or 'redis'"
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for the measurement store"
    )
    redis_key_prefix: str = Field(
        default="latest",
        description="Prefix for the Redis hashes holding latest entries"
    )

    # Query path
    query_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Seconds a query may spend reading the index before failing as store_unavailable"
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for the store readiness check"
    )

    # Observability
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    otel_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry collector endpoint URL"
    )
    otel_service_name: str = Field(
        default="latest-api",
        description="Service name for OpenTelemetry traces"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("store_backend", mode="before")
    @classmethod
    def normalize_store_backend(cls, v):
        """Accept the backend name in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that redis_url, when given, uses a Redis scheme."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must start with redis://, rediss:// or unix://")
        return v

    @field_validator("redis_key_prefix")
    @classmethod
    def validate_redis_key_prefix(cls, v: str) -> str:
        """Validate that redis_key_prefix is a non-empty token."""
        v = v.strip()
        if not v:
            raise ValueError("redis_key_prefix cannot be empty")
        if any(ch.isspace() for ch in v):
            raise ValueError("redis_key_prefix cannot contain whitespace")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @model_validator(mode="after")
    def validate_store_config(self) -> "Settings":
        """Require a Redis URL for the redis backend outside development."""
        if self.store_backend == StoreBackend.REDIS and not self.redis_url:
            # In development a missing URL falls back to the in-memory store
            if self.environment != Environment.DEVELOPMENT:
                raise ValueError(
                    "redis_url is required when store_backend is 'redis' "
                    "in non-development environments"
                )
        return self

    @property
    def effective_store_backend(self) -> StoreBackend:
        """The backend actually used once the development fallback is applied."""
        if self.store_backend == StoreBackend.REDIS and not self.redis_url:
            return StoreBackend.MEMORY
        return self.store_backend


class ConfigurationError(Exception):
    """
    Raised when settings cannot be loaded or fail startup validation.

    Attributes:
        message: Summary of what was being validated
        missing_fields: Names of required fields that had no value
        invalid_fields: Field name to validation message
    """

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[dict] = None):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(str(self))

    def __str__(self) -> str:
        lines = [self.message]
        if self.missing_fields:
            lines.append(f"Missing required fields: {', '.join(self.missing_fields)}")
        if self.invalid_fields:
            lines.append("Invalid field values:")
            lines.extend(f"  - {name}: {reason}" for name, reason in self.invalid_fields.items())
        return "\n".join(lines)


def create_settings_for_environment(environment: Optional[Environment] = None) -> Settings:
    """
    Load Settings for one environment.

    `.env` is read first and `.env.<environment>` on top of it; real
    environment variables override both. The environment defaults to
    the ENVIRONMENT variable.

    Raises:
        ConfigurationError: If a value is missing or does not validate.
    """
    environment = environment or _current_environment()
    env_files = _env_files_for(environment)

    try:
        return Settings(_env_file=env_files or None)
    except ValidationError as e:
        missing: List[str] = []
        invalid: dict = {}
        for problem in e.errors():
            name = ".".join(str(part) for part in problem.get("loc", ())) or "settings"
            if problem.get("type") == "missing":
                missing.append(name)
            else:
                invalid[name] = problem.get("msg", "invalid value")
        raise ConfigurationError(
            f"Failed to load configuration for environment '{environment.value}'",
            missing_fields=missing,
            invalid_fields=invalid
        ) from e


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """Settings for the running process, loaded once and cached."""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()
    return _settings_cache


def clear_settings_cache() -> None:
    global _settings_cache
    _settings_cache = None


def validate_startup(settings: Optional[Settings] = None) -> None:
    """
    Check settings that only matter once the service is about to serve.

    Production must keep latest entries across restarts, so it needs the
    Redis store. The OTel endpoint, when set, must be an http(s) URL.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    if settings is None:
        settings = get_settings()
    problems = {}

    if (settings.environment == Environment.PRODUCTION
            and settings.effective_store_backend != StoreBackend.REDIS):
        problems["store_backend"] = "Production requires the redis store backend with a redis_url"

    endpoint = settings.otel_endpoint
    if endpoint and not endpoint.startswith(("http://", "https://")):
        problems["otel_endpoint"] = (
            f"Invalid endpoint format: {endpoint}. Must start with http:// or https://"
        )

    if problems:
        raise ConfigurationError(
            "Configuration validation failed during startup",
            invalid_fields=problems
        )
