from __future__ import annotations

import structlog
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from resilience_core.logging import configure_structlog, normalize_log_level
from resilience_core.retry import RetryBackoffPolicy


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Environment overrides for preset circuit breakers.

    Unset fields keep the preset default, so ``overrides()`` only returns what
    the environment actually provided.
    """

    model_config = prefixed_settings_config("BREAKER_")

    failure_threshold: int | None = None
    recovery_timeout: float | None = None
    monitoring_period: float | None = None

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        if self.failure_threshold is not None and self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout is not None and self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")
        if self.monitoring_period is not None and self.monitoring_period < 0:
            raise ValueError("monitoring_period must be >= 0")
        return self

    def overrides(self) -> dict[str, int | float]:
        """Return preset keyword overrides for every field that was set."""
        return self.model_dump(exclude_none=True)


class ApiClientSettings(BaseSettings):
    """Settings for ``ResilientApiClient``."""

    model_config = prefixed_settings_config("API_CLIENT_")

    base_url: str = "http://localhost:8080"
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    retry_backoff_multiplier: float = 2.0
    retry_max_delay: float = 10.0
    enable_circuit_breaker: bool = True
    enable_fallback: bool = True
    cache_ttl: float = 300.0
    log_level: str = "INFO"
    service_name: str | None = None

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("base_url must be non-empty")
        return normalized

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        return normalize_log_level(value)

    @model_validator(mode="after")
    def _validate_api_client_settings(self) -> ApiClientSettings:
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.cache_ttl < 0:
            raise ValueError("cache_ttl must be >= 0")
        return self

    def retry_policy(self) -> RetryBackoffPolicy:
        """Build the retry policy described by the ``retry_*`` settings."""
        return RetryBackoffPolicy(
            attempts=self.retry_attempts,
            initial_delay=self.retry_delay,
            multiplier=self.retry_backoff_multiplier,
            max_delay=self.retry_max_delay,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Apply ``log_level`` and ``service_name`` to process-wide logging."""
        return configure_structlog(
            log_level=self.log_level, service_name=self.service_name
        )
