"""Pre-configured breakers for common dependency classes.

Every factory accepts ``CircuitBreakerConfig`` field overrides as keyword
arguments; overrides win over the preset defaults.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import Any

import pydantic

from resilience_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from resilience_core.circuit_breaker.metrics import BreakerListener

VALIDATION_ERROR_CODE = "VALIDATION_ERROR"
HTTP_TOO_MANY_REQUESTS = 429


def http_status_of(error: BaseException) -> int | None:
    """Extract an HTTP status code carried by ``error``, if any.

    Looks at ``error.response.status_code`` (``httpx.HTTPStatusError``), then
    ``error.http_status`` and ``error.status_code``.
    """
    response = getattr(error, "response", None)
    candidates = (
        getattr(response, "status_code", None),
        getattr(error, "http_status", None),
        getattr(error, "status_code", None),
    )
    for candidate in candidates:
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def is_client_error(error: BaseException) -> bool:
    """Return true for HTTP 4xx errors, which the caller caused."""
    status = http_status_of(error)
    return status is not None and 400 <= status < 500


def is_validation_error(error: BaseException) -> bool:
    """Return true for input validation failures rejected by the database layer."""
    if isinstance(error, pydantic.ValidationError):
        return True
    return getattr(error, "code", None) == VALIDATION_ERROR_CODE


def is_rate_limited(error: BaseException) -> bool:
    return http_status_of(error) == HTTP_TOO_MANY_REQUESTS


API_DEFAULTS = CircuitBreakerConfig(
    failure_threshold=5,
    recovery_timeout=30.0,
    monitoring_period=300.0,
    expected_errors=is_client_error,
)
DATABASE_DEFAULTS = CircuitBreakerConfig(
    failure_threshold=3,
    recovery_timeout=60.0,
    monitoring_period=600.0,
    expected_errors=is_validation_error,
)
EXTERNAL_SERVICE_DEFAULTS = CircuitBreakerConfig(
    failure_threshold=10,
    recovery_timeout=120.0,
    monitoring_period=900.0,
    expected_errors=is_rate_limited,
)


def _build(
    name: str,
    defaults: CircuitBreakerConfig,
    listeners: Sequence[BreakerListener] | None,
    overrides: dict[str, Any],
) -> CircuitBreaker:
    config = replace(defaults, **overrides) if overrides else defaults
    return CircuitBreaker(name, config=config, listeners=listeners)


def for_api(
    name: str = "api",
    *,
    listeners: Sequence[BreakerListener] | None = None,
    **overrides: Any,
) -> CircuitBreaker:
    """Breaker for remote HTTP APIs. HTTP 4xx responses never trip it."""
    return _build(name, API_DEFAULTS, listeners, overrides)


def for_database(
    name: str = "database",
    *,
    listeners: Sequence[BreakerListener] | None = None,
    **overrides: Any,
) -> CircuitBreaker:
    """Breaker for database calls. Trips fast; validation errors are ignored."""
    return _build(name, DATABASE_DEFAULTS, listeners, overrides)


def for_external_service(
    name: str = "external",
    *,
    listeners: Sequence[BreakerListener] | None = None,
    **overrides: Any,
) -> CircuitBreaker:
    """Breaker for third-party services. Tolerant; HTTP 429 is ignored."""
    return _build(name, EXTERNAL_SERVICE_DEFAULTS, listeners, overrides)
