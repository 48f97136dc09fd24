from __future__ import annotations

import io
import json
import logging
import sys

import pytest
from pydantic import ValidationError

from resilience_core.circuit_breaker import for_database
from resilience_core.retry import RetryBackoffPolicy
from resilience_core.settings import ApiClientSettings, BreakerSettings


def test_breaker_settings_overrides_only_include_set_fields(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("BREAKER_FAILURE_THRESHOLD", "7")

    settings = BreakerSettings()

    assert settings.overrides() == {"failure_threshold": 7}


def test_breaker_settings_feed_presets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BREAKER_RECOVERY_TIMEOUT", "15")

    breaker = for_database(**BreakerSettings().overrides())

    assert breaker.config.recovery_timeout == 15.0
    assert breaker.config.failure_threshold == 3


def test_breaker_settings_empty_environment_has_no_overrides() -> None:
    assert BreakerSettings().overrides() == {}


@pytest.mark.parametrize(
    "values",
    [
        {"failure_threshold": 0},
        {"recovery_timeout": -1.0},
        {"monitoring_period": -5.0},
    ],
)
def test_breaker_settings_reject_invalid_values(values: dict[str, float]) -> None:
    with pytest.raises(ValidationError):
        BreakerSettings(**values)


def test_api_client_settings_defaults() -> None:
    settings = ApiClientSettings()

    assert settings.base_url == "http://localhost:8080"
    assert settings.timeout == 30.0
    assert settings.enable_circuit_breaker is True
    assert settings.enable_fallback is True
    assert settings.cache_ttl == 300.0
    assert settings.retry_policy() == RetryBackoffPolicy(
        attempts=3, initial_delay=1.0, multiplier=2.0, max_delay=10.0
    )


def test_api_client_settings_read_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("API_CLIENT_BASE_URL", " https://api.example.com/ ")
    monkeypatch.setenv("API_CLIENT_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("API_CLIENT_ENABLE_FALLBACK", "false")
    monkeypatch.setenv("API_CLIENT_LOG_LEVEL", "debug")

    settings = ApiClientSettings()

    assert settings.base_url == "https://api.example.com"
    assert settings.retry_policy().attempts == 5
    assert settings.enable_fallback is False
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "values",
    [
        {"base_url": "   "},
        {"timeout": 0},
        {"cache_ttl": -1},
        {"log_level": "TRACE"},
    ],
)
def test_api_client_settings_reject_invalid_values(values: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        ApiClientSettings(**values)  # type: ignore[arg-type]


def test_api_client_settings_configure_logging(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    stream = io.StringIO()
    monkeypatch.setattr(sys, "stderr", stream)
    monkeypatch.setenv("API_CLIENT_LOG_LEVEL", "warning")
    monkeypatch.setenv("API_CLIENT_SERVICE_NAME", "orders")

    logger = ApiClientSettings().configure_logging()
    logger.info("api_client.ignored")
    logger.warning("api_client.fallback_used", endpoint="/items")

    assert logging.getLogger().level == logging.WARNING
    lines = stream.getvalue().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "api_client.fallback_used"
    assert event["service"] == "orders"
