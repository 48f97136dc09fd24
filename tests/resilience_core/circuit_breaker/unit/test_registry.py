from __future__ import annotations

import pytest

from resilience_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerNotFoundError,
    CircuitBreakerRegistry,
    CircuitState,
)
from tests.resilience_core.support.fakes import CountingOperation

pytestmark = pytest.mark.asyncio


def _registry_with(*names: str) -> CircuitBreakerRegistry:
    registry = CircuitBreakerRegistry()
    for name in names:
        registry.register(
            name,
            CircuitBreaker(name, config=CircuitBreakerConfig(failure_threshold=1)),
        )
    return registry


async def test_get_returns_registered_breaker_or_none() -> None:
    registry = CircuitBreakerRegistry()
    breaker = CircuitBreaker("payments")

    registry.register("payments", breaker)

    assert registry.get("payments") is breaker
    assert registry.get("missing") is None
    assert "payments" in registry
    assert len(registry) == 1


async def test_register_overwrites_existing_name() -> None:
    registry = CircuitBreakerRegistry()
    first = CircuitBreaker("db")
    second = CircuitBreaker("db")

    registry.register("db", first)
    registry.register("db", second)

    assert registry.get("db") is second
    assert registry.names() == ["db"]


async def test_unregister_removes_breaker() -> None:
    registry = _registry_with("db")

    removed = registry.unregister("db")

    assert removed is not None
    assert registry.get("db") is None
    assert registry.unregister("db") is None


async def test_execute_delegates_to_named_breaker() -> None:
    registry = _registry_with("api", "db")

    assert await registry.execute("api", CountingOperation(result=7)) == 7

    stats = registry.all_stats()
    assert stats["api"].successes == 1
    assert stats["db"].total_requests == 0


async def test_execute_unknown_name_raises_not_found_without_side_effects() -> None:
    registry = _registry_with("api")
    operation = CountingOperation()

    with pytest.raises(CircuitBreakerNotFoundError) as excinfo:
        await registry.execute("unknown", operation)

    assert not isinstance(excinfo.value, CircuitBreakerError)
    assert isinstance(excinfo.value, LookupError)
    assert excinfo.value.name == "unknown"
    assert operation.calls == 0
    assert registry.all_stats()["api"].total_requests == 0


async def test_health_status_and_reset_all() -> None:
    registry = _registry_with("api", "db")
    with pytest.raises(RuntimeError):
        await registry.execute("db", CountingOperation(error=RuntimeError("down")))

    assert registry.health_status() == {"api": True, "db": False}
    with pytest.raises(CircuitBreakerError):
        await registry.execute("db", CountingOperation())

    registry.reset_all()

    assert registry.health_status() == {"api": True, "db": True}
    stats = registry.all_stats()
    assert stats["db"].state == CircuitState.CLOSED
    assert stats["db"].total_requests == 0
    assert stats["db"].failures == 0


async def test_registries_are_independent() -> None:
    first = _registry_with("api")
    second = CircuitBreakerRegistry()

    assert second.get("api") is None
    assert first.get("api") is not None
