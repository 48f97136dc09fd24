"""Framework-agnostic async circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - State is local to one ``CircuitBreaker`` instance and lives in memory only.
    Counters are cumulative since creation or the last ``reset()``.
  - ``OPEN`` breakers are re-checked lazily: the first call after
    ``recovery_timeout`` moves the breaker to ``HALF_OPEN`` and runs as the
    probe. At most one probe is in flight at a time.
  - Errors matched by ``expected_errors`` are re-raised but never counted, so
    they cannot trip or re-open the circuit.
"""

from resilience_core.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    with_circuit_breaker,
)
from resilience_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitBreakerNotFoundError,
)
from resilience_core.circuit_breaker.metrics import (
    BreakerListener,
    CallbackListener,
    LoggingListener,
)
from resilience_core.circuit_breaker.presets import (
    for_api,
    for_database,
    for_external_service,
)
from resilience_core.circuit_breaker.registry import CircuitBreakerRegistry
from resilience_core.circuit_breaker.state import BreakerStats, CircuitState

__all__ = [
    "BreakerListener",
    "BreakerStats",
    "CallbackListener",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerNotFoundError",
    "CircuitBreakerRegistry",
    "CircuitState",
    "LoggingListener",
    "for_api",
    "for_database",
    "for_external_service",
    "with_circuit_breaker",
]
