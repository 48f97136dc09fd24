"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - A registry lookup for a breaker name that was never registered.
"""

from resilience_core.circuit_breaker.state import BreakerStats


class CircuitBreakerError(Exception):
    """Raised when a call is rejected without being attempted.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
        stats: Breaker statistics captured at rejection time.
    """

    def __init__(self, stats: BreakerStats, retry_after: float) -> None:
        """Initialize a rejection payload.

        Args:
            stats: Snapshot of the rejecting breaker.
            retry_after: Seconds until the next probe window opens.
        """
        self.breaker_name = stats.name
        self.retry_after = retry_after
        self.stats = stats
        super().__init__(
            f"circuit_open: {stats.name} state={stats.state} "
            f"retry_after={retry_after:g}s"
        )


class CircuitBreakerNotFoundError(LookupError):
    """Raised when a registry has no breaker under the requested name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"circuit breaker '{name}' not found")
