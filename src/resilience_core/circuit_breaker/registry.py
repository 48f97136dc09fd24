"""Name-indexed collection of independent circuit breakers."""

from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from resilience_core.circuit_breaker.breaker import CircuitBreaker
from resilience_core.circuit_breaker.exceptions import CircuitBreakerNotFoundError
from resilience_core.circuit_breaker.state import BreakerStats

T = TypeVar("T")
P = ParamSpec("P")


class CircuitBreakerRegistry:
    """Registry mapping stable dependency names to breakers.

    Build one explicitly and pass it to the components that need lookups.
    Registration is plain key replacement: registering a name twice keeps the
    latest breaker.
    """

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def register(self, name: str, breaker: CircuitBreaker) -> None:
        self._breakers[name] = breaker

    def unregister(self, name: str) -> CircuitBreaker | None:
        return self._breakers.pop(name, None)

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def names(self) -> list[str]:
        return list(self._breakers)

    async def execute(
        self,
        name: str,
        operation: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Run ``operation`` through the breaker registered as ``name``.

        Raises:
            CircuitBreakerNotFoundError: When no breaker is registered under
                ``name``. No breaker is touched in that case.
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            raise CircuitBreakerNotFoundError(name)
        return await breaker.execute(operation, *args, **kwargs)

    def all_stats(self) -> dict[str, BreakerStats]:
        return {name: breaker.stats() for name, breaker in self._breakers.items()}

    def health_status(self) -> dict[str, bool]:
        return {
            name: breaker.is_healthy() for name, breaker in self._breakers.items()
        }

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
