"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerStats:
    """Point-in-time view of breaker counters useful for metrics/logging.

    Counters are cumulative since the breaker was created or last reset.

    Attributes:
        name: Breaker name.
        state: Breaker state when the snapshot was taken.
        failures: Counted (non-expected) failures.
        successes: Successful calls.
        total_requests: Every ``execute`` call, including rejected ones.
        last_failure_at: Timestamp of the last counted failure, if any.
        last_success_at: Timestamp of the last success, if any.
        uptime: Seconds elapsed since ``last_success_at``; ``0.0`` when the
            breaker has not seen a success.
        next_attempt_at: Earliest time an ``OPEN`` breaker admits a probe.
    """

    name: str
    state: CircuitState
    failures: int
    successes: int
    total_requests: int
    last_failure_at: datetime | None
    last_success_at: datetime | None
    uptime: float
    next_attempt_at: datetime | None
