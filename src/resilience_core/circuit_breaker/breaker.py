"""Core circuit breaker implementation."""

import asyncio
import functools
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import ParamSpec, TypeVar

from resilience_core.circuit_breaker.exceptions import CircuitBreakerError
from resilience_core.circuit_breaker.metrics import (
    BreakerListener,
    CallbackListener,
    FailureCallback,
    StateChangeCallback,
    SuccessCallback,
)
from resilience_core.circuit_breaker.state import BreakerStats, CircuitState
from resilience_core.logging import log_exception

T = TypeVar("T")
P = ParamSpec("P")

_Transition = tuple[CircuitState, CircuitState]
_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _never_expected(_: BaseException) -> bool:
    return False


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Counted failures that trip a ``CLOSED`` breaker.
        recovery_timeout: Seconds to stay ``OPEN`` before allowing a probe.
        monitoring_period: Informational observation window in seconds.
            Counters are lifetime-cumulative; the window is not enforced.
        expected_errors: Predicate marking errors that are not the
            dependency's fault. Matching errors never count as failures.
        on_state_change: Hook receiving the new state on each transition.
        on_failure: Hook receiving each counted failure.
        on_success: Hook called after each successful call.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    monitoring_period: float = 300.0
    expected_errors: Callable[[BaseException], bool] = _never_expected
    on_state_change: StateChangeCallback | None = None
    on_failure: FailureCallback | None = None
    on_success: SuccessCallback | None = None

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")
        if self.monitoring_period < 0:
            raise ValueError("monitoring_period must be >= 0")

    def has_callbacks(self) -> bool:
        return (
            self.on_state_change is not None
            or self.on_failure is not None
            or self.on_success is not None
        )


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    Every read-decide-mutate step runs under a thread lock that is never held
    across an ``await``, so one breaker can be shared between asyncio tasks
    and threads. ``HALF_OPEN`` admits a single in-flight probe; other calls
    arriving while it runs are rejected.
    """

    def __init__(
        self,
        name: str = "default",
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Breaker name used in errors, stats and log events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events. Callbacks
                set on ``config`` are notified before these listeners.
        """
        self.name = name
        self._config = CircuitBreakerConfig() if config is None else config
        resolved: list[BreakerListener] = []
        if self._config.has_callbacks():
            resolved.append(
                CallbackListener(
                    on_state_change=self._config.on_state_change,
                    on_failure=self._config.on_failure,
                    on_success=self._config.on_success,
                )
            )
        if listeners is not None:
            resolved.extend(listeners)
        self._listeners = tuple(resolved)

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._total_requests = 0
        self._last_failure_at: datetime | None = None
        self._last_success_at: datetime | None = None
        self._next_attempt_at: datetime | None = None
        self._probe_token: int | None = None
        self._probe_generation = 0

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    async def _emit(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(self.name, *args)
            except Exception:
                log_exception(
                    _logger,
                    "circuit_breaker.listener_failed",
                    breaker=self.name,
                    hook=hook,
                )

    async def _emit_transition(self, transition: _Transition | None) -> None:
        if transition is not None:
            await self._emit("on_state_change", *transition)

    def _set_state_locked(self, new: CircuitState) -> _Transition | None:
        old = self._state
        if old == new:
            return None
        self._state = new
        if new != CircuitState.HALF_OPEN:
            self._probe_token = None
        return old, new

    def _open_locked(self, now: datetime) -> _Transition | None:
        self._next_attempt_at = now + timedelta(seconds=self._config.recovery_timeout)
        return self._set_state_locked(CircuitState.OPEN)

    def _stats_locked(self, now: datetime) -> BreakerStats:
        uptime = 0.0
        if self._last_success_at is not None:
            uptime = max((now - self._last_success_at).total_seconds(), 0.0)
        return BreakerStats(
            name=self.name,
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            total_requests=self._total_requests,
            last_failure_at=self._last_failure_at,
            last_success_at=self._last_success_at,
            uptime=uptime,
            next_attempt_at=self._next_attempt_at,
        )

    def _rejection_locked(self, now: datetime) -> CircuitBreakerError | None:
        if self._state == CircuitState.OPEN:
            next_attempt_at = self._next_attempt_at
            if next_attempt_at is not None and now < next_attempt_at:
                retry_after = (next_attempt_at - now).total_seconds()
                return CircuitBreakerError(self._stats_locked(now), retry_after)
        elif self._state == CircuitState.HALF_OPEN and self._probe_token is not None:
            return CircuitBreakerError(self._stats_locked(now), 0.0)
        return None

    def _is_expected(self, exc: BaseException) -> bool:
        try:
            return bool(self._config.expected_errors(exc))
        except Exception:
            log_exception(
                _logger,
                "circuit_breaker.expected_errors_failed",
                breaker=self.name,
                error_type=exc.__class__.__name__,
            )
            return False

    def _admit_probe_locked(self) -> int:
        self._probe_generation += 1
        self._probe_token = self._probe_generation
        return self._probe_generation

    def _release_probe_locked(self, probe: int | None) -> None:
        if probe is not None and self._probe_token == probe:
            self._probe_token = None

    def _release_probe(self, probe: int | None) -> None:
        with self._lock:
            self._release_probe_locked(probe)

    async def execute(
        self,
        operation: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            operation: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``operation``.
            **kwargs: Keyword arguments forwarded to ``operation``.

        Returns:
            The result of ``operation`` when admitted and successful.

        Raises:
            CircuitBreakerError: When the call is rejected without running.
            Exception: The original exception from ``operation``, unchanged.
        """
        transition: _Transition | None = None
        probe: int | None = None
        with self._lock:
            now = _utcnow()
            self._total_requests += 1
            rejection = self._rejection_locked(now)
            if rejection is None and self._state != CircuitState.CLOSED:
                transition = self._set_state_locked(CircuitState.HALF_OPEN)
                probe = self._admit_probe_locked()

        if rejection is not None:
            await self._emit("on_call_rejected")
            raise rejection
        await self._emit_transition(transition)

        start = time.monotonic()
        try:
            result = await operation(*args, **kwargs)
        except (Exception, asyncio.CancelledError) as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            await self._record_failure(exc, elapsed, probe=probe)
            raise
        except BaseException:
            self._release_probe(probe)
            raise
        elapsed = max(time.monotonic() - start, 0.0)
        await self._record_success(elapsed, probe=probe)
        return result

    async def _record_success(self, elapsed: float, *, probe: int | None) -> None:
        transition: _Transition | None = None
        with self._lock:
            self._successes += 1
            self._last_success_at = _utcnow()
            self._release_probe_locked(probe)
            if self._state == CircuitState.HALF_OPEN:
                self._failures = 0
                transition = self._set_state_locked(CircuitState.CLOSED)

        await self._emit("on_call_succeeded", elapsed)
        await self._emit_transition(transition)

    async def _record_failure(
        self, exc: BaseException, elapsed: float, *, probe: int | None
    ) -> None:
        if self._is_expected(exc):
            self._release_probe(probe)
            return

        transition: _Transition | None = None
        with self._lock:
            now = _utcnow()
            self._failures += 1
            self._last_failure_at = now
            self._release_probe_locked(probe)
            if (
                self._state == CircuitState.HALF_OPEN
                or self._failures >= self._config.failure_threshold
            ):
                transition = self._open_locked(now)

        await self._emit("on_call_failed", exc, elapsed)
        await self._emit_transition(transition)

    def stats(self) -> BreakerStats:
        """Return an immutable snapshot of the breaker counters."""
        with self._lock:
            return self._stats_locked(_utcnow())

    def is_healthy(self) -> bool:
        return self.state == CircuitState.CLOSED

    def failure_rate(self) -> float:
        """Return counted failures as a percentage of all requests."""
        with self._lock:
            if self._total_requests == 0:
                return 0.0
            return self._failures / self._total_requests * 100

    def reset(self) -> None:
        """Return to ``CLOSED`` with every counter and timestamp cleared."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._successes = 0
            self._total_requests = 0
            self._last_failure_at = None
            self._last_success_at = None
            self._next_attempt_at = None
            self._probe_token = None

    async def force_state(self, state: CircuitState) -> None:
        """Jump straight to ``state``. Intended for test harnesses only.

        Leaving ``HALF_OPEN`` invalidates the in-flight probe, so a probe
        finishing afterwards cannot release a later probe's slot. Forcing
        ``HALF_OPEN`` while a probe runs keeps that probe's slot.
        """
        with self._lock:
            transition = self._set_state_locked(state)
            if state == CircuitState.OPEN:
                self._next_attempt_at = _utcnow() + timedelta(
                    seconds=self._config.recovery_timeout
                )
        await self._emit_transition(transition)


def with_circuit_breaker(
    breaker: CircuitBreaker,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorate an async function so every call runs through ``breaker``."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await breaker.execute(func, *args, **kwargs)

        return wrapper

    return decorator
