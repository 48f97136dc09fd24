"""Observability hooks for circuit breakers."""

import inspect
from collections.abc import Callable
from typing import Protocol

import structlog

from resilience_core.circuit_breaker.state import CircuitState
from resilience_core.logging import (
    StructuredLogger,
    log_error,
    log_info,
    log_warning,
)

StateChangeCallback = Callable[[CircuitState], object]
FailureCallback = Callable[[BaseException], object]
SuccessCallback = Callable[[], object]


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Listeners are notified after the breaker has applied the transition,
        outside of its state lock. ``on_call_failed`` is only emitted for
        failures that count toward the threshold.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(
        self, name: str, exc: BaseException, elapsed: float
    ) -> None:
        """Handle failed protected call completion."""


async def _invoke(callback: Callable[..., object], *args: object) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class CallbackListener:
    """Adapt plain ``on_state_change``/``on_failure``/``on_success`` hooks.

    Each hook may be a regular function or a coroutine function.
    """

    def __init__(
        self,
        *,
        on_state_change: StateChangeCallback | None = None,
        on_failure: FailureCallback | None = None,
        on_success: SuccessCallback | None = None,
    ) -> None:
        self._on_state_change = on_state_change
        self._on_failure = on_failure
        self._on_success = on_success

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        if self._on_state_change is not None:
            await _invoke(self._on_state_change, new)

    async def on_call_rejected(self, name: str) -> None:
        return

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        if self._on_success is not None:
            await _invoke(self._on_success)

    async def on_call_failed(
        self, name: str, exc: BaseException, elapsed: float
    ) -> None:
        if self._on_failure is not None:
            await _invoke(self._on_failure, exc)


class LoggingListener:
    """Write breaker events to a structured logger."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger: StructuredLogger = (
            structlog.stdlib.get_logger("resilience_core.circuit_breaker")
            if logger is None
            else logger
        )

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        if new == CircuitState.OPEN:
            log_error(
                self._logger,
                "circuit_breaker.opened",
                breaker=name,
                previous_state=str(old),
            )
        elif new == CircuitState.HALF_OPEN:
            log_info(
                self._logger,
                "circuit_breaker.half_open",
                breaker=name,
                previous_state=str(old),
            )
        else:
            log_info(
                self._logger,
                "circuit_breaker.closed",
                breaker=name,
                previous_state=str(old),
            )

    async def on_call_rejected(self, name: str) -> None:
        log_warning(self._logger, "circuit_breaker.call_rejected", breaker=name)

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        return

    async def on_call_failed(
        self, name: str, exc: BaseException, elapsed: float
    ) -> None:
        log_warning(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            error_type=exc.__class__.__name__,
            error=str(exc),
            elapsed_seconds=round(elapsed, 6),
        )
