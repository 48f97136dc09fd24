"""Shared error types for resilience_core.

Transient errors are safe to retry. Caller errors reflect a bad request and
retrying them cannot succeed.
"""


class TransientError(RuntimeError):
    """Retry-safe dependency failure (timeouts, 5xx, dropped connections)."""


class CallerError(RuntimeError):
    """Failure caused by the caller's request rather than the dependency."""
