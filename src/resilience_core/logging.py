"""Structured logging for breakers and clients.

Breakers and the API client log through ``log_*`` helpers that accept either
a structlog logger or a stdlib logger, so embedding services can keep
whichever logging setup they already have. ``configure_structlog`` is the
one-call setup for services that have none.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Literal, Protocol

import structlog
from structlog.typing import EventDict, Processor

LOG_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_Level = Literal["info", "warning", "error", "exception"]
_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Anything accepting ``logger.<level>(event, **fields)`` calls."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


AnyLogger = StructuredLogger | _StdlibLogger


def normalize_log_level(level: str) -> str:
    """Return the upper-case level name, rejecting unknown names."""
    name = level.strip().upper()
    if name not in LOG_LEVEL_NAMES:
        raise ValueError(f"log_level must be one of: {', '.join(LOG_LEVEL_NAMES)}")
    return name


def get_log_level_value(level: str) -> int:
    """Return the stdlib level number for a level name."""
    return logging.getLevelNamesMapping()[normalize_log_level(level)]


def _log(logger: AnyLogger, level: _Level, event: str, **fields: object) -> None:
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        # stdlib loggers only take structured fields through ``extra``.
        method(event, extra=fields)
    else:
        method(event, **fields)


def _level_helper(level: _Level) -> Callable[..., None]:
    def helper(logger: AnyLogger, event: str, **fields: object) -> None:
        _log(logger, level, event, **fields)

    helper.__name__ = f"log_{level}"
    helper.__doc__ = f"Log ``event`` at {level} level with keyword fields."
    return helper


log_info = _level_helper("info")
log_warning = _level_helper("warning")
log_error = _level_helper("error")
log_exception = _level_helper("exception")


def service_name_processor(service_name: str | None) -> Processor:
    """Stamp ``service`` on events that do not already carry one."""

    def add_service(_: object, __: str, event_dict: EventDict) -> EventDict:
        if service_name is not None:
            event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def _renderer() -> Processor:
    if sys.stderr.isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _stderr_handler(pre_chain: list[Processor]) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(),
            ],
        )
    )
    return handler


def configure_structlog(
    *,
    log_level: str,
    service_name: str | None = None,
    logger_name: str = "resilience_core",
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib records through one stderr handler.

    Safe to call repeatedly; the root handler is replaced each time.

    Args:
        log_level: Root level name, ``DEBUG`` to ``CRITICAL``.
        service_name: Optional ``service`` field stamped on every event.
        logger_name: Name of the returned logger.

    Returns:
        A bound logger named ``logger_name``.
    """
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        service_name_processor(service_name),
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    logging.basicConfig(
        format="%(message)s",
        handlers=[_stderr_handler(shared)],
        level=get_log_level_value(log_level),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger(logger_name)
