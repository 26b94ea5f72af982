from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Literal, Protocol

import structlog
from structlog.typing import EventDict

_LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]

_GUARD_CONTEXT: ContextVar[Mapping[str, object] | None] = ContextVar(
    "circuit_guard_log_context", default=None
)


class StructuredLogger(Protocol):
    """Logger protocol for structured event logging with keyword fields."""

    def info(self, event: str, **kwargs: object) -> None:
        """Log an informational event."""

    def warning(self, event: str, **kwargs: object) -> None:
        """Log a warning event."""

    def error(self, event: str, **kwargs: object) -> None:
        """Log an error event."""

    def exception(self, event: str, **kwargs: object) -> None:
        """Log an exception event."""


LoggerLike = StructuredLogger | _StdlibLogger


def get_log_level_value(level: str) -> int:
    """Return stdlib log level constant for a normalized level string."""
    normalized = level.strip().upper()
    try:
        return _LOG_LEVELS[normalized]
    except KeyError as error:
        choices = ", ".join(sorted(_LOG_LEVELS))
        raise ValueError(f"log_level must be one of: {choices}") from error


@contextmanager
def bind_guard_context(**fields: object) -> Iterator[None]:
    """Attach guard fields to every log event emitted inside the block.

    Nested blocks extend the outer context; the previous context is restored
    on exit.
    """
    current = _GUARD_CONTEXT.get()
    merged: dict[str, object] = dict(current) if current is not None else {}
    merged.update(fields)
    token = _GUARD_CONTEXT.set(merged)
    try:
        yield
    finally:
        _GUARD_CONTEXT.reset(token)


def _merge_guard_context(
    _: object,
    __: str,
    event_dict: EventDict,
) -> EventDict:
    guard_context = _GUARD_CONTEXT.get()
    if not guard_context:
        return event_dict

    merged: dict[str, object] = {}
    existing = event_dict.get("circuit_guard")
    if isinstance(existing, Mapping):
        merged.update(dict(existing))
    merged.update({str(key): value for key, value in guard_context.items()})
    event_dict["circuit_guard"] = merged
    return event_dict


def _select_renderer() -> structlog.types.Processor:
    if sys.stderr.isatty():
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _log(
    logger: LoggerLike,
    level: Literal["info", "warning", "error", "exception"],
    event: str,
    **fields: object,
) -> None:
    """Log one event across structlog and stdlib logger implementations."""
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        exc_info = fields.pop("exc_info", None)
        if exc_info is None:
            method(event, extra=fields)
        else:
            method(event, extra=fields, exc_info=exc_info)
        return
    method(event, **fields)


def log_info(logger: LoggerLike | None, event: str, **fields: object) -> None:
    """Log an informational event. A ``None`` logger is silent."""
    if logger is None:
        return
    _log(logger, "info", event, **fields)


def log_warning(logger: LoggerLike | None, event: str, **fields: object) -> None:
    """Log a warning event. A ``None`` logger is silent."""
    if logger is None:
        return
    _log(logger, "warning", event, **fields)


def log_error(logger: LoggerLike | None, event: str, **fields: object) -> None:
    """Log an error event. A ``None`` logger is silent."""
    if logger is None:
        return
    _log(logger, "error", event, **fields)


def log_exception(logger: LoggerLike | None, event: str, **fields: object) -> None:
    """Log an exception event. A ``None`` logger is silent."""
    if logger is None:
        return
    _log(logger, "exception", event, **fields)


def configure_structlog(*, log_level: str) -> structlog.stdlib.BoundLogger:
    """Configure structlog + stdlib logging for services embedding guards."""
    level_value = get_log_level_value(log_level)
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer = _select_renderer()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _merge_guard_context,
        structlog.stdlib.add_log_level,
        timestamper,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=level_value,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            _merge_guard_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger("circuit_guard")
