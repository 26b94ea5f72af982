from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Protocol, cast

import pytest
import structlog

from circuit_guard.logging import (
    _merge_guard_context,
    bind_guard_context,
    configure_structlog,
    get_log_level_value,
    log_error,
    log_exception,
    log_info,
    log_warning,
)


def _configured_renderer() -> object:
    root_handler = logging.getLogger().handlers[0]
    formatter = root_handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


def test_get_log_level_value_maps_known_levels() -> None:
    assert get_log_level_value("debug") == logging.DEBUG
    assert get_log_level_value("INFO") == logging.INFO
    assert get_log_level_value(" warning ") == logging.WARNING
    assert get_log_level_value("ERROR") == logging.ERROR
    assert get_log_level_value("critical") == logging.CRITICAL


def test_get_log_level_value_rejects_unknown_level() -> None:
    with pytest.raises(ValueError):
        get_log_level_value("TRACE")


def test_configure_structlog_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    first_logger = configure_structlog(log_level="INFO")
    second_logger = configure_structlog(log_level="DEBUG")

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert first_logger is not None
    assert second_logger is not None


def test_configure_structlog_uses_console_renderer_for_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: True, raising=False)

    configure_structlog(log_level="INFO")
    renderer = _configured_renderer()

    assert isinstance(renderer, structlog.dev.ConsoleRenderer)


def test_configure_structlog_uses_json_renderer_for_non_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    configure_structlog(log_level="INFO")
    renderer = _configured_renderer()

    assert isinstance(renderer, structlog.processors.JSONRenderer)


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class _FakeStructuredLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **kwargs: object) -> None:
        self.calls.append(("info", event, dict(kwargs)))

    def warning(self, event: str, **kwargs: object) -> None:
        self.calls.append(("warning", event, dict(kwargs)))

    def error(self, event: str, **kwargs: object) -> None:
        self.calls.append(("error", event, dict(kwargs)))

    def exception(self, event: str, **kwargs: object) -> None:
        self.calls.append(("exception", event, dict(kwargs)))


class _RecordWithStructuredFields(Protocol):
    guard: str
    retry_after: float


def _capturing_logger(name: str) -> tuple[logging.Logger, _CaptureHandler]:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)
    return logger, handler


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
        (log_error, "error"),
        (log_exception, "exception"),
    ],
)
def test_structured_log_helpers_forward_keyword_fields(
    log_fn: Callable[..., None],
    level: str,
) -> None:
    logger = _FakeStructuredLogger()

    log_fn(logger, "circuit_guard.event", guard="svc", attempt=3)

    assert logger.calls == [
        (
            level,
            "circuit_guard.event",
            {"guard": "svc", "attempt": 3},
        )
    ]


@pytest.mark.parametrize("log_fn", [log_info, log_warning, log_error, log_exception])
def test_structured_log_helpers_ignore_missing_logger(
    log_fn: Callable[..., None],
) -> None:
    log_fn(None, "circuit_guard.event", guard="svc")


def test_structured_log_helpers_support_stdlib_logger_extra() -> None:
    logger, handler = _capturing_logger("tests.circuit_guard.logging.helpers")

    log_info(logger, "circuit_guard.call_rejected", guard="svc", retry_after=2.5)

    assert len(handler.records) == 1
    record = handler.records[0]
    typed_record = cast(_RecordWithStructuredFields, record)
    assert record.getMessage() == "circuit_guard.call_rejected"
    assert typed_record.guard == "svc"
    assert typed_record.retry_after == 2.5


def test_stdlib_logger_receives_exc_info_outside_extra() -> None:
    logger, handler = _capturing_logger("tests.circuit_guard.logging.exc_info")
    error = RuntimeError("boom")

    log_error(logger, "circuit_guard.handler_failed", hook="x", exc_info=error)

    record = handler.records[0]
    assert record.exc_info is not None
    assert record.exc_info[1] is error
    assert getattr(record, "hook") == "x"


def test_guard_context_merger_returns_original_without_context() -> None:
    event_dict: structlog.typing.EventDict = {"event": "test"}

    merged = _merge_guard_context(None, "info", event_dict)

    assert merged is event_dict
    assert merged == {"event": "test"}


def test_guard_context_merger_nests_bound_fields() -> None:
    event_dict: structlog.typing.EventDict = {
        "event": "test",
        "circuit_guard": {"guard": "from-event", "attempt": 7},
    }

    with bind_guard_context(guard="billing"):
        with bind_guard_context(state="open"):
            merged = _merge_guard_context(None, "info", event_dict)

    assert merged["circuit_guard"] == {
        "guard": "billing",
        "attempt": 7,
        "state": "open",
    }


def test_bind_guard_context_restores_previous_context() -> None:
    with bind_guard_context(guard="outer"):
        with bind_guard_context(guard="inner"):
            pass
        merged = _merge_guard_context(None, "info", {"event": "test"})

    assert merged["circuit_guard"] == {"guard": "outer"}
    assert _merge_guard_context(None, "info", {"event": "test"}) == {"event": "test"}
