from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import Protocol, cast

import pytest
import structlog

from pgtx.logging import (
    configure_structlog,
    get_log_level_value,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from pgtx.transaction import TxOptions, run_in_transaction_sync
from tests.pgtx.support.fakes import FakeSyncSource, FakeTransaction, serialization_failure


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


class _RecordWithRetryFields(Protocol):
    attempt: int
    sqlstate: str


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
        (log_error, "error"),
    ],
)
def test_structured_log_helpers_forward_keyword_fields(
    log_fn: Callable[..., None],
    level: str,
) -> None:
    logger = _FakeStructuredLogger()

    log_fn(logger, "transaction.event", sqlstate="40001", attempt=3)

    assert logger.calls == [
        (
            level,
            "transaction.event",
            {"sqlstate": "40001", "attempt": 3},
        )
    ]


def test_executor_logs_through_stdlib_logger_extra() -> None:
    logger = logging.getLogger("tests.pgtx.logging.executor")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)
    calls = 0

    def _body(tx: FakeTransaction) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise serialization_failure()

    run_in_transaction_sync(
        FakeSyncSource(),
        _body,
        TxOptions(max_attempts=2, backoff=lambda _: 0.0),
        logger=logger,
    )

    assert len(handler.records) == 1
    record = handler.records[0]
    typed_record = cast(_RecordWithRetryFields, record)
    assert record.getMessage() == "transaction_retry_scheduled"
    assert record.levelno == logging.WARNING
    assert typed_record.attempt == 1
    assert typed_record.sqlstate == "40001"


def test_get_logger_returns_structlog_logger() -> None:
    logger = get_logger()

    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
