"""Tests for the structured logging helpers."""

from __future__ import annotations

import json
import logging

from rich.logging import RichHandler

from silo_cache.shared.errors import ErrorCode, ErrorContext, InfrastructureError
from silo_cache.shared.logging import (
    StructuredFormatter,
    log_api_call,
    log_operation_error,
    log_operation_success,
    setup_structured_logger,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("silo_cache.test", logging.WARNING, __file__, 1, "hello %s", ("x",), None)
    for name, value in extra.items():
        setattr(record, name, value)
    return record


class TestStructuredFormatter:
    def test_formats_json_with_context(self):
        record = make_record(error_code="API_TIMEOUT", context={"key": "orders"}, duration_ms=12.5)

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["level"] == "WARNING"
        assert entry["logger"] == "silo_cache.test"
        assert entry["message"] == "hello x"
        assert entry["error_code"] == "API_TIMEOUT"
        assert entry["context"] == {"key": "orders"}
        assert entry["duration_ms"] == 12.5
        assert "operation" not in entry


class TestSetupStructuredLogger:
    def test_rich_console_handler(self):
        logger = setup_structured_logger(level="DEBUG")

        assert logger.level == logging.DEBUG
        assert logger.propagate is False
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)

    def test_reconfiguring_replaces_handlers(self, tmp_path):
        setup_structured_logger(level="INFO")
        logger = setup_structured_logger(
            level="WARNING",
            log_file=str(tmp_path / "silo.log"),
            use_rich_console=False,
        )

        assert len(logger.handlers) == 2
        assert isinstance(logger.handlers[0].formatter, StructuredFormatter)

    def test_log_file_receives_json_lines(self, tmp_path):
        log_file = tmp_path / "silo.log"
        logger = setup_structured_logger(level="INFO", log_file=str(log_file), use_rich_console=False)

        logger.getChild("key_store").info("cache ready")
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[0])
        assert entry["message"] == "cache ready"
        assert entry["logger"] == "silo_cache.key_store"


class TestOperationHelpers:
    def test_log_operation_error_masks_context(self, caplog):
        logger = logging.getLogger("silo_cache.test")
        error = InfrastructureError(
            ErrorCode.API_AUTHENTICATION_FAILED,
            "401 from API",
            ErrorContext(operation="api_request", additional_data={"token": "secret"}),
        )

        with caplog.at_level(logging.WARNING, logger="silo_cache"):
            log_operation_error(logger, error, context={"key": "orders"}, level=logging.WARNING)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.error_code == "API_AUTHENTICATION_FAILED"
        assert record.operation == "api_request"
        assert record.context["additional_data"] == {"token": "***"}
        assert record.context["key"] == "orders"
        assert "secret" not in caplog.text

    def test_log_operation_success_is_debug(self, caplog):
        logger = logging.getLogger("silo_cache.test")

        with caplog.at_level(logging.DEBUG, logger="silo_cache"):
            log_operation_success(logger, "preload_all", 42.0, result_info={"loaded": 5})

        record = caplog.records[-1]
        assert record.levelno == logging.DEBUG
        assert record.result_info == {"loaded": 5}

    def test_failed_api_call_is_a_warning(self, caplog):
        logger = logging.getLogger("silo_cache.test")

        with caplog.at_level(logging.DEBUG, logger="silo_cache"):
            log_api_call(logger, "/orders", "GET", 200, 8.0)
            log_api_call(logger, "/orders", "GET", 503, 8.0)

        ok, failed = caplog.records[-2:]
        assert ok.levelno == logging.DEBUG
        assert "succeeded with status 200" in ok.getMessage()
        assert failed.levelno == logging.WARNING
        assert failed.context["status_code"] == 503
