"""Tests for logging utility functions."""

import logging
from unittest.mock import MagicMock

from core.errors.exceptions import ProcessingFailure
from core.logging.utilities import (
    MAX_LOGGED_ERROR_LENGTH,
    format_cycle_output,
    get_log_output_mode,
    log_exception,
    log_startup_banner,
    log_with_context,
)


class TestLogWithContext:

    def test_logs_message_at_given_level(self):
        logger = MagicMock()
        log_with_context(logger, logging.INFO, "test message")

        logger.log.assert_called_once_with(
            logging.INFO, "test message", exc_info=None, extra={}
        )

    def test_passes_extra_fields(self):
        logger = MagicMock()
        log_with_context(
            logger, logging.WARNING, "Routed failed message to DLQ",
            failure_reason="NON_RETRYABLE_ERROR", retry_count=1,
        )

        logger.log.assert_called_once_with(
            logging.WARNING, "Routed failed message to DLQ",
            exc_info=None,
            extra={"failure_reason": "NON_RETRYABLE_ERROR", "retry_count": 1},
        )

    def test_filters_reserved_keys(self):
        logger = MagicMock()
        log_with_context(logger, logging.INFO, "msg", name="clash", module="clash", topic="orders")

        _, kwargs = logger.log.call_args
        assert kwargs["extra"] == {"topic": "orders"}

    def test_forwards_exc_info(self):
        logger = MagicMock()
        error = RuntimeError("x")
        log_with_context(logger, logging.ERROR, "failed", exc_info=error)

        _, kwargs = logger.log.call_args
        assert kwargs["exc_info"] is error


class TestLogException:

    def test_picks_up_failure_identifiers(self):
        logger = MagicMock()
        failure = ProcessingFailure("SERVICE_UNAVAILABLE", "HTTP", "upstream down")

        log_exception(logger, failure, "Processing failed")

        args, kwargs = logger.log.call_args
        assert args == (logging.ERROR, "Processing failed")
        assert kwargs["exc_info"] is failure
        assert kwargs["extra"]["error_type"] == "SERVICE_UNAVAILABLE"
        assert kwargs["extra"]["full_error_type"] == "HTTP:SERVICE_UNAVAILABLE"
        assert kwargs["extra"]["error_message"] == "upstream down"

    def test_truncates_long_messages(self):
        logger = MagicMock()
        log_exception(logger, ValueError("x" * 1000), "failed", include_traceback=False)

        _, kwargs = logger.log.call_args
        assert len(kwargs["extra"]["error_message"]) == MAX_LOGGED_ERROR_LENGTH + 3
        assert "exc_info" not in kwargs

    def test_explicit_error_type_wins(self):
        logger = MagicMock()
        failure = ProcessingFailure("SERVICE_UNAVAILABLE", "HTTP", "down")
        log_exception(logger, failure, "failed", error_type="OVERRIDE")

        _, kwargs = logger.log.call_args
        assert kwargs["extra"]["error_type"] == "OVERRIDE"


class TestFormatCycleOutput:

    def test_basic_summary(self):
        assert format_cycle_output(1, 8, 2) == "Cycle 1: processed=10 (succeeded=8, failed=2)"

    def test_includes_skipped(self):
        assert (
            format_cycle_output(3, 8, 2, 1)
            == "Cycle 3: processed=11 (succeeded=8, failed=2, skipped=1)"
        )

    def test_topic_drained_suffix(self):
        output = format_cycle_output(2, 0, 0, topic_empty=True)
        assert output == "Cycle 2: processed=0 (succeeded=0, failed=0) | topic drained"


class TestLogStartupBanner:

    def test_includes_provided_fields(self):
        logger = MagicMock()
        log_startup_banner(
            logger,
            worker_name="Kafka Retry Reprocessor",
            version="0.1.0",
            retry_topic="orders.retry",
            max_attempts=3,
        )

        banner = logger.info.call_args[0][0]
        assert "Kafka Retry Reprocessor" in banner
        assert "Version: 0.1.0" in banner
        assert "Retry Topic:   orders.retry" in banner
        assert "Max Attempts:  3" in banner
        assert "DLQ Topic" not in banner


class TestGetLogOutputMode:

    def test_stdout(self):
        assert get_log_output_mode(True) == "stdout"

    def test_file_and_console(self):
        assert get_log_output_mode(False) == "file+console"
