"""Tests for core.types module."""

from core.types import (
    Destination,
    ErrorClassification,
    ErrorClassifier,
    FailureReason,
    PrecedencePolicy,
)


class TestErrorClassification:
    def test_values(self):
        assert ErrorClassification.RETRYABLE.value == "RETRYABLE"
        assert ErrorClassification.NON_RETRYABLE.value == "NON_RETRYABLE"
        assert ErrorClassification.UNKNOWN.value == "UNKNOWN"

    def test_all_members(self):
        expected = {"RETRYABLE", "NON_RETRYABLE", "UNKNOWN"}
        assert set(ErrorClassification.__members__.keys()) == expected


class TestFailureReason:
    def test_values_match_header_text(self):
        assert FailureReason("RETRYABLE_ERROR") is FailureReason.RETRYABLE_ERROR
        assert FailureReason("NON_RETRYABLE_ERROR") is FailureReason.NON_RETRYABLE_ERROR
        assert FailureReason("MAX_RETRIES_EXCEEDED") is FailureReason.MAX_RETRIES_EXCEEDED


class TestDestination:
    def test_values(self):
        assert Destination.RETRY_TOPIC.value == "retry"
        assert Destination.DLQ_TOPIC.value == "dlq"


class TestPrecedencePolicy:
    def test_from_value(self):
        assert PrecedencePolicy("non_retryable_first") is PrecedencePolicy.NON_RETRYABLE_FIRST
        assert PrecedencePolicy("retryable_first") is PrecedencePolicy.RETRYABLE_FIRST


class TestErrorClassifier:
    def test_is_protocol(self):
        assert hasattr(ErrorClassifier, "classify")
