"""
Tests for failure metadata headers.

Test Coverage:
    - read_retry_count for absent, valid and malformed values
    - Error text truncation and payload serialization
    - stamp(): count increment, header overwrite, preservation of other headers
    - FailureMetadata header rendering
"""

from datetime import UTC, datetime

import pytest

from core.errors.exceptions import ProcessingFailure
from core.types import FailureReason
from reprocessor.retry.headers import (
    ERROR_NAMESPACE_HEADER,
    ERROR_TYPE_HEADER,
    FAILURE_REASON_HEADER,
    FULL_ERROR_TYPE_HEADER,
    MAX_ERROR_MESSAGE_LENGTH,
    ORIGINAL_ERROR_HEADER,
    RETRY_COUNT_HEADER,
    TIMESTAMP_HEADER,
    FailureMetadata,
    build_error_text,
    headers_to_dict,
    read_retry_count,
    serialize_payload,
    stamp,
    truncate_error_message,
)

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)


@pytest.fixture
def failure():
    return ProcessingFailure(
        "SERVICE_UNAVAILABLE",
        "HTTP",
        "upstream returned 503",
        payload={"status": 503},
    )


class TestHeadersToDict:

    def test_decodes_bytes(self):
        assert headers_to_dict([("a", b"1"), ("b", b"two")]) == {"a": "1", "b": "two"}

    def test_none_and_empty(self):
        assert headers_to_dict(None) == {}
        assert headers_to_dict([]) == {}

    def test_later_duplicates_win(self):
        assert headers_to_dict([("a", b"1"), ("a", b"2")]) == {"a": "2"}

    def test_none_value_becomes_empty_string(self):
        assert headers_to_dict([("a", None)]) == {"a": ""}


class TestReadRetryCount:

    def test_absent_is_zero(self):
        assert read_retry_count({}) == 0
        assert read_retry_count(None) == 0

    def test_reads_dict(self):
        assert read_retry_count({RETRY_COUNT_HEADER: "2"}) == 2

    def test_reads_wire_headers(self):
        assert read_retry_count([(RETRY_COUNT_HEADER, b"4")]) == 4

    def test_tolerates_whitespace(self):
        assert read_retry_count({RETRY_COUNT_HEADER: " 3 "}) == 3

    def test_empty_is_zero(self):
        assert read_retry_count({RETRY_COUNT_HEADER: ""}) == 0

    def test_malformed_is_zero_with_warning(self, caplog):
        with caplog.at_level("WARNING"):
            assert read_retry_count({RETRY_COUNT_HEADER: "three"}) == 0
        assert "Malformed retry count header" in caplog.text

    def test_negative_is_zero_with_warning(self, caplog):
        with caplog.at_level("WARNING"):
            assert read_retry_count({RETRY_COUNT_HEADER: "-1"}) == 0
        assert "Negative retry count header" in caplog.text


class TestTruncateErrorMessage:

    def test_short_text_unchanged(self):
        assert truncate_error_message("boom") == "boom"

    def test_long_text_truncated_to_limit(self):
        assert len(truncate_error_message("x" * 1000)) == MAX_ERROR_MESSAGE_LENGTH

    def test_exactly_at_limit_unchanged(self):
        text = "y" * MAX_ERROR_MESSAGE_LENGTH
        assert truncate_error_message(text) == text

    def test_empty_and_none(self):
        assert truncate_error_message("") == ""
        assert truncate_error_message(None) == ""

    def test_non_positive_limit(self):
        assert truncate_error_message("abc", limit=0) == ""

    def test_counts_code_points(self):
        assert truncate_error_message("é" * 400) == "é" * MAX_ERROR_MESSAGE_LENGTH


class TestSerializePayload:

    def test_none_is_empty(self):
        assert serialize_payload(None) == ""

    def test_string_passthrough(self):
        assert serialize_payload("raw body") == "raw body"

    def test_bytes_decoded(self):
        assert serialize_payload(b"\xffok") == "\ufffdok"

    def test_dict_as_json(self):
        assert serialize_payload({"a": 1}) == '{"a": 1}'

    def test_datetime_uses_json_serializer(self):
        assert serialize_payload({"at": FIXED_NOW}) == '{"at": "2026-01-02T03:04:05+00:00"}'


class TestBuildErrorText:

    def test_description_newline_payload(self, failure):
        assert build_error_text(failure) == 'upstream returned 503\n{"status": 503}'

    def test_without_payload(self):
        failure = ProcessingFailure("VALIDATION", "SCHEMA", "bad field")
        assert build_error_text(failure) == "bad field\n"

    def test_truncated(self):
        failure = ProcessingFailure("VALIDATION", "SCHEMA", "d" * 250, payload="p" * 250)
        text = build_error_text(failure)
        assert len(text) == MAX_ERROR_MESSAGE_LENGTH
        assert text.startswith("d" * 250 + "\n")


class TestStamp:

    def test_first_failure_sets_count_one(self, make_message, failure):
        headers = stamp(make_message(), failure, None, now=FIXED_NOW)
        assert headers[RETRY_COUNT_HEADER] == "1"

    def test_increments_previous_count(self, make_message, failure):
        headers = stamp(make_message(), failure, 2, now=FIXED_NOW)
        assert headers[RETRY_COUNT_HEADER] == "3"

    def test_writes_error_triple_and_timestamp(self, make_message, failure):
        headers = stamp(make_message(), failure, 0, now=FIXED_NOW)

        assert headers[ERROR_TYPE_HEADER] == "SERVICE_UNAVAILABLE"
        assert headers[ERROR_NAMESPACE_HEADER] == "HTTP"
        assert headers[FULL_ERROR_TYPE_HEADER] == "HTTP:SERVICE_UNAVAILABLE"
        assert headers[ORIGINAL_ERROR_HEADER] == 'upstream returned 503\n{"status": 503}'
        assert headers[TIMESTAMP_HEADER] == "2026-01-02T03:04:05+00:00"

    def test_does_not_set_failure_reason(self, make_message, failure):
        headers = stamp(make_message(), failure, 0, now=FIXED_NOW)
        assert FAILURE_REASON_HEADER not in headers

    def test_preserves_unrelated_headers(self, make_message, failure):
        message = make_message(headers={"trace-id": "abc", "content-type": "application/json"})
        headers = stamp(message, failure, 0, now=FIXED_NOW)

        assert headers["trace-id"] == "abc"
        assert headers["content-type"] == "application/json"

    def test_overwrites_previous_failure_headers(self, make_message, failure):
        message = make_message(
            headers={
                RETRY_COUNT_HEADER: "1",
                ERROR_TYPE_HEADER: "OLD",
                FAILURE_REASON_HEADER: "RETRYABLE_ERROR",
            }
        )
        headers = stamp(message, failure, 1, now=FIXED_NOW)

        assert headers[RETRY_COUNT_HEADER] == "2"
        assert headers[ERROR_TYPE_HEADER] == "SERVICE_UNAVAILABLE"
        # The router replaces the reason
        assert headers[FAILURE_REASON_HEADER] == "RETRYABLE_ERROR"

    def test_does_not_mutate_message(self, make_message, failure):
        message = make_message(headers={"trace-id": "abc"})
        stamp(message, failure, 0, now=FIXED_NOW)
        assert message.headers == [("trace-id", b"abc")]

    def test_defaults_to_current_time(self, make_message, failure):
        headers = stamp(make_message(), failure, 0)
        parsed = datetime.fromisoformat(headers[TIMESTAMP_HEADER])
        assert parsed.tzinfo is not None


class TestFailureMetadata:

    def _metadata(self, **kwargs):
        values = dict(
            retry_count=1,
            original_error="boom",
            error_type="VALIDATION",
            error_namespace="SCHEMA",
            full_error_type="SCHEMA:VALIDATION",
            timestamp=FIXED_NOW,
        )
        values.update(kwargs)
        return FailureMetadata(**values)

    def test_to_headers_uses_wire_names(self):
        headers = self._metadata(failure_reason=FailureReason.NON_RETRYABLE_ERROR).to_headers()
        assert headers == {
            RETRY_COUNT_HEADER: "1",
            ORIGINAL_ERROR_HEADER: "boom",
            ERROR_TYPE_HEADER: "VALIDATION",
            ERROR_NAMESPACE_HEADER: "SCHEMA",
            FULL_ERROR_TYPE_HEADER: "SCHEMA:VALIDATION",
            FAILURE_REASON_HEADER: "NON_RETRYABLE_ERROR",
            TIMESTAMP_HEADER: "2026-01-02T03:04:05+00:00",
        }

    def test_naive_timestamp_treated_as_utc(self):
        headers = self._metadata(timestamp=datetime(2026, 1, 2, 3, 4, 5)).to_headers()
        assert headers[TIMESTAMP_HEADER] == "2026-01-02T03:04:05+00:00"

    def test_rejects_negative_count(self):
        with pytest.raises(ValueError):
            self._metadata(retry_count=-1)
