"""
Tests for MessageProcessor.

Test Coverage:
    - Success path returns SUCCEEDED without publishing
    - Typed failures are classified, stamped and routed
    - Untyped exceptions are classified UNKNOWN and dead-lettered
    - Retry count taken from headers when not supplied
    - Publish errors propagate
"""

from datetime import UTC, datetime

import pytest

from core.errors import ConfiguredErrorClassifier, ProcessingFailure, PublishError
from core.types import Destination, ErrorClassification, FailureReason
from reprocessor.retry.headers import (
    ERROR_TYPE_HEADER,
    FAILURE_REASON_HEADER,
    FULL_ERROR_TYPE_HEADER,
    RETRY_COUNT_HEADER,
    TIMESTAMP_HEADER,
)
from reprocessor.retry.processor import MessageProcessor, ProcessingState
from reprocessor.retry.router import RetryRouter

FIXED_NOW = datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC)


@pytest.fixture
def classifier():
    return ConfiguredErrorClassifier(
        retryable_errors={"SERVICE_UNAVAILABLE"},
        non_retryable_errors={"VALIDATION"},
    )


@pytest.fixture
def router(fake_producer):
    return RetryRouter(fake_producer, "orders.retry", "orders.dlq", max_attempts=3)


def _processor(operation, classifier, router):
    return MessageProcessor(operation, classifier, router, now=lambda: FIXED_NOW)


def unavailable():
    return ProcessingFailure("SERVICE_UNAVAILABLE", "HTTP", "upstream down")


class TestSuccess:

    @pytest.mark.asyncio
    async def test_success_returns_succeeded(self, scripted_operation, classifier, router, fake_producer, make_message):
        operation = scripted_operation(None)
        processor = _processor(operation, classifier, router)

        outcome = await processor.handle(make_message(value=b"body"))

        assert outcome.state == ProcessingState.SUCCEEDED
        assert outcome.succeeded
        assert outcome.decision is None
        assert operation.calls == [b"body"]
        assert fake_producer.sent == []


class TestFailureRouting:

    @pytest.mark.asyncio
    async def test_first_retryable_failure_goes_to_retry(
        self, scripted_operation, classifier, router, broker, make_message
    ):
        processor = _processor(scripted_operation(unavailable()), classifier, router)

        outcome = await processor.handle(make_message())

        assert outcome.state == ProcessingState.ROUTED
        assert not outcome.succeeded
        assert outcome.classification == ErrorClassification.RETRYABLE
        assert outcome.decision.destination == Destination.RETRY_TOPIC

        headers = broker.headers_of(broker.topics["orders.retry"][0])
        assert headers[RETRY_COUNT_HEADER] == "1"
        assert headers[FULL_ERROR_TYPE_HEADER] == "HTTP:SERVICE_UNAVAILABLE"
        assert headers[FAILURE_REASON_HEADER] == "RETRYABLE_ERROR"
        assert headers[TIMESTAMP_HEADER] == FIXED_NOW.isoformat()

    @pytest.mark.asyncio
    async def test_count_read_from_headers(self, scripted_operation, classifier, router, make_message):
        processor = _processor(scripted_operation(unavailable()), classifier, router)
        message = make_message(headers={RETRY_COUNT_HEADER: "1"})

        outcome = await processor.handle(message)

        assert outcome.decision.retry_count == 2
        assert outcome.decision.destination == Destination.RETRY_TOPIC

    @pytest.mark.asyncio
    async def test_explicit_previous_count_wins_over_headers(
        self, scripted_operation, classifier, router, make_message
    ):
        processor = _processor(scripted_operation(unavailable()), classifier, router)
        message = make_message(headers={RETRY_COUNT_HEADER: "0"})

        outcome = await processor.handle(message, previous_retry_count=2)

        assert outcome.decision.retry_count == 3
        assert outcome.decision.failure_reason == FailureReason.MAX_RETRIES_EXCEEDED

    @pytest.mark.asyncio
    async def test_non_retryable_goes_to_dlq(self, scripted_operation, classifier, router, broker, make_message):
        failure = ProcessingFailure("VALIDATION", "SCHEMA", "missing id")
        processor = _processor(scripted_operation(failure), classifier, router)

        outcome = await processor.handle(make_message())

        assert outcome.classification == ErrorClassification.NON_RETRYABLE
        assert outcome.decision.failure_reason == FailureReason.NON_RETRYABLE_ERROR
        headers = broker.headers_of(broker.topics["orders.dlq"][0])
        assert headers[RETRY_COUNT_HEADER] == "1"
        assert headers[ERROR_TYPE_HEADER] == "VALIDATION"

    @pytest.mark.asyncio
    async def test_unclassified_failure_goes_to_dlq(self, scripted_operation, classifier, router, make_message):
        failure = ProcessingFailure("I_AM_A_TEAPOT", "HTTP", "teapot")
        processor = _processor(scripted_operation(failure), classifier, router)

        outcome = await processor.handle(make_message())

        assert outcome.classification == ErrorClassification.UNKNOWN
        assert outcome.decision.destination == Destination.DLQ_TOPIC
        assert outcome.decision.failure_reason == FailureReason.NON_RETRYABLE_ERROR

    @pytest.mark.asyncio
    async def test_untyped_exception_is_unknown(self, scripted_operation, router, broker, make_message):
        # Even a configured bare type must not match an untyped exception
        classifier = ConfiguredErrorClassifier(retryable_errors={"KeyError"}, non_retryable_errors=set())
        processor = _processor(scripted_operation(KeyError("id")), classifier, router)

        outcome = await processor.handle(make_message())

        assert outcome.classification == ErrorClassification.UNKNOWN
        assert outcome.failure.full_error_type == "UNKNOWN:KeyError"
        headers = broker.headers_of(broker.topics["orders.dlq"][0])
        assert headers[FULL_ERROR_TYPE_HEADER] == "UNKNOWN:KeyError"

    @pytest.mark.asyncio
    async def test_key_and_payload_forwarded(self, scripted_operation, classifier, router, broker, make_message):
        processor = _processor(scripted_operation(unavailable()), classifier, router)

        await processor.handle(make_message(key=b"order-9", value=b'{"id": 9}'))

        published = broker.topics["orders.retry"][0]
        assert published.key == b"order-9"
        assert published.value == b'{"id": 9}'

    @pytest.mark.asyncio
    async def test_publish_error_propagates(
        self, scripted_operation, classifier, router, fake_producer, make_message
    ):
        fake_producer.fail_topics.add("orders.retry")
        processor = _processor(scripted_operation(unavailable()), classifier, router)

        with pytest.raises(PublishError):
            await processor.handle(make_message())

    @pytest.mark.asyncio
    async def test_failure_log_carries_failed_state(
        self, scripted_operation, classifier, router, make_message, caplog
    ):
        processor = _processor(scripted_operation(unavailable()), classifier, router)

        with caplog.at_level("INFO", logger="reprocessor.retry.processor"):
            outcome = await processor.handle(make_message())

        failed = [record for record in caplog.records if record.getMessage() == "Processing failed"]
        assert len(failed) == 1
        assert failed[0].processing_state == ProcessingState.FAILED.value
        assert outcome.state == ProcessingState.ROUTED
