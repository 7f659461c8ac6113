"""
Per-message processing shared by the main flow and the reprocessor.

A message moves RECEIVED -> PROCESSING -> SUCCEEDED, or on failure
PROCESSING -> FAILED -> ROUTED once the failure has been classified, stamped
and published. Classified failures never escape ``handle``; broker errors do.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from core.errors.exceptions import ProcessingFailure, wrap_exception
from core.logging.utilities import log_with_context
from core.types import ErrorClassification, ErrorClassifier
from reprocessor.common.types import PipelineMessage
from reprocessor.processing.base import ProcessingOperation
from reprocessor.retry.headers import read_retry_count, stamp
from reprocessor.retry.router import RetryRouter, RoutingDecision

logger = logging.getLogger(__name__)


class ProcessingState(Enum):
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ROUTED = "ROUTED"


@dataclass(frozen=True)
class ProcessingOutcome:
    """Terminal result of handling one message.

    ``state`` is SUCCEEDED or ROUTED. For routed messages the classification,
    the failure and the routing decision are attached.
    """

    state: ProcessingState
    duration_ms: float
    classification: ErrorClassification | None = None
    failure: ProcessingFailure | None = None
    decision: RoutingDecision | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == ProcessingState.SUCCEEDED


class MessageProcessor:
    """Run the processing operation and route failures.

    Args:
        operation: Business operation applied to the payload
        classifier: Maps failure identifiers to a classification
        router: Publishes failed messages to the retry topic or DLQ
        now: Wall-clock source for X-Timestamp (injectable for tests)
    """

    def __init__(
        self,
        operation: ProcessingOperation,
        classifier: ErrorClassifier,
        router: RetryRouter,
        now: Callable[[], datetime] | None = None,
    ):
        self.operation = operation
        self.classifier = classifier
        self.router = router
        self._now = now

    def _classify(self, failure: ProcessingFailure, typed: bool) -> ErrorClassification:
        if not typed:
            return ErrorClassification.UNKNOWN
        return self.classifier.classify(
            failure.error_type,
            failure.error_namespace,
            failure.full_error_type,
        )

    async def handle(
        self,
        message: PipelineMessage,
        previous_retry_count: int | None = None,
    ) -> ProcessingOutcome:
        """
        Process one message, routing it on failure.

        Args:
            message: Record consumed from the primary or retry topic
            previous_retry_count: Attempts before this one. Read from the
                message headers when not given.

        Returns:
            SUCCEEDED or ROUTED outcome

        Raises:
            PublishError: If routing could not publish the failed message
        """
        start_time = time.perf_counter()
        logger.debug(
            "Message received",
            extra={
                "topic": message.topic,
                "offset": message.offset,
                "processing_state": ProcessingState.RECEIVED.value,
            },
        )

        try:
            await self.operation.process(message.value)
        except Exception as e:
            typed = isinstance(e, ProcessingFailure)
            failure = wrap_exception(e)
            classification = self._classify(failure, typed)
        else:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.debug(
                "Message processed successfully",
                extra={
                    "topic": message.topic,
                    "offset": message.offset,
                    "duration_ms": duration_ms,
                    "processing_state": ProcessingState.SUCCEEDED.value,
                },
            )
            return ProcessingOutcome(state=ProcessingState.SUCCEEDED, duration_ms=duration_ms)

        if previous_retry_count is None:
            previous_retry_count = read_retry_count(message.headers)

        log_with_context(
            logger,
            logging.INFO,
            "Processing failed",
            processing_state=ProcessingState.FAILED.value,
            error_type=failure.error_type,
            error_namespace=failure.error_namespace,
            full_error_type=failure.full_error_type,
            error_classification=classification.value,
            retry_count=previous_retry_count,
            error_message=failure.description[:200],
            exc_info=None if typed else failure.cause,
        )

        headers = stamp(
            message,
            failure,
            previous_retry_count,
            now=self._now() if self._now else None,
        )
        decision = await self.router.route(
            message,
            headers,
            classification,
            previous_retry_count + 1,
        )

        return ProcessingOutcome(
            state=ProcessingState.ROUTED,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            classification=classification,
            failure=failure,
            decision=decision,
        )


__all__ = [
    "MessageProcessor",
    "ProcessingOutcome",
    "ProcessingState",
]
