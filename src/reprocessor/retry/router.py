"""Retry-vs-DLQ routing decision and publication."""

import logging
from dataclasses import dataclass

from core.errors.exceptions import PublishError
from core.logging.utilities import log_with_context
from core.types import Destination, ErrorClassification, FailureReason
from reprocessor.common.producer import MessageProducer
from reprocessor.common.types import PipelineMessage, ProduceResult
from reprocessor.retry.headers import FAILURE_REASON_HEADER, FULL_ERROR_TYPE_HEADER

logger = logging.getLogger(__name__)


def decide_route(
    classification: ErrorClassification,
    retry_count: int,
    max_attempts: int,
) -> tuple[Destination, FailureReason]:
    """
    Pick the destination for a failed message.

    ``retry_count`` is the count after the current failure was recorded, so a
    retry-topic record always carries a count below ``max_attempts``.
    """
    if classification != ErrorClassification.RETRYABLE:
        return Destination.DLQ_TOPIC, FailureReason.NON_RETRYABLE_ERROR
    if retry_count < max_attempts:
        return Destination.RETRY_TOPIC, FailureReason.RETRYABLE_ERROR
    return Destination.DLQ_TOPIC, FailureReason.MAX_RETRIES_EXCEEDED


@dataclass(frozen=True)
class RoutingDecision:
    destination: Destination
    failure_reason: FailureReason
    topic: str
    retry_count: int
    headers: dict[str, str]
    result: ProduceResult | None = None


class RetryRouter:
    """
    Publish failed messages to the retry topic or the DLQ.

    The key and payload are forwarded unchanged. Publish failures are not
    retried here; they propagate as PublishError so the caller keeps the source
    offset uncommitted.
    """

    def __init__(
        self,
        producer: MessageProducer,
        retry_topic: str,
        dlq_topic: str,
        max_attempts: int,
    ):
        self.producer = producer
        self.retry_topic = retry_topic
        self.dlq_topic = dlq_topic
        self.max_attempts = max_attempts

    @classmethod
    def from_config(cls, config, producer: MessageProducer) -> "RetryRouter":
        return cls(
            producer=producer,
            retry_topic=config.retry_topic,
            dlq_topic=config.dlq_topic,
            max_attempts=config.max_attempts,
        )

    def _topic_for(self, destination: Destination) -> str:
        if destination == Destination.RETRY_TOPIC:
            return self.retry_topic
        return self.dlq_topic

    async def route(
        self,
        message: PipelineMessage,
        headers: dict[str, str],
        classification: ErrorClassification,
        retry_count: int,
    ) -> RoutingDecision:
        """Decide, add X-Failure-Reason and publish.

        Raises:
            PublishError: If the destination topic did not acknowledge the record
        """
        destination, reason = decide_route(classification, retry_count, self.max_attempts)
        topic = self._topic_for(destination)

        outbound = dict(headers)
        outbound[FAILURE_REASON_HEADER] = reason.value

        try:
            result = await self.producer.send(
                topic=topic,
                key=message.key,
                value=message.value,
                headers=outbound,
            )
        except PublishError:
            raise
        except Exception as e:
            raise PublishError(f"Failed to publish to {topic}", topic=topic, cause=e) from e

        level = logging.INFO if destination == Destination.RETRY_TOPIC else logging.WARNING
        log_with_context(
            logger,
            level,
            "Routed failed message to retry topic"
            if destination == Destination.RETRY_TOPIC
            else "Routed failed message to DLQ",
            destination=destination.value,
            destination_topic=topic,
            failure_reason=reason.value,
            retry_count=retry_count,
            full_error_type=outbound.get(FULL_ERROR_TYPE_HEADER),
            source_topic=message.topic,
            source_partition=message.partition,
            source_offset=message.offset,
        )

        return RoutingDecision(
            destination=destination,
            failure_reason=reason,
            topic=topic,
            retry_count=retry_count,
            headers=outbound,
            result=result,
        )


__all__ = [
    "RetryRouter",
    "RoutingDecision",
    "decide_route",
    "PublishError",
]
