"""
Batch reprocessing of the retry topic.

Each tick drains at most ``batch_size`` records. Two rules keep it bounded:

- Loop prevention: a record whose broker timestamp is not older than the
  tick's start was produced during this tick (typically a message this tick
  just re-routed). It is left for the next tick, uncommitted.
- Early termination: a poll that returns nothing ends the tick.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from core.logging import MessageLogContext
from core.logging.utilities import log_with_context
from reprocessor.common.consumer import RetryTopicConsumer
from reprocessor.retry.headers import read_retry_count
from reprocessor.retry.processor import MessageProcessor

logger = logging.getLogger(__name__)


def _epoch_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class TickResult:
    """Counters for one reprocessing tick."""

    execution_timestamp: int
    records_polled: int = 0
    records_succeeded: int = 0
    records_rerouted: int = 0
    records_skipped: int = 0
    records_deferred: int = 0
    topic_empty: bool = False
    duration_ms: float = 0.0

    @property
    def records_processed(self) -> int:
        return self.records_succeeded + self.records_rerouted

    def as_log_fields(self) -> dict:
        return {
            "execution_timestamp": self.execution_timestamp,
            "records_polled": self.records_polled,
            "records_succeeded": self.records_succeeded,
            "records_rerouted": self.records_rerouted,
            "records_skipped": self.records_skipped,
            "records_deferred": self.records_deferred,
            "topic_empty": self.topic_empty,
            "duration_ms": self.duration_ms,
        }


class BatchReprocessor:
    """
    Drain the retry topic in bounded ticks.

    Records are handled strictly one at a time. A record is committed only
    after MessageProcessor.handle returned; a broker error rewinds its
    partition and propagates to the scheduler.

    Usage:
        >>> reprocessor = BatchReprocessor(consumer, processor, batch_size=100, poll_timeout_ms=1000)
        >>> result = await reprocessor.run_tick()
        >>> result.topic_empty
        True
    """

    def __init__(
        self,
        consumer: RetryTopicConsumer,
        processor: MessageProcessor,
        batch_size: int,
        poll_timeout_ms: int,
        clock: Callable[[], int] | None = None,
    ):
        self.consumer = consumer
        self.processor = processor
        self.batch_size = batch_size
        self.poll_timeout_ms = poll_timeout_ms
        self._clock = clock or _epoch_millis

    async def run_tick(self) -> TickResult:
        """
        Run one reprocessing tick.

        Returns:
            TickResult with per-outcome counters

        Raises:
            PublishError / BrokerError: If a poll, publish or commit failed.
                The failing record is rewound and stays uncommitted.
        """
        execution_timestamp = self._clock()
        result = TickResult(execution_timestamp=execution_timestamp)
        start_time = time.perf_counter()

        try:
            for _ in range(self.batch_size):
                message = await self.consumer.poll(self.poll_timeout_ms)
                if message is None:
                    result.topic_empty = True
                    break

                result.records_polled += 1

                if message.timestamp >= execution_timestamp:
                    self.consumer.defer(message)
                    result.records_skipped += 1
                    logger.debug(
                        "Skipping record produced during this tick",
                        extra={
                            "topic": message.topic,
                            "partition": message.partition,
                            "offset": message.offset,
                            "record_timestamp": message.timestamp,
                            "execution_timestamp": execution_timestamp,
                        },
                    )
                    continue

                previous_retry_count = read_retry_count(message.headers)
                with MessageLogContext.for_record(message, consumer_group=self.consumer.group_id):
                    try:
                        outcome = await self.processor.handle(message, previous_retry_count)
                        await self.consumer.commit(message)
                    except Exception:
                        self.consumer.rewind(message)
                        raise

                if outcome.succeeded:
                    result.records_succeeded += 1
                else:
                    result.records_rerouted += 1
        finally:
            result.records_deferred = self.consumer.release_deferred()
            result.duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        log_with_context(
            logger,
            logging.DEBUG,
            "Reprocessing tick finished",
            batch_size=self.batch_size,
            **result.as_log_fields(),
        )
        return result


__all__ = [
    "BatchReprocessor",
    "TickResult",
]
