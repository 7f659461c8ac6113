"""Kafka consumers for the primary topic and the retry topic.

MessageConsumer drives the main flow: it consumes continuously and commits each
record only after its handler returned. RetryTopicConsumer is pulled one record
at a time by the batch reprocessor, which decides per record whether to commit,
defer or rewind.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import IllegalStateError
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import ReprocessorConfig
from core.logging import MessageLogContext
from core.utils import generate_worker_id
from reprocessor.common.kafka_config import build_kafka_security_config
from reprocessor.common.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)

ERROR_BACKOFF_SECONDS = 1.0
ASSIGNMENT_POLL_SECONDS = 0.5
FETCH_TIMEOUT_MS = 1000
# How long stop() waits for the consume loop to finish its current record
STOP_DRAIN_TIMEOUT_SECONDS = 30.0

# Forwarded to AIOKafkaConsumer only when configured
_OPTIONAL_CONSUMER_KEYS = (
    "heartbeat_interval_ms",
    "fetch_min_bytes",
    "fetch_max_wait_ms",
    "partition_assignment_strategy",
)

# Defaults for keys always passed to AIOKafkaConsumer
_CONSUMER_DEFAULTS = {
    "auto_offset_reset": "earliest",
    "max_poll_records": 100,
    "max_poll_interval_ms": 300000,
    "session_timeout_ms": 30000,
}


def _tp_label(tp: TopicPartition) -> str:
    return f"{tp.topic}:{tp.partition}"


def build_consumer_kafka_config(
    config: ReprocessorConfig,
    worker_name: str,
    group_id: str,
) -> dict[str, Any]:
    """AIOKafkaConsumer kwargs for a worker. Auto-commit is always off."""
    settings = config.get_worker_config(worker_name, "consumer")

    kafka_config: dict[str, Any] = {
        "bootstrap_servers": config.bootstrap_servers,
        "group_id": group_id,
        "client_id": f"{config.consumer_group_prefix}-{worker_name}",
        "request_timeout_ms": config.request_timeout_ms,
        "metadata_max_age_ms": config.metadata_max_age_ms,
        "connections_max_idle_ms": config.connections_max_idle_ms,
        "enable_auto_commit": False,
    }
    kafka_config.update({key: settings.get(key, default) for key, default in _CONSUMER_DEFAULTS.items()})
    kafka_config.update({key: settings[key] for key in _OPTIONAL_CONSUMER_KEYS if key in settings})
    kafka_config.update(build_kafka_security_config(config))
    return kafka_config


class MessageConsumer:
    """Continuous consumer that hands each record to an async handler.

    The offset of a record is committed only after the handler returns. When
    the handler raises, the partition is rewound to that record and the rest of
    the fetched batch for the partition is dropped so it is redelivered in order.
    """

    def __init__(
        self,
        config: ReprocessorConfig,
        worker_name: str,
        topics: list[str],
        message_handler: Callable[[PipelineMessage], Awaitable[None]],
        instance_id: str | None = None,
    ):
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.worker_name = worker_name
        self.topics = topics
        self.message_handler = message_handler
        self.group_id = config.get_consumer_group(worker_name)
        self.worker_id = generate_worker_id(f"{worker_name}-{instance_id}" if instance_id else worker_name)

        # Stop after this many non-empty fetches (None: run until stopped)
        self.max_batches: int | None = None
        self._batch_count = 0
        self._records_committed = 0
        self._records_failed = 0

        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        # Cleared while the consume loop runs; stop() waits on it before closing the client
        self._loop_exited = asyncio.Event()
        self._loop_exited.set()

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None

    async def start(self) -> None:
        """Connect and run the consume loop until stop() is called."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        self._consumer = AIOKafkaConsumer(
            *self.topics,
            **build_consumer_kafka_config(self.config, self.worker_name, self.group_id),
        )
        await self._consumer.start()
        self._running = True
        logger.info(
            "Message consumer started",
            extra={"topics": self.topics, "group_id": self.group_id},
        )

        self._loop_exited.clear()
        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled")
            raise
        except Exception:
            logger.error("Consumer loop terminated with error", exc_info=True)
            raise
        finally:
            self._running = False
            self._loop_exited.set()

    async def stop(self) -> None:
        """Let the loop finish its current record, then close the client."""
        if self._consumer is None:
            return

        self._running = False
        logger.info(
            "Stopping message consumer",
            extra={"records_committed": self._records_committed, "records_failed": self._records_failed},
        )
        try:
            await asyncio.wait_for(self._loop_exited.wait(), timeout=STOP_DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                "Consume loop did not exit in time, closing consumer with a record in flight",
                extra={"group_id": self.group_id},
            )

        if self._consumer is None:
            return
        try:
            await self._consumer.stop()
        except Exception:
            logger.error("Error stopping message consumer", exc_info=True)
            raise
        finally:
            self._consumer = None

    async def _committed_positions(self) -> dict[str, Any]:
        positions: dict[str, Any] = {}
        for tp in self._consumer.assignment():
            try:
                positions[_tp_label(tp)] = await self._consumer.position(tp)
            except Exception:
                positions[_tp_label(tp)] = "unknown"
        return positions

    async def _wait_for_assignment(self) -> bool:
        """Block until the group assigns partitions. False if stopped first."""
        announced = False
        while self.is_running:
            if self._consumer.assignment():
                logger.info(
                    "Partitions assigned, resuming consumption",
                    extra={"group_id": self.group_id, "resuming_from_offsets": await self._committed_positions()},
                )
                return True
            if not announced:
                logger.info("Waiting for partition assignment", extra={"group_id": self.group_id})
                announced = True
            await asyncio.sleep(ASSIGNMENT_POLL_SECONDS)
        return False

    def _batch_limit_reached(self) -> bool:
        return self.max_batches is not None and self._batch_count >= self.max_batches

    async def _fetch_and_process_batch(self) -> bool:
        """Process one fetch partition by partition. False if stopped mid-batch."""
        data = await self._consumer.getmany(timeout_ms=FETCH_TIMEOUT_MS)
        if data:
            self._batch_count += 1

        rewound = False
        for tp, records in data.items():
            for record in records:
                if not self._running:
                    return False
                if not await self._process_message(tp, record):
                    # Remaining records of this partition come back after the rewind
                    rewound = True
                    break

        if rewound:
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)
        return True

    async def _consume_loop(self) -> None:
        if not await self._wait_for_assignment():
            return

        while self.is_running:
            if self._batch_limit_reached():
                logger.info("Reached max_batches, leaving consume loop", extra={"batch_size": self.max_batches})
                return
            try:
                if not await self._fetch_and_process_batch():
                    return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    def _rewind(self, tp: TopicPartition, offset: int) -> None:
        """Move the fetch position back; partitions revoked meanwhile are left to their new owner."""
        if self._consumer is None or tp not in self._consumer.assignment():
            logger.warning(
                "Partition no longer assigned, skipping rewind",
                extra={"topic": tp.topic, "partition": tp.partition, "offset": offset},
            )
            return
        self._consumer.seek(tp, offset)

    async def _process_message(self, tp: TopicPartition, message: ConsumerRecord) -> bool:
        """Run the handler for one record. True once its offset is committed.

        On False the partition has been rewound and the caller must drop the
        rest of the partition's fetched records.
        """
        with MessageLogContext.for_record(message, consumer_group=self.group_id):
            try:
                await self.message_handler(from_consumer_record(message))
            except Exception:
                self._records_failed += 1
                logger.error(
                    "Message handler failed, offset not committed; record will be redelivered",
                    exc_info=True,
                )
                self._rewind(tp, message.offset)
                return False

            try:
                await self._consumer.commit({tp: message.offset + 1})
            except Exception:
                # Handled but uncommitted; the next successful commit on the partition covers it
                logger.error(
                    "Offset commit failed, rewinding past the handled record",
                    extra={"topic": tp.topic, "partition": tp.partition, "offset": message.offset},
                    exc_info=True,
                )
                self._rewind(tp, message.offset + 1)
                return False

            self._records_committed += 1
            return True


class RetryTopicConsumer:
    """Pull-style consumer for the retry topic.

    Records are fetched one at a time. A deferred record pauses its partition
    for the rest of the tick and is re-read after release_deferred(), so nothing
    behind it on that partition is committed past it.
    """

    def __init__(
        self,
        config: ReprocessorConfig,
        topic: str,
        worker_name: str = "reprocessor",
        group_id: str | None = None,
    ):
        self.config = config
        self.topic = topic
        self.worker_name = worker_name
        self.group_id = group_id or config.get_consumer_group(worker_name)
        self._consumer: AIOKafkaConsumer | None = None
        # Partition -> offset of the first deferred record in the current tick
        self._deferred: dict[TopicPartition, int] = {}

    async def start(self) -> None:
        if self._consumer is not None:
            logger.warning("Retry consumer already started, ignoring duplicate start call")
            return

        self._consumer = AIOKafkaConsumer(
            self.topic,
            **build_consumer_kafka_config(self.config, self.worker_name, self.group_id),
        )
        await self._consumer.start()

        logger.info(
            "Retry topic consumer started",
            extra={"topic": self.topic, "group_id": self.group_id},
        )

    async def stop(self) -> None:
        if self._consumer is None:
            logger.debug("Retry consumer already stopped")
            return

        try:
            await self._consumer.stop()
            logger.info("Retry topic consumer stopped", extra={"topic": self.topic})
        except Exception:
            logger.error("Error stopping retry topic consumer", exc_info=True)
            raise
        finally:
            self._consumer = None
            self._deferred.clear()

    def _require_consumer(self) -> AIOKafkaConsumer:
        if self._consumer is None:
            raise RuntimeError("Retry consumer not started. Call start() first.")
        return self._consumer

    async def poll(self, timeout_ms: int) -> PipelineMessage | None:
        """Fetch the next record, or None when nothing arrives within timeout_ms."""
        consumer = self._require_consumer()
        data = await consumer.getmany(timeout_ms=timeout_ms, max_records=1)
        for records in data.values():
            for record in records:
                return from_consumer_record(record)
        return None

    async def commit(self, message: PipelineMessage) -> None:
        consumer = self._require_consumer()
        tp = TopicPartition(message.topic, message.partition)
        await consumer.commit({tp: message.offset + 1})

    def defer(self, message: PipelineMessage) -> None:
        """Leave a record for a later tick and stop reading its partition."""
        consumer = self._require_consumer()
        tp = TopicPartition(message.topic, message.partition)
        if tp not in self._deferred:
            self._deferred[tp] = message.offset
            consumer.pause(tp)

    def rewind(self, message: PipelineMessage) -> None:
        """Move the fetch position back so the record is read again."""
        consumer = self._require_consumer()
        consumer.seek(TopicPartition(message.topic, message.partition), message.offset)

    def release_deferred(self) -> int:
        """Rewind and resume every partition deferred during the tick.

        The deferral bookkeeping is always reset, so the next tick pauses
        afresh. Partitions revoked during the tick are skipped: their new owner
        resumes from the committed offset, which is not past the deferred record.
        """
        deferred, self._deferred = self._deferred, {}
        if self._consumer is None or not deferred:
            return 0

        assigned = self._consumer.assignment()
        released = 0
        for tp, offset in deferred.items():
            if tp not in assigned:
                logger.info(
                    "Deferred partition revoked during tick, not resuming",
                    extra={"topic": tp.topic, "partition": tp.partition, "offset": offset},
                )
                continue
            try:
                self._consumer.seek(tp, offset)
                self._consumer.resume(tp)
            except IllegalStateError:
                logger.warning(
                    "Could not release deferred partition",
                    extra={"topic": tp.topic, "partition": tp.partition, "offset": offset},
                    exc_info=True,
                )
                continue
            released += 1
        return released

    @property
    def is_started(self) -> bool:
        return self._consumer is not None


__all__ = [
    "MessageConsumer",
    "RetryTopicConsumer",
    "build_consumer_kafka_config",
    "AIOKafkaConsumer",
    "ConsumerRecord",
]
