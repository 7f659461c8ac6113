"""Retry reprocessor worker: periodically drain the retry topic."""

import asyncio
import logging

from config.config import ReprocessorConfig
from core.errors.classifiers import ConfiguredErrorClassifier
from core.logging.context import set_log_context
from core.types import ErrorClassifier
from core.utils import generate_worker_id
from reprocessor.common.consumer import RetryTopicConsumer
from reprocessor.common.producer import MessageProducer
from reprocessor.processing import (
    ProcessingOperation,
    build_processing_operation,
    close_operation,
    start_operation,
)
from reprocessor.retry.processor import MessageProcessor
from reprocessor.retry.reprocessor import BatchReprocessor, TickResult
from reprocessor.retry.router import RetryRouter
from reprocessor.retry.scheduler import ReprocessingScheduler

logger = logging.getLogger(__name__)

WORKER_NAME = "reprocessor"


class RetryReprocessorWorker:
    """
    Own the retry-topic consumer, the producer and the reprocessing scheduler.

    ``start`` opens connections, starts the scheduler and waits until ``stop``
    is called. ``run_once`` runs a single tick without the scheduler.
    """

    def __init__(
        self,
        config: ReprocessorConfig,
        operation: ProcessingOperation | None = None,
        classifier: ErrorClassifier | None = None,
        instance_id: str | None = None,
    ):
        self.config = config
        self.worker_name = WORKER_NAME
        prefix = WORKER_NAME if not instance_id else f"{WORKER_NAME}-{instance_id}"
        self.worker_id = generate_worker_id(prefix)

        self.operation = operation or build_processing_operation(config)
        self.classifier = classifier or ConfiguredErrorClassifier.from_config(config)

        self.producer = MessageProducer(config=config, worker_name=WORKER_NAME)
        self.consumer = RetryTopicConsumer(
            config=config,
            topic=config.retry_topic,
            worker_name=WORKER_NAME,
        )
        self.processor = MessageProcessor(
            operation=self.operation,
            classifier=self.classifier,
            router=RetryRouter.from_config(config, self.producer),
        )
        self.reprocessor = BatchReprocessor(
            consumer=self.consumer,
            processor=self.processor,
            batch_size=config.batch_size,
            poll_timeout_ms=config.poll_timeout_ms,
        )
        self.scheduler = ReprocessingScheduler(
            reprocessor=self.reprocessor,
            frequency_seconds=config.scheduler_frequency_seconds,
        )
        self._stopped = asyncio.Event()
        self._connected = False

    async def _connect(self) -> None:
        if self._connected:
            return
        await start_operation(self.operation)
        await self.producer.start()
        await self.consumer.start()
        self._connected = True

    async def start(self) -> None:
        set_log_context(stage=WORKER_NAME, worker_id=self.worker_id)
        logger.info(
            "Starting retry reprocessor worker",
            extra={
                "topic": self.config.retry_topic,
                "batch_size": self.config.batch_size,
                "scheduler_frequency_seconds": self.config.scheduler_frequency_seconds,
            },
        )

        self._stopped.clear()
        await self._connect()
        self.scheduler.start()
        await self._stopped.wait()

    async def run_once(self) -> TickResult:
        set_log_context(stage=WORKER_NAME, worker_id=self.worker_id)
        await self._connect()
        try:
            return await self.scheduler.run_once()
        finally:
            await self.stop()

    async def stop(self) -> None:
        logger.info("Stopping retry reprocessor worker", extra=self.scheduler.stats)
        try:
            await self.scheduler.stop()
            await self.consumer.stop()
        finally:
            await self.producer.stop()
            await close_operation(self.operation)
            self._connected = False
            self._stopped.set()


__all__ = ["RetryReprocessorWorker"]
