"""Main flow worker: consume the primary topic and route failures."""

import logging

from config.config import ReprocessorConfig
from core.errors.classifiers import ConfiguredErrorClassifier
from core.logging.context import set_log_context
from core.types import ErrorClassifier
from reprocessor.common.consumer import MessageConsumer
from reprocessor.common.producer import MessageProducer
from reprocessor.common.types import PipelineMessage
from reprocessor.processing import (
    ProcessingOperation,
    build_processing_operation,
    close_operation,
    start_operation,
)
from reprocessor.retry.processor import MessageProcessor
from reprocessor.retry.router import RetryRouter

logger = logging.getLogger(__name__)

WORKER_NAME = "main_flow"


class MainFlowWorker:
    """
    Consume the primary topic through MessageProcessor.

    A record's offset is committed once handle() returns, i.e. after the
    operation succeeded or its failure was published to the retry topic or DLQ.
    When publishing fails the record stays uncommitted and is redelivered.
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
        self.operation = operation or build_processing_operation(config)
        self.classifier = classifier or ConfiguredErrorClassifier.from_config(config)

        self.producer = MessageProducer(config=config, worker_name=WORKER_NAME)
        self.router = RetryRouter.from_config(config, self.producer)
        self.processor = MessageProcessor(
            operation=self.operation,
            classifier=self.classifier,
            router=self.router,
        )
        self.consumer = MessageConsumer(
            config=config,
            worker_name=WORKER_NAME,
            topics=[config.primary_topic],
            message_handler=self._handle_message,
            instance_id=instance_id,
        )
        self.worker_id = self.consumer.worker_id
        self._records_succeeded = 0
        self._records_routed = 0

    async def _handle_message(self, message: PipelineMessage) -> None:
        outcome = await self.processor.handle(message)
        if outcome.succeeded:
            self._records_succeeded += 1
        else:
            self._records_routed += 1

    async def start(self) -> None:
        set_log_context(stage=WORKER_NAME, worker_id=self.worker_id)
        logger.info(
            "Starting main flow worker",
            extra={"topic": self.config.primary_topic, "worker_name": WORKER_NAME},
        )

        await start_operation(self.operation)
        await self.producer.start()
        # Blocks until stop() is called
        await self.consumer.start()

    async def stop(self) -> None:
        logger.info(
            "Stopping main flow worker",
            extra={
                "records_succeeded": self._records_succeeded,
                "records_rerouted": self._records_routed,
            },
        )
        try:
            await self.consumer.stop()
        finally:
            await self.producer.stop()
            await close_operation(self.operation)

    @property
    def stats(self) -> dict:
        return {
            "records_succeeded": self._records_succeeded,
            "records_rerouted": self._records_routed,
        }


__all__ = ["MainFlowWorker"]
