"""Broker plumbing shared by the main flow and the reprocessor."""

from reprocessor.common.consumer import MessageConsumer, RetryTopicConsumer
from reprocessor.common.producer import MessageProducer
from reprocessor.common.types import PipelineMessage, ProduceResult, from_consumer_record

__all__ = [
    "MessageConsumer",
    "RetryTopicConsumer",
    "MessageProducer",
    "PipelineMessage",
    "ProduceResult",
    "from_consumer_record",
]
