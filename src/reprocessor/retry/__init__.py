"""
Retry handling for the reprocessing pipeline.

Provides:
- Failure metadata headers (stamp, read_retry_count)
- Retry-vs-DLQ routing
- Per-message processing with failure routing
- Scheduled batch reprocessing of the retry topic
"""

from reprocessor.retry.headers import FailureMetadata, read_retry_count, stamp
from reprocessor.retry.processor import MessageProcessor, ProcessingOutcome, ProcessingState
from reprocessor.retry.reprocessor import BatchReprocessor, TickResult
from reprocessor.retry.router import RetryRouter, RoutingDecision, decide_route
from reprocessor.retry.scheduler import ReprocessingScheduler

__all__ = [
    "FailureMetadata",
    "stamp",
    "read_retry_count",
    "RetryRouter",
    "RoutingDecision",
    "decide_route",
    "MessageProcessor",
    "ProcessingOutcome",
    "ProcessingState",
    "BatchReprocessor",
    "TickResult",
    "ReprocessingScheduler",
]
