"""Long-running workers: the main consumption flow and the retry reprocessor."""

from reprocessor.workers.main_flow import MainFlowWorker
from reprocessor.workers.retry_worker import RetryReprocessorWorker
from reprocessor.workers.runner import execute_worker_with_shutdown

__all__ = [
    "MainFlowWorker",
    "RetryReprocessorWorker",
    "execute_worker_with_shutdown",
]
