"""
Core types and protocols used across modules.

This module provides the enums and protocol definitions shared by the error
classifier, the metadata manager and the retry router so that every component
speaks the same vocabulary.
"""

from enum import Enum
from typing import Protocol


class ErrorClassification(Enum):
    """
    Outcome of classifying a processing failure.

    Categories:
        RETRYABLE: Likely transient, eligible for reprocessing up to a limit
                   (e.g., SERVICE_UNAVAILABLE, timeouts)
        NON_RETRYABLE: Permanent, retrying cannot succeed
                       (e.g., VALIDATION, malformed payloads)
        UNKNOWN: Matched neither configured set; routed like NON_RETRYABLE
    """

    RETRYABLE = "RETRYABLE"
    NON_RETRYABLE = "NON_RETRYABLE"
    UNKNOWN = "UNKNOWN"


class FailureReason(Enum):
    """Reason recorded in the X-Failure-Reason header by the router."""

    RETRYABLE_ERROR = "RETRYABLE_ERROR"
    NON_RETRYABLE_ERROR = "NON_RETRYABLE_ERROR"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"


class Destination(Enum):
    """Topic a failed message is routed to."""

    RETRY_TOPIC = "retry"
    DLQ_TOPIC = "dlq"


class PrecedencePolicy(Enum):
    """
    Tie-break applied when an error matches both configured sets.

    NON_RETRYABLE_FIRST is the default: permanent failure is the safer outcome.
    """

    NON_RETRYABLE_FIRST = "non_retryable_first"
    RETRYABLE_FIRST = "retryable_first"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    Implementations must be pure: no I/O, deterministic for the same inputs.
    """

    def classify(
        self,
        error_type: str,
        error_namespace: str,
        full_error_type: str,
    ) -> ErrorClassification:
        """
        Classify a failure by its type identifiers.

        Args:
            error_type: Short failure identifier (e.g., SERVICE_UNAVAILABLE)
            error_namespace: Failure namespace (e.g., HTTP, KAFKA)
            full_error_type: Composite "namespace:type" key

        Returns:
            ErrorClassification for routing
        """
        ...
