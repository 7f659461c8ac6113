"""
Unified exception hierarchy for the reprocessing pipeline.

Separates the three failure families the pipeline handles differently:
typed business failures raised by the processing operation, broker I/O
failures that must block the offset commit, and configuration failures that
are fatal at startup.
"""

from typing import Any

UNKNOWN_NAMESPACE = "UNKNOWN"


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Configuration Errors (fatal at startup)
# =============================================================================


class ConfigurationError(PipelineError, ValueError):
    """Invalid or missing configuration. Not recoverable at runtime."""


# =============================================================================
# Broker I/O Errors (propagated, never retried internally)
# =============================================================================


class BrokerError(PipelineError):
    """Base class for broker poll/publish/commit failures."""


class PublishError(BrokerError):
    """Publishing a routed message to the retry or DLQ topic failed."""

    def __init__(
        self,
        message: str,
        topic: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause=cause, context=context)
        self.topic = topic


# =============================================================================
# Processing Failures (always terminate in a routing decision)
# =============================================================================


class ProcessingFailure(PipelineError):
    """
    Typed failure raised by a processing operation.

    Attributes:
        error_type: Short failure identifier (e.g., SERVICE_UNAVAILABLE)
        error_namespace: Failure namespace (e.g., HTTP)
        description: Human-readable description of what failed
        payload: Diagnostic payload (response body, offending record, ...)
    """

    def __init__(
        self,
        error_type: str,
        error_namespace: str,
        description: str,
        payload: Any = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(description, cause=cause, context=context)
        self.error_type = error_type
        self.error_namespace = error_namespace
        self.description = description
        self.payload = payload

    @property
    def full_error_type(self) -> str:
        return f"{self.error_namespace}:{self.error_type}"

    def __repr__(self) -> str:
        return f"ProcessingFailure({self.full_error_type!r}, {self.description!r})"


def wrap_exception(exc: Exception) -> ProcessingFailure:
    """
    Wrap an arbitrary exception as a ProcessingFailure.

    Typed failures are returned unchanged. Anything else gets the UNKNOWN
    namespace and its class name as type, so headers still carry a complete
    error triple.
    """
    if isinstance(exc, ProcessingFailure):
        return exc

    return ProcessingFailure(
        error_type=type(exc).__name__,
        error_namespace=UNKNOWN_NAMESPACE,
        description=str(exc) or type(exc).__name__,
        payload=None,
        cause=exc,
    )
