"""
Error classification and exception hierarchy.

Provides:
- PipelineError hierarchy for typed exceptions
- ProcessingFailure, the typed failure raised by processing operations
- ConfiguredErrorClassifier for retryable/non-retryable classification
"""

from core.errors.classifiers import (
    ConfiguredErrorClassifier,
    build_full_error_type,
)
from core.errors.exceptions import (
    UNKNOWN_NAMESPACE,
    BrokerError,
    ConfigurationError,
    PipelineError,
    ProcessingFailure,
    PublishError,
    wrap_exception,
)

__all__ = [
    # Base classes
    "PipelineError",
    "ConfigurationError",
    "BrokerError",
    "PublishError",
    "ProcessingFailure",
    # Classification
    "ConfiguredErrorClassifier",
    "build_full_error_type",
    "wrap_exception",
    "UNKNOWN_NAMESPACE",
]
