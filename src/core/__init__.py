"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    errors      - Exception hierarchy and configuration-driven error classification
    logging     - Structured JSON logging with message and worker context
    utils       - JSON serialization and worker id helpers

Design Principles:
    - No dependencies on a specific broker client
    - All modules are independently testable
    - Type hints throughout
"""

from .types import (
    Destination,
    ErrorClassification,
    ErrorClassifier,
    FailureReason,
    PrecedencePolicy,
)

__version__ = "0.1.0"

__all__ = [
    "Destination",
    "ErrorClassification",
    "ErrorClassifier",
    "FailureReason",
    "PrecedencePolicy",
]
