"""
Processing operations applied to consumed payloads.

The built-in operation forwards payloads over HTTP. A custom operation can be
plugged in with ``processing.operation: "package.module:factory"``; the factory
receives the ``processing`` config section and returns an object with an async
``process(payload)`` method.
"""

import importlib
import logging
from typing import Any

from core.errors.exceptions import ConfigurationError
from reprocessor.processing.base import ProcessingOperation
from reprocessor.processing.http_operation import HttpProcessingOperation

logger = logging.getLogger(__name__)


def _load_factory(spec: str):
    module_name, _, attr_name = spec.partition(":")
    if not module_name or not attr_name:
        raise ConfigurationError(
            f"processing.operation must be 'module:factory', got: {spec!r}"
        )

    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Failed to import processing operation factory {spec!r}", cause=e
        ) from e


async def start_operation(operation: ProcessingOperation) -> None:
    """Open operation resources (sessions, pools) when the operation has any."""
    start = getattr(operation, "start", None)
    if start is not None:
        await start()


async def close_operation(operation: ProcessingOperation) -> None:
    close = getattr(operation, "close", None)
    if close is not None:
        await close()


def build_processing_operation(config) -> ProcessingOperation:
    """Create the processing operation described by ``config.processing``."""
    processing: dict[str, Any] = dict(config.processing or {})
    factory_spec = processing.get("operation")

    if factory_spec:
        factory = _load_factory(factory_spec)
        operation = factory(processing)
        if not isinstance(operation, ProcessingOperation):
            raise ConfigurationError(
                f"Factory {factory_spec!r} did not return a processing operation"
            )
        logger.info(
            "Using custom processing operation",
            extra={"operation_factory": factory_spec},
        )
        return operation

    headers = None
    if processing.get("content_type"):
        headers = {"Content-Type": str(processing["content_type"])}

    try:
        return HttpProcessingOperation(
            url=processing.get("url", ""),
            timeout_seconds=float(processing.get("timeout_seconds", 30)),
            max_connections=int(processing.get("max_connections", 20)),
            headers=headers,
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid processing configuration: {e}", cause=e) from e


__all__ = [
    "ProcessingOperation",
    "HttpProcessingOperation",
    "build_processing_operation",
    "start_operation",
    "close_operation",
]
