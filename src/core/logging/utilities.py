"""Logging utility functions."""

import logging
from typing import Any

# LogRecord attributes; logging raises KeyError if `extra` tries to overwrite one
_RESERVED_LOG_KEYS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

MAX_LOGGED_ERROR_LENGTH = 500


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (retry_count, destination, etc.)
                  Note: exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Routed to retry topic",
            retry_count=1,
            failure_reason="RETRYABLE_ERROR",
        )
    """
    exc_info = kwargs.pop("exc_info", None)

    # Filter out reserved keys to prevent LogRecord conflicts
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Picks up error_type/full_error_type from ProcessingFailure-like exceptions
    and truncates long error messages.

    Example:
        try:
            await producer.send(...)
        except Exception as e:
            log_exception(logger, e, "Publish failed", topic=topic)
    """
    if "error_type" not in kwargs and hasattr(exc, "error_type"):
        kwargs["error_type"] = exc.error_type
    if "full_error_type" not in kwargs and hasattr(exc, "full_error_type"):
        kwargs["full_error_type"] = exc.full_error_type

    error_msg = str(exc)
    if len(error_msg) > MAX_LOGGED_ERROR_LENGTH:
        error_msg = error_msg[:MAX_LOGGED_ERROR_LENGTH] + "..."
    kwargs["error_message"] = error_msg

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    failed: int,
    skipped: int = 0,
    **kwargs: Any,
) -> str:
    """
    Format the standardized one-line summary of a reprocessor tick.

    Args:
        cycle_count: Tick number
        succeeded: Records reprocessed successfully
        failed: Records that failed again and were re-routed
        skipped: Records skipped by loop prevention
        **kwargs: Optional topic_empty flag

    Example:
        >>> format_cycle_output(3, 8, 2, 1, topic_empty=True)
        'Cycle 3: processed=11 (succeeded=8, failed=2, skipped=1) | topic drained'
    """
    total_processed = succeeded + failed + skipped

    parts = [f"succeeded={succeeded}", f"failed={failed}"]
    if skipped > 0:
        parts.append(f"skipped={skipped}")

    suffix = " | topic drained" if kwargs.get("topic_empty") else ""

    return f"Cycle {cycle_count}: processed={total_processed} ({', '.join(parts)}){suffix}"


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("worker_id", "Worker:        {}"),
    ("mode", "Mode:          {}"),
    ("bootstrap_servers", "Brokers:       {}"),
    ("primary_topic", "Primary Topic: {}"),
    ("retry_topic", "Retry Topic:   {}"),
    ("dlq_topic", "DLQ Topic:     {}"),
    ("max_attempts", "Max Attempts:  {}"),
    ("log_output_mode", "Log Output:    {}"),
]


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Args:
        logger: Logger instance
        worker_name: Display name of the process
        **kwargs: Optional fields: worker_id, mode, bootstrap_servers,
            primary_topic, retry_topic, dlq_topic, max_attempts,
            log_output_mode, version
    """
    separator = "=" * 50

    lines = ["", separator, worker_name]

    version = kwargs.get("version")
    if version:
        lines.append(f"Version: {version}")

    lines.append(separator)

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))


def get_log_output_mode(log_to_stdout: bool) -> str:
    """Describe where logs are being sent: "stdout" or "file+console"."""
    return "stdout" if log_to_stdout else "file+console"
