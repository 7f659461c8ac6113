"""Log formatters: JSON lines for files/aggregators, compact text for terminals."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer

# Whitelisted `extra=` keys and the type each is coerced to (None: as-is)
EXTRA_FIELD_TYPES: dict[str, type | None] = {
    "duration_ms": float,
    # processing operation
    "http_status": int,
    "http_url": None,
    # failure metadata
    "processing_state": None,
    "error": None,
    "error_message": None,
    "error_type": None,
    "error_namespace": None,
    "full_error_type": None,
    "error_classification": None,
    "failure_reason": None,
    "retry_count": int,
    "max_attempts": int,
    # routing
    "destination": None,
    "destination_topic": None,
    "topic": None,
    "partition": int,
    "offset": int,
    "source_topic": None,
    "source_partition": int,
    "source_offset": int,
    # ticks
    "execution_timestamp": int,
    "record_timestamp": int,
    "batch_size": int,
    "poll_timeout_ms": int,
    "records_polled": int,
    "records_succeeded": int,
    "records_rerouted": int,
    "records_skipped": int,
    "records_deferred": int,
    "topic_empty": None,
    "ticks_skipped": int,
    "ticks_completed": int,
    "ticks_failed": int,
    "scheduler_frequency_seconds": float,
    "worker_name": None,
    # client lifecycle
    "group_id": None,
    "topics": None,
    "bootstrap_servers": None,
    "log_file": None,
    "json_format": None,
}

CONTEXT_FIELDS = ("domain", "stage", "cycle_id", "worker_id")

URL_FIELDS = frozenset({"http_url", "url"})

_SECRET_QUERY_PARAM = re.compile(r"([?&])(sig|token|key|secret|password|auth)=[^&]*", re.IGNORECASE)


def redact_url(url: str) -> str:
    """Blank out credential-looking query parameters."""
    return _SECRET_QUERY_PARAM.sub(r"\1\2=[REDACTED]", url)


def coerce_field(field: str, value: Any) -> Any:
    """Coerce a whitelisted field to its declared type; unconvertible values become None."""
    target = EXTRA_FIELD_TYPES.get(field)
    if target is None or value is None:
        return value
    try:
        return target(value)
    except (TypeError, ValueError):
        return None


def _utc_timestamp() -> str:
    now = datetime.now(UTC)
    return f"{now:%Y-%m-%dT%H:%M:%S}.{now.microsecond // 1000:03d}Z"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Carries the process log context, the per-record message context (when a
    record is being handled) and whitelisted `extra=` fields. URL fields are
    redacted.
    """

    # Levels where file:line is worth the bytes
    LOCATION_LEVELS = frozenset({logging.DEBUG, logging.ERROR, logging.CRITICAL})

    def _extras(self, record: logging.LogRecord) -> dict[str, Any]:
        extras = {}
        for field in EXTRA_FIELD_TYPES:
            value = getattr(record, field, None)
            if value is None:
                continue
            value = coerce_field(field, value)
            if field in URL_FIELDS and isinstance(value, str):
                value = redact_url(value)
            extras[field] = value
        return extras

    def _exception(self, record: logging.LogRecord) -> dict[str, Any]:
        exc_type, exc_value, _ = record.exc_info
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_log_context()
        entry.update({field: context[field] for field in CONTEXT_FIELDS if context.get(field)})

        message_context = get_message_context()
        if message_context["message_topic"]:
            entry.update(message_context)

        if record.levelno in self.LOCATION_LEVELS:
            entry["file"] = f"{record.filename}:{record.lineno}"

        entry.update(self._extras(record))
        if record.exc_info:
            entry["exception"] = self._exception(record)

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    `<time> - <LEVEL> - [domain] - [stage] - [cycle] [reason] [retry:n] message`

    Level names are colored only when stdout is a TTY.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno) if self._use_colors else None
        return f"{color}{record.levelname}{self.RESET}" if color else record.levelname

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()

        head = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        head += [f"[{context[field]}]" for field in ("domain", "stage") if context[field]]

        tags = []
        if context.get("cycle_id"):
            tags.append(f"[{context['cycle_id']}]")
        failure_reason = getattr(record, "failure_reason", None)
        if failure_reason:
            tags.append(f"[{failure_reason}]")
        retry_count = getattr(record, "retry_count", None)
        if retry_count is not None:
            tags.append(f"[retry:{retry_count}]")

        body = record.getMessage()
        if record.exc_info:
            body = f"{body}\n{self.formatException(record.exc_info)}"
        if tags:
            body = f"{' '.join(tags)} {body}"

        return f"{' - '.join(head)} - {body}"
