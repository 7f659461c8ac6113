"""
Failure metadata carried in message headers.

Every record published to the retry or DLQ topic carries the header set below.
The count in X-Retry-Count is the only persisted retry state: it travels with
the message, so no component keeps per-message bookkeeping.

    X-Retry-Count       attempts so far (absent means 0)
    X-Original-Error    description + newline + serialized payload, truncated
    X-Error-Type        short failure identifier
    X-Error-Namespace   failure namespace
    X-Full-Error-Type   namespace:type
    X-Failure-Reason    routing reason, added by the router
    X-Timestamp         ISO-8601 UTC time the headers were written
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer

from core.errors.exceptions import ProcessingFailure
from core.types import FailureReason
from core.utils.json_serializers import json_serializer
from reprocessor.common.types import PipelineMessage

logger = logging.getLogger(__name__)

RETRY_COUNT_HEADER = "X-Retry-Count"
ORIGINAL_ERROR_HEADER = "X-Original-Error"
ERROR_TYPE_HEADER = "X-Error-Type"
ERROR_NAMESPACE_HEADER = "X-Error-Namespace"
FULL_ERROR_TYPE_HEADER = "X-Full-Error-Type"
FAILURE_REASON_HEADER = "X-Failure-Reason"
TIMESTAMP_HEADER = "X-Timestamp"

MAX_ERROR_MESSAGE_LENGTH = 300


class FailureMetadata(BaseModel):
    """Typed view of the failure header set.

    Field aliases are the wire header names, so ``model_dump(by_alias=True)``
    produces header keys directly.

    Example:
        >>> meta = FailureMetadata(
        ...     retry_count=1,
        ...     original_error="upstream 503",
        ...     error_type="SERVICE_UNAVAILABLE",
        ...     error_namespace="HTTP",
        ...     full_error_type="HTTP:SERVICE_UNAVAILABLE",
        ...     timestamp=datetime.now(UTC),
        ... )
        >>> meta.to_headers()["X-Retry-Count"]
        '1'
    """

    retry_count: int = Field(..., alias=RETRY_COUNT_HEADER, ge=0)
    original_error: str = Field(default="", alias=ORIGINAL_ERROR_HEADER)
    error_type: str = Field(..., alias=ERROR_TYPE_HEADER)
    error_namespace: str = Field(..., alias=ERROR_NAMESPACE_HEADER)
    full_error_type: str = Field(..., alias=FULL_ERROR_TYPE_HEADER)
    failure_reason: Optional[FailureReason] = Field(default=None, alias=FAILURE_REASON_HEADER)
    timestamp: datetime = Field(..., alias=TIMESTAMP_HEADER)

    model_config = {"populate_by_name": True, "frozen": True}

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """Serialize datetime to ISO 8601 format in UTC."""
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return timestamp.astimezone(UTC).isoformat()

    @field_serializer("failure_reason")
    def serialize_failure_reason(self, reason: Optional[FailureReason]) -> Optional[str]:
        return reason.value if reason is not None else None

    def to_headers(self) -> dict[str, str]:
        """Render as string header values; an unset failure reason is omitted."""
        dumped = self.model_dump(by_alias=True, exclude_none=True)
        return {key: str(value) for key, value in dumped.items()}


def headers_to_dict(headers: list[tuple[str, bytes]] | None) -> dict[str, str]:
    """Decode wire headers. Later duplicates win."""
    if not headers:
        return {}
    result: dict[str, str] = {}
    for key, value in headers:
        if isinstance(value, bytes):
            result[key] = value.decode("utf-8", errors="replace")
        elif value is None:
            result[key] = ""
        else:
            result[key] = str(value)
    return result


def read_retry_count(headers: dict[str, str] | list[tuple[str, bytes]] | None) -> int:
    """Attempts recorded so far. Absent or malformed values count as 0."""
    if not isinstance(headers, dict):
        headers = headers_to_dict(headers)

    raw = headers.get(RETRY_COUNT_HEADER)
    if raw is None or raw == "":
        return 0

    try:
        count = int(raw.strip())
    except ValueError:
        logger.warning(
            "Malformed retry count header, treating as 0",
            extra={"retry_count_header": raw[:50]},
        )
        return 0

    if count < 0:
        logger.warning(
            "Negative retry count header, treating as 0",
            extra={"retry_count_header": raw[:50]},
        )
        return 0
    return count


def truncate_error_message(text: str | None, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Keep at most ``limit`` code points. Never raises."""
    if not text:
        return ""
    if limit <= 0:
        return ""
    return text[:limit]


def serialize_payload(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    try:
        return json.dumps(payload, default=json_serializer, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(payload)


def build_error_text(failure: ProcessingFailure) -> str:
    return truncate_error_message(
        f"{failure.description}\n{serialize_payload(failure.payload)}"
    )


def stamp(
    message: PipelineMessage,
    failure: ProcessingFailure,
    previous_retry_count: int | None,
    now: datetime | None = None,
) -> dict[str, str]:
    """
    Compute the outbound header set for a failed message.

    Starts from the message's existing headers and overwrites the failure
    metadata headers with the incremented count, the truncated error text and
    the error triple. Does not publish.

    Args:
        message: The record that failed
        failure: Typed failure raised by the processing operation
        previous_retry_count: Attempts before this one; None counts as 0
        now: Timestamp for X-Timestamp (defaults to current UTC time)

    Returns:
        Header dict ready for the router
    """
    new_retry_count = (previous_retry_count or 0) + 1

    metadata = FailureMetadata(
        retry_count=new_retry_count,
        original_error=build_error_text(failure),
        error_type=failure.error_type,
        error_namespace=failure.error_namespace,
        full_error_type=failure.full_error_type,
        timestamp=now or datetime.now(UTC),
    )

    headers = headers_to_dict(message.headers)
    headers.update(metadata.to_headers())
    return headers


__all__ = [
    "FailureMetadata",
    "stamp",
    "read_retry_count",
    "headers_to_dict",
    "truncate_error_message",
    "serialize_payload",
    "build_error_text",
    "RETRY_COUNT_HEADER",
    "ORIGINAL_ERROR_HEADER",
    "ERROR_TYPE_HEADER",
    "ERROR_NAMESPACE_HEADER",
    "FULL_ERROR_TYPE_HEADER",
    "FAILURE_REASON_HEADER",
    "TIMESTAMP_HEADER",
    "MAX_ERROR_MESSAGE_LENGTH",
]
