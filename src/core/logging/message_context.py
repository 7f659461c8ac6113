"""Per-record transport context (topic/partition/offset/key) for log lines."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

# Unset sentinels: "" for strings, -1 for partition/offset
_DEFAULTS: Dict[str, Any] = {
    "topic": "",
    "partition": -1,
    "offset": -1,
    "key": "",
    "consumer_group": "",
}

_VARIABLES: Dict[str, ContextVar] = {
    name: ContextVar(f"message_{name}", default=default) for name, default in _DEFAULTS.items()
}

# Reported only when set
_OPTIONAL = ("key", "consumer_group")


def set_message_context(
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
    key: Optional[str] = None,
    consumer_group: Optional[str] = None,
) -> None:
    values = {
        "topic": topic,
        "partition": partition,
        "offset": offset,
        "key": key,
        "consumer_group": consumer_group,
    }
    for name, value in values.items():
        if value is not None:
            _VARIABLES[name].set(value)


def get_message_context() -> Dict[str, Any]:
    """Current values keyed as message_<field>; key and consumer group only when set."""
    context: Dict[str, Any] = {}
    for name, variable in _VARIABLES.items():
        value = variable.get()
        if name in _OPTIONAL and not value:
            continue
        context[f"message_{name}"] = value
    return context


def clear_message_context() -> None:
    for name, variable in _VARIABLES.items():
        variable.set(_DEFAULTS[name])


class MessageLogContext:
    """
    Scope message context to the handling of one consumed record.

    Values set on entry are reset on exit, exceptions included, so an outer
    context (if any) is restored.

        with MessageLogContext.for_record(record, consumer_group="reprocessor-main_flow"):
            await handler(message)
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        consumer_group: Optional[str] = None,
    ):
        self._values = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "consumer_group": consumer_group,
        }
        self._tokens: list = []

    @classmethod
    def for_record(cls, record: Any, consumer_group: Optional[str] = None) -> "MessageLogContext":
        """Build from anything with topic/partition/offset/key attributes (bytes key decoded)."""
        key = record.key
        if isinstance(key, (bytes, bytearray)):
            key = bytes(key).decode("utf-8", errors="replace")
        return cls(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            key=key or None,
            consumer_group=consumer_group,
        )

    def __enter__(self) -> "MessageLogContext":
        for name, value in self._values.items():
            if value is not None:
                variable = _VARIABLES[name]
                self._tokens.append((variable, variable.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            variable, token = self._tokens.pop()
            variable.reset(token)
        return False
