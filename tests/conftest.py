"""
pytest configuration for reprocessor tests.

Adds src directory to Python path for imports and provides in-memory broker
fakes so retry/DLQ scenarios run without a real Kafka cluster.
"""

import sys
from collections import defaultdict
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.errors.exceptions import PublishError  # noqa: E402
from reprocessor.common.types import PipelineMessage, ProduceResult  # noqa: E402


class ManualClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, now_ms: int = 1000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms


class FakeBroker:
    """Topic logs keyed by topic name; every topic has a single partition 0."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.topics: dict[str, list[PipelineMessage]] = defaultdict(list)

    def append(
        self,
        topic: str,
        key: bytes | None,
        value: bytes | None,
        headers: dict[str, str] | None = None,
        timestamp: int | None = None,
    ) -> PipelineMessage:
        log = self.topics[topic]
        message = PipelineMessage(
            topic=topic,
            partition=0,
            offset=len(log),
            timestamp=self.clock() if timestamp is None else timestamp,
            key=key,
            value=value,
            headers=[(k, v.encode("utf-8")) for k, v in (headers or {}).items()],
        )
        log.append(message)
        return message

    def headers_of(self, message: PipelineMessage) -> dict[str, str]:
        return {k: v.decode("utf-8") for k, v in (message.headers or [])}


class FakeProducer:
    """MessageProducer stand-in that appends to a FakeBroker."""

    def __init__(self, broker: FakeBroker):
        self.broker = broker
        self.fail_topics: set[str] = set()
        self.sent: list[tuple[str, dict[str, str]]] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send(self, topic, key, value, headers=None) -> ProduceResult:
        if topic in self.fail_topics:
            raise PublishError(f"Failed to publish to {topic}", topic=topic)
        message = self.broker.append(topic, key, value, headers)
        self.sent.append((topic, dict(headers or {})))
        return ProduceResult(topic=topic, partition=0, offset=message.offset)


class FakeRetryConsumer:
    """RetryTopicConsumer stand-in reading a FakeBroker topic log."""

    def __init__(self, broker: FakeBroker, topic: str):
        self.broker = broker
        self.topic = topic
        self.group_id = "orders-reprocessor"
        self.position = 0
        self.committed = 0
        self.paused = False
        self.deferred_offset: int | None = None
        self.fail_commit = False
        self.started = False
        self.polls = 0

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def poll(self, timeout_ms: int) -> PipelineMessage | None:
        self.polls += 1
        log = self.broker.topics[self.topic]
        if self.paused or self.position >= len(log):
            return None
        message = log[self.position]
        self.position += 1
        return message

    async def commit(self, message: PipelineMessage) -> None:
        if self.fail_commit:
            raise PublishError("commit failed", topic=self.topic)
        self.committed = message.offset + 1

    def defer(self, message: PipelineMessage) -> None:
        if self.deferred_offset is None:
            self.deferred_offset = message.offset
            self.paused = True

    def rewind(self, message: PipelineMessage) -> None:
        self.position = message.offset

    def release_deferred(self) -> int:
        if self.deferred_offset is None:
            return 0
        self.position = self.deferred_offset
        self.deferred_offset = None
        self.paused = False
        return 1

    def restart(self) -> None:
        """Simulate a process restart: resume from the committed offset."""
        self.position = self.committed
        self.paused = False
        self.deferred_offset = None


class ScriptedOperation:
    """Processing operation that raises the next scripted outcome per call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[bytes | None] = []

    async def process(self, payload: bytes | None) -> None:
        self.calls.append(payload)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome


@pytest.fixture
def clock():
    return ManualClock(1000)


@pytest.fixture
def broker(clock):
    return FakeBroker(clock)


@pytest.fixture
def fake_producer(broker):
    return FakeProducer(broker)


@pytest.fixture
def make_message():
    def _make(
        topic="orders",
        partition=0,
        offset=0,
        timestamp=500,
        key=b"order-1",
        value=b'{"id": 1}',
        headers=None,
    ) -> PipelineMessage:
        return PipelineMessage(
            topic=topic,
            partition=partition,
            offset=offset,
            timestamp=timestamp,
            key=key,
            value=value,
            headers=[(k, v.encode("utf-8")) for k, v in (headers or {}).items()] or None,
        )

    return _make


@pytest.fixture
def scripted_operation():
    return ScriptedOperation


@pytest.fixture
def retry_consumer_factory(broker):
    def _make(topic="orders.retry") -> FakeRetryConsumer:
        return FakeRetryConsumer(broker, topic)

    return _make
