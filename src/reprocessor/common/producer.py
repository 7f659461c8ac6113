"""Kafka producer for routed messages (retry and DLQ topics)."""

import asyncio
import json
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel

from config.config import ReprocessorConfig
from core.errors.exceptions import PublishError
from core.utils.json_serializers import json_serializer
from reprocessor.common.kafka_config import build_kafka_security_config
from reprocessor.common.types import ProduceResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUEST_SIZE = 10 * 1024 * 1024

Value = BaseModel | dict[str, Any] | bytes | None


def encode_value(value: Value) -> bytes | None:
    """Raw bytes pass through untouched; models and dicts become JSON."""
    if value is None or isinstance(value, bytes):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json().encode("utf-8")
    return json.dumps(value, default=json_serializer).encode("utf-8")


def encode_key(key: str | bytes | None) -> bytes | None:
    return key.encode("utf-8") if isinstance(key, str) else key


class MessageProducer:
    """Async producer configured from producer_defaults overlaid by kafka.<worker_name>.producer.

    ``send`` waits for the broker acknowledgement. Any failure is raised as
    PublishError so the caller keeps the source offset uncommitted.
    """

    def __init__(self, config: ReprocessorConfig, worker_name: str):
        self.config = config
        self.worker_name = worker_name
        self.producer_config = config.get_worker_config(worker_name, "producer")
        self._producer: AIOKafkaProducer | None = None
        self._started = False

    def _resolve_acks_and_idempotence(self) -> tuple[Any, bool]:
        """Idempotent producers require acks=all; numeric strings become ints."""
        acks = self.producer_config.get("acks", "all")
        if isinstance(acks, str) and acks.isdigit():
            acks = int(acks)

        idempotent = self.producer_config.get("enable_idempotence", True)
        if idempotent and acks != "all":
            logger.warning(
                f"acks={acks!r} is incompatible with enable_idempotence, using acks='all'",
                extra={"worker_name": self.worker_name},
            )
            acks = "all"
        return acks, idempotent

    def _build_kafka_config(self) -> dict[str, Any]:
        acks, idempotent = self._resolve_acks_and_idempotence()
        settings = self.producer_config

        kafka_config: dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": f"{self.config.consumer_group_prefix}-{self.worker_name}-producer",
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "acks": acks,
            "enable_idempotence": idempotent,
            "retry_backoff_ms": settings.get("retry_backoff_ms", 1000),
            "max_request_size": settings.get("max_request_size", DEFAULT_MAX_REQUEST_SIZE),
        }
        if "linger_ms" in settings:
            kafka_config["linger_ms"] = settings["linger_ms"]
        if "compression_type" in settings:
            # aiokafka spells "no compression" as None
            compression = settings["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression

        kafka_config.update(build_kafka_security_config(self.config))
        return kafka_config

    @property
    def is_started(self) -> bool:
        return self._started and self._producer is not None

    async def start(self) -> None:
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        self._producer = AIOKafkaProducer(**self._build_kafka_config())
        await self._producer.start()
        self._started = True
        logger.info(
            "Message producer started",
            extra={"worker_name": self.worker_name, "bootstrap_servers": self.config.bootstrap_servers},
        )

    async def stop(self) -> None:
        """Flush and close. Errors are logged, not raised, so they never mask the reason for stopping."""
        if self._producer is None:
            return

        try:
            if self._started:
                await self._producer.flush()
            await self._producer.stop()
            logger.info("Message producer stopped", extra={"worker_name": self.worker_name})
        except (asyncio.CancelledError, Exception):
            logger.error("Error stopping message producer", exc_info=True)
        finally:
            self._producer = None
            self._started = False

    async def send(
        self,
        topic: str,
        key: str | bytes | None,
        value: Value,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult:
        """Publish one record and wait for the acknowledgement.

        Raises:
            RuntimeError: start() has not been called
            PublishError: The broker rejected the record or did not acknowledge it
        """
        if not self.is_started:
            raise RuntimeError("Producer not started. Call start() first.")

        header_list = [(name, text.encode("utf-8")) for name, text in headers.items()] if headers else None
        try:
            metadata = await self._producer.send_and_wait(
                topic,
                key=encode_key(key),
                value=encode_value(value),
                headers=header_list,
            )
        except Exception as e:
            logger.error("Failed to publish message", extra={"topic": topic, "error": str(e)})
            raise PublishError(f"Failed to publish to {topic}", topic=topic, cause=e) from e

        logger.debug(
            "Message published",
            extra={"topic": metadata.topic, "partition": metadata.partition, "offset": metadata.offset},
        )
        return ProduceResult(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)


__all__ = ["MessageProducer", "ProduceResult", "encode_key", "encode_value"]
