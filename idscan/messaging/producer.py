"""Synchronous Kafka publisher for scan results.

Each send blocks until the broker acknowledges the message from all
in-sync replicas, or fails with :class:`DeliveryError`.
"""

import threading
import time
from typing import Any, NamedTuple

from confluent_kafka import KafkaException, Producer

from idscan.errors import DeliveryError, TransportError
from idscan.models import ScanResponse
from idscan.utils.config import KafkaConfig
from idscan.utils.logger import get_logger

logger = get_logger(__name__)

_POLL_INTERVAL = 0.1


class DeliveryReport(NamedTuple):
    """Broker position of an acknowledged message."""

    partition: int
    offset: int


def build_producer_settings(config: KafkaConfig) -> dict[str, Any]:
    """Build librdkafka producer settings from the service configuration."""
    return {
        "bootstrap.servers": ",".join(config.brokers),
        "acks": "all",
        "retries": 5,
        "enable.idempotence": True,
        "compression.type": "snappy",
        "message.timeout.ms": int(config.producer.delivery_timeout * 1000),
    }


class _PendingDelivery:
    """Collects the delivery callback result for one message."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.error: Any = None
        self.report: DeliveryReport | None = None

    def __call__(self, err: Any, msg: Any) -> None:
        if err is not None:
            self.error = err
        else:
            self.report = DeliveryReport(msg.partition(), msg.offset())
        self.done.set()


class ResultPublisher:
    """Publishes scan responses to the result topic.

    One instance is shared by all partition workers.

    Args:
        config: Kafka configuration.
        producer: Pre-built producer client. Built from ``config`` if
            ``None``.
    """

    def __init__(self, config: KafkaConfig, producer: Any = None) -> None:
        self.topic = config.producer.topic
        self.delivery_timeout = config.producer.delivery_timeout
        if producer is None:
            try:
                producer = Producer(build_producer_settings(config))
            except KafkaException as exc:
                raise TransportError(f"failed to create Kafka producer: {exc}") from exc
        self._producer = producer

    def publish(self, response: ScanResponse) -> DeliveryReport:
        """Send a scan response keyed by its request id.

        Args:
            response: Response to publish.

        Returns:
            Partition and offset assigned by the broker.

        Raises:
            DeliveryError: If the broker rejects the message or does not
                acknowledge it in time.
        """
        report = self.publish_raw(self.topic, response.request_id, response.to_json())
        logger.info(
            "Message sent successfully: partition=%d, offset=%d",
            report.partition,
            report.offset,
        )
        return report

    def publish_raw(
        self,
        topic: str,
        key: str | None,
        value: bytes | None,
        headers: dict[str, str] | None = None,
    ) -> DeliveryReport:
        """Send an arbitrary payload and wait for the acknowledgment.

        Raises:
            DeliveryError: If the send fails or times out.
        """
        pending = _PendingDelivery()
        try:
            self._producer.produce(
                topic,
                key=key.encode("utf-8") if key is not None else None,
                value=value,
                headers=list(headers.items()) if headers else None,
                on_delivery=pending,
            )
        except (BufferError, KafkaException) as exc:
            raise DeliveryError(
                f"failed to enqueue message: {exc}", topic, key
            ) from exc

        deadline = time.monotonic() + self.delivery_timeout
        while not pending.done.is_set():
            if time.monotonic() >= deadline:
                raise DeliveryError(
                    f"no acknowledgment within {self.delivery_timeout:.1f}s", topic, key
                )
            self._producer.poll(_POLL_INTERVAL)

        if pending.error is not None:
            logger.error("Failed to send message to %s: %s", topic, pending.error)
            raise DeliveryError(f"delivery failed: {pending.error}", topic, key)
        return pending.report

    def close(self, timeout: float = 10.0) -> None:
        """Flush outstanding messages."""
        remaining = self._producer.flush(timeout)
        if remaining:
            logger.warning("%d messages still undelivered at shutdown", remaining)
