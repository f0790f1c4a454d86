"""Kafka consumer group that feeds scan requests to the request handler.

A claim loop thread polls the broker and hands each message to the
worker thread of its partition. Workers process their partition
strictly in order, one message at a time, and acknowledge (store the
offset of) every message once it has been handled, whether or not the
handling succeeded. Partitions are processed in parallel.

Acknowledgment is deliver-then-forget: a failed request is never
redelivered. What happens to it before the acknowledgment is decided
by the :class:`FailurePolicy`.
"""

import queue
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from idscan.errors import DeserializationError, TransportError
from idscan.messaging.producer import ResultPublisher
from idscan.models import ScanRequest, ScanResponse
from idscan.pipeline.handler import ScanHandler
from idscan.utils.config import KafkaConfig
from idscan.utils.logger import get_logger

logger = get_logger(__name__)

_WAIT_INTERVAL = 0.5
_RETRY_BACKOFF = 1.0
_STOP = object()

PartitionKey = tuple[str, int]


class ConsumerState(StrEnum):
    """Lifecycle of the consumer group session."""

    JOINING = "joining"
    READY = "ready"
    CLAIMING = "claiming"
    DRAINING = "draining"
    CLOSED = "closed"


class FailurePolicy(StrEnum):
    """What to do with a message that could not be turned into a result.

    Both policies acknowledge the message afterwards.
    """

    DROP = "drop"
    DEAD_LETTER = "dead_letter"


def build_consumer_settings(config: KafkaConfig) -> dict[str, Any]:
    """Build librdkafka consumer settings from the service configuration.

    Offsets are stored explicitly after each message is handled and
    committed in the background by auto-commit.
    """
    return {
        "bootstrap.servers": ",".join(config.brokers),
        "group.id": config.consumer.group_id,
        "auto.offset.reset": config.consumer.auto_offset_reset,
        "enable.auto.commit": True,
        "enable.auto.offset.store": False,
        "partition.assignment.strategy": "roundrobin",
    }


def _is_fatal(exc: KafkaException) -> bool:
    error = exc.args[0] if exc.args else None
    return isinstance(error, KafkaError) and error.fatal()


def _decode_key(message: Any) -> str | None:
    key = message.key()
    if key is None:
        return None
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    return str(key)


class MessageProcessor:
    """Handles one inbound message: deserialize, scan, publish.

    Never raises. Malformed payloads skip the handler entirely.

    Args:
        handler: Turns a request into a response.
        publisher: Publishes responses and dead-lettered payloads.
        failure_policy: Policy for messages that produce no result.
        dead_letter_topic: Destination for the ``dead_letter`` policy.
    """

    def __init__(
        self,
        handler: ScanHandler,
        publisher: ResultPublisher,
        failure_policy: FailurePolicy = FailurePolicy.DROP,
        dead_letter_topic: str | None = None,
    ) -> None:
        if failure_policy is FailurePolicy.DEAD_LETTER and not dead_letter_topic:
            raise ValueError("dead_letter policy requires a dead_letter_topic")
        self.handler = handler
        self.publisher = publisher
        self.failure_policy = failure_policy
        self.dead_letter_topic = dead_letter_topic

    def process(self, message: Any) -> ScanResponse | None:
        """Process a message.

        Args:
            message: Consumed Kafka message.

        Returns:
            The published response, or ``None`` if no result was published.
        """
        logger.info(
            "Received message: offset=%d, partition=%d",
            message.offset(),
            message.partition(),
        )

        try:
            request = ScanRequest.from_json(message.value())
        except DeserializationError as exc:
            logger.error("Failed to deserialize message: %s", exc)
            self._on_failure(message, exc)
            return None

        try:
            response = self.handler.handle(request)
            self.publisher.publish(response)
        except TransportError as exc:
            logger.error("Failed to publish result for %s: %s", request.request_id, exc)
            self._on_failure(message, exc)
            return None
        except Exception as exc:
            logger.exception("Failed to process message %s", request.request_id)
            self._on_failure(message, exc)
            return None

        logger.debug("Processing result: %s", response.to_json().decode("utf-8"))
        return response

    def _on_failure(self, message: Any, exc: Exception) -> None:
        if self.failure_policy is FailurePolicy.DROP:
            logger.warning(
                "Dropping message: partition=%d, offset=%d",
                message.partition(),
                message.offset(),
            )
            return

        headers = {
            "error": str(exc),
            "error_type": type(exc).__name__,
            "source_topic": str(message.topic()),
            "source_partition": str(message.partition()),
            "source_offset": str(message.offset()),
        }
        try:
            self.publisher.publish_raw(
                self.dead_letter_topic, _decode_key(message), message.value(), headers
            )
        except TransportError as dlq_exc:
            logger.error(
                "Failed to dead-letter message at offset %d: %s",
                message.offset(),
                dlq_exc,
            )
            return
        logger.warning(
            "Message at partition=%d, offset=%d routed to %s",
            message.partition(),
            message.offset(),
            self.dead_letter_topic,
        )


class PartitionWorker(threading.Thread):
    """Processes the messages of one partition in order.

    Args:
        topic: Topic of the partition.
        partition: Partition number.
        processor: Per-message processing logic.
        acknowledge: Called with each message once it has been processed.
    """

    def __init__(
        self,
        topic: str,
        partition: int,
        processor: MessageProcessor,
        acknowledge: Callable[[Any], None],
    ) -> None:
        super().__init__(name=f"partition-{topic}-{partition}", daemon=True)
        self.topic = topic
        self.partition = partition
        self.processor = processor
        self._acknowledge = acknowledge
        self._queue: queue.Queue = queue.Queue()
        self._stopping = threading.Event()
        self.processed = 0

    def submit(self, message: Any) -> None:
        self._queue.put(message)

    def pending(self) -> int:
        return self._queue.qsize()

    def stop(self) -> int:
        """Ask the worker to exit after its in-flight message.

        Queued messages that have not started are discarded without
        acknowledgment, so the next owner of the partition reads them
        again.

        Returns:
            Number of discarded messages.
        """
        self._stopping.set()
        discarded = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            discarded += 1
        self._queue.put(_STOP)
        return discarded

    def run(self) -> None:
        while True:
            message = self._queue.get()
            if message is _STOP or self._stopping.is_set():
                return
            self.processor.process(message)
            self._acknowledge(message)
            self.processed += 1


class QueueConsumer:
    """Consumer group member bound to the scan request topic.

    The session moves through :class:`ConsumerState`:
    joining -> ready -> claiming -> draining -> closed. A rebalance
    stops the workers of revoked partitions and starts workers for the
    newly assigned ones.
    Client errors resubscribe after a short pause; only a fatal error
    ends the session.

    Args:
        config: Kafka configuration.
        processor: Per-message processing logic.
        consumer_factory: Builds the Kafka client from a settings dict.
            Defaults to :class:`confluent_kafka.Consumer`.
    """

    def __init__(
        self,
        config: KafkaConfig,
        processor: MessageProcessor,
        consumer_factory: Callable[[dict[str, Any]], Any] | None = None,
    ) -> None:
        self.config = config
        self.topic = config.consumer.topic
        self.processor = processor
        self._consumer_factory = consumer_factory or Consumer
        self._max_pending = config.consumer.max_pending_per_partition
        self._workers: dict[PartitionKey, PartitionWorker] = {}
        self._paused: set[PartitionKey] = set()
        self._ready = threading.Event()
        self._loop: threading.Thread | None = None
        self._state = ConsumerState.JOINING

    @property
    def state(self) -> ConsumerState:
        return self._state

    def _set_state(self, state: ConsumerState) -> None:
        if state != self._state:
            logger.debug("Consumer state %s -> %s", self._state, state)
            self._state = state

    def assigned_partitions(self) -> list[PartitionKey]:
        return sorted(self._workers)

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Block until partitions have been assigned at least once."""
        return self._ready.wait(timeout)

    def run(self, stop_event: threading.Event) -> None:
        """Consume until ``stop_event`` is set, then drain and close."""
        self.start(stop_event)
        self.wait(stop_event)

    def start(self, stop_event: threading.Event) -> bool:
        """Join the group and block until partitions are assigned.

        Returns:
            ``True`` once ready, ``False`` if stopped before that.

        Raises:
            TransportError: If the Kafka client cannot be created.
        """
        try:
            consumer = self._consumer_factory(build_consumer_settings(self.config))
        except KafkaException as exc:
            raise TransportError(f"failed to create Kafka consumer: {exc}") from exc

        self._set_state(ConsumerState.JOINING)
        self._loop = threading.Thread(
            target=self._claim_loop, args=(consumer, stop_event), name="claim-loop"
        )
        self._loop.start()

        while not self._ready.wait(_WAIT_INTERVAL):
            if stop_event.is_set() or not self._loop.is_alive():
                return False
        logger.info("Kafka consumer started and ready")
        return True

    def wait(self, stop_event: threading.Event) -> None:
        """Block until ``stop_event`` is set and the claim loop has drained."""
        if self._loop is None:
            raise RuntimeError("consumer has not been started")
        while not stop_event.wait(_WAIT_INTERVAL):
            if not self._loop.is_alive():
                break
        logger.info("Terminating consumer...")
        self._set_state(ConsumerState.DRAINING)
        self._loop.join()
        self._set_state(ConsumerState.CLOSED)

    def _claim_loop(self, consumer: Any, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                try:
                    self._consume(consumer, stop_event)
                except KafkaException as exc:
                    if _is_fatal(exc):
                        logger.error("Fatal error from consumer: %s", exc)
                        break
                    logger.error("Error from consumer, resubscribing: %s", exc)
                    stop_event.wait(_RETRY_BACKOFF)
        finally:
            self._set_state(ConsumerState.DRAINING)
            self._stop_workers(list(self._workers))
            try:
                consumer.close()
            except (KafkaException, RuntimeError) as exc:
                logger.error("Error closing consumer: %s", exc)

    def _consume(self, consumer: Any, stop_event: threading.Event) -> None:
        consumer.subscribe(
            [self.topic],
            on_assign=self._on_assign,
            on_revoke=self._on_revoke,
            on_lost=self._on_revoke,
        )
        while not stop_event.is_set():
            message = consumer.poll(self.config.consumer.poll_timeout)
            self._resume_drained(consumer)
            if message is None:
                continue
            if message.error():
                self._log_error(message.error())
                continue
            self._dispatch(consumer, message)

    def _log_error(self, error: Any) -> None:
        if error.code() == KafkaError._PARTITION_EOF:
            logger.debug("Reached end of partition: %s", error)
        else:
            logger.error("Error from consumer: %s", error)

    def _dispatch(self, consumer: Any, message: Any) -> None:
        key = (message.topic(), message.partition())
        worker = self._workers.get(key)
        if worker is None:
            logger.warning("Message for unassigned partition %s ignored", key)
            return

        self._set_state(ConsumerState.CLAIMING)
        worker.submit(message)
        if worker.pending() >= self._max_pending and key not in self._paused:
            consumer.pause([TopicPartition(*key)])
            self._paused.add(key)
            logger.debug("Paused partition %s with %d pending", key, worker.pending())

    def _resume_drained(self, consumer: Any) -> None:
        for key in list(self._paused):
            worker = self._workers.get(key)
            if worker is not None and worker.pending() > self._max_pending // 2:
                continue
            self._paused.discard(key)
            if worker is not None:
                consumer.resume([TopicPartition(*key)])
                logger.debug("Resumed partition %s", key)

    def _acknowledge(self, consumer: Any, message: Any) -> None:
        try:
            consumer.store_offsets(message=message)
        except KafkaException as exc:
            logger.warning(
                "Could not store offset %d for partition %d: %s",
                message.offset(),
                message.partition(),
                exc,
            )

    def _on_assign(self, consumer: Any, partitions: list[TopicPartition]) -> None:
        for tp in partitions:
            key = (tp.topic, tp.partition)
            if key in self._workers:
                continue
            worker = PartitionWorker(
                tp.topic,
                tp.partition,
                self.processor,
                lambda message, c=consumer: self._acknowledge(c, message),
            )
            worker.start()
            self._workers[key] = worker

        logger.info(
            "Partitions assigned: %s", [tp.partition for tp in partitions]
        )
        self._set_state(ConsumerState.READY)
        self._ready.set()

    def _on_revoke(self, consumer: Any, partitions: list[TopicPartition]) -> None:
        keys = [(tp.topic, tp.partition) for tp in partitions]
        self._stop_workers(keys)
        logger.info("Partitions revoked: %s", [tp.partition for tp in partitions])
        if not self._workers and self._state is not ConsumerState.DRAINING:
            self._set_state(ConsumerState.JOINING)

    def _stop_workers(self, keys: list[PartitionKey]) -> None:
        stopping = []
        for key in keys:
            worker = self._workers.pop(key, None)
            self._paused.discard(key)
            if worker is None:
                continue
            discarded = worker.stop()
            if discarded:
                logger.info(
                    "Partition %s released with %d unprocessed messages",
                    key,
                    discarded,
                )
            stopping.append(worker)
        for worker in stopping:
            worker.join()
