"""Shared test fixtures for the ID scan test suite."""

import base64
import io
import threading
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest
from confluent_kafka import TopicPartition
from PIL import Image

from idscan.ocr.temp_store import TempStore

REQUEST_TOPIC = "id-scan-requests"

SAMPLE_ID_TEXT = (
    "REPUBLICA MOLDOVA\n"
    "BULETIN DE IDENTITATE\n"
    "NUME: POPESCU\n"
    "PRENUME: ION\n"
    "DATA NASTERII: 15.03.1990\n"
    "IDNP: 2001234567890\n"
)


class FakeMessage:
    """Stand-in for ``confluent_kafka.Message``."""

    def __init__(
        self,
        value: bytes | None,
        partition: int = 0,
        offset: int = 0,
        topic: str = REQUEST_TOPIC,
        key: bytes | None = None,
        error: object = None,
    ) -> None:
        self._value = value
        self._partition = partition
        self._offset = offset
        self._topic = topic
        self._key = key
        self._error = error

    def value(self) -> bytes | None:
        return self._value

    def key(self) -> bytes | None:
        return self._key

    def topic(self) -> str:
        return self._topic

    def partition(self) -> int:
        return self._partition

    def offset(self) -> int:
        return self._offset

    def error(self) -> object:
        return self._error


class FakeKafkaConsumer:
    """In-memory consumer group client driving the assign/revoke callbacks.

    Calling the instance acts as the consumer factory.
    """

    def __init__(self, partitions: tuple[int, ...] = (0,), topic: str = REQUEST_TOPIC):
        self.topic = topic
        self.partitions = partitions
        self.settings: dict | None = None
        self.subscribed: list[str] = []
        self.stored: list[tuple[int, int]] = []
        self.paused: list[int] = []
        self.resumed: list[int] = []
        self.closed = False
        self._messages: deque = deque()
        self._lock = threading.Lock()
        self._assigned = False
        self._pending_rebalance: tuple[int, ...] | None = None
        self._on_assign: Callable | None = None
        self._on_revoke: Callable | None = None
        self.subscribe_calls = 0
        self.poll_errors: deque = deque()

    def __call__(self, settings: dict) -> "FakeKafkaConsumer":
        self.settings = settings
        return self

    def _tps(self, partitions: tuple[int, ...]) -> list[TopicPartition]:
        return [TopicPartition(self.topic, p) for p in partitions]

    def add(self, *messages: FakeMessage) -> None:
        with self._lock:
            self._messages.extend(messages)

    def rebalance(self, partitions: tuple[int, ...]) -> None:
        self._pending_rebalance = partitions

    def subscribe(self, topics, on_assign=None, on_revoke=None, on_lost=None) -> None:
        self.subscribe_calls += 1
        self.subscribed = list(topics)
        self._on_assign = on_assign
        self._on_revoke = on_revoke

    def poll(self, timeout: float = 1.0) -> FakeMessage | None:
        if self.poll_errors:
            raise self.poll_errors.popleft()
        if not self._assigned:
            self._assigned = True
            self._on_assign(self, self._tps(self.partitions))
            return None
        if self._pending_rebalance is not None:
            new_partitions, self._pending_rebalance = self._pending_rebalance, None
            self._on_revoke(self, self._tps(self.partitions))
            self.partitions = new_partitions
            self._on_assign(self, self._tps(self.partitions))
            return None
        with self._lock:
            if self._messages:
                return self._messages.popleft()
        time.sleep(0.01)
        return None

    def store_offsets(self, message=None) -> None:
        with self._lock:
            self.stored.append((message.partition(), message.offset()))

    def pause(self, partitions: list[TopicPartition]) -> None:
        self.paused.extend(tp.partition for tp in partitions)

    def resume(self, partitions: list[TopicPartition]) -> None:
        self.resumed.extend(tp.partition for tp in partitions)

    def close(self) -> None:
        if self._assigned and self._on_revoke is not None:
            self._on_revoke(self, self._tps(self.partitions))
        self.closed = True


class _DeliveredMessage:
    def __init__(self, partition: int, offset: int) -> None:
        self._partition = partition
        self._offset = offset

    def partition(self) -> int:
        return self._partition

    def offset(self) -> int:
        return self._offset


class FakeProducer:
    """In-memory producer that acknowledges messages on ``poll``."""

    def __init__(
        self,
        delivery_error: object = None,
        produce_error: Exception | None = None,
        acknowledge: bool = True,
    ) -> None:
        self.delivery_error = delivery_error
        self.produce_error = produce_error
        self.acknowledge = acknowledge
        self.produced: list[dict] = []
        self._pending: list[tuple[Callable, int]] = []
        self._lock = threading.Lock()

    def produce(self, topic, key=None, value=None, headers=None, on_delivery=None):
        if self.produce_error is not None:
            raise self.produce_error
        with self._lock:
            offset = len(self.produced)
            self.produced.append(
                {"topic": topic, "key": key, "value": value, "headers": headers}
            )
            self._pending.append((on_delivery, offset))

    def poll(self, timeout: float = 0) -> int:
        if not self.acknowledge:
            time.sleep(min(timeout, 0.01))
            return 0
        with self._lock:
            pending, self._pending = self._pending, []
        for callback, offset in pending:
            callback(self.delivery_error, _DeliveredMessage(0, offset))
        return len(pending)

    def flush(self, timeout: float | None = None) -> int:
        self.poll(0)
        with self._lock:
            return len(self._pending)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def captured_at() -> datetime:
    """A fixed extraction timestamp."""
    return datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def sample_png_bytes() -> bytes:
    """A small white PNG image."""
    img = Image.new("RGB", (200, 100), color=(255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_png_base64(sample_png_bytes: bytes) -> bytes:
    return base64.b64encode(sample_png_bytes)


@pytest.fixture
def temp_store(tmp_path: Path) -> TempStore:
    return TempStore(tmp_path / "ocr-images")


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent
