"""Process wiring for the ID scan service.

Builds every component from one :class:`AppConfig` and runs the
consumer until a stop signal arrives.
"""

import signal
import threading
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from idscan.messaging.consumer import FailurePolicy, MessageProcessor, QueueConsumer
from idscan.messaging.producer import ResultPublisher
from idscan.ocr.temp_store import TempStore
from idscan.ocr.tesseract_engine import TesseractEngine
from idscan.pipeline.handler import RequestHandler
from idscan.utils.config import AppConfig, OCRConfig
from idscan.utils.logger import get_logger

logger = get_logger(__name__)


def build_temp_store(config: OCRConfig) -> TempStore:
    return TempStore(
        config.temp_dir, retention=timedelta(seconds=config.temp_retention_seconds)
    )


def build_engine(config: OCRConfig) -> TesseractEngine:
    return TesseractEngine(
        tesseract_cmd=config.tesseract_cmd,
        default_lang=config.language,
        data_path=config.tesseract_data_path,
        psm=config.psm,
    )


def build_handler(
    config: AppConfig, temp_store: TempStore | None = None
) -> RequestHandler:
    """Build a request handler from the application configuration."""
    return RequestHandler(
        temp_store=temp_store or build_temp_store(config.ocr),
        engine=build_engine(config.ocr),
        language=config.ocr.language,
        workers=config.service.workers,
    )


class TempSweeper(threading.Thread):
    """Periodically removes stale scratch files.

    Args:
        temp_store: Store to sweep.
        interval: Seconds between sweeps.
        stop_event: Stops the sweeper when set.
    """

    def __init__(
        self, temp_store: TempStore, interval: float, stop_event: threading.Event
    ) -> None:
        super().__init__(name="temp-sweeper", daemon=True)
        self.temp_store = temp_store
        self.interval = interval
        self.stop_event = stop_event

    def run(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.temp_store.sweep()
            except OSError as exc:
                logger.error("Temp sweep failed: %s", exc)


class ScanService:
    """The long-running scan service.

    Args:
        config: Fully populated application configuration.
        publisher: Result publisher. Built from ``config`` if ``None``.
        consumer_factory: Optional Kafka consumer factory override.
    """

    def __init__(
        self,
        config: AppConfig,
        publisher: ResultPublisher | None = None,
        consumer_factory: Callable[[dict[str, Any]], Any] | None = None,
    ) -> None:
        self.config = config
        self.temp_store = build_temp_store(config.ocr)
        self.handler = build_handler(config, self.temp_store)
        self.publisher = publisher or ResultPublisher(config.kafka)

        consumer_config = config.kafka.consumer
        self.processor = MessageProcessor(
            self.handler,
            self.publisher,
            failure_policy=FailurePolicy(consumer_config.failure_policy),
            dead_letter_topic=consumer_config.dead_letter_topic,
        )
        self.consumer = QueueConsumer(config.kafka, self.processor, consumer_factory)

    def run(self, stop_event: threading.Event) -> None:
        """Run until ``stop_event`` is set."""
        logger.info(
            "Starting %s (topic=%s, group=%s)",
            self.config.service.name,
            self.config.kafka.consumer.topic,
            self.config.kafka.consumer.group_id,
        )
        self.temp_store.sweep()
        sweeper = TempSweeper(
            self.temp_store, self.config.ocr.cleanup_interval_seconds, stop_event
        )
        sweeper.start()
        try:
            self.consumer.run(stop_event)
        finally:
            stop_event.set()
            sweeper.join()
            self.publisher.close()
            logger.info("%s stopped", self.config.service.name)


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set ``stop_event`` on SIGINT or SIGTERM."""

    def _handle(signum: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
