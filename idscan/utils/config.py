"""Configuration management for the ID scan service.

Loads and validates YAML configuration with defaults for the Kafka
transport, the Tesseract OCR engine and the service process.
"""

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/config.yaml")
CONFIG_ENV_VAR = "IDSCAN_CONFIG"


class ConsumerConfig(BaseModel):
    """Consumer group settings for the inbound request topic."""

    group_id: str = "id-ocr-service"
    topic: str = "id-scan-requests"
    auto_offset_reset: str = "earliest"
    failure_policy: Literal["drop", "dead_letter"] = "drop"
    dead_letter_topic: str = "id-scan-requests-dlq"
    poll_timeout: float = Field(default=1.0, gt=0)
    max_pending_per_partition: int = Field(default=16, ge=1)


class ProducerConfig(BaseModel):
    """Producer settings for the outbound result topic."""

    topic: str = "id-scan-results"
    delivery_timeout: float = Field(default=30.0, gt=0)


class KafkaConfig(BaseModel):
    """Broker addresses plus consumer and producer settings."""

    brokers: list[str] = Field(default_factory=lambda: ["localhost:9092"])
    consumer: ConsumerConfig = Field(default_factory=ConsumerConfig)
    producer: ProducerConfig = Field(default_factory=ProducerConfig)


class OCRConfig(BaseModel):
    """Configuration for the Tesseract OCR engine and its scratch files."""

    tesseract_cmd: str | None = None
    tesseract_data_path: str | None = None
    language: str = "eng"
    psm: int = 3
    temp_dir: str = "/tmp/ocr-images"
    temp_retention_seconds: int = Field(default=3600, ge=1)
    cleanup_interval_seconds: int = Field(default=600, ge=1)


class ServiceConfig(BaseModel):
    """Process-level settings."""

    name: str = "id-ocr-service"
    log_level: str = "INFO"
    workers: int = Field(default=5, ge=1)


class AppConfig(BaseModel):
    """Top-level application configuration."""

    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file. Defaults to the
            ``IDSCAN_CONFIG`` environment variable, then
            configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
