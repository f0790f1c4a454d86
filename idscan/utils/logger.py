"""Logging for the ID scan service.

The consumer, its partition workers and the diagnostic API all log
through the root logger to stdout, one line per record, with the thread
name so interleaved partition workers can be told apart.
"""

import logging
import sys

_LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Pillow logs every chunk it parses at DEBUG
_QUIET_LOGGERS = ("PIL",)


def setup_logging(level: str = "INFO") -> None:
    """Attach a stdout handler to the root logger once.

    Unknown level names fall back to INFO. Calling this again after a
    handler is attached leaves the configuration unchanged.

    Args:
        level: Level name, case-insensitive.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module, usually ``get_logger(__name__)``."""
    return logging.getLogger(name)
