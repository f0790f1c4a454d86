"""Application entry point for the ID scan consumer service."""

import threading

from idscan.service import ScanService, install_signal_handlers
from idscan.utils.config import load_config
from idscan.utils.logger import setup_logging


def main() -> None:
    """Run the scan service until SIGINT or SIGTERM."""
    config = load_config()
    setup_logging(config.service.log_level)
    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    ScanService(config).run(stop_event)


if __name__ == "__main__":
    main()
