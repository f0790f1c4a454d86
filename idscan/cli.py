"""Command-line interface for the ID scan service.

Provides subcommands for running the Kafka consumer, scanning a single
image locally, sweeping stale scratch files, and serving the diagnostic
HTTP API.
"""

import argparse
import os
import sys
import threading
import uuid
from pathlib import Path

import uvicorn

from idscan.models import ScanRequest, ScanResponse
from idscan.service import (
    ScanService,
    build_handler,
    build_temp_store,
    install_signal_handlers,
)
from idscan.utils.config import CONFIG_ENV_VAR, AppConfig, load_config
from idscan.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def scan_file(
    config: AppConfig, file_path: Path, language: str | None = None
) -> ScanResponse:
    """Run OCR and field parsing on one local image.

    Args:
        config: Application configuration.
        file_path: Image to scan.
        language: OCR language override.

    Returns:
        The scan response for the image.
    """
    if language:
        config = config.model_copy(
            update={"ocr": config.ocr.model_copy(update={"language": language})}
        )
    handler = build_handler(config)
    request = ScanRequest(request_id=str(uuid.uuid4()), image_path=str(file_path))
    return handler.handle(request)


def sweep_temp(config: AppConfig) -> int:
    """Remove stale scratch files and return how many were deleted."""
    return build_temp_store(config.ocr).sweep()


def consume(config: AppConfig) -> None:
    """Run the Kafka consumer until SIGINT or SIGTERM."""
    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    ScanService(config).run(stop_event)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ID document scan service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: configs/config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("consume", help="Run the Kafka scan consumer")

    scan_parser = subparsers.add_parser("scan", help="Scan a single image file")
    scan_parser.add_argument("file", type=Path, help="Image file to scan")
    scan_parser.add_argument("-l", "--lang", help="OCR language code")
    scan_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    subparsers.add_parser("sweep", help="Remove stale temporary image files")

    serve_parser = subparsers.add_parser("serve", help="Serve the diagnostic HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.service.log_level)

    if args.command == "consume":
        consume(config)
    elif args.command == "scan":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        response = scan_file(config, args.file, args.lang)
        output_str = response.model_dump_json(indent=2, exclude_none=True)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
        if not response.success:
            sys.exit(2)
    elif args.command == "sweep":
        removed = sweep_temp(config)
        print(f"Removed {removed} stale files from {config.ocr.temp_dir}")
    elif args.command == "serve":
        if args.config:
            os.environ[CONFIG_ENV_VAR] = str(args.config)
        uvicorn.run("idscan.api.app:app", host=args.host, port=args.port)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
