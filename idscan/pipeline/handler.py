"""Request handling: temp store, OCR and field parsing for one scan request."""

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from idscan.errors import InvalidRequestError, ScanError
from idscan.extraction.id_parser import parse_id_data
from idscan.models import IDData, ScanRequest, ScanResponse
from idscan.ocr.temp_store import TempStore
from idscan.ocr.tesseract_engine import TesseractEngine
from idscan.utils.logger import get_logger

logger = get_logger(__name__)


class ScanHandler(Protocol):
    """Anything that turns a scan request into a scan response."""

    def handle(self, request: ScanRequest) -> ScanResponse: ...


class RequestHandler:
    """Orchestrates temp storage, OCR and parsing for a single request.

    Re-delivered requests are simply processed again; nothing is cached
    between calls.

    Args:
        temp_store: Scratch storage for inline image bytes.
        engine: OCR engine used to recognize text.
        language: OCR language code. Defaults to the engine default.
        workers: Maximum number of concurrent OCR sessions.
        parser: Function turning raw text into identity data.
    """

    def __init__(
        self,
        temp_store: TempStore,
        engine: TesseractEngine,
        language: str | None = None,
        workers: int = 5,
        parser: Callable[[str], IDData] = parse_id_data,
    ) -> None:
        self.temp_store = temp_store
        self.engine = engine
        self.language = language
        self.parser = parser
        self._ocr_slots = threading.BoundedSemaphore(workers)

    def _recognize(self, image_path: Path) -> str:
        with self._ocr_slots:
            return self.engine.extract(image_path, self.language)

    def process(self, request: ScanRequest) -> IDData:
        """Run OCR and field parsing for one request.

        Args:
            request: Request carrying image bytes or an image path.

        Returns:
            Extracted identity data.

        Raises:
            InvalidRequestError: If the request has no image.
            TempStoreError: If the scratch file cannot be written or removed.
            EngineError: If OCR fails.
        """
        if request.has_image_data:
            with self.temp_store.acquire(request.image_data) as path:
                raw_text = self._recognize(path)
        elif request.has_image_path:
            raw_text = self._recognize(Path(request.image_path))
        else:
            raise InvalidRequestError("no image data or path provided")

        logger.debug("Extracted text for %s: %s", request.request_id, raw_text)
        return self.parser(raw_text)

    def handle(self, request: ScanRequest) -> ScanResponse:
        """Process a request and wrap the outcome in a response.

        Pipeline failures become an unsuccessful response rather than an
        exception.
        """
        try:
            data = self.process(request)
        except ScanError as exc:
            logger.error("Scan %s failed: %s", request.request_id, exc)
            return ScanResponse.failure(request.request_id, str(exc))

        logger.info("Scan %s succeeded", request.request_id)
        return ScanResponse.ok(request.request_id, data)
