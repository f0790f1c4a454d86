"""Diagnostic FastAPI application for the ID scan service.

Exposes a health probe and a synchronous scan endpoint that runs the
same request handler as the Kafka consumer, bypassing the broker.
"""

import base64
import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from idscan import __version__
from idscan.models import ScanRequest, ScanResponse
from idscan.pipeline.handler import RequestHandler
from idscan.service import build_handler
from idscan.utils.config import load_config
from idscan.utils.logger import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="ID Scan Service",
    description="Extract name, birth date and ID number from identity documents",
    version=__version__,
)

_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "image/bmp",
    "application/octet-stream",
}


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool


@lru_cache(maxsize=1)
def _get_handler() -> RequestHandler:
    """Build the shared request handler on first use."""
    return build_handler(load_config())


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        tesseract_available=_get_handler().engine.is_available(),
    )


@app.post("/scan", response_model=ScanResponse, response_model_exclude_none=True)
def scan_document(
    file: Annotated[UploadFile, File(...)],
    request_id: Annotated[str | None, Form()] = None,
) -> ScanResponse:
    """Scan an uploaded identity document image.

    Args:
        file: Uploaded image (PNG, JPEG, TIFF or BMP).
        request_id: Optional caller-supplied request id.

    Returns:
        The same response the consumer would publish for this image.
    """
    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")

    request = ScanRequest(
        request_id=request_id or str(uuid.uuid4()),
        image_data=base64.b64encode(content),
    )
    logger.info("HTTP scan %s for %s", request.request_id, file.filename)
    return _get_handler().handle(request)
