"""Pydantic message schemas exchanged over the request and result topics."""

from datetime import datetime, timezone
from typing import Self

from pydantic import BaseModel, Field, ValidationError, model_validator

from idscan.errors import DeserializationError


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class IDData(BaseModel):
    """Structured fields extracted from an identity document."""

    first_name: str = ""
    last_name: str = ""
    birth_date: str = ""
    idnp: str = ""
    raw_text: str
    timestamp: datetime = Field(default_factory=utc_now)


class ScanRequest(BaseModel):
    """Inbound request to scan one document image.

    ``image_data`` may carry raw image bytes or a base64 string; it takes
    precedence over ``image_path`` when both are populated.
    """

    request_id: str
    image_data: bytes | None = None
    image_path: str | None = None

    @property
    def has_image_data(self) -> bool:
        return bool(self.image_data)

    @property
    def has_image_path(self) -> bool:
        return bool(self.image_path)

    @classmethod
    def from_json(cls, payload: bytes | str | None) -> Self:
        """Deserialize a request from a JSON message payload.

        Args:
            payload: Raw message value.

        Returns:
            Parsed scan request.

        Raises:
            DeserializationError: If the payload is empty, not JSON, or
                does not match the request schema.
        """
        if not payload:
            raise DeserializationError("empty message payload")
        try:
            return cls.model_validate_json(payload)
        except ValidationError as exc:
            raise DeserializationError(
                f"invalid scan request: {exc.error_count()} validation error(s): "
                f"{exc.errors()[0]['msg']}"
            ) from exc


class ScanResponse(BaseModel):
    """Outbound result for one scan request.

    ``data`` is present exactly when ``success`` is true, ``error``
    exactly when it is false.
    """

    request_id: str
    success: bool
    data: IDData | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_outcome(self) -> Self:
        if self.success and (self.data is None or self.error is not None):
            raise ValueError("a successful response carries data and no error")
        if not self.success and (self.data is not None or not self.error):
            raise ValueError("a failed response carries an error and no data")
        return self

    @classmethod
    def ok(cls, request_id: str, data: IDData) -> Self:
        return cls(request_id=request_id, success=True, data=data)

    @classmethod
    def failure(cls, request_id: str, error: str) -> Self:
        return cls(request_id=request_id, success=False, error=error or "unknown error")

    def to_json(self) -> bytes:
        """Serialize to a JSON payload, omitting absent ``data``/``error``."""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_json(cls, payload: bytes | str) -> Self:
        return cls.model_validate_json(payload)
