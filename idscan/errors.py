"""Exception hierarchy for the ID scan pipeline.

Every error is scoped to a single message: the consumer logs it,
acknowledges the message and moves on.
"""


class ScanError(Exception):
    """Base class for all per-request pipeline failures."""


class InvalidRequestError(ScanError):
    """Raised when a request carries neither image bytes nor an image path."""


class TempStoreError(ScanError):
    """Raised when a scratch image file cannot be written or removed."""


class EngineError(ScanError):
    """Raised when the OCR engine cannot process an image.

    Covers corrupt or unsupported images, missing files, missing
    language data and a missing Tesseract binary.
    """


class DeserializationError(ScanError):
    """Raised when an inbound payload is not a valid scan request."""


class TransportError(ScanError):
    """Raised when the message broker is unreachable or rejects a client."""


class DeliveryError(TransportError):
    """Raised when an outbound message is rejected or never acknowledged.

    Attributes:
        topic: Destination topic of the failed send.
        key: Message key of the failed send, if any.
    """

    def __init__(self, message: str, topic: str, key: str | None = None) -> None:
        self.topic = topic
        self.key = key
        super().__init__(message)
