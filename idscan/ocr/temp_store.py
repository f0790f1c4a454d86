"""Scratch file storage for image bytes handed to the OCR engine.

Each request writes its image to a uniquely named file that lives only
for the duration of one OCR call. A periodic sweep recovers files left
behind by an unclean shutdown.
"""

import base64
import binascii
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from idscan.errors import TempStoreError
from idscan.utils.logger import get_logger

logger = get_logger(__name__)

_FILE_PREFIX = "scan_"
_FILE_SUFFIX = ".jpg"
DEFAULT_RETENTION = timedelta(hours=1)


def decode_image_data(data: bytes) -> bytes:
    """Decode base64 image data, falling back to the raw bytes.

    Line breaks are ignored, so MIME-wrapped base64 is accepted.

    Args:
        data: Image bytes, either raw or base64-encoded.

    Returns:
        Decoded bytes if ``data`` is valid base64, otherwise ``data``.
    """
    try:
        return base64.b64decode(
            data.replace(b"\r", b"").replace(b"\n", b""), validate=True
        )
    except (binascii.Error, ValueError):
        return data


class TempStore:
    """Manages short-lived image files in a shared scratch directory.

    File names embed a nanosecond clock reading taken at acquisition
    time. No lock guards the directory; names are the only protection
    between concurrently running partition workers.

    Args:
        directory: Scratch directory, created if missing.
        retention: Age beyond which ``sweep`` removes leftover files.
    """

    def __init__(
        self, directory: Path | str, retention: timedelta = DEFAULT_RETENTION
    ) -> None:
        self.directory = Path(directory)
        self.retention = retention
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TempStoreError(
                f"failed to create temp directory {self.directory}: {exc}"
            ) from exc

    def _new_path(self) -> Path:
        return self.directory / f"{_FILE_PREFIX}{time.time_ns()}{_FILE_SUFFIX}"

    @contextmanager
    def acquire(self, image_data: bytes) -> Iterator[Path]:
        """Write image bytes to a scratch file for the enclosing scope.

        The file is removed when the ``with`` block exits, whether it
        exits normally or with an exception.

        Args:
            image_data: Raw or base64-encoded image bytes.

        Yields:
            Path of the written file.

        Raises:
            TempStoreError: If the file cannot be written or removed.
        """
        path = self._new_path()
        try:
            # exclusive create: a clock collision fails instead of overwriting
            with open(path, "xb") as f:
                f.write(decode_image_data(image_data))
        except FileExistsError as exc:
            raise TempStoreError(f"failed to save temp image: {exc}") from exc
        except OSError as exc:
            try:
                path.unlink(missing_ok=True)
            except OSError as unlink_exc:
                logger.warning(
                    "Could not remove partial temp file %s: %s", path, unlink_exc
                )
            raise TempStoreError(f"failed to save temp image: {exc}") from exc

        logger.debug("Wrote temp image %s", path.name)
        try:
            yield path
        finally:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise TempStoreError(f"failed to remove temp image: {exc}") from exc

    def sweep(self, now: datetime | None = None) -> int:
        """Remove scratch files older than the retention threshold.

        Args:
            now: Reference time. Defaults to the current time.

        Returns:
            Number of files removed.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = (now - self.retention).timestamp()
        removed = 0

        for path in self.directory.glob(f"{_FILE_PREFIX}*{_FILE_SUFFIX}"):
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Could not remove stale temp file %s: %s", path, exc)
                continue
            removed += 1

        if removed:
            logger.info("Removed %d stale temp files from %s", removed, self.directory)
        return removed
