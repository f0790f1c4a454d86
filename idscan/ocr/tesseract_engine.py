"""Tesseract OCR engine wrapper.

Turns an image file into raw recognized text. Every call runs its own
Tesseract process, so no engine state is shared between callers.
"""

import shutil
from pathlib import Path

import pytesseract
from PIL import Image, UnidentifiedImageError

from idscan.errors import EngineError
from idscan.utils.logger import get_logger

logger = get_logger(__name__)


class TesseractEngine:
    """Wrapper around Tesseract OCR for identity document images.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
        data_path: Directory holding ``*.traineddata`` files.
            If ``None``, Tesseract uses its built-in location.
        psm: Tesseract page segmentation mode.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
        data_path: str | None = None,
        psm: int = 3,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.data_path = data_path
        self.psm = psm

    def _build_config(self) -> str:
        config = f"--psm {self.psm}"
        if self.data_path:
            config += f' --tessdata-dir "{self.data_path}"'
        return config

    def extract(self, image_path: Path | str, lang: str | None = None) -> str:
        """Extract raw text from an image file.

        Args:
            image_path: Location of the image to recognize.
            lang: OCR language code. Defaults to the engine default.

        Returns:
            Recognized text, possibly empty.

        Raises:
            EngineError: If the image cannot be opened or Tesseract fails.
        """
        lang = lang or self.default_lang
        try:
            with Image.open(image_path) as image:
                text = pytesseract.image_to_string(
                    image, lang=lang, config=self._build_config()
                )
        except FileNotFoundError as exc:
            raise EngineError(f"OCR failed: image not found: {image_path}") from exc
        except UnidentifiedImageError as exc:
            raise EngineError(f"OCR failed: unsupported image format: {exc}") from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineError(f"OCR failed: tesseract is not installed: {exc}") from exc
        except Image.DecompressionBombError as exc:
            raise EngineError(f"OCR failed: image too large: {exc}") from exc
        except (pytesseract.TesseractError, OSError, ValueError) as exc:
            raise EngineError(f"OCR failed: {exc}") from exc

        logger.info("OCR extracted %d characters (lang=%s)", len(text), lang)
        return text

    def is_available(self) -> bool:
        """Return whether the Tesseract executable can be found."""
        return shutil.which(pytesseract.pytesseract.tesseract_cmd) is not None
