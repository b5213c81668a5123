"""OCR service using Tesseract.

Each TesseractRecognizer instance serves a single document. The pipeline
acquires a fresh one per document and closes it before moving on, so no
recognition state survives across a long batch.

Based on pytesseract documentation:
https://github.com/madmaze/pytesseract
"""

import asyncio
import os

import pytesseract
from PIL import Image

from .collaborators import RecognitionError
from .config import logger


class TesseractRecognizer:
    """TextRecognizer backed by the Tesseract engine."""

    def __init__(self) -> None:
        self._configure_tesseract()
        self._closed = False

    def _configure_tesseract(self) -> None:
        """Configure Tesseract command path from environment.

        Allows overriding default Tesseract path via TESSERACT_CMD environment variable.
        """
        tesseract_cmd = os.getenv("TESSERACT_CMD")
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    async def recognize(self, surface: Image.Image, language: str) -> str:
        """Extract text from a rendered page.

        Args:
            surface: Rendered page
            language: Tesseract language code (e.g. ``por``)

        Returns:
            Recognized text

        Raises:
            RecognitionError: If the recognizer was closed or Tesseract fails
        """
        if self._closed:
            raise RecognitionError("Recognizer already closed")
        try:
            return await asyncio.to_thread(pytesseract.image_to_string, surface, lang=language)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise RecognitionError(f"OCR processing failed: {e}") from e

    async def close(self) -> None:
        if not self._closed:
            logger.debug("Tesseract recognizer released")
        self._closed = True
