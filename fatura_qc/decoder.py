"""
QR code decoding with OpenCV.
"""

import asyncio
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from .config import logger


def _decode_qr(surface: Image.Image) -> Optional[str]:
    # OpenCV expects BGR pixel order
    array = cv2.cvtColor(np.array(surface.convert("RGB")), cv2.COLOR_RGB2BGR)
    detector = cv2.QRCodeDetector()

    text, points, _ = detector.detectAndDecode(array)
    if text:
        return text

    # Retry on a binarised grayscale copy; helps with faint scans
    gray = cv2.cvtColor(array, cv2.COLOR_BGR2GRAY)
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    text, points, _ = detector.detectAndDecode(binary)
    return text or None


class OpenCVQRDecoder:
    """CodeDecoder backed by ``cv2.QRCodeDetector``."""

    async def decode(self, surface: Image.Image) -> Optional[str]:
        text = await asyncio.to_thread(_decode_qr, surface)
        if text is None:
            logger.debug(f"No QR code found on {surface.width}x{surface.height} page")
        return text
