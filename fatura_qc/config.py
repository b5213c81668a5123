"""
Configuration constants for the Fatura QC Service.
"""

import logging
import os
from typing import Final, Optional

# ============================================================================
# Reconciliation
# ============================================================================

# Percentage of the QR total accepted as deviation from the OCR total
DEFAULT_TOLERANCE_PERCENT: Final[float] = float(os.getenv("DEFAULT_TOLERANCE_PERCENT", "5"))

MIN_TOLERANCE_PERCENT: Final[float] = 0.0
MAX_TOLERANCE_PERCENT: Final[float] = 100.0

# ============================================================================
# Rendering & Recognition
# ============================================================================

# PDF pages are rasterised at a higher multiplier than plain images
PDF_RENDER_SCALE: Final[float] = float(os.getenv("PDF_RENDER_SCALE", "2.0"))
IMAGE_RENDER_SCALE: Final[float] = float(os.getenv("IMAGE_RENDER_SCALE", "1.0"))

# Tesseract language pack for Portuguese invoices
OCR_LANGUAGE: Final[str] = os.getenv("OCR_LANGUAGE", "por")

# Maximum characters of recognized text kept for audit display
OCR_EXCERPT_LENGTH: Final[int] = int(os.getenv("OCR_EXCERPT_LENGTH", "500"))

# ============================================================================
# Documents
# ============================================================================

PDF_MEDIA_TYPE: Final[str] = "application/pdf"

SUPPORTED_MEDIA_TYPES: Final[dict[str, str]] = {
    ".pdf": PDF_MEDIA_TYPE,
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}

# Appended to the base name of validated files (fatura.pdf -> fatura_OK.pdf)
VALIDATED_SUFFIX: Final[str] = os.getenv("VALIDATED_SUFFIX", "_OK")

# Written into the metadata of validated PDFs
METADATA_PRODUCER: Final[str] = "fatura-qc"

# ============================================================================
# API Configuration
# ============================================================================

API_HOST: Final[str] = os.getenv("API_HOST", "0.0.0.0")
API_PORT: Final[int] = int(os.getenv("API_PORT", "8000"))
MAX_UPLOAD_SIZE_MB: Final[int] = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")

def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("fatura_qc")


def media_type_for(filename: str) -> Optional[str]:
    """Return the media type for a filename based on its extension, if supported."""
    _, ext = os.path.splitext(filename.lower())
    return SUPPORTED_MEDIA_TYPES.get(ext)


logger = setup_logging()
