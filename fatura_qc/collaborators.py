"""
Contracts for the engines the validation pipeline depends on.

The pipeline never talks to pdfplumber, OpenCV, Tesseract or pypdf directly;
it receives objects implementing these protocols, which keeps it testable
with in-memory fakes.
"""

from typing import Optional, Protocol

from PIL import Image

from .schemas import DocumentResult


class FaturaQCError(Exception):
    """Base class for technical errors raised by the service."""


class RenderError(FaturaQCError):
    """A document page could not be rasterised."""


class RecognitionError(FaturaQCError):
    """Text recognition failed on a rendered page."""


class Renderer(Protocol):
    """Turns document bytes into raster pages (1-based page numbers)."""

    async def page_count(self, content: bytes, media_type: str) -> int:
        ...

    async def render(
        self, content: bytes, media_type: str, page_number: int, scale: float
    ) -> Image.Image:
        ...


class CodeDecoder(Protocol):
    """Finds and decodes a QR code on a raster page."""

    async def decode(self, surface: Image.Image) -> Optional[str]:
        """Return the decoded text, or None when no code is found."""
        ...


class TextRecognizer(Protocol):
    """OCR engine instance, used for one document and then closed."""

    async def recognize(self, surface: Image.Image, language: str) -> str:
        ...

    async def close(self) -> None:
        ...


class MetadataWriter(Protocol):
    """Stamps validation metadata into a validated document."""

    async def write(self, content: bytes, media_type: str, result: DocumentResult) -> bytes:
        ...
