"""
Rasterisation of PDF and image documents.

PDF pages are rendered with pdfplumber at ``72 * scale`` DPI; images are
opened with Pillow and resized by ``scale``. Blocking work runs in a worker
thread so the event loop stays responsive.
"""

import asyncio
import io

import pdfplumber
from PIL import Image, UnidentifiedImageError

from .collaborators import RenderError
from .config import PDF_MEDIA_TYPE, logger

PDF_BASE_DPI = 72


def _pdf_page_count(content: bytes) -> int:
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        return len(pdf.pages)


def _render_pdf_page(content: bytes, page_number: int, scale: float) -> Image.Image:
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        if not 1 <= page_number <= len(pdf.pages):
            raise RenderError(f"Page {page_number} out of range (document has {len(pdf.pages)})")
        page = pdf.pages[page_number - 1]
        rendered = page.to_image(resolution=PDF_BASE_DPI * scale).original
        return rendered.convert("RGB")


def _render_image(content: bytes, page_number: int, scale: float) -> Image.Image:
    if page_number != 1:
        raise RenderError(f"Images have a single page, got page {page_number}")
    with Image.open(io.BytesIO(content)) as img:
        img = img.convert("RGB")
        if scale != 1.0:
            size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
            img = img.resize(size)
        return img


class PdfPlumberRenderer:
    """Renderer for PDFs (pdfplumber) and raster images (Pillow)."""

    async def page_count(self, content: bytes, media_type: str) -> int:
        if media_type != PDF_MEDIA_TYPE:
            return 1
        try:
            return await asyncio.to_thread(_pdf_page_count, content)
        except Exception as e:
            raise RenderError(f"Could not open PDF: {e}") from e

    async def render(
        self, content: bytes, media_type: str, page_number: int, scale: float
    ) -> Image.Image:
        """
        Render one page to an RGB image.

        Raises:
            RenderError: If the document cannot be decoded or the page does not exist
        """
        logger.debug(f"Rendering page {page_number} of {media_type} at scale {scale}")
        try:
            if media_type == PDF_MEDIA_TYPE:
                return await asyncio.to_thread(_render_pdf_page, content, page_number, scale)
            return await asyncio.to_thread(_render_image, content, page_number, scale)
        except RenderError:
            raise
        except (UnidentifiedImageError, OSError) as e:
            raise RenderError(f"Could not decode image: {e}") from e
        except Exception as e:
            raise RenderError(f"Could not render page {page_number}: {e}") from e
