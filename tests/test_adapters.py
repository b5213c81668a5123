"""
Tests for the default rendering, decoding, OCR and metadata adapters.

Tesseract is mocked; the other engines run for real on generated documents.
"""

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import pytesseract
from PIL import Image
from pypdf import PdfReader, PdfWriter

from fatura_qc.collaborators import RecognitionError, RenderError
from fatura_qc.decoder import OpenCVQRDecoder
from fatura_qc.metadata import PdfMetadataWriter
from fatura_qc.recognizer import TesseractRecognizer
from fatura_qc.renderer import PdfPlumberRenderer
from fatura_qc.schemas import DocumentResult, DocumentStatus


@pytest.fixture
def three_page_pdf() -> bytes:
    writer = PdfWriter()
    for _ in range(3):
        writer.add_blank_page(width=200, height=300)
    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    output = io.BytesIO()
    Image.new("RGB", (120, 80), color="white").save(output, format="PNG")
    return output.getvalue()


@pytest.fixture
def validated_result() -> DocumentResult:
    return DocumentResult(
        file_name="fatura.pdf",
        original_name="fatura.pdf",
        processed_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        status=DocumentStatus.VALIDATED,
        tolerance_used=5,
        new_name="fatura_OK.pdf",
    )


class TestPdfPlumberRenderer:
    """Tests for the PDF / image renderer."""

    @pytest.mark.asyncio
    async def test_pdf_page_count(self, three_page_pdf):
        renderer = PdfPlumberRenderer()
        assert await renderer.page_count(three_page_pdf, "application/pdf") == 3

    @pytest.mark.asyncio
    async def test_image_page_count(self, png_bytes):
        renderer = PdfPlumberRenderer()
        assert await renderer.page_count(png_bytes, "image/png") == 1

    @pytest.mark.asyncio
    async def test_render_pdf_page(self, three_page_pdf):
        renderer = PdfPlumberRenderer()
        surface = await renderer.render(three_page_pdf, "application/pdf", 3, 2.0)
        assert surface.mode == "RGB"
        assert surface.size == (400, 600)

    @pytest.mark.asyncio
    async def test_render_pdf_page_out_of_range(self, three_page_pdf):
        renderer = PdfPlumberRenderer()
        with pytest.raises(RenderError, match="out of range"):
            await renderer.render(three_page_pdf, "application/pdf", 4, 1.0)

    @pytest.mark.asyncio
    async def test_render_image_scaled(self, png_bytes):
        renderer = PdfPlumberRenderer()
        surface = await renderer.render(png_bytes, "image/png", 1, 0.5)
        assert surface.size == (60, 40)

    @pytest.mark.asyncio
    async def test_corrupt_pdf(self):
        renderer = PdfPlumberRenderer()
        with pytest.raises(RenderError):
            await renderer.page_count(b"not a pdf", "application/pdf")

    @pytest.mark.asyncio
    async def test_corrupt_image(self):
        renderer = PdfPlumberRenderer()
        with pytest.raises(RenderError):
            await renderer.render(b"not an image", "image/jpeg", 1, 1.0)


class TestOpenCVQRDecoder:

    @pytest.mark.asyncio
    async def test_blank_page_has_no_code(self):
        decoder = OpenCVQRDecoder()
        assert await decoder.decode(Image.new("RGB", (200, 200), color="white")) is None


class TestTesseractRecognizer:
    """Tests for the Tesseract adapter."""

    @pytest.mark.asyncio
    @patch("fatura_qc.recognizer.pytesseract.image_to_string")
    async def test_recognize(self, mock_ocr: MagicMock):
        mock_ocr.return_value = "NIF 500000000 Total 100,00"
        recognizer = TesseractRecognizer()
        surface = Image.new("RGB", (10, 10))

        text = await recognizer.recognize(surface, "por")

        assert text == "NIF 500000000 Total 100,00"
        mock_ocr.assert_called_once_with(surface, lang="por")

    @pytest.mark.asyncio
    @patch("fatura_qc.recognizer.pytesseract.image_to_string")
    async def test_tesseract_error_wrapped(self, mock_ocr: MagicMock):
        mock_ocr.side_effect = pytesseract.TesseractError(1, "Failed loading language 'por'")
        recognizer = TesseractRecognizer()

        with pytest.raises(RecognitionError, match="OCR processing failed"):
            await recognizer.recognize(Image.new("RGB", (10, 10)), "por")

    @pytest.mark.asyncio
    async def test_closed_recognizer_refuses_work(self):
        recognizer = TesseractRecognizer()
        await recognizer.close()
        with pytest.raises(RecognitionError, match="closed"):
            await recognizer.recognize(Image.new("RGB", (10, 10)), "por")


class TestPdfMetadataWriter:
    """Tests for the PDF metadata writer."""

    @pytest.mark.asyncio
    async def test_stamps_pdf(self, three_page_pdf, validated_result):
        writer = PdfMetadataWriter()

        content = await writer.write(three_page_pdf, "application/pdf", validated_result)

        reader = PdfReader(io.BytesIO(content))
        assert reader.metadata.title == "VALIDATED: fatura.pdf"
        assert reader.metadata.subject == "Validation Date: 2024-01-15T10:30:00+00:00"
        assert len(reader.pages) == 3

    @pytest.mark.asyncio
    async def test_image_returned_unchanged(self, png_bytes, validated_result):
        writer = PdfMetadataWriter()
        assert await writer.write(png_bytes, "image/png", validated_result) == png_bytes

    @pytest.mark.asyncio
    async def test_corrupt_pdf_returned_unchanged(self, validated_result):
        writer = PdfMetadataWriter()
        assert await writer.write(b"not a pdf", "application/pdf", validated_result) == b"not a pdf"
