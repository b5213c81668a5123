"""
Shared fixtures and in-memory collaborators for the pipeline tests.

The fake renderer encodes the page number in the width of the image it
returns, so the fake decoder can answer per page.
"""

from typing import Optional

import pytest
from PIL import Image

from fatura_qc.collaborators import RecognitionError, RenderError
from fatura_qc.pipeline import PipelineCoordinator
from fatura_qc.schemas import SourceDocument


VALID_PAYLOAD = (
    "A:500000000*B:123456789*C:PT*D:FT*E:N*F:20240115*G:FT 2024A/15"
    "*H:CSDF7T5H-15*I1:PT*I7:81.30*I8:18.70*N:18.70*O:100.00*Q:abcd*R:1234"
)

MATCHING_TEXT = """
    Empresa Exemplo, Lda.   NIF: 500000000
    Fatura FT 2024A/15      Data: 15/01/2024
    Cliente NIF 123456789

    Subtotal     81,30
    IVA 23%      18,70
    Total       100,00
"""

BROKEN_CONTENT = b"broken"


class FakeRenderer:
    def __init__(self, pages: int = 1, error: Optional[Exception] = None) -> None:
        self.pages = pages
        self.error = error
        self.rendered: list[tuple[int, float]] = []

    async def page_count(self, content: bytes, media_type: str) -> int:
        return self.pages

    async def render(self, content: bytes, media_type: str, page_number: int, scale: float):
        if self.error is not None or content == BROKEN_CONTENT:
            raise self.error or RenderError("corrupt document")
        self.rendered.append((page_number, scale))
        return Image.new("RGB", (page_number, 1))


class FakeDecoder:
    def __init__(self, payloads: Optional[dict[int, str]] = None, error_pages: tuple = ()) -> None:
        self.payloads = payloads or {}
        self.error_pages = error_pages
        self.scanned: list[int] = []

    async def decode(self, surface) -> Optional[str]:
        page_number = surface.width
        self.scanned.append(page_number)
        if page_number in self.error_pages:
            raise RuntimeError("decoder crashed")
        return self.payloads.get(page_number)


class FakeRecognizer:
    def __init__(self, text: str = "", error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[tuple[int, str]] = []
        self.closed = False

    async def recognize(self, surface, language: str) -> str:
        self.calls.append((surface.width, language))
        if self.error is not None:
            raise self.error
        return self.text

    async def close(self) -> None:
        self.closed = True


class FakeRecognizerFactory:
    def __init__(self, text: str = "", error: Optional[Exception] = None) -> None:
        self.text = text
        self.error = error
        self.instances: list[FakeRecognizer] = []

    def __call__(self) -> FakeRecognizer:
        recognizer = FakeRecognizer(self.text, self.error)
        self.instances.append(recognizer)
        return recognizer


class FakeMetadataWriter:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls = 0

    async def write(self, content: bytes, media_type: str, result) -> bytes:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return content + b"%stamped"


@pytest.fixture
def make_coordinator():
    """Factory for coordinators wired to fakes; returns (coordinator, fakes)."""
    def _make(
        pages: int = 1,
        payloads: Optional[dict[int, str]] = None,
        text: str = MATCHING_TEXT,
        ocr_error: Optional[Exception] = None,
        render_error: Optional[Exception] = None,
        metadata_error: Optional[Exception] = None,
        decoder_error_pages: tuple = (),
    ):
        renderer = FakeRenderer(pages=pages, error=render_error)
        decoder = FakeDecoder(
            payloads if payloads is not None else {1: VALID_PAYLOAD},
            error_pages=decoder_error_pages,
        )
        recognizers = FakeRecognizerFactory(text=text, error=ocr_error)
        writer = FakeMetadataWriter(error=metadata_error)
        coordinator = PipelineCoordinator(
            renderer=renderer,
            decoder=decoder,
            recognizer_factory=recognizers,
            metadata_writer=writer,
        )
        fakes = {
            "renderer": renderer,
            "decoder": decoder,
            "recognizers": recognizers,
            "writer": writer,
        }
        return coordinator, fakes

    return _make


@pytest.fixture
def pdf_document() -> SourceDocument:
    return SourceDocument(name="fatura.pdf", content=b"%PDF-1.7 fake", media_type="application/pdf")


@pytest.fixture
def image_document() -> SourceDocument:
    return SourceDocument(name="talao.jpg", content=b"fake jpeg", media_type="image/jpeg")


@pytest.fixture
def recognition_error() -> RecognitionError:
    return RecognitionError("tesseract crashed")
