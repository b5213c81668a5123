"""
Validation pipeline for QR-coded Portuguese invoices.

This module drives each document through an explicit sequence of stages:

    NOT_STARTED -> RENDERING -> EXTRACTING -> SCANNING -> RECONCILING -> DONE

with FAILED reachable from any working stage. ``next_stage`` decides every
transition from the state of the run, so the skip rules (no OCR on fallback
pages, no reconciliation without a QR code) live in one place.

Failures are contained per document: a run that fails ends as a DISCARDED
result, and batches keep going with the next document.
"""

import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from PIL import Image

from .collaborators import (
    CodeDecoder,
    FaturaQCError,
    MetadataWriter,
    Renderer,
    TextRecognizer,
)
from .config import (
    DEFAULT_TOLERANCE_PERCENT,
    IMAGE_RENDER_SCALE,
    OCR_LANGUAGE,
    PDF_MEDIA_TYPE,
    PDF_RENDER_SCALE,
    VALIDATED_SUFFIX,
    logger,
)
from .extractor import TotalSelector, extract_recognized_fields, select_last_amount
from .qr_parser import parse_qr_payload
from .reconciler import check_tolerance, reconcile
from .rules import TOTAL_NOT_DETECTED_NO_OCR, technical_error_divergence
from .schemas import (
    CodeFields,
    DocumentResult,
    DocumentStatus,
    RecognizedFields,
    SourceDocument,
    StageStatus,
)


ProgressCallback = Callable[[int, int], None]
RecognizerFactory = Callable[[], TextRecognizer]


# ============================================================================
# Stage Machine
# ============================================================================

class PipelineStage(str, Enum):
    """Stages of a single document run."""
    NOT_STARTED = "NOT_STARTED"
    RENDERING = "RENDERING"
    EXTRACTING = "EXTRACTING"
    SCANNING = "SCANNING"
    RECONCILING = "RECONCILING"
    DONE = "DONE"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.NOT_STARTED: frozenset({PipelineStage.RENDERING}),
    PipelineStage.RENDERING: frozenset({PipelineStage.EXTRACTING, PipelineStage.FAILED}),
    PipelineStage.EXTRACTING: frozenset({PipelineStage.SCANNING, PipelineStage.FAILED}),
    PipelineStage.SCANNING: frozenset({
        PipelineStage.RECONCILING, PipelineStage.DONE, PipelineStage.FAILED,
    }),
    PipelineStage.RECONCILING: frozenset({PipelineStage.DONE, PipelineStage.FAILED}),
    PipelineStage.DONE: frozenset(),
    PipelineStage.FAILED: frozenset(),
}

TERMINAL_STAGES = frozenset({PipelineStage.DONE, PipelineStage.FAILED})


class InvalidTransitionError(FaturaQCError):
    """A run attempted a stage transition not in ALLOWED_TRANSITIONS."""


@dataclass
class StageFailure:
    """Technical failure that ended a run."""
    stage: PipelineStage
    description: str


@dataclass
class DocumentRun:
    """
    Mutable state of one document while it moves through the pipeline.

    Only the coordinator touches a run, and only while that document is
    being processed. The final DocumentResult is built from it once.
    """
    document: SourceDocument
    tolerance: float
    stage: PipelineStage = PipelineStage.NOT_STARTED
    page_numbers: list[int] = field(default_factory=list)
    pages: list[Image.Image] = field(default_factory=list)
    ocr_status: StageStatus = StageStatus.NOT_STARTED
    qr_status: StageStatus = StageStatus.NOT_STARTED
    qr_data: Optional[CodeFields] = None
    ocr_data: Optional[RecognizedFields] = None
    status: Optional[DocumentStatus] = None
    divergences: list[str] = field(default_factory=list)
    is_within_tolerance: bool = False
    failure: Optional[StageFailure] = None

    def advance(self, stage: PipelineStage) -> None:
        if stage not in ALLOWED_TRANSITIONS[self.stage]:
            raise InvalidTransitionError(f"Cannot move from {self.stage.value} to {stage.value}")
        self.stage = stage

    def fail(self, description: str) -> None:
        self.failure = StageFailure(stage=self.stage, description=description)

    def release_pages(self) -> None:
        for page in self.pages:
            page.close()
        self.pages.clear()


def next_stage(run: DocumentRun) -> PipelineStage:
    """
    Decide the stage that follows the run's current stage.

    - Any recorded failure ends the run.
    - A run whose scan found no QR code is done; reconciliation is skipped
      even when OCR fields exist.
    """
    if run.stage in TERMINAL_STAGES:
        raise InvalidTransitionError(f"Run already finished in {run.stage.value}")

    if run.failure is not None:
        return PipelineStage.FAILED

    if run.stage == PipelineStage.NOT_STARTED:
        return PipelineStage.RENDERING
    if run.stage == PipelineStage.RENDERING:
        return PipelineStage.EXTRACTING
    if run.stage == PipelineStage.EXTRACTING:
        return PipelineStage.SCANNING
    if run.stage == PipelineStage.SCANNING:
        return PipelineStage.RECONCILING if run.qr_data is not None else PipelineStage.DONE
    return PipelineStage.DONE


def candidate_pages(page_count: int) -> list[int]:
    """Pages searched for the QR code: the first, plus the last of multi-page documents."""
    if page_count > 1:
        return [1, page_count]
    return [1]


def derive_validated_name(file_name: str) -> str:
    """fatura.pdf -> fatura_OK.pdf"""
    base, ext = os.path.splitext(file_name)
    return f"{base}{VALIDATED_SUFFIX}{ext}"


# ============================================================================
# Cancellation
# ============================================================================

class CancellationToken:
    """Checked between documents; cancelling keeps completed results."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ============================================================================
# Coordinator
# ============================================================================

class PipelineCoordinator:
    """
    Runs documents through rendering, OCR, QR decoding and reconciliation.

    The coordinator holds only its collaborators; every document gets its own
    DocumentRun and its own TextRecognizer, so nothing crosses document
    boundaries except the batch result list and progress count.
    """

    def __init__(
        self,
        renderer: Renderer,
        decoder: CodeDecoder,
        recognizer_factory: RecognizerFactory,
        metadata_writer: Optional[MetadataWriter] = None,
        total_selector: TotalSelector = select_last_amount,
        language: str = OCR_LANGUAGE,
    ) -> None:
        self.renderer = renderer
        self.decoder = decoder
        self.recognizer_factory = recognizer_factory
        self.metadata_writer = metadata_writer
        self.total_selector = total_selector
        self.language = language

        self._handlers = {
            PipelineStage.RENDERING: self._render,
            PipelineStage.EXTRACTING: self._extract,
            PipelineStage.SCANNING: self._scan,
            PipelineStage.RECONCILING: self._reconcile,
        }

    async def process_document(
        self,
        document: SourceDocument,
        tolerance: float = DEFAULT_TOLERANCE_PERCENT,
    ) -> DocumentResult:
        """
        Validate a single document.

        Args:
            document: Document bytes, name and media type
            tolerance: Accepted deviation of the total, in percent of the QR total

        Returns:
            DocumentResult for the document. Technical failures are reported
            as DISCARDED results, never raised.

        Raises:
            ValueError: If tolerance is outside [0, 100]
        """
        check_tolerance(tolerance)
        logger.info(f"Processing document: {document.name}")

        run = DocumentRun(document=document, tolerance=tolerance)
        try:
            while run.stage not in TERMINAL_STAGES:
                run.advance(next_stage(run))
                handler = self._handlers.get(run.stage)
                if handler is not None:
                    await handler(run)
        except Exception as e:
            logger.exception(f"Error in stage {run.stage.value} for {document.name}")
            run.fail(str(e) or type(e).__name__)
        finally:
            run.release_pages()

        result = self._build_result(run)
        logger.info(f"{document.name}: {result.status.value}")
        return result

    async def process_batch(
        self,
        documents: list[SourceDocument],
        tolerance: float = DEFAULT_TOLERANCE_PERCENT,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[DocumentResult]:
        """
        Validate documents one at a time, in input order.

        Args:
            documents: Documents to process
            tolerance: Accepted deviation of the total, in percent
            on_progress: Called with (completed, total) after each document
            cancel_token: Checked before each document

        Returns:
            One result per processed document, in input order. A cancelled
            batch returns the results completed so far.
        """
        check_tolerance(tolerance)
        total = len(documents)
        results: list[DocumentResult] = []

        logger.info(f"Processing batch of {total} documents (tolerance {tolerance}%)")

        for document in documents:
            if cancel_token is not None and cancel_token.cancelled:
                logger.warning(f"Batch cancelled after {len(results)} of {total} documents")
                break

            results.append(await self.process_document(document, tolerance))

            if on_progress is not None:
                on_progress(len(results), total)

        return results

    async def write_validated_copy(self, document: SourceDocument, result: DocumentResult) -> bytes:
        """
        Return the bytes to store for a processed document.

        VALIDATED documents go through the metadata writer when one is
        configured. Everything else, and any writer failure, yields the
        original bytes.
        """
        if result.status != DocumentStatus.VALIDATED or self.metadata_writer is None:
            return document.content
        try:
            return await self.metadata_writer.write(document.content, document.media_type, result)
        except Exception as e:
            logger.error(f"Metadata writer failed for {document.name}: {e}")
            return document.content

    # ------------------------------------------------------------------------
    # Stage handlers
    # ------------------------------------------------------------------------

    async def _render(self, run: DocumentRun) -> None:
        document = run.document
        is_pdf = document.media_type == PDF_MEDIA_TYPE
        scale = PDF_RENDER_SCALE if is_pdf else IMAGE_RENDER_SCALE

        try:
            page_count = 1
            if is_pdf:
                page_count = await self.renderer.page_count(document.content, document.media_type)

            run.page_numbers = candidate_pages(page_count)
            for page_number in run.page_numbers:
                surface = await self.renderer.render(
                    document.content, document.media_type, page_number, scale
                )
                run.pages.append(surface)
        except Exception as e:
            logger.error(f"Error rendering {document.name}: {e}")
            run.fail(str(e))

    async def _extract(self, run: DocumentRun) -> None:
        # OCR is expensive, so it only runs on page 1; fallback pages are for QR only
        recognizer: Optional[TextRecognizer] = None
        try:
            recognizer = self.recognizer_factory()
            text = await recognizer.recognize(run.pages[0], self.language)
            if not text or not text.strip():
                logger.warning(f"No text recognized on page 1 of {run.document.name}")
                run.ocr_status = StageStatus.NOT_FOUND
                return
            run.ocr_data = extract_recognized_fields(text, self.total_selector)
            run.ocr_status = StageStatus.SUCCESS
        except Exception as e:
            logger.error(f"Error during text recognition of {run.document.name}: {e}")
            run.ocr_status = StageStatus.FAILED
            run.fail(str(e))
        finally:
            if recognizer is not None:
                await self._close_recognizer(recognizer)

    async def _close_recognizer(self, recognizer: TextRecognizer) -> None:
        try:
            await recognizer.close()
        except Exception as e:
            logger.warning(f"Error releasing text recognizer: {e}")

    async def _scan(self, run: DocumentRun) -> None:
        for page_number, surface in zip(run.page_numbers, run.pages):
            try:
                payload = await self.decoder.decode(surface)
            except Exception as e:
                logger.warning(f"QR decoder error on page {page_number} of {run.document.name}: {e}")
                continue

            fields = parse_qr_payload(payload)
            if fields is not None:
                logger.debug(f"QR code found on page {page_number} of {run.document.name}")
                run.qr_data = fields
                run.qr_status = StageStatus.SUCCESS
                break
        else:
            run.qr_status = StageStatus.NOT_FOUND
            run.status = DocumentStatus.CODE_NOT_VISIBLE

        run.release_pages()

    async def _reconcile(self, run: DocumentRun) -> None:
        if run.ocr_data is None:
            run.status = DocumentStatus.FLAGGED_FOR_REVIEW
            run.divergences = [TOTAL_NOT_DETECTED_NO_OCR]
            run.is_within_tolerance = False
            return

        outcome = reconcile(run.qr_data, run.ocr_data, run.tolerance)
        run.status = outcome.status
        run.divergences = outcome.divergences
        run.is_within_tolerance = outcome.is_within_tolerance

    # ------------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------------

    def _build_result(self, run: DocumentRun) -> DocumentResult:
        name = run.document.name

        if run.failure is not None:
            return DocumentResult(
                file_name=name,
                original_name=name,
                status=DocumentStatus.DISCARDED,
                ocr_status=run.ocr_status,
                qr_status=run.qr_status,
                qr_data=run.qr_data,
                ocr_data=run.ocr_data,
                divergences=(technical_error_divergence(run.failure.description),),
                tolerance_used=run.tolerance,
                is_within_tolerance=False,
            )

        status = run.status or DocumentStatus.DISCARDED
        return DocumentResult(
            file_name=name,
            original_name=name,
            status=status,
            ocr_status=run.ocr_status,
            qr_status=run.qr_status,
            qr_data=run.qr_data,
            ocr_data=run.ocr_data,
            divergences=tuple(run.divergences),
            tolerance_used=run.tolerance,
            is_within_tolerance=run.is_within_tolerance,
            new_name=derive_validated_name(name) if status == DocumentStatus.VALIDATED else None,
        )


def build_default_coordinator(
    total_selector: TotalSelector = select_last_amount,
) -> PipelineCoordinator:
    """
    Create a coordinator wired to the pdfplumber, OpenCV, Tesseract and pypdf adapters.
    """
    from .decoder import OpenCVQRDecoder
    from .metadata import PdfMetadataWriter
    from .recognizer import TesseractRecognizer
    from .renderer import PdfPlumberRenderer

    return PipelineCoordinator(
        renderer=PdfPlumberRenderer(),
        decoder=OpenCVQRDecoder(),
        recognizer_factory=TesseractRecognizer,
        metadata_writer=PdfMetadataWriter(),
        total_selector=total_selector,
    )
