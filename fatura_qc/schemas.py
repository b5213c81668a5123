"""
Pydantic models for QR payloads, recognized text fields and validation results.

This module defines the core data structures used throughout the Fatura QC Service:
- CodeFields for the parsed Portuguese invoice QR payload
- RecognizedFields for the facts read from the document text via OCR
- DocumentResult for the per-document classification
- BatchSummary for batch-level statistics
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    """Overall classification of a processed document."""
    VALIDATED = "VALIDATED"
    FLAGGED_FOR_REVIEW = "FLAGGED_FOR_REVIEW"
    DISCARDED = "DISCARDED"
    CODE_NOT_VISIBLE = "CODE_NOT_VISIBLE"


class StageStatus(str, Enum):
    """Outcome of a single pipeline stage (text recognition or QR decoding)."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    NOT_FOUND = "NOT_FOUND"
    NOT_STARTED = "NOT_STARTED"


class CodeFields(BaseModel):
    """
    Fields decoded from the invoice QR code.

    Single-letter keys of the payload map to named attributes. Keys without a
    named attribute are kept verbatim in ``extensions`` in payload order.

    A missing, malformed or non-finite total (key ``O``) is stored as NaN so that
    reconciliation can always tell it apart from a genuine zero.
    """
    issuer_tax_id: str = Field(..., min_length=1, description="A: issuer NIF")
    acquirer_tax_id: Optional[str] = Field(None, description="B: acquirer NIF")
    acquirer_country: Optional[str] = Field(None, description="C: acquirer country")
    document_type: str = Field("", description="D: document type (FT, FS, FR, NC, ...)")
    document_status: str = Field("", description="E: document status (N, A, ...)")
    issue_date: str = Field(..., min_length=1, description="F: issue date (YYYYMMDD)")
    document_number: str = Field(..., min_length=1, description="G: document number")
    unique_document_code: Optional[str] = Field(None, description="H: ATCUD")
    total_with_taxes: float = Field(
        math.nan,
        description="O: total including taxes, NaN when absent or not numeric",
    )
    extensions: dict[str, str] = Field(
        default_factory=dict,
        description="Unrecognized payload keys preserved verbatim",
    )

    @property
    def has_numeric_total(self) -> bool:
        return math.isfinite(self.total_with_taxes)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "issuer_tax_id": "500000000",
                    "acquirer_tax_id": "123456789",
                    "acquirer_country": "PT",
                    "document_type": "FT",
                    "document_status": "N",
                    "issue_date": "20240115",
                    "document_number": "FT 2024A/15",
                    "unique_document_code": "CSDF7T5H-15",
                    "total_with_taxes": 123.0,
                    "extensions": {"I1": "PT", "N": "23.00"},
                }
            ]
        }
    }


class RecognizedFields(BaseModel):
    """
    Fields read from the document's visible text.

    Every field is optional: ``None`` means the extractor found nothing, which
    is not the same as a zero amount.
    """
    issuer_tax_id: Optional[str] = None
    issue_date: Optional[str] = None
    document_number: Optional[str] = None
    total_with_taxes: Optional[float] = None
    total_vat: Optional[float] = None
    text_excerpt: str = Field("", description="Bounded excerpt of the normalized text")


class ReconciliationOutcome(BaseModel):
    """Classification produced by comparing CodeFields with RecognizedFields."""
    status: DocumentStatus
    divergences: list[str] = Field(default_factory=list)
    is_within_tolerance: bool = False


class SourceDocument(BaseModel):
    """A document submitted for validation."""
    name: str = Field(..., min_length=1)
    content: bytes
    media_type: str


def _new_id() -> str:
    return uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentResult(BaseModel):
    """
    Validation result for a single document.

    Built once per input document at the end of its pipeline run and never
    modified afterwards.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    file_name: str = Field(..., description="Name of the file as submitted")
    original_name: str = Field(..., description="Original file name")
    processed_at: datetime = Field(default_factory=_utc_now)
    status: DocumentStatus
    ocr_status: StageStatus = StageStatus.NOT_STARTED
    qr_status: StageStatus = StageStatus.NOT_STARTED
    qr_data: Optional[CodeFields] = None
    ocr_data: Optional[RecognizedFields] = None
    divergences: tuple[str, ...] = ()
    tolerance_used: float
    is_within_tolerance: bool = False
    new_name: Optional[str] = Field(
        None,
        description="Renamed file name, present only for VALIDATED documents",
    )


class BatchSummary(BaseModel):
    """
    Aggregated statistics for a batch of processed documents.
    """
    total: int = Field(..., ge=0)
    validated: int = Field(0, ge=0)
    flagged_for_review: int = Field(0, ge=0)
    discarded: int = Field(0, ge=0)
    code_not_visible: int = Field(0, ge=0)
    divergence_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Count of each divergence category across all documents",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "total": 4,
                    "validated": 1,
                    "flagged_for_review": 1,
                    "discarded": 1,
                    "code_not_visible": 1,
                    "divergence_counts": {"total": 1, "technical_error": 1},
                }
            ]
        }
    }
