"""
Fatura QC Service

Cross-checks the QR code of Portuguese invoices against the document's
visible text and classifies each document for review.
"""

__version__ = "0.1.0"
__author__ = "Fatura QC Team"

from .schemas import (
    CodeFields,
    RecognizedFields,
    DocumentResult,
    DocumentStatus,
    StageStatus,
    SourceDocument,
    BatchSummary,
)
from .qr_parser import parse_qr_payload, build_qr_payload
from .extractor import extract_recognized_fields
from .reconciler import reconcile, summarize_results
from .pipeline import PipelineCoordinator, CancellationToken, build_default_coordinator

__all__ = [
    "CodeFields",
    "RecognizedFields",
    "DocumentResult",
    "DocumentStatus",
    "StageStatus",
    "SourceDocument",
    "BatchSummary",
    "parse_qr_payload",
    "build_qr_payload",
    "extract_recognized_fields",
    "reconcile",
    "summarize_results",
    "PipelineCoordinator",
    "CancellationToken",
    "build_default_coordinator",
]
