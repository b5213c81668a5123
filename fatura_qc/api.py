"""
FastAPI application for the Fatura QC Service.

Provides REST API endpoints for:
- Health check
- Listing result statuses and reconciliation rules
- Validating uploaded invoice PDFs and images
"""

from typing import List

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import (
    API_HOST,
    API_PORT,
    DEFAULT_TOLERANCE_PERCENT,
    MAX_TOLERANCE_PERCENT,
    MAX_UPLOAD_SIZE_MB,
    MIN_TOLERANCE_PERCENT,
    logger,
    media_type_for,
)
from .pipeline import PipelineCoordinator, build_default_coordinator
from .reconciler import summarize_results
from .rules import RECONCILIATION_RULES
from .schemas import BatchSummary, DocumentResult, DocumentStatus, SourceDocument, StageStatus


# ============================================================================
# FastAPI App Configuration
# ============================================================================

app = FastAPI(
    title="Fatura QC Service API",
    description="""
    Portuguese invoice QR code cross-check API.

    Upload invoice PDFs or images; each document's QR code is decoded and
    compared with the issuer NIF and total read from the document text.

    ## Result statuses

    - **VALIDATED**: QR code and text agree within tolerance
    - **FLAGGED_FOR_REVIEW**: QR code found, but the text disagrees
    - **CODE_NOT_VISIBLE**: no readable QR code on the first or last page
    - **DISCARDED**: the file could not be processed
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Request/Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ValidateDocumentsResponse(BaseModel):
    """Response for the /validate-documents endpoint."""
    summary: BatchSummary
    results: List[DocumentResult]


# ============================================================================
# Dependencies
# ============================================================================

def get_coordinator() -> PipelineCoordinator:
    """Build a fresh coordinator per request; no state is shared between requests."""
    return build_default_coordinator()


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns the service status and version information.
    """
    from . import __version__
    return HealthResponse(status="ok", version=__version__)


@app.get("/statuses", tags=["System"])
async def list_statuses():
    """List document and stage statuses and the reconciliation rules applied."""
    return {
        "document_statuses": [status.value for status in DocumentStatus],
        "stage_statuses": [status.value for status in StageStatus],
        "rules": [
            {"code": rule.code, "description": rule.description}
            for rule in RECONCILIATION_RULES
        ],
    }


@app.post(
    "/validate-documents",
    response_model=ValidateDocumentsResponse,
    tags=["Validation"],
    summary="Validate invoice PDFs or images",
)
async def validate_documents(
    files: List[UploadFile] = File(..., description="Invoice PDFs or images"),
    tolerance: float = Query(
        DEFAULT_TOLERANCE_PERCENT,
        ge=MIN_TOLERANCE_PERCENT,
        le=MAX_TOLERANCE_PERCENT,
        description="Accepted total deviation, in percent of the QR total",
    ),
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> ValidateDocumentsResponse:
    """
    Validate uploaded invoices, in upload order.

    **Processing Steps:**
    1. Render the first page (and the last page of multi-page PDFs)
    2. Read the first page's text with OCR
    3. Decode the QR code from the rendered pages
    4. Compare issuer NIF and total between QR code and text

    **Limitations:**
    - Maximum file size per file: MAX_UPLOAD_SIZE_MB (environment, default 10MB)
    - Supported formats: PDF, PNG, JPEG, TIFF, BMP, WebP
    """
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")

    max_size = MAX_UPLOAD_SIZE_MB * 1024 * 1024
    documents: List[SourceDocument] = []

    for file in files:
        filename = file.filename or "upload"
        media_type = media_type_for(filename)
        if media_type is None:
            raise HTTPException(status_code=415, detail=f"{filename}: Unsupported file type")

        content = await file.read()
        if len(content) > max_size:
            raise HTTPException(
                status_code=413,
                detail=f"{filename}: File too large (max {MAX_UPLOAD_SIZE_MB}MB)",
            )

        documents.append(SourceDocument(name=filename, content=content, media_type=media_type))

    logger.info(f"Received validation request for {len(documents)} documents")

    results = await coordinator.process_batch(documents, tolerance)

    return ValidateDocumentsResponse(
        summary=summarize_results(results),
        results=results,
    )


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# ============================================================================
# Main Entry Point
# ============================================================================

def run_server():
    """Run the API server using uvicorn."""
    import uvicorn
    logger.info(f"Fatura QC Service API starting on {API_HOST}:{API_PORT}")
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run_server()
