"""
Reconciliation engine for QR / OCR cross-checking.

This module runs the reconciliation rules against one pair of QR and OCR
fields, classifies the outcome, and aggregates per-document results into
batch summaries.
"""

from collections import Counter
from decimal import Decimal
from typing import Optional

from .config import MAX_TOLERANCE_PERCENT, MIN_TOLERANCE_PERCENT, logger
from .rules import (
    RECONCILIATION_RULES,
    ReconciliationContext,
    ReconciliationRule,
    categorize_divergence,
)
from .schemas import (
    BatchSummary,
    CodeFields,
    DocumentResult,
    DocumentStatus,
    ReconciliationOutcome,
    RecognizedFields,
)


def check_tolerance(tolerance: float) -> float:
    """
    Ensure a tolerance percentage is within [0, 100].

    Raises:
        ValueError: If the tolerance is out of range or not a number
    """
    if not MIN_TOLERANCE_PERCENT <= tolerance <= MAX_TOLERANCE_PERCENT:
        raise ValueError(
            f"Tolerance must be between {MIN_TOLERANCE_PERCENT:g} and "
            f"{MAX_TOLERANCE_PERCENT:g} percent, got {tolerance}"
        )
    return tolerance


def reconcile(
    code: CodeFields,
    recognized: RecognizedFields,
    tolerance: float,
    rules: Optional[list[ReconciliationRule]] = None,
) -> ReconciliationOutcome:
    """
    Compare QR fields with OCR fields and classify the document.

    Args:
        code: Fields decoded from the QR code
        recognized: Fields read from the document text
        tolerance: Accepted deviation of the total, as a percentage of the QR total
        rules: Optional list of rules to apply (defaults to all RECONCILIATION_RULES)

    Returns:
        ReconciliationOutcome: VALIDATED when no rule reports a divergence,
        FLAGGED_FOR_REVIEW otherwise

    Raises:
        ValueError: If tolerance is outside [0, 100]
    """
    check_tolerance(tolerance)

    if rules is None:
        rules = RECONCILIATION_RULES

    context = ReconciliationContext(tolerance=Decimal(str(tolerance)))
    divergences: list[str] = []

    for rule in rules:
        divergence = rule.check(code, recognized, context)
        if divergence:
            divergences.append(divergence)

    status = DocumentStatus.VALIDATED if not divergences else DocumentStatus.FLAGGED_FOR_REVIEW

    return ReconciliationOutcome(
        status=status,
        divergences=divergences,
        is_within_tolerance=context.is_within_tolerance,
    )


def summarize_results(results: list[DocumentResult]) -> BatchSummary:
    """
    Aggregate per-document results into a batch summary.

    Args:
        results: Results produced by the pipeline, in batch order

    Returns:
        BatchSummary with per-status counts and divergence category counts
    """
    status_counts = Counter(result.status for result in results)
    divergence_counts = Counter(
        categorize_divergence(divergence).value
        for result in results
        for divergence in result.divergences
    )

    summary = BatchSummary(
        total=len(results),
        validated=status_counts[DocumentStatus.VALIDATED],
        flagged_for_review=status_counts[DocumentStatus.FLAGGED_FOR_REVIEW],
        discarded=status_counts[DocumentStatus.DISCARDED],
        code_not_visible=status_counts[DocumentStatus.CODE_NOT_VISIBLE],
        divergence_counts=dict(divergence_counts),
    )

    logger.info(
        f"Batch summary: {summary.validated} validated, "
        f"{summary.flagged_for_review} for review, {summary.discarded} discarded, "
        f"{summary.code_not_visible} without visible QR code"
    )
    return summary


def format_summary_text(summary: BatchSummary) -> str:
    """
    Format a BatchSummary as human-readable text for CLI output.

    Args:
        summary: BatchSummary to format

    Returns:
        Formatted string for display
    """
    lines = [
        "=" * 50,
        "VALIDATION SUMMARY",
        "=" * 50,
        f"Total documents processed: {summary.total}",
        f"Validated:                 {summary.validated}",
        f"Flagged for review:        {summary.flagged_for_review}",
        f"Discarded:                 {summary.discarded}",
        f"QR code not visible:       {summary.code_not_visible}",
        "",
    ]

    if summary.divergence_counts:
        lines.append("Divergences:")
        lines.append("-" * 40)
        for category, count in sorted(summary.divergence_counts.items(), key=lambda x: -x[1]):
            lines.append(f"  {category}: {count}")
        lines.append("")

    lines.append("=" * 50)

    return "\n".join(lines)
