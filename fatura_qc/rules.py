"""
Reconciliation rules for the QR / OCR cross-check.

Each rule compares one fact from the QR payload with the same fact read from
the document text and returns a human-readable divergence, or None when the
two sources agree.

- Identity rules: exact comparison, no tolerance
- Amount rules: comparison within a percentage of the QR total
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, Optional

from .schemas import CodeFields, RecognizedFields


class DivergenceCategory(str, Enum):
    """Categories used to group divergence messages in summaries."""
    ISSUER_TAX_ID = "issuer_tax_id"
    TOTAL = "total"
    TECHNICAL_ERROR = "technical_error"


NOT_DETECTED = "not detected"

TOTAL_NOT_DETECTED = "Total: not detected in document text"
TOTAL_NOT_DETECTED_NO_OCR = "Total: not detected in document text (no text recognized)"
TOTAL_NOT_NUMERIC = "Total: QR total is not a valid number"
TECHNICAL_ERROR_PREFIX = "Technical error while processing file"

CENTS = Decimal("0.01")


@dataclass
class ReconciliationContext:
    """Per-call state shared by the rules of one reconciliation."""
    tolerance: Decimal
    is_within_tolerance: bool = False


RuleCheckFn = Callable[[CodeFields, RecognizedFields, ReconciliationContext], Optional[str]]


@dataclass
class ReconciliationRule:
    """
    Represents a single reconciliation rule.

    Attributes:
        code: Machine-readable rule code
        description: Human-readable description of the rule
        category: Divergence category reported by the rule
        check: Function that performs the comparison
    """
    code: str
    description: str
    category: DivergenceCategory
    check: RuleCheckFn


def to_cents(value: float) -> Decimal:
    """Round a float to two decimals, half away from zero."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def categorize_divergence(message: str) -> DivergenceCategory:
    """Map a divergence message back to its category."""
    if message.startswith("NIF"):
        return DivergenceCategory.ISSUER_TAX_ID
    if message.startswith("Total"):
        return DivergenceCategory.TOTAL
    return DivergenceCategory.TECHNICAL_ERROR


def technical_error_divergence(description: str) -> str:
    return f"{TECHNICAL_ERROR_PREFIX}: {description}"


# ============================================================================
# Identity Rules
# ============================================================================

def check_issuer_tax_id(
    code: CodeFields,
    recognized: RecognizedFields,
    context: ReconciliationContext,
) -> Optional[str]:
    """The issuer NIF in the text must equal the QR issuer NIF exactly."""
    if code.issuer_tax_id != recognized.issuer_tax_id:
        seen = recognized.issuer_tax_id or NOT_DETECTED
        return f"NIF Emitente: QR={code.issuer_tax_id}, OCR={seen}"
    return None


# ============================================================================
# Amount Rules
# ============================================================================

def check_total_with_taxes(
    code: CodeFields,
    recognized: RecognizedFields,
    context: ReconciliationContext,
) -> Optional[str]:
    """
    The total read from the text must be within tolerance of the QR total.

    Both totals are rounded to cents first. The allowed margin is
    ``|qr_total| * tolerance / 100`` and a difference equal to the margin
    still matches. Sets ``context.is_within_tolerance`` when it passes.
    """
    context.is_within_tolerance = False

    if not code.has_numeric_total:
        return TOTAL_NOT_NUMERIC

    if recognized.total_with_taxes is None or not math.isfinite(recognized.total_with_taxes):
        return TOTAL_NOT_DETECTED

    qr_total = to_cents(code.total_with_taxes)
    ocr_total = to_cents(recognized.total_with_taxes)
    margin = abs(qr_total) * context.tolerance / 100
    difference = abs(qr_total - ocr_total)

    if difference > margin:
        return (
            f"Total: QR={qr_total}, OCR={ocr_total}, "
            f"difference={difference} exceeds margin={margin.quantize(CENTS, rounding=ROUND_HALF_UP)}"
            f" ({context.tolerance}%)"
        )

    context.is_within_tolerance = True
    return None


# ============================================================================
# Rule Registry
# ============================================================================

# All reconciliation rules in execution order
RECONCILIATION_RULES: list[ReconciliationRule] = [
    ReconciliationRule(
        code="identity:issuer_tax_id",
        description="Issuer NIF in the text must match the QR issuer NIF",
        category=DivergenceCategory.ISSUER_TAX_ID,
        check=check_issuer_tax_id,
    ),
    ReconciliationRule(
        code="amount:total_with_taxes",
        description="Total in the text must be within tolerance of the QR total",
        category=DivergenceCategory.TOTAL,
        check=check_total_with_taxes,
    ),
]


def get_rule_descriptions() -> dict[str, str]:
    """Get a mapping of rule codes to their descriptions."""
    return {rule.code: rule.description for rule in RECONCILIATION_RULES}
