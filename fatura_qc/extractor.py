"""
Field extraction from OCR text.

This module derives the facts needed to cross-check the QR payload from the
free text recognized on the first page of an invoice:
- Issuer NIF (Portuguese taxpayer number)
- Candidate total amount
- Issue date, document number and VAT total for audit display

All extraction here is heuristic. OCR text has no structure we can rely on,
so every field is a best guess and is left as None when nothing matches.
"""

import math
import re
from datetime import date
from typing import Callable, Optional

from dateutil import parser as date_parser

from .config import OCR_EXCERPT_LENGTH, logger
from .schemas import RecognizedFields


# ============================================================================
# Patterns
# ============================================================================

# 9-digit NIF whose leading digit is one of 1, 2, 5, 6, 7, 8, 9
NIF_PATTERN = re.compile(r"\b[125-9]\d{8}\b")

# Amounts with two decimals, either 123,45 or 123.45
AMOUNT_PATTERN = re.compile(r"\b\d+[,.]\d{2}\b")

DATE_PATTERN = re.compile(
    r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4})\b"
)

# Portuguese document numbers: "<type> <series>/<number>", e.g. FT 2024A/123
DOCUMENT_NUMBER_PATTERN = re.compile(
    r"\b((?:FT|FS|FR|NC|ND|RG|GT|GR)\s+[A-Za-z0-9.\-]+/\d+)\b"
)

VAT_TOTAL_PATTERN = re.compile(
    r"\b(?:total\s+)?iva\b.{0,20}?(\d+[,.]\d{2})\b",
    re.IGNORECASE,
)

WHITESPACE_PATTERN = re.compile(r"\s+")


# ============================================================================
# Normalization
# ============================================================================

def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def parse_amount(value: str) -> Optional[float]:
    """
    Parse a two-decimal amount, treating a comma as the decimal separator.

    Returns None for text that is not a number or is too large to be finite.
    """
    try:
        amount = float(value.replace(",", "."))
    except ValueError:
        return None
    return amount if math.isfinite(amount) else None


# ============================================================================
# Field Extraction Helpers
# ============================================================================

def extract_issuer_tax_id(text: str) -> Optional[str]:
    """
    Return the first Portuguese NIF in the text.

    The issuer's NIF usually appears in the header, before the customer's.
    """
    match = NIF_PATTERN.search(text)
    return match.group(0) if match else None


def extract_amounts(text: str) -> list[float]:
    """Return every two-decimal amount in reading order."""
    amounts = []
    for match in AMOUNT_PATTERN.finditer(text):
        amount = parse_amount(match.group(0))
        if amount is not None:
            amounts.append(amount)
    return amounts


def extract_issue_date(text: str) -> Optional[str]:
    """
    Return the first date in the text as an ISO string (YYYY-MM-DD).

    Slash/dash/dot dates are read day-first, as printed on Portuguese invoices.
    """
    for match in DATE_PATTERN.finditer(text):
        raw = match.group(1)
        try:
            parsed = date_parser.parse(raw, dayfirst=not raw[:4].isdigit())
        except (ValueError, OverflowError):
            continue
        return date(parsed.year, parsed.month, parsed.day).isoformat()
    return None


def extract_document_number(text: str) -> Optional[str]:
    match = DOCUMENT_NUMBER_PATTERN.search(text)
    return match.group(1) if match else None


def extract_vat_total(text: str) -> Optional[float]:
    """Return the amount following the last IVA label, if any."""
    matches = VAT_TOTAL_PATTERN.findall(text)
    if not matches:
        return None
    return parse_amount(matches[-1])


# ============================================================================
# Total Selection
# ============================================================================

TotalSelector = Callable[[list[float]], Optional[float]]


def select_last_amount(amounts: list[float]) -> Optional[float]:
    """
    Pick the last amount in reading order as the document total.

    Invoices usually list subtotals and taxes before the grand total line.
    This breaks on layouts that print anything numeric after the total
    (payment references, tax-exclusive summaries).
    """
    return amounts[-1] if amounts else None


def select_largest_amount(amounts: list[float]) -> Optional[float]:
    """Pick the largest amount found, for layouts with trailing footers."""
    return max(amounts) if amounts else None


TOTAL_SELECTORS: dict[str, TotalSelector] = {
    "last": select_last_amount,
    "largest": select_largest_amount,
}

DEFAULT_TOTAL_SELECTOR = "last"


def get_total_selector(name: str) -> TotalSelector:
    """
    Look up a total selector by name.

    Raises:
        ValueError: If no selector is registered under that name
    """
    try:
        return TOTAL_SELECTORS[name]
    except KeyError:
        available = ", ".join(sorted(TOTAL_SELECTORS))
        raise ValueError(f"Unknown total selector: '{name}'. Available: {available}") from None


# ============================================================================
# Main Extraction Function
# ============================================================================

def extract_recognized_fields(
    text: str,
    total_selector: TotalSelector = select_last_amount,
    excerpt_length: int = OCR_EXCERPT_LENGTH,
) -> RecognizedFields:
    """
    Extract the cross-check fields from recognized page text.

    Args:
        text: Raw OCR output for one page
        total_selector: Strategy used to pick the total among all amounts
        excerpt_length: Maximum length of the text excerpt kept for audit

    Returns:
        RecognizedFields with unmatched fields left as None
    """
    normalized = normalize_whitespace(text or "")
    amounts = extract_amounts(normalized)

    fields = RecognizedFields(
        issuer_tax_id=extract_issuer_tax_id(normalized),
        issue_date=extract_issue_date(normalized),
        document_number=extract_document_number(normalized),
        total_with_taxes=total_selector(amounts),
        total_vat=extract_vat_total(normalized),
        text_excerpt=normalized[:excerpt_length],
    )

    logger.debug(
        f"Recognized fields: nif={fields.issuer_tax_id} total={fields.total_with_taxes} "
        f"({len(amounts)} amounts found)"
    )
    return fields
