"""
Parser for the Portuguese invoice QR code payload.

The payload is a sequence of ``key:value`` segments separated by ``*``, e.g.::

    A:500000000*B:123456789*C:PT*D:FT*E:N*F:20240115*G:FT 2024A/15*H:CSDF7T5H-15*...*O:123.00

Only the keys needed for cross-checking get named fields; every other key is
kept verbatim so nothing in the payload is lost.
"""

import math
import re
from typing import Optional

from .config import logger
from .schemas import CodeFields


SEGMENT_SEPARATOR = "*"
KEY_VALUE_SEPARATOR = ":"

# Payload key -> CodeFields attribute
FIELD_KEYS: dict[str, str] = {
    "A": "issuer_tax_id",
    "B": "acquirer_tax_id",
    "C": "acquirer_country",
    "D": "document_type",
    "E": "document_status",
    "F": "issue_date",
    "G": "document_number",
    "H": "unique_document_code",
}

TOTAL_KEY = "O"
TOTAL_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")

# A payload without these is treated as "no code available"
REQUIRED_FIELDS: tuple[str, ...] = ("issuer_tax_id", "issue_date", "document_number")


def parse_total(value: str) -> float:
    """
    Convert the ``O`` segment to a float.

    Only plain decimal numbers (``123``, ``123.45``, ``-5.00``) are accepted.
    Anything else, including values too large to be finite, becomes NaN.
    """
    text = value.strip()
    if not TOTAL_PATTERN.fullmatch(text):
        return math.nan
    total = float(text)
    return total if math.isfinite(total) else math.nan


def parse_qr_payload(payload: Optional[str]) -> Optional[CodeFields]:
    """
    Parse a raw QR payload into CodeFields.

    Args:
        payload: Text decoded from the QR code

    Returns:
        CodeFields, or None if the issuer NIF, issue date or document
        number is missing
    """
    if not payload or not isinstance(payload, str):
        return None

    data: dict = {}
    extensions: dict[str, str] = {}

    for segment in payload.split(SEGMENT_SEPARATOR):
        key, sep, value = segment.partition(KEY_VALUE_SEPARATOR)
        if not sep:
            continue

        if key in FIELD_KEYS:
            data[FIELD_KEYS[key]] = value
        elif key == TOTAL_KEY:
            data["total_with_taxes"] = parse_total(value)
        else:
            extensions[key] = value

    missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
    if missing:
        logger.debug(f"Rejected QR payload, missing fields: {', '.join(missing)}")
        return None

    return CodeFields(**data, extensions=extensions)


def build_qr_payload(fields: CodeFields) -> str:
    """
    Serialize CodeFields back to the ``key:value*...`` payload format.

    Optional fields that are None are omitted. The total is written last with
    two decimals, after any extension segments.
    """
    segments: list[str] = []

    for key, attribute in FIELD_KEYS.items():
        value = getattr(fields, attribute)
        if value is None:
            continue
        segments.append(f"{key}{KEY_VALUE_SEPARATOR}{value}")

    for key, value in fields.extensions.items():
        segments.append(f"{key}{KEY_VALUE_SEPARATOR}{value}")

    if fields.has_numeric_total:
        segments.append(f"{TOTAL_KEY}{KEY_VALUE_SEPARATOR}{fields.total_with_taxes:.2f}")

    return SEGMENT_SEPARATOR.join(segments)
