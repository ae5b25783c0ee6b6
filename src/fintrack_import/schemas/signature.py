"""
Transaction line signatures (CRITICAL).

This module defines THE deterministic fingerprint for a transaction line.
This is the ONLY way lines are compared for duplicates in the system.

Signature format:
    SHA256(description|amount|purchase_date|installment_index|installment_total)
    rendered as 64 lowercase hex characters.

The signature must be:
- Stable: Same logical line always produces the same output
- Tolerant: Case, extra whitespace and decimal noise do not change it
- Discriminating: Different description, amount, date or installment change it
- Pure: No side effects, safe to call from any worker thread
"""

import hashlib
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

# ============================================================================
# SSOT Constants for Signature Generation
# ============================================================================

# Separator between normalized fields
SIGNATURE_SEPARATOR = "|"

# Amount used when a line carries none
DEFAULT_AMOUNT = "0.00"

# Installment values used when a line carries none
DEFAULT_INSTALLMENTS = 1

# Length of a rendered signature
SIGNATURE_LENGTH = 64

_WHITESPACE_RE = re.compile(r"\s+")
_TWO_PLACES = Decimal("0.01")


def normalize_description(description: str | None) -> str:
    """Normalize a description for hashing (lowercase, collapse whitespace, trim)."""
    if not description:
        return ""
    return _WHITESPACE_RE.sub(" ", description.strip().lower())


def normalize_amount(amount: Decimal | str | float | int | None) -> str:
    """
    Normalize amount to a fixed 2-decimal form for hashing.

    Rounds half-up, so 99.9, "99.90" and 99.899999 all yield "99.90".

    Args:
        amount: Amount in various formats (None allowed)

    Returns:
        Normalized amount string with 2 decimal places

    Raises:
        ValueError: If the amount cannot be interpreted as a number
    """
    if amount is None:
        return DEFAULT_AMOUNT

    if isinstance(amount, str):
        # Handle comma as decimal separator (European format)
        text = amount.strip().replace(",", ".")
        try:
            value = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"amount is not a number: {amount!r}") from e
    elif isinstance(amount, float):
        value = Decimal(str(amount))
    elif isinstance(amount, (Decimal, int)):
        value = Decimal(amount)
    else:
        raise ValueError(f"amount must be Decimal, str, float or int, got: {type(amount)}")

    return str(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def normalize_purchase_date(purchase_date: date | str | None) -> str:
    """Normalize a purchase date to YYYY-MM-DD; missing dates resolve to today."""
    if purchase_date is None or purchase_date == "":
        return date.today().isoformat()
    if isinstance(purchase_date, datetime):
        return purchase_date.date().isoformat()
    if isinstance(purchase_date, date):
        return purchase_date.isoformat()
    return purchase_date.strip()[:10]


def normalize_installment(value: int | None) -> int:
    """Installment index or total as hashed and stored; missing or non-positive reads as 1."""
    if value is None or value < 1:
        return DEFAULT_INSTALLMENTS
    return int(value)


def compute_line_signature(
    description: str | None,
    amount: Decimal | str | float | int | None,
    purchase_date: date | str | None,
    installment_index: int | None = None,
    installment_total: int | None = None,
) -> str:
    """
    Compute the deterministic signature for a transaction line.

    This is the SSOT function for line identity during reconciliation.

    Hash components (in order):
    - description: lowercased, whitespace collapsed, trimmed
    - amount: 2 decimal places, half-up
    - purchase_date: YYYY-MM-DD (today when missing)
    - installment_index / installment_total: 1 when missing or below 1

    Returns:
        64-character lowercase hex SHA256 hash

    Examples:
        >>> compute_line_signature("AMAZON  PURCHASE", 99.9, "2024-01-15") == \\
        ...     compute_line_signature("amazon purchase", "99.90", "2024-01-15")
        True
    """
    canonical = SIGNATURE_SEPARATOR.join(
        [
            normalize_description(description),
            normalize_amount(amount),
            normalize_purchase_date(purchase_date),
            str(normalize_installment(installment_index)),
            str(normalize_installment(installment_total)),
        ]
    )

    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def line_signature(line: Any) -> str:
    """
    Compute the signature of any line-like object.

    Works for parsed candidates and stored transaction lines alike: both
    expose description, amount, purchase_date, installment_index and
    installment_total.
    """
    return compute_line_signature(
        line.description,
        line.amount,
        line.purchase_date,
        line.installment_index,
        line.installment_total,
    )


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Args:
        file_bytes: Raw file content

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()
