"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models passed between parsing,
reconciliation and review. No duplicated "near-same" models allowed.
"""

from .signature import (
    SIGNATURE_SEPARATOR,
    compute_file_hash,
    compute_line_signature,
    line_signature,
    normalize_amount,
    normalize_description,
)
from .statement import ParsedLine, ParsedStatement

__all__ = [
    # Signatures
    "SIGNATURE_SEPARATOR",
    "compute_line_signature",
    "compute_file_hash",
    "line_signature",
    "normalize_amount",
    "normalize_description",
    # Parsed statement
    "ParsedStatement",
    "ParsedLine",
]
