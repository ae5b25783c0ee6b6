"""
Statement upload → Parsing → Reconciliation → Merchant categorization

A deterministic, testable pipeline that turns uploaded card statements into
billing periods and transaction lines with confidence gating, strict
signature-based deduplication, and learned merchant categorization.
"""

__version__ = "0.1.0"
