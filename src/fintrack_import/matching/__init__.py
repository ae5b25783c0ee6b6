"""Merchant key normalization for grouping descriptions of the same merchant."""

from fintrack_import.matching.merchant_key import MAX_KEY_LENGTH, normalize_merchant_key

__all__ = ["MAX_KEY_LENGTH", "normalize_merchant_key"]
