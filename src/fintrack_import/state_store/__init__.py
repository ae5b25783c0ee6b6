"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Registered cards
- Import jobs and their lifecycle
- Billing periods and their transaction lines
- Learned merchant rules

Enforces one billing period per (card, month) and one result reference per
billing period.
"""

from .sqlite_store import (
    BillingPeriodRecord,
    CardRecord,
    CategorizationSource,
    ImportJobRecord,
    ImportJobStatus,
    ImportSource,
    InvalidTransitionError,
    MerchantRuleRecord,
    StateStore,
    TransactionLineRecord,
)

__all__ = [
    "StateStore",
    "CardRecord",
    "ImportJobRecord",
    "BillingPeriodRecord",
    "TransactionLineRecord",
    "MerchantRuleRecord",
    "ImportJobStatus",
    "ImportSource",
    "CategorizationSource",
    "InvalidTransitionError",
]
