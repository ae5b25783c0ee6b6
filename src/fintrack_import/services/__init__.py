"""Import pipeline services: orchestration, reconciliation and categorization."""

from fintrack_import.services.categorization import (
    CategorizationService,
    CategorySuggestion,
    LineNotFoundError,
)
from fintrack_import.services.imports import (
    CardNotFoundError,
    CardOwnershipError,
    ImportAccepted,
    ImportNotFoundError,
    ImportProgress,
    ImportService,
    ImportValidationError,
)
from fintrack_import.services.reconciliation import ReconciliationResult, StatementReconciler
from fintrack_import.services.worker_pool import ImportWorkerPool, QueueFullError

__all__ = [
    "CategorizationService",
    "CategorySuggestion",
    "LineNotFoundError",
    "ImportService",
    "ImportAccepted",
    "ImportProgress",
    "ImportValidationError",
    "CardNotFoundError",
    "CardOwnershipError",
    "ImportNotFoundError",
    "StatementReconciler",
    "ReconciliationResult",
    "ImportWorkerPool",
    "QueueFullError",
]
