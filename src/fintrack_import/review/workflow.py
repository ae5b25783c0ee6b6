"""
Manual review workflow.

Imports whose parse fell below the confidence threshold wait in
MANUAL_REVIEW with their parsed snapshot. Resolving one either reconciles the
stored snapshot (no re-parse) and completes the job, or fails it.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..schemas.statement import ParsedStatement
from ..services.imports import ImportService
from ..services.reconciliation import ReconciliationResult
from ..state_store import ImportJobRecord, ImportJobStatus, InvalidTransitionError

logger = logging.getLogger(__name__)

REJECTED_MESSAGE = "Rejected during manual review"


class ReviewDecision(str, Enum):
    """User's decision on a parked import."""

    ACCEPTED = "ACCEPTED"  # Reconcile the stored parse as-is
    REJECTED = "REJECTED"  # Discard the parse, fail the import


@dataclass
class ReviewOutcome:
    """Result of resolving a review."""

    import_id: int
    decision: ReviewDecision
    status: ImportJobStatus
    reconciliation: Optional[ReconciliationResult] = None


class ReviewWorkflow:
    """
    Manages manual review resolution.

    Responsibilities:
    - List imports awaiting review
    - Load the parsed snapshot of a parked import
    - Accept (reconcile + complete) or reject (fail) it
    """

    def __init__(self, import_service: ImportService):
        """Initialize with the import service that owns reconciliation."""
        self.imports = import_service
        self.store = import_service.store

    def get_pending_reviews(self, user_id: int) -> list[ImportJobRecord]:
        """Get a user's imports waiting for review, newest first."""
        return self.store.list_import_jobs(user_id, status=ImportJobStatus.MANUAL_REVIEW)

    def get_statement(self, import_id: int, user_id: int) -> ParsedStatement:
        """Load the parsed snapshot stored with a parked import."""
        job = self._get_reviewable(import_id, user_id)
        return self._snapshot(job)

    def resolve(self, import_id: int, user_id: int, accept: bool = True) -> ReviewOutcome:
        """
        Resolve a parked import.

        Args:
            import_id: Import in MANUAL_REVIEW
            user_id: Owner of the import
            accept: Reconcile the stored parse (True) or reject it (False)

        Raises:
            ImportNotFoundError: If the import is unknown or owned by someone else
            InvalidTransitionError: If the import is not awaiting review
        """
        job = self._get_reviewable(import_id, user_id)

        if not accept:
            self.store.fail_import_job(job.id, REJECTED_MESSAGE)
            logger.info(f"Import {job.id} rejected during review")
            return ReviewOutcome(job.id, ReviewDecision.REJECTED, ImportJobStatus.FAILED)

        result = self.imports.finalize_import(job, self._snapshot(job))
        logger.info(f"Import {job.id} accepted during review")
        return ReviewOutcome(
            job.id, ReviewDecision.ACCEPTED, ImportJobStatus.COMPLETED, reconciliation=result
        )

    def _get_reviewable(self, import_id: int, user_id: int) -> ImportJobRecord:
        job = self.imports.get_owned_import(import_id, user_id)
        if job.status != ImportJobStatus.MANUAL_REVIEW:
            raise InvalidTransitionError(
                f"Import {import_id} is {job.status.value}, not awaiting review"
            )
        return job

    def _snapshot(self, job: ImportJobRecord) -> ParsedStatement:
        if not job.parsed_data:
            raise ValueError(f"Import {job.id} has no parsed data to review")
        return ParsedStatement.from_dict(json.loads(job.parsed_data))
