"""Import orchestration service.

Owns the import job lifecycle:

    PENDING -> PROCESSING -> COMPLETED | FAILED | MANUAL_REVIEW

Submission is validated and persisted synchronously, then handed to the
bounded worker pool. A worker claims the job, parses the stored file, gates
on confidence and either parks the job for manual review or reconciles it,
categorizes the new lines and completes it. Progress is read back from the
store by polling.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fintrack_import.config import Config
from fintrack_import.confidence.gate import ConfidenceGate, GateDecision
from fintrack_import.parsing.base import StatementParseError
from fintrack_import.parsing.router import ParserRouter
from fintrack_import.schemas.signature import compute_file_hash
from fintrack_import.services.categorization import CategorizationService
from fintrack_import.services.reconciliation import ReconciliationResult, StatementReconciler
from fintrack_import.services.worker_pool import ImportWorkerPool, QueueFullError
from fintrack_import.state_store.sqlite_store import ImportJobStatus, ImportSource

if TYPE_CHECKING:
    from fintrack_import.schemas.statement import ParsedStatement
    from fintrack_import.state_store import ImportJobRecord, StateStore

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "Import started successfully. Processing in background."
QUEUE_FULL_MESSAGE = "Import queue is full"

STATUS_MESSAGES = {
    ImportJobStatus.PENDING: "Waiting for processing",
    ImportJobStatus.PROCESSING: "Processing file",
    ImportJobStatus.COMPLETED: "Import completed successfully",
    ImportJobStatus.FAILED: "Import failed",
    ImportJobStatus.MANUAL_REVIEW: "Requires manual review",
}


class ImportValidationError(Exception):
    """A submission was rejected before any job was created."""

    pass


class CardNotFoundError(ImportValidationError):
    """The target card does not exist."""

    pass


class CardOwnershipError(ImportValidationError):
    """The target card belongs to another user."""

    pass


class ImportNotFoundError(Exception):
    """The import does not exist or belongs to another user."""

    pass


@dataclass
class ImportAccepted:
    """Summary of an import as returned on submission and in listings."""

    import_id: int
    status: ImportJobStatus
    source: ImportSource
    original_file_name: str | None
    message: str
    imported_at: str

    @classmethod
    def from_record(cls, job: ImportJobRecord, message: str | None = None) -> ImportAccepted:
        return cls(
            import_id=job.id,
            status=job.status,
            source=job.source,
            original_file_name=job.original_file_name,
            message=message or STATUS_MESSAGES[job.status],
            imported_at=job.imported_at,
        )


@dataclass
class ImportProgress:
    """Full state of one import, as seen by its owner."""

    import_id: int
    status: ImportJobStatus
    message: str
    imported_at: str
    processed_at: str | None
    error_message: str | None
    parsed_data: dict[str, Any] | None
    total_amount: Decimal | None
    due_date: str | None
    bank_name: str | None
    card_last_four_digits: str | None
    requires_manual_review: bool
    billing_period_id: int | None

    @classmethod
    def from_record(cls, job: ImportJobRecord) -> ImportProgress:
        return cls(
            import_id=job.id,
            status=job.status,
            message=STATUS_MESSAGES[job.status],
            imported_at=job.imported_at,
            processed_at=job.processed_at,
            error_message=job.error_message,
            parsed_data=json.loads(job.parsed_data) if job.parsed_data else None,
            total_amount=job.total_amount,
            due_date=job.due_date,
            bank_name=job.bank_name,
            card_last_four_digits=job.card_last_four_digits,
            requires_manual_review=job.status == ImportJobStatus.MANUAL_REVIEW,
            billing_period_id=job.result_billing_period_id,
        )


class ImportService:
    """Submits, processes and reports statement imports.

    Usage:
        service = ImportService(store, config)
        service.start()
        accepted = service.submit(user_id, card_id, data, "statement.txt")
        progress = service.get_progress(accepted.import_id, user_id)
        service.stop()
    """

    def __init__(
        self,
        state_store: StateStore,
        config: Config | None = None,
        router: ParserRouter | None = None,
        gate: ConfidenceGate | None = None,
        reconciler: StatementReconciler | None = None,
        categorization: CategorizationService | None = None,
        pool: ImportWorkerPool | None = None,
    ) -> None:
        """Wire the service. Collaborators not given are built from `config`."""
        self.store = state_store
        self.config = config or Config()

        self.router = router or ParserRouter.from_config(self.config.parser)
        self.gate = gate or ConfidenceGate(self.config.imports.confidence_threshold)
        self.reconciler = reconciler or StatementReconciler(
            state_store, default_due_days=self.config.imports.default_due_days
        )
        self.categorization = categorization or CategorizationService(
            state_store, auto_apply_threshold=self.config.categorization.auto_apply_threshold
        )
        self.pool = pool or ImportWorkerPool(
            self.process_import,
            worker_count=self.config.imports.worker_count,
            queue_capacity=self.config.imports.queue_capacity,
        )

    def start(self) -> None:
        """Start background workers."""
        self.pool.start()

    def stop(self, wait: bool = True) -> None:
        """Stop background workers after their current job."""
        self.pool.stop(wait=wait)

    # Submission

    def submit(
        self, user_id: int, card_id: int, file_bytes: bytes, filename: str | None
    ) -> ImportAccepted:
        """Accept a statement upload for background processing.

        Raises:
            CardNotFoundError: If the card does not exist (no job created)
            CardOwnershipError: If the card is not the user's (no job created)
            OSError: If the upload cannot be stored (no job created)
            QueueFullError: If the worker queue is full (job recorded as FAILED)
        """
        card = self.store.get_card(card_id)
        if card is None:
            raise CardNotFoundError(f"Card {card_id} not found")
        if card.owner_user_id != user_id:
            raise CardOwnershipError(f"Card {card_id} does not belong to user {user_id}")

        source = ImportSource.from_filename(filename)
        file_path = self._store_upload(file_bytes, filename)

        job_id = self.store.create_import_job(
            user_id=user_id,
            card_id=card_id,
            source=source,
            original_file_name=filename,
            file_path=str(file_path),
        )
        logger.info(f"Import {job_id} submitted by user {user_id}: {filename} ({source.value})")
        accepted = ImportAccepted.from_record(
            self.store.get_import_job(job_id), message=ACCEPTED_MESSAGE
        )

        try:
            self.pool.enqueue(job_id)
        except QueueFullError:
            self.store.fail_import_job(job_id, QUEUE_FULL_MESSAGE)
            logger.warning(f"Import {job_id} rejected: queue full")
            raise

        return accepted

    def _store_upload(self, file_bytes: bytes, filename: str | None) -> Path:
        upload_dir = Path(self.config.imports.upload_directory)
        upload_dir.mkdir(parents=True, exist_ok=True)

        suffix = Path(filename).suffix.lower() if filename else ""
        path = upload_dir / f"{uuid.uuid4().hex}{suffix}"
        path.write_bytes(file_bytes)
        logger.debug(f"Stored upload {filename} as {path} (sha256 {compute_file_hash(file_bytes)[:16]})")
        return path

    def requeue_pending(self) -> int:
        """Enqueue every PENDING job, e.g. after a restart. Returns how many were queued."""
        queued = 0
        for job_id in self.store.list_pending_import_ids():
            try:
                self.pool.enqueue(job_id)
            except QueueFullError:
                logger.warning(f"Queue full; {job_id} and later pending imports stay PENDING")
                break
            queued += 1
        if queued:
            logger.info(f"Re-queued {queued} pending imports")
        return queued

    # Processing

    def process_import(self, job_id: int) -> None:
        """Run one job to a terminal or review state. Called on a worker thread."""
        if not self.store.claim_import_job(job_id):
            logger.warning(f"Import {job_id} was not pending; skipping")
            return

        job = self.store.get_import_job(job_id)
        logger.info(f"Processing import {job_id}")

        try:
            file_bytes = Path(job.file_path).read_bytes() if job.file_path else b""
            statement = self.router.parse(job.source, file_bytes, job.original_file_name)
        except (StatementParseError, OSError) as e:
            logger.error(f"Import {job_id}: file parsing failed: {e}")
            self.store.fail_import_job(job_id, f"File parsing failed: {e}")
            return

        logger.info(
            f"Parsed import {job_id}: {len(statement.lines)} lines, "
            f"total={statement.total_amount}, due={statement.due_date}, "
            f"confidence={statement.confidence}"
        )

        try:
            if self.gate.evaluate(statement.confidence) == GateDecision.MANUAL_REVIEW:
                self.store.mark_import_manual_review(
                    job_id, statement.to_dict(), **self._summary(statement)
                )
                logger.info(
                    f"Import {job_id} needs manual review (confidence {statement.confidence})"
                )
                return

            self.finalize_import(job, statement)
        except Exception as e:
            logger.exception(f"Import {job_id}: processing failed")
            self.store.fail_import_job(job_id, f"Processing failed: {e}")

    def finalize_import(self, job: ImportJobRecord, statement: ParsedStatement) -> ReconciliationResult:
        """Reconcile a statement, categorize its new lines and complete the job.

        The result reference is claimed after categorization, right before
        completion. A job failed after claiming releases it in fail_import_job.
        """
        result = self.reconciler.reconcile_statement(job.card_id, statement)
        categorized = self.categorization.apply_rules(job.user_id, result.created_line_ids)

        self.reconciler.claim_result(job.id, result.billing_period_id)
        self.store.complete_import_job(job.id, statement.to_dict(), **self._summary(statement))
        logger.info(
            f"Import {job.id} completed: period {result.billing_period_id}, "
            f"{result.lines_added} lines added, {result.lines_skipped} skipped, "
            f"{categorized} auto-categorized"
        )
        return result

    def _summary(self, statement: ParsedStatement) -> dict[str, Any]:
        return {
            "total_amount": statement.total_amount,
            "due_date": statement.due_date.isoformat() if statement.due_date else None,
            "bank_name": statement.bank_name,
            "card_last_four_digits": statement.card_last_four_digits,
        }

    # Queries

    def get_owned_import(self, import_id: int, user_id: int) -> ImportJobRecord:
        """Load an import owned by `user_id`.

        Raises:
            ImportNotFoundError: If it does not exist or belongs to someone else
        """
        job = self.store.get_import_job(import_id)
        if job is None or job.user_id != user_id:
            raise ImportNotFoundError(f"Import {import_id} not found or access denied")
        return job

    def get_progress(self, import_id: int, user_id: int) -> ImportProgress:
        """Report the persisted state of an import."""
        return ImportProgress.from_record(self.get_owned_import(import_id, user_id))

    def list_imports(
        self, user_id: int, status: ImportJobStatus | None = None
    ) -> list[ImportAccepted]:
        """List a user's imports, newest first, optionally filtered by status."""
        return [
            ImportAccepted.from_record(job)
            for job in self.store.list_import_jobs(user_id, status=status)
        ]
