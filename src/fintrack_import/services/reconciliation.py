"""Statement reconciliation service.

Merges parsed statement lines into the billing period of a card and month
without ever creating duplicates:
- Finds or creates the single billing period for (card, year-month)
- Compares every candidate line by signature against the lines already in the
  period and the lines added earlier in the same batch
- Inserts only unseen lines and keeps the period total equal to the sum of
  its lines
- Records which import job produced the period, first job wins

Re-running the same statement is a no-op: zero lines added, total unchanged.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from fintrack_import.schemas.signature import line_signature, normalize_installment

if TYPE_CHECKING:
    from fintrack_import.schemas.statement import ParsedLine, ParsedStatement
    from fintrack_import.state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_DUE_DAYS = 30

# Striped locks shared by every reconciler in the process; a given
# (card, month) always maps to the same stripe
LOCK_STRIPES = 64
_period_locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))


def _period_lock(card_id: int, year_month: str) -> threading.Lock:
    return _period_locks[hash((card_id, year_month)) % LOCK_STRIPES]


@dataclass
class ReconciliationResult:
    """Outcome of merging one batch of lines into a billing period."""

    billing_period_id: int
    created_line_ids: list[int] = field(default_factory=list)
    lines_added: int = 0
    lines_skipped: int = 0
    period_created: bool = False
    total_amount: Decimal = Decimal("0.00")


class StatementReconciler:
    """Reconciles parsed lines against stored billing periods.

    Writers to the same (card, month) are serialized by an in-process lock.
    Across processes only period creation is guarded, by the UNIQUE
    (card_id, year_month) constraint; line deduplication assumes a single
    process writes a given period at a time.

    Usage:
        reconciler = StatementReconciler(store)
        result = reconciler.reconcile_statement(card_id, statement)
        reconciler.claim_result(job_id, result.billing_period_id)
    """

    def __init__(self, state_store: StateStore, default_due_days: int = DEFAULT_DUE_DAYS) -> None:
        self.store = state_store
        self.default_due_days = default_due_days

    def resolve_due_date(self, due_date: date | None) -> date:
        """Use the statement's due date, else today plus the default offset."""
        if due_date is not None:
            return due_date
        return date.today() + timedelta(days=self.default_due_days)

    def resolve_year_month(self, statement_month: str | None, due_date: date) -> str:
        """Use the statement month, else the month of the due date."""
        if statement_month:
            return statement_month
        return f"{due_date.year:04d}-{due_date.month:02d}"

    def reconcile_statement(self, card_id: int, statement: ParsedStatement) -> ReconciliationResult:
        """Reconcile a whole parsed statement into the card's billing period."""
        due_date = self.resolve_due_date(statement.due_date)
        year_month = self.resolve_year_month(statement.statement_month, due_date)
        return self.reconcile(card_id, year_month, statement.lines, due_date=due_date)

    def reconcile(
        self,
        card_id: int,
        year_month: str | None,
        lines: Iterable[ParsedLine],
        due_date: date | None = None,
    ) -> ReconciliationResult:
        """Merge candidate lines into the billing period for (card, month).

        Args:
            card_id: Target card
            year_month: Target month as YYYY-MM (month of the due date if None)
            lines: Candidate lines from a parsed statement
            due_date: Due date for a newly created period

        Returns:
            ReconciliationResult with the ids of the lines actually inserted
        """
        resolved_due = self.resolve_due_date(due_date)
        year_month = self.resolve_year_month(year_month, resolved_due)

        with _period_lock(card_id, year_month):
            period, created = self.store.get_or_create_billing_period(
                card_id, year_month, resolved_due.isoformat()
            )
            if created:
                logger.info(f"Created billing period {period.id} for card {card_id} {year_month}")

            seen = {line_signature(line) for line in self.store.list_transaction_lines(period.id)}
            result = ReconciliationResult(
                billing_period_id=period.id,
                period_created=created,
                total_amount=period.total_amount,
            )

            for candidate in lines:
                signature = line_signature(candidate)
                if signature in seen:
                    logger.debug(f"Skipping duplicate line '{candidate.description}'")
                    result.lines_skipped += 1
                    continue

                try:
                    line_id = self._insert(period.id, candidate)
                except (sqlite3.Error, ValueError, ArithmeticError) as e:
                    logger.warning(f"Could not add line '{candidate.description}': {e}")
                    result.lines_skipped += 1
                    continue

                seen.add(signature)
                result.created_line_ids.append(line_id)
                result.lines_added += 1
                result.total_amount = self.store.refresh_billing_period_total(period.id)

        logger.info(
            f"Reconciled card {card_id} {year_month}: {result.lines_added} added, "
            f"{result.lines_skipped} skipped, total {result.total_amount}"
        )
        return result

    def _insert(self, billing_period_id: int, candidate: ParsedLine) -> int:
        amount = Decimal(str(candidate.amount)) if candidate.amount is not None else Decimal("0.00")
        purchase_date = candidate.purchase_date.isoformat() if candidate.purchase_date else None
        return self.store.add_transaction_line(
            billing_period_id,
            description=candidate.description or "",
            amount=amount,
            purchase_date=purchase_date,
            installment_index=normalize_installment(candidate.installment_index),
            installment_total=normalize_installment(candidate.installment_total),
        )

    def claim_result(self, job_id: int, billing_period_id: int) -> bool:
        """Record the period as the job's result unless another job already holds it."""
        claimed = self.store.claim_result_reference(job_id, billing_period_id)
        if not claimed:
            logger.info(
                f"Billing period {billing_period_id} already referenced by another import; "
                f"import {job_id} completes without reference"
            )
        return claimed
