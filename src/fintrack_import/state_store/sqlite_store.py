"""
SQLite-based state store implementation.

Tables:
- cards: Minimal card registry (ownership validation only)
- import_jobs: One row per submitted statement, with its state machine
- billing_periods: One row per (card, year-month)
- transaction_lines: Lines merged into a billing period
- merchant_rules: Learned merchant → category rules (migration 001)

Every import job state change goes through a transition method that performs a
conditional UPDATE on the current status. A transition that is not allowed
from the job's current state raises InvalidTransitionError; the worker claim
returns False instead so that a lost race is not an error.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Seconds a connection waits on a locked database before raising
BUSY_TIMEOUT_SECONDS = 30.0


class InvalidTransitionError(Exception):
    """Raised when an import job state change is not allowed from its current state."""

    pass


class ImportJobStatus(str, Enum):
    """Lifecycle state of an import job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    MANUAL_REVIEW = "MANUAL_REVIEW"

    @property
    def is_terminal(self) -> bool:
        """COMPLETED and FAILED are final; a resolved review leaves MANUAL_REVIEW."""
        return self in (ImportJobStatus.COMPLETED, ImportJobStatus.FAILED)


class ImportSource(str, Enum):
    """Kind of document an import was created from."""

    DOCUMENT = "DOCUMENT"
    IMAGE = "IMAGE"
    MESSAGE = "MESSAGE"
    MANUAL = "MANUAL"

    @classmethod
    def from_filename(cls, filename: str | None) -> "ImportSource":
        """Derive the source kind from a file extension."""
        if not filename or "." not in filename:
            return cls.MANUAL

        extension = filename.rsplit(".", 1)[1].lower()
        if extension in ("pdf", "txt", "csv"):
            return cls.DOCUMENT
        if extension in ("jpg", "jpeg", "png", "gif"):
            return cls.IMAGE
        if extension in ("eml", "msg"):
            return cls.MESSAGE
        return cls.MANUAL


class CategorizationSource(str, Enum):
    """How a transaction line got its category."""

    NONE = "NONE"
    MANUAL = "MANUAL"
    AUTO_RULE = "AUTO_RULE"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _decimal_or_none(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _text_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


@dataclass
class CardRecord:
    """A card registered to a user."""

    id: int
    owner_user_id: int
    name: str
    last_four: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CardRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            owner_user_id=row["owner_user_id"],
            name=row["name"],
            last_four=row["last_four"],
            created_at=row["created_at"],
        )


@dataclass
class ImportJobRecord:
    """Record of a statement import job."""

    id: int
    user_id: int
    card_id: int
    status: ImportJobStatus
    source: ImportSource
    original_file_name: str | None
    file_path: str | None
    parsed_data: str | None  # JSON snapshot of the parsed statement
    error_message: str | None
    imported_at: str
    processed_at: str | None
    total_amount: Decimal | None
    due_date: str | None
    bank_name: str | None
    card_last_four_digits: str | None
    result_billing_period_id: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ImportJobRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            card_id=row["card_id"],
            status=ImportJobStatus(row["status"]),
            source=ImportSource(row["source"]),
            original_file_name=row["original_file_name"],
            file_path=row["file_path"],
            parsed_data=row["parsed_data"],
            error_message=row["error_message"],
            imported_at=row["imported_at"],
            processed_at=row["processed_at"],
            total_amount=_decimal_or_none(row["total_amount"]),
            due_date=row["due_date"],
            bank_name=row["bank_name"],
            card_last_four_digits=row["card_last_four_digits"],
            result_billing_period_id=row["result_billing_period_id"],
        )


@dataclass
class BillingPeriodRecord:
    """One card's statement for one month."""

    id: int
    card_id: int
    year_month: str
    due_date: str
    total_amount: Decimal
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BillingPeriodRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            card_id=row["card_id"],
            year_month=row["year_month"],
            due_date=row["due_date"],
            total_amount=Decimal(row["total_amount"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class TransactionLineRecord:
    """A line within a billing period."""

    id: int
    billing_period_id: int
    description: str
    amount: Decimal
    purchase_date: str | None
    installment_index: int
    installment_total: int
    category: str | None
    categorization_source: CategorizationSource
    merchant_rule_id: int | None
    merchant_key: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TransactionLineRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            billing_period_id=row["billing_period_id"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            purchase_date=row["purchase_date"],
            installment_index=row["installment_index"],
            installment_total=row["installment_total"],
            category=row["category"],
            categorization_source=CategorizationSource(row["categorization_source"]),
            merchant_rule_id=row["merchant_rule_id"],
            merchant_key=row["merchant_key"],
            created_at=row["created_at"],
        )


@dataclass
class MerchantRuleRecord:
    """A learned merchant → category rule."""

    id: int
    user_id: int
    merchant_key: str
    pattern: str
    category: str
    confirmation_count: int
    times_applied: int
    times_overridden: int
    created_at: str
    updated_at: str
    last_confirmed_at: str | None

    def is_auto_apply(self, threshold: int) -> bool:
        """Whether this rule has been confirmed often enough to apply itself."""
        return self.confirmation_count >= threshold

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MerchantRuleRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            merchant_key=row["merchant_key"],
            pattern=row["pattern"],
            category=row["category"],
            confirmation_count=row["confirmation_count"],
            times_applied=row["times_applied"],
            times_overridden=row["times_overridden"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_confirmed_at=row["last_confirmed_at"],
        )


class StateStore:
    """
    SQLite-based state store for the import pipeline.

    Provides persistent tracking of:
    - Registered cards
    - Import jobs and their state transitions
    - Billing periods and transaction lines
    - Merchant categorization rules

    Each operation opens its own connection, so the store can be shared by
    worker threads. WAL mode and a busy timeout let concurrent writers queue
    instead of failing.
    """

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        Args:
            immediate: Take the write lock up front (read-modify-write operations)
        """
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        finally:
            conn.close()

        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cards (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    last_four TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS import_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    card_id INTEGER NOT NULL REFERENCES cards(id),
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    source TEXT NOT NULL,
                    original_file_name TEXT,
                    file_path TEXT,
                    parsed_data TEXT,  -- JSON snapshot
                    error_message TEXT,
                    imported_at TEXT NOT NULL,
                    processed_at TEXT,
                    total_amount TEXT,  -- Decimal as text
                    due_date TEXT,
                    bank_name TEXT,
                    card_last_four_digits TEXT,
                    result_billing_period_id INTEGER REFERENCES billing_periods(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS billing_periods (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    card_id INTEGER NOT NULL REFERENCES cards(id),
                    year_month TEXT NOT NULL,  -- YYYY-MM
                    due_date TEXT NOT NULL,
                    total_amount TEXT NOT NULL DEFAULT '0.00',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (card_id, year_month)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transaction_lines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    billing_period_id INTEGER NOT NULL REFERENCES billing_periods(id),
                    description TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    purchase_date TEXT,
                    installment_index INTEGER NOT NULL DEFAULT 1,
                    installment_total INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_import_jobs_user ON import_jobs(user_id, imported_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_lines_period ON transaction_lines(billing_period_id)"
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Card methods

    def create_card(self, owner_user_id: int, name: str, last_four: str | None = None) -> int:
        """Register a card for a user. Returns the card id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO cards (owner_user_id, name, last_four, created_at) VALUES (?, ?, ?, ?)",
                (owner_user_id, name, last_four, _now()),
            )
            return cursor.lastrowid

    def get_card(self, card_id: int) -> CardRecord | None:
        """Get a card by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM cards WHERE id = ?", (card_id,)).fetchone()
            return CardRecord.from_row(row) if row else None

    def list_cards(self, owner_user_id: int) -> list[CardRecord]:
        """List cards owned by a user."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM cards WHERE owner_user_id = ? ORDER BY id", (owner_user_id,)
            ).fetchall()
            return [CardRecord.from_row(row) for row in rows]

    # Import job methods

    def create_import_job(
        self,
        user_id: int,
        card_id: int,
        source: ImportSource,
        original_file_name: str | None,
        file_path: str | None,
    ) -> int:
        """Persist a new PENDING import job. Returns the job id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO import_jobs
                (user_id, card_id, status, source, original_file_name, file_path, imported_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    user_id,
                    card_id,
                    ImportJobStatus.PENDING.value,
                    source.value,
                    original_file_name,
                    file_path,
                    _now(),
                ),
            )
            return cursor.lastrowid

    def get_import_job(self, job_id: int) -> ImportJobRecord | None:
        """Get an import job by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM import_jobs WHERE id = ?", (job_id,)).fetchone()
            return ImportJobRecord.from_row(row) if row else None

    def list_import_jobs(
        self, user_id: int, status: ImportJobStatus | None = None
    ) -> list[ImportJobRecord]:
        """List a user's import jobs, newest first."""
        query = "SELECT * FROM import_jobs WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY imported_at DESC, id DESC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [ImportJobRecord.from_row(row) for row in rows]

    def list_pending_import_ids(self) -> list[int]:
        """Ids of every PENDING job, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id FROM import_jobs WHERE status = ? ORDER BY id",
                (ImportJobStatus.PENDING.value,),
            ).fetchall()
            return [row["id"] for row in rows]

    def _transition(
        self,
        conn: sqlite3.Connection,
        job_id: int,
        allowed_from: tuple[ImportJobStatus, ...],
        target: ImportJobStatus,
        assignments: dict[str, Any],
    ) -> bool:
        """Conditionally move a job to `target`. Returns False if the current state forbids it."""
        columns = {"status": target.value, **assignments}
        set_clause = ", ".join(f"{name} = ?" for name in columns)
        placeholders = ", ".join("?" for _ in allowed_from)
        cursor = conn.execute(
            f"UPDATE import_jobs SET {set_clause} WHERE id = ? AND status IN ({placeholders})",
            (*columns.values(), job_id, *(s.value for s in allowed_from)),
        )
        return cursor.rowcount == 1

    def _require_transition(
        self,
        job_id: int,
        allowed_from: tuple[ImportJobStatus, ...],
        target: ImportJobStatus,
        assignments: dict[str, Any],
    ) -> None:
        with self._transaction(immediate=True) as conn:
            if self._transition(conn, job_id, allowed_from, target, assignments):
                return
            row = conn.execute("SELECT status FROM import_jobs WHERE id = ?", (job_id,)).fetchone()

        if row is None:
            raise InvalidTransitionError(f"Import job {job_id} does not exist")
        raise InvalidTransitionError(
            f"Import job {job_id} cannot move from {row['status']} to {target.value}"
        )

    def claim_import_job(self, job_id: int) -> bool:
        """
        Claim a PENDING job for processing (PENDING → PROCESSING).

        Returns:
            True if this caller now owns the job, False if it was not PENDING
        """
        with self._transaction(immediate=True) as conn:
            return self._transition(
                conn, job_id, (ImportJobStatus.PENDING,), ImportJobStatus.PROCESSING, {}
            )

    def mark_import_manual_review(
        self,
        job_id: int,
        parsed_data: dict[str, Any],
        total_amount: Decimal | None = None,
        due_date: str | None = None,
        bank_name: str | None = None,
        card_last_four_digits: str | None = None,
    ) -> None:
        """PROCESSING → MANUAL_REVIEW, storing the parsed snapshot for later resolution."""
        self._require_transition(
            job_id,
            (ImportJobStatus.PROCESSING,),
            ImportJobStatus.MANUAL_REVIEW,
            {
                "parsed_data": json.dumps(parsed_data),
                "processed_at": _now(),
                "total_amount": _text_or_none(total_amount),
                "due_date": due_date,
                "bank_name": bank_name,
                "card_last_four_digits": card_last_four_digits,
            },
        )

    def complete_import_job(
        self,
        job_id: int,
        parsed_data: dict[str, Any] | None = None,
        total_amount: Decimal | None = None,
        due_date: str | None = None,
        bank_name: str | None = None,
        card_last_four_digits: str | None = None,
    ) -> None:
        """
        PROCESSING or MANUAL_REVIEW → COMPLETED.

        Summary fields left as None keep whatever the job already stores, so a
        resolved manual review retains the snapshot recorded when it was parked.
        """
        assignments: dict[str, Any] = {"processed_at": _now()}
        if parsed_data is not None:
            assignments["parsed_data"] = json.dumps(parsed_data)
        if total_amount is not None:
            assignments["total_amount"] = str(total_amount)
        if due_date is not None:
            assignments["due_date"] = due_date
        if bank_name is not None:
            assignments["bank_name"] = bank_name
        if card_last_four_digits is not None:
            assignments["card_last_four_digits"] = card_last_four_digits

        self._require_transition(
            job_id,
            (ImportJobStatus.PROCESSING, ImportJobStatus.MANUAL_REVIEW),
            ImportJobStatus.COMPLETED,
            assignments,
        )

    def fail_import_job(self, job_id: int, error_message: str) -> None:
        """
        Move a non-terminal job to FAILED with a reason.

        PENDING is allowed for jobs that never reached a worker (queue full),
        MANUAL_REVIEW for rejected reviews.
        A result reference the job holds is released.
        """
        self._require_transition(
            job_id,
            (
                ImportJobStatus.PENDING,
                ImportJobStatus.PROCESSING,
                ImportJobStatus.MANUAL_REVIEW,
            ),
            ImportJobStatus.FAILED,
            {
                "error_message": error_message,
                "processed_at": _now(),
                "result_billing_period_id": None,
            },
        )

    def claim_result_reference(self, job_id: int, billing_period_id: int) -> bool:
        """
        Record `billing_period_id` as the job's result if no other job holds it.

        The unique partial index on result_billing_period_id backs this check up
        against concurrent writers.

        Returns:
            True if the reference was recorded, False if another job already holds it
        """
        try:
            with self._transaction(immediate=True) as conn:
                cursor = conn.execute(
                    """
                    UPDATE import_jobs SET result_billing_period_id = ?
                    WHERE id = ?
                      AND result_billing_period_id IS NULL
                      AND NOT EXISTS (
                          SELECT 1 FROM import_jobs WHERE result_billing_period_id = ?
                      )
                """,
                    (billing_period_id, job_id, billing_period_id),
                )
                return cursor.rowcount == 1
        except sqlite3.IntegrityError:
            logger.debug(
                f"Billing period {billing_period_id} already referenced; "
                f"job {job_id} completes without it"
            )
            return False

    # Billing period methods

    def get_or_create_billing_period(
        self, card_id: int, year_month: str, due_date: str
    ) -> tuple[BillingPeriodRecord, bool]:
        """
        Find the billing period for (card, month), creating it if missing.

        Returns:
            (period, created) where created is True if this call inserted it
        """
        now = _now()
        with self._transaction(immediate=True) as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO billing_periods
                (card_id, year_month, due_date, total_amount, created_at, updated_at)
                VALUES (?, ?, ?, '0.00', ?, ?)
            """,
                (card_id, year_month, due_date, now, now),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM billing_periods WHERE card_id = ? AND year_month = ?",
                (card_id, year_month),
            ).fetchone()
            return BillingPeriodRecord.from_row(row), created

    def get_billing_period(self, billing_period_id: int) -> BillingPeriodRecord | None:
        """Get a billing period by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM billing_periods WHERE id = ?", (billing_period_id,)
            ).fetchone()
            return BillingPeriodRecord.from_row(row) if row else None

    def list_billing_periods(self, card_id: int) -> list[BillingPeriodRecord]:
        """List a card's billing periods, most recent month first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM billing_periods WHERE card_id = ? ORDER BY year_month DESC",
                (card_id,),
            ).fetchall()
            return [BillingPeriodRecord.from_row(row) for row in rows]

    def refresh_billing_period_total(self, billing_period_id: int) -> Decimal:
        """Recompute a period's total from its lines. Returns the new total."""
        with self._transaction(immediate=True) as conn:
            rows = conn.execute(
                "SELECT amount FROM transaction_lines WHERE billing_period_id = ?",
                (billing_period_id,),
            ).fetchall()
            total = sum((Decimal(row["amount"]) for row in rows), Decimal("0.00"))
            conn.execute(
                "UPDATE billing_periods SET total_amount = ?, updated_at = ? WHERE id = ?",
                (str(total), _now(), billing_period_id),
            )
            return total

    # Transaction line methods

    def add_transaction_line(
        self,
        billing_period_id: int,
        description: str,
        amount: Decimal,
        purchase_date: str | None,
        installment_index: int = 1,
        installment_total: int = 1,
    ) -> int:
        """Insert a line into a billing period. Returns the line id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO transaction_lines
                (billing_period_id, description, amount, purchase_date,
                 installment_index, installment_total, categorization_source, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    billing_period_id,
                    description,
                    str(amount),
                    purchase_date,
                    installment_index,
                    installment_total,
                    CategorizationSource.NONE.value,
                    _now(),
                ),
            )
            return cursor.lastrowid

    def get_transaction_line(self, line_id: int) -> TransactionLineRecord | None:
        """Get a transaction line by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM transaction_lines WHERE id = ?", (line_id,)).fetchone()
            return TransactionLineRecord.from_row(row) if row else None

    def list_transaction_lines(self, billing_period_id: int) -> list[TransactionLineRecord]:
        """List the lines of a billing period in insertion order."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transaction_lines WHERE billing_period_id = ? ORDER BY id",
                (billing_period_id,),
            ).fetchall()
            return [TransactionLineRecord.from_row(row) for row in rows]

    def get_line_owner(self, line_id: int) -> int | None:
        """Return the user id owning the card a line belongs to."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT c.owner_user_id FROM transaction_lines l
                JOIN billing_periods p ON p.id = l.billing_period_id
                JOIN cards c ON c.id = p.card_id
                WHERE l.id = ?
            """,
                (line_id,),
            ).fetchone()
            return row["owner_user_id"] if row else None

    def set_line_merchant_key(self, line_id: int, merchant_key: str | None) -> None:
        """Store the normalized merchant key of a line."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE transaction_lines SET merchant_key = ? WHERE id = ?",
                (merchant_key, line_id),
            )

    def set_line_category(
        self,
        line_id: int,
        category: str,
        source: CategorizationSource,
        merchant_rule_id: int | None = None,
    ) -> None:
        """Set a line's category and record where it came from."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE transaction_lines
                SET category = ?, categorization_source = ?, merchant_rule_id = ?
                WHERE id = ?
            """,
                (category, source.value, merchant_rule_id, line_id),
            )

    # Merchant rule methods

    def get_merchant_rule(self, user_id: int, merchant_key: str) -> MerchantRuleRecord | None:
        """Get a user's rule for a merchant key."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM merchant_rules WHERE user_id = ? AND merchant_key = ?",
                (user_id, merchant_key),
            ).fetchone()
            return MerchantRuleRecord.from_row(row) if row else None

    def get_merchant_rule_by_id(self, rule_id: int) -> MerchantRuleRecord | None:
        """Get a rule by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM merchant_rules WHERE id = ?", (rule_id,)).fetchone()
            return MerchantRuleRecord.from_row(row) if row else None

    def list_merchant_rules(self, user_id: int) -> list[MerchantRuleRecord]:
        """List a user's rules, most confirmed first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM merchant_rules WHERE user_id = ?
                ORDER BY confirmation_count DESC, last_confirmed_at DESC
            """,
                (user_id,),
            ).fetchall()
            return [MerchantRuleRecord.from_row(row) for row in rows]

    def confirm_merchant_rule(
        self, user_id: int, merchant_key: str, pattern: str, category: str
    ) -> MerchantRuleRecord:
        """
        Record one human confirmation of `category` for a merchant.

        - No rule for the key: create it with one confirmation
        - Same category: increment the confirmation count
        - Different category: override, resetting the count to 1

        Returns:
            The rule after the update
        """
        now = _now()
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM merchant_rules WHERE user_id = ? AND merchant_key = ?",
                (user_id, merchant_key),
            ).fetchone()

            if row is None:
                conn.execute(
                    """
                    INSERT INTO merchant_rules
                    (user_id, merchant_key, pattern, category, confirmation_count,
                     times_applied, times_overridden, created_at, updated_at, last_confirmed_at)
                    VALUES (?, ?, ?, ?, 1, 0, 0, ?, ?, ?)
                """,
                    (user_id, merchant_key, pattern, category, now, now, now),
                )
            elif row["category"] == category:
                conn.execute(
                    """
                    UPDATE merchant_rules
                    SET confirmation_count = confirmation_count + 1,
                        updated_at = ?, last_confirmed_at = ?
                    WHERE id = ?
                """,
                    (now, now, row["id"]),
                )
            else:
                conn.execute(
                    """
                    UPDATE merchant_rules
                    SET category = ?, confirmation_count = 1,
                        times_overridden = times_overridden + 1,
                        updated_at = ?, last_confirmed_at = ?
                    WHERE id = ?
                """,
                    (category, now, now, row["id"]),
                )

            row = conn.execute(
                "SELECT * FROM merchant_rules WHERE user_id = ? AND merchant_key = ?",
                (user_id, merchant_key),
            ).fetchone()
            return MerchantRuleRecord.from_row(row)

    def increment_rule_applied(self, rule_id: int) -> None:
        """Count one automatic application of a rule."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE merchant_rules SET times_applied = times_applied + 1, updated_at = ? WHERE id = ?",
                (_now(), rule_id),
            )

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        with self._transaction() as conn:
            by_status = {
                row["status"]: row["count"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) as count FROM import_jobs GROUP BY status"
                ).fetchall()
            }
            periods = conn.execute("SELECT COUNT(*) as count FROM billing_periods").fetchone()
            lines = conn.execute("SELECT COUNT(*) as count FROM transaction_lines").fetchone()
            auto_lines = conn.execute(
                "SELECT COUNT(*) as count FROM transaction_lines WHERE categorization_source = ?",
                (CategorizationSource.AUTO_RULE.value,),
            ).fetchone()
            rules = conn.execute("SELECT COUNT(*) as count FROM merchant_rules").fetchone()

            return {
                "imports_total": sum(by_status.values()),
                "imports_pending": by_status.get(ImportJobStatus.PENDING.value, 0),
                "imports_processing": by_status.get(ImportJobStatus.PROCESSING.value, 0),
                "imports_completed": by_status.get(ImportJobStatus.COMPLETED.value, 0),
                "imports_failed": by_status.get(ImportJobStatus.FAILED.value, 0),
                "imports_manual_review": by_status.get(ImportJobStatus.MANUAL_REVIEW.value, 0),
                "billing_periods": periods["count"] if periods else 0,
                "transaction_lines": lines["count"] if lines else 0,
                "lines_auto_categorized": auto_lines["count"] if auto_lines else 0,
                "merchant_rules": rules["count"] if rules else 0,
            }
