"""Tests for state store."""

from decimal import Decimal

import pytest

from fintrack_import.state_store import (
    CategorizationSource,
    ImportJobStatus,
    ImportSource,
    InvalidTransitionError,
    StateStore,
)


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "cards" in table_names
            assert "import_jobs" in table_names
            assert "billing_periods" in table_names
            assert "transaction_lines" in table_names
            assert "merchant_rules" in table_names
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        """Opening an existing database keeps its data."""
        first = StateStore(temp_db)
        card_id = first.create_card(1, "Gold")

        second = StateStore(temp_db)
        assert second.get_card(card_id).name == "Gold"


class TestImportSource:
    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("fatura.pdf", ImportSource.DOCUMENT),
            ("fatura.TXT", ImportSource.DOCUMENT),
            ("foto.jpeg", ImportSource.IMAGE),
            ("mail.eml", ImportSource.MESSAGE),
            ("notes.docx", ImportSource.MANUAL),
            ("noextension", ImportSource.MANUAL),
            (None, ImportSource.MANUAL),
        ],
    )
    def test_from_filename(self, filename, expected):
        assert ImportSource.from_filename(filename) == expected


class TestImportJobTransitions:
    """Tests for the import job state machine."""

    @pytest.fixture
    def job_id(self, store, card_id):
        return store.create_import_job(1, card_id, ImportSource.DOCUMENT, "fatura.txt", "/tmp/x")

    def test_new_job_is_pending(self, store, job_id):
        job = store.get_import_job(job_id)

        assert job.status == ImportJobStatus.PENDING
        assert job.processed_at is None
        assert job.result_billing_period_id is None

    def test_claim_once(self, store, job_id):
        """Only the first claim wins."""
        assert store.claim_import_job(job_id) is True
        assert store.claim_import_job(job_id) is False
        assert store.get_import_job(job_id).status == ImportJobStatus.PROCESSING

    def test_complete(self, store, job_id):
        store.claim_import_job(job_id)
        store.complete_import_job(
            job_id, {"lines": []}, total_amount=Decimal("10.00"), due_date="2024-03-10"
        )

        job = store.get_import_job(job_id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.status.is_terminal
        assert not ImportJobStatus.MANUAL_REVIEW.is_terminal
        assert job.total_amount == Decimal("10.00")
        assert job.due_date == "2024-03-10"
        assert job.processed_at is not None

    def test_complete_requires_processing(self, store, job_id):
        with pytest.raises(InvalidTransitionError):
            store.complete_import_job(job_id)

    def test_manual_review_then_complete_keeps_snapshot(self, store, job_id):
        store.claim_import_job(job_id)
        store.mark_import_manual_review(
            job_id, {"confidence": 0.4}, total_amount=Decimal("5.00"), bank_name="Nubank"
        )
        assert store.get_import_job(job_id).status == ImportJobStatus.MANUAL_REVIEW

        store.complete_import_job(job_id)

        job = store.get_import_job(job_id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.total_amount == Decimal("5.00")
        assert job.bank_name == "Nubank"
        assert '"confidence": 0.4' in job.parsed_data

    def test_fail_from_pending(self, store, job_id):
        store.fail_import_job(job_id, "Import queue is full")

        job = store.get_import_job(job_id)
        assert job.status == ImportJobStatus.FAILED
        assert job.error_message == "Import queue is full"

    def test_terminal_states_are_final(self, store, job_id):
        store.fail_import_job(job_id, "boom")

        assert store.claim_import_job(job_id) is False
        with pytest.raises(InvalidTransitionError):
            store.fail_import_job(job_id, "again")
        with pytest.raises(InvalidTransitionError):
            store.complete_import_job(job_id)

    def test_unknown_job(self, store):
        with pytest.raises(InvalidTransitionError, match="does not exist"):
            store.fail_import_job(999, "boom")

    def test_list_newest_first_and_filtered(self, store, card_id, job_id):
        second = store.create_import_job(1, card_id, ImportSource.DOCUMENT, "b.txt", None)
        store.create_import_job(2, card_id, ImportSource.DOCUMENT, "other.txt", None)
        store.fail_import_job(job_id, "boom")

        assert [job.id for job in store.list_import_jobs(1)] == [second, job_id]
        failed = store.list_import_jobs(1, status=ImportJobStatus.FAILED)
        assert [job.id for job in failed] == [job_id]
        assert store.list_pending_import_ids() == [second, second + 1]


class TestResultReference:
    """Tests for the one-job-per-billing-period result reference."""

    def test_first_job_wins(self, store, card_id):
        period, _ = store.get_or_create_billing_period(card_id, "2024-03", "2024-03-10")
        first = store.create_import_job(1, card_id, ImportSource.DOCUMENT, "a.txt", None)
        second = store.create_import_job(1, card_id, ImportSource.DOCUMENT, "b.txt", None)

        assert store.claim_result_reference(first, period.id) is True
        assert store.claim_result_reference(second, period.id) is False
        assert store.get_import_job(first).result_billing_period_id == period.id
        assert store.get_import_job(second).result_billing_period_id is None

    def test_failing_releases_reference(self, store, card_id):
        period, _ = store.get_or_create_billing_period(card_id, "2024-03", "2024-03-10")
        first = store.create_import_job(1, card_id, ImportSource.DOCUMENT, "a.txt", None)
        second = store.create_import_job(1, card_id, ImportSource.DOCUMENT, "b.txt", None)
        store.claim_import_job(first)
        store.claim_result_reference(first, period.id)

        store.fail_import_job(first, "boom")

        assert store.get_import_job(first).result_billing_period_id is None
        assert store.claim_result_reference(second, period.id) is True


class TestBillingPeriods:
    """Tests for billing periods and their lines."""

    def test_one_period_per_card_and_month(self, store, card_id):
        period, created = store.get_or_create_billing_period(card_id, "2024-03", "2024-03-10")
        again, created_again = store.get_or_create_billing_period(card_id, "2024-03", "2024-04-01")

        assert created is True
        assert created_again is False
        assert again.id == period.id
        assert again.due_date == "2024-03-10"

    def test_total_follows_lines(self, store, card_id):
        period, _ = store.get_or_create_billing_period(card_id, "2024-03", "2024-03-10")
        store.add_transaction_line(period.id, "UBER TRIP", Decimal("23.50"), "2024-02-15")
        store.add_transaction_line(period.id, "NETFLIX.COM", Decimal("55.90"), None)

        total = store.refresh_billing_period_total(period.id)

        assert total == Decimal("79.40")
        assert store.get_billing_period(period.id).total_amount == Decimal("79.40")

    def test_new_line_is_uncategorized(self, store, card_id):
        period, _ = store.get_or_create_billing_period(card_id, "2024-03", "2024-03-10")
        line_id = store.add_transaction_line(period.id, "UBER TRIP", Decimal("23.50"), None)

        line = store.get_transaction_line(line_id)
        assert line.category is None
        assert line.categorization_source == CategorizationSource.NONE
        assert store.get_line_owner(line_id) == 1


class TestMerchantRules:
    """Tests for confirm_merchant_rule counting."""

    def test_create_confirm_override(self, store):
        rule = store.confirm_merchant_rule(1, "UBER", "UBER TRIP", "Transport")
        assert rule.confirmation_count == 1

        rule = store.confirm_merchant_rule(1, "UBER", "UBER TRIP", "Transport")
        assert rule.confirmation_count == 2

        rule = store.confirm_merchant_rule(1, "UBER", "UBER EATS", "Food")
        assert rule.category == "Food"
        assert rule.confirmation_count == 1
        assert rule.times_overridden == 1

    def test_rules_are_per_user(self, store):
        store.confirm_merchant_rule(1, "UBER", "UBER TRIP", "Transport")
        store.confirm_merchant_rule(2, "UBER", "UBER TRIP", "Work")

        assert store.get_merchant_rule(1, "UBER").category == "Transport"
        assert store.get_merchant_rule(2, "UBER").category == "Work"
        assert len(store.list_merchant_rules(1)) == 1


class TestStats:
    def test_counts(self, store, card_id):
        job_id = store.create_import_job(1, card_id, ImportSource.DOCUMENT, "a.txt", None)
        store.fail_import_job(job_id, "boom")
        store.create_import_job(1, card_id, ImportSource.DOCUMENT, "b.txt", None)

        stats = store.get_stats()

        assert stats["imports_total"] == 2
        assert stats["imports_failed"] == 1
        assert stats["imports_pending"] == 1
        assert stats["billing_periods"] == 0
        assert stats["merchant_rules"] == 0
