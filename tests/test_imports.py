"""Tests for the import service: submission, background processing and progress."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import StubParser, make_statement
from fintrack_import.parsing import ParserRouter, StatementParseError
from fintrack_import.services import (
    CardNotFoundError,
    CardOwnershipError,
    ImportNotFoundError,
    ImportService,
    QueueFullError,
)
from fintrack_import.services.imports import ACCEPTED_MESSAGE, QUEUE_FULL_MESSAGE
from fintrack_import.state_store import CategorizationSource, ImportJobStatus, ImportSource

WAIT_SECONDS = 10


@pytest.fixture
def make_service(store, config):
    services = []

    def _make(parser=None, **kwargs):
        router = ParserRouter(document_parser=parser) if parser is not None else None
        service = ImportService(store, config, router=router, **kwargs)
        services.append(service)
        return service

    yield _make

    for service in services:
        service.stop()


def run_import(service, card_id, filename="fatura.txt", data=b"statement", user_id=1):
    """Submit one file and wait for the workers to finish it."""
    service.start()
    accepted = service.submit(user_id, card_id, data, filename)
    assert service.pool.wait_until_idle(WAIT_SECONDS)
    return service.get_progress(accepted.import_id, user_id)


class TestSubmit:
    """Tests for synchronous submission."""

    def test_accepted(self, make_service, store, card_id, config):
        service = make_service(StubParser(make_statement()))

        accepted = service.submit(1, card_id, b"data", "fatura.txt")

        assert accepted.status == ImportJobStatus.PENDING
        assert accepted.source == ImportSource.DOCUMENT
        assert accepted.message == ACCEPTED_MESSAGE
        job = store.get_import_job(accepted.import_id)
        assert job.original_file_name == "fatura.txt"
        assert job.file_path.startswith(str(config.imports.upload_directory))
        assert job.file_path.endswith(".txt")
        with open(job.file_path, "rb") as f:
            assert f.read() == b"data"

    def test_accepted_is_pending_while_workers_run(self, make_service, store, card_id):
        """The response reflects submission even when a worker finishes the job first."""
        service = make_service(StubParser(make_statement()), pool=MagicMock())
        service.pool.enqueue.side_effect = service.process_import

        accepted = service.submit(1, card_id, b"data", "fatura.txt")

        assert accepted.status == ImportJobStatus.PENDING
        assert store.get_import_job(accepted.import_id).status == ImportJobStatus.COMPLETED

    def test_accepted_is_pending_with_started_pool(self, make_service, card_id):
        service = make_service(StubParser(make_statement()))
        service.start()

        statuses = {service.submit(1, card_id, b"data", "fatura.txt").status for _ in range(30)}

        assert service.pool.wait_until_idle(WAIT_SECONDS)
        assert statuses == {ImportJobStatus.PENDING}

    def test_unknown_card(self, make_service, store):
        service = make_service()

        with pytest.raises(CardNotFoundError):
            service.submit(1, 999, b"data", "fatura.txt")

        assert store.list_import_jobs(1) == []

    def test_card_of_another_user(self, make_service, store, card_id):
        service = make_service()

        with pytest.raises(CardOwnershipError):
            service.submit(2, card_id, b"data", "fatura.txt")

        assert store.list_import_jobs(2) == []

    def test_queue_full(self, make_service, store, card_id, config):
        """A job the queue cannot take is recorded as FAILED."""
        config.imports.queue_capacity = 1
        service = make_service(StubParser(make_statement()))
        service.submit(1, card_id, b"first", "a.txt")

        with pytest.raises(QueueFullError):
            service.submit(1, card_id, b"second", "b.txt")

        rejected = store.list_import_jobs(1, status=ImportJobStatus.FAILED)
        assert len(rejected) == 1
        assert rejected[0].original_file_name == "b.txt"
        assert rejected[0].error_message == QUEUE_FULL_MESSAGE

    def test_requeue_pending(self, make_service, store, card_id):
        """Jobs left PENDING by an earlier process are picked up again."""
        first = make_service(StubParser(make_statement()))
        accepted = first.submit(1, card_id, b"data", "fatura.txt")

        second = make_service(StubParser(make_statement()))
        second.start()
        assert second.requeue_pending() == 1
        assert second.pool.wait_until_idle(WAIT_SECONDS)

        assert store.get_import_job(accepted.import_id).status == ImportJobStatus.COMPLETED


class TestProcessImport:
    """Tests for background processing outcomes."""

    def test_confident_parse_completes(self, make_service, store, card_id):
        service = make_service(StubParser(make_statement(confidence=0.95)))

        progress = run_import(service, card_id)

        assert progress.status == ImportJobStatus.COMPLETED
        assert progress.message == "Import completed successfully"
        assert progress.requires_manual_review is False
        assert progress.total_amount == Decimal("79.40")
        assert progress.due_date == "2024-03-10"
        assert progress.bank_name == "Nubank"
        assert progress.processed_at is not None
        assert progress.billing_period_id is not None

        lines = store.list_transaction_lines(progress.billing_period_id)
        assert [line.description for line in lines] == ["UBER *TRIP 4029357733", "NETFLIX.COM"]

    def test_low_confidence_goes_to_review(self, make_service, store, card_id):
        service = make_service(StubParser(make_statement(confidence=0.5)))

        progress = run_import(service, card_id)

        assert progress.status == ImportJobStatus.MANUAL_REVIEW
        assert progress.requires_manual_review is True
        assert progress.message == "Requires manual review"
        assert progress.parsed_data["confidence"] == 0.5
        assert progress.total_amount == Decimal("79.40")
        assert progress.billing_period_id is None
        assert store.get_stats()["billing_periods"] == 0

    def test_missing_confidence_goes_to_review(self, make_service, card_id):
        service = make_service(StubParser(make_statement(confidence=None)))

        assert run_import(service, card_id).status == ImportJobStatus.MANUAL_REVIEW

    def test_parse_error_fails(self, make_service, card_id):
        service = make_service(StubParser(error=StatementParseError("garbled")))

        progress = run_import(service, card_id)

        assert progress.status == ImportJobStatus.FAILED
        assert progress.message == "Import failed"
        assert progress.error_message == "File parsing failed: garbled"

    def test_unsupported_source_fails(self, make_service, card_id):
        parser = StubParser(make_statement())
        service = make_service(parser)

        progress = run_import(service, card_id, filename="foto.jpg")

        assert progress.status == ImportJobStatus.FAILED
        assert "Image statement parsing is not supported" in progress.error_message
        assert parser.calls == 0

    def test_unexpected_error_fails(self, make_service, card_id):
        reconciler = MagicMock()
        reconciler.reconcile_statement.side_effect = RuntimeError("disk on fire")
        service = make_service(StubParser(make_statement()), reconciler=reconciler)

        progress = run_import(service, card_id)

        assert progress.status == ImportJobStatus.FAILED
        assert progress.error_message == "Processing failed: disk on fire"

    def test_failure_after_reconcile_releases_reference(self, make_service, store, card_id):
        """A job failing during categorization leaves the period free for the next import."""
        categorization = MagicMock()
        categorization.apply_rules.side_effect = RuntimeError("rules unavailable")
        failing = make_service(StubParser(make_statement()), categorization=categorization)

        failed = run_import(failing, card_id, data=b"one")
        failing.stop()

        assert failed.status == ImportJobStatus.FAILED
        assert failed.error_message == "Processing failed: rules unavailable"
        assert failed.billing_period_id is None

        retried = run_import(make_service(StubParser(make_statement())), card_id, data=b"two")

        assert retried.status == ImportJobStatus.COMPLETED
        assert retried.billing_period_id is not None
        lines = store.list_transaction_lines(retried.billing_period_id)
        assert len(lines) == 2

    def test_failure_does_not_stop_workers(self, make_service, store, card_id):
        parser = StubParser(error=StatementParseError("garbled"))
        service = make_service(parser)
        service.start()
        bad = service.submit(1, card_id, b"bad", "a.txt")
        assert service.pool.wait_until_idle(WAIT_SECONDS)

        parser.error = None
        parser.statement = make_statement()
        good = service.submit(1, card_id, b"good", "b.txt")
        assert service.pool.wait_until_idle(WAIT_SECONDS)

        assert store.get_import_job(bad.import_id).status == ImportJobStatus.FAILED
        assert store.get_import_job(good.import_id).status == ImportJobStatus.COMPLETED

    def test_reimport_adds_nothing_and_keeps_first_reference(self, make_service, store, card_id):
        service = make_service(StubParser(make_statement()))

        first = run_import(service, card_id, data=b"one")
        second = run_import(service, card_id, data=b"two")

        assert second.status == ImportJobStatus.COMPLETED
        assert second.billing_period_id is None
        assert len(store.list_transaction_lines(first.billing_period_id)) == 2
        assert store.get_billing_period(first.billing_period_id).total_amount == Decimal("79.40")

    def test_job_claimed_once(self, make_service, store, card_id):
        """A job that is no longer PENDING is left alone."""
        parser = StubParser(make_statement())
        service = make_service(parser)
        accepted = service.submit(1, card_id, b"data", "fatura.txt")
        store.claim_import_job(accepted.import_id)

        service.process_import(accepted.import_id)

        assert parser.calls == 0
        assert store.get_import_job(accepted.import_id).status == ImportJobStatus.PROCESSING

    def test_confident_rules_categorize_on_import(self, make_service, store, card_id):
        for _ in range(3):
            store.confirm_merchant_rule(1, "UBER", "UBER TRIP", "Transport")
        service = make_service(StubParser(make_statement()))

        progress = run_import(service, card_id)

        uber, netflix = store.list_transaction_lines(progress.billing_period_id)
        assert uber.category == "Transport"
        assert uber.categorization_source == CategorizationSource.AUTO_RULE
        assert netflix.category is None
        assert netflix.merchant_key == "NETFLIX"

    def test_text_statement_end_to_end(self, make_service, store, card_id, sample_statement_text):
        service = make_service()

        progress = run_import(service, card_id, data=sample_statement_text.encode("utf-8"))

        assert progress.status == ImportJobStatus.COMPLETED
        period = store.get_billing_period(progress.billing_period_id)
        assert period.year_month == "2024-03"
        assert len(store.list_transaction_lines(period.id)) == 5


class TestQueries:
    def test_progress_of_another_users_import(self, make_service, card_id):
        service = make_service()
        accepted = service.submit(1, card_id, b"data", "fatura.txt")

        with pytest.raises(ImportNotFoundError):
            service.get_progress(accepted.import_id, 2)

    def test_pending_progress(self, make_service, card_id):
        service = make_service()
        accepted = service.submit(1, card_id, b"data", "fatura.txt")

        progress = service.get_progress(accepted.import_id, 1)

        assert progress.status == ImportJobStatus.PENDING
        assert progress.message == "Waiting for processing"
        assert progress.parsed_data is None

    def test_list_imports(self, make_service, store, card_id):
        service = make_service()
        first = service.submit(1, card_id, b"a", "a.txt")
        second = service.submit(1, card_id, b"b", "b.txt")
        store.fail_import_job(first.import_id, "boom")

        assert [item.import_id for item in service.list_imports(1)] == [
            second.import_id,
            first.import_id,
        ]
        failed = service.list_imports(1, ImportJobStatus.FAILED)
        assert [item.import_id for item in failed] == [first.import_id]


class ContentAwareParser(StubParser):
    """Fails on files whose bytes are b"bad", parses everything else."""

    def parse(self, file_bytes, filename=None):
        if file_bytes == b"bad":
            raise StatementParseError("unreadable")
        return super().parse(file_bytes, filename)


class TestFailureContainment:
    def test_failed_job_does_not_affect_other_card(self, make_service, store, card_id, config):
        config.imports.worker_count = 2
        other_card = store.create_card(owner_user_id=2, name="Black")
        service = make_service(ContentAwareParser(make_statement()))
        service.start()

        bad = service.submit(1, card_id, b"bad", "a.txt")
        good = service.submit(2, other_card, b"good", "b.txt")
        assert service.pool.wait_until_idle(WAIT_SECONDS)

        assert service.get_progress(bad.import_id, 1).status == ImportJobStatus.FAILED
        assert service.get_progress(good.import_id, 2).status == ImportJobStatus.COMPLETED
