"""Tests for schema migrations."""

import sqlite3

import pytest

from fintrack_import.state_store import StateStore
from fintrack_import.state_store.migrations import MigrationRunner, get_all_migrations


def _columns(conn, table):
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _indexes(conn):
    return {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")}


class TestMigrations:
    """Tests for MigrationRunner."""

    @pytest.fixture
    def conn(self, temp_db):
        StateStore(temp_db, run_migrations=False)
        conn = sqlite3.connect(str(temp_db))
        yield conn
        conn.close()

    def test_migrations_are_ordered(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)
        assert versions[:2] == [1, 2]

    def test_run_pending_applies_all(self, conn):
        runner = MigrationRunner(conn)

        applied = runner.run_pending()

        assert applied == [m.version for m in get_all_migrations()]
        assert runner.get_current_version() == applied[-1]
        assert {"category", "categorization_source", "merchant_rule_id", "merchant_key"} <= _columns(
            conn, "transaction_lines"
        )
        assert "idx_import_jobs_result_period" in _indexes(conn)

    def test_run_pending_twice_is_noop(self, conn):
        runner = MigrationRunner(conn)
        runner.run_pending()

        assert runner.run_pending() == []

    def test_store_runs_migrations(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            assert runner.get_applied_versions() == {m.version for m in get_all_migrations()}
        finally:
            conn.close()

    def test_migrate_down_and_up(self, conn):
        runner = MigrationRunner(conn)
        runner.run_pending()

        runner.migrate_to(0)

        assert runner.get_current_version() == 0
        assert "merchant_key" not in _columns(conn, "transaction_lines")
        assert "idx_import_jobs_result_period" not in _indexes(conn)

        runner.migrate_to(2)

        assert runner.get_current_version() == 2
        assert "merchant_key" in _columns(conn, "transaction_lines")
