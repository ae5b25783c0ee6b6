"""
Migration 002: Unique billing period reference on import jobs.

At most one import job may name a given billing period as its result. Later
imports into the same period complete without the reference.
"""

import sqlite3

VERSION = 2
NAME = "result_reference_index"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the unique partial index."""
    conn.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_import_jobs_result_period
        ON import_jobs (result_billing_period_id)
        WHERE result_billing_period_id IS NOT NULL
    """)
    conn.commit()


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the unique partial index."""
    conn.execute("DROP INDEX IF EXISTS idx_import_jobs_result_period")
    conn.commit()
