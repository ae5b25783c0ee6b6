"""
Migration 001: Merchant rules and line categorization.

Creates the merchant_rules table (one rule per user and merchant key) and adds
categorization columns to transaction_lines:
- category: assigned category (nullable)
- categorization_source: NONE, MANUAL or AUTO_RULE
- merchant_rule_id: rule that auto-applied the category
- merchant_key: normalized merchant key of the description
"""

import sqlite3

VERSION = 1
NAME = "merchant_rules"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create merchant_rules and extend transaction_lines."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS merchant_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            merchant_key TEXT NOT NULL,
            pattern TEXT NOT NULL,  -- raw description the rule was learned from
            category TEXT NOT NULL,

            confirmation_count INTEGER NOT NULL DEFAULT 1,
            times_applied INTEGER NOT NULL DEFAULT 0,
            times_overridden INTEGER NOT NULL DEFAULT 0,

            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            last_confirmed_at TEXT,

            UNIQUE (user_id, merchant_key)
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_merchant_rules_user
        ON merchant_rules (user_id, confirmation_count DESC)
    """)

    existing = {row[1] for row in cursor.execute("PRAGMA table_info(transaction_lines)")}
    columns = {
        "category": "TEXT",
        "categorization_source": "TEXT NOT NULL DEFAULT 'NONE'",
        "merchant_rule_id": "INTEGER",
        "merchant_key": "TEXT",
    }
    for name, definition in columns.items():
        if name not in existing:
            cursor.execute(f"ALTER TABLE transaction_lines ADD COLUMN {name} {definition}")

    conn.commit()


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop merchant_rules and the categorization columns."""
    cursor = conn.cursor()
    for name in ("merchant_key", "merchant_rule_id", "categorization_source", "category"):
        cursor.execute(f"ALTER TABLE transaction_lines DROP COLUMN {name}")
    cursor.execute("DROP INDEX IF EXISTS idx_merchant_rules_user")
    cursor.execute("DROP TABLE IF EXISTS merchant_rules")
    conn.commit()
