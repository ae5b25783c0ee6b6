"""
Database migrations module.

Versioned, ordered schema changes for the SQLite state store, tracked in a
migrations table and applied on store startup.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
