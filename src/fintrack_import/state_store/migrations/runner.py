"""
Versioned schema changes for the state store.

Each migration is a module in this package named NNN_description.py that
exposes VERSION, NAME, upgrade(conn) and, if it can be undone, downgrade(conn).
Applied versions are tracked in the `migrations` table of the same database.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "fintrack_import.state_store.migrations"
MIGRATION_FILE_GLOB = "[0-9][0-9][0-9]_*.py"

Step = Callable[[sqlite3.Connection], None]


@dataclass
class Migration:
    """One numbered schema step."""

    version: int
    name: str
    upgrade: Step
    downgrade: Optional[Step] = None

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def get_all_migrations() -> list[Migration]:
    """Discover the migration modules shipped with the package, lowest version first."""
    found = []
    for path in Path(__file__).parent.glob(MIGRATION_FILE_GLOB):
        module = importlib.import_module(f"{MIGRATIONS_PACKAGE}.{path.stem}")
        found.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    found.sort(key=lambda migration: migration.version)
    return found


class MigrationRunner:
    """
    Moves a database between schema versions.

    Usage:
        runner = MigrationRunner(conn)
        runner.run_pending()      # on startup
        runner.migrate_to(1)      # step back to a given version
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
            """
            )

    def get_applied_versions(self) -> set[int]:
        """Versions recorded as applied."""
        return {version for (version,) in self.conn.execute("SELECT version FROM migrations")}

    def get_current_version(self) -> int:
        """Highest applied version; 0 when nothing has been applied."""
        return max(self.get_applied_versions(), default=0)

    def get_pending(self) -> list[Migration]:
        """Known migrations not yet applied, in order."""
        applied = self.get_applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def _run_step(self, migration: Migration, step: Step, record_sql: str, params: tuple) -> None:
        try:
            step(self.conn)
            self.conn.execute(record_sql, params)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.exception(f"Migration {migration.label} failed")
            raise

    def apply_migration(self, migration: Migration) -> None:
        """Run a migration's upgrade and mark it applied."""
        logger.info(f"Upgrading schema: {migration.label}")
        applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self._run_step(
            migration,
            migration.upgrade,
            "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
            (migration.version, migration.name, applied_at),
        )

    def rollback_migration(self, migration: Migration) -> None:
        """Run a migration's downgrade and unmark it."""
        if migration.downgrade is None:
            raise NotImplementedError(f"Migration {migration.label} cannot be rolled back")

        logger.info(f"Downgrading schema: {migration.label}")
        self._run_step(
            migration,
            migration.downgrade,
            "DELETE FROM migrations WHERE version = ?",
            (migration.version,),
        )

    def run_pending(self) -> list[int]:
        """Apply everything not yet applied. Returns the versions applied now."""
        pending = self.get_pending()
        for migration in pending:
            self.apply_migration(migration)

        versions = [migration.version for migration in pending]
        if versions:
            logger.info(f"Schema now at version {versions[-1]} (applied {versions})")
        return versions

    def migrate_to(self, target_version: int) -> None:
        """Upgrade or downgrade until `target_version` is the highest applied version."""
        applied = self.get_applied_versions()
        migrations = get_all_migrations()

        for migration in migrations:
            if migration.version <= target_version and migration.version not in applied:
                self.apply_migration(migration)

        for migration in reversed(migrations):
            if migration.version > target_version and migration.version in applied:
                self.rollback_migration(migration)
