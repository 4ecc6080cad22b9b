# deviceadm/migrations/migrator.py
import sqlite3
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, ContextManager, List, NamedTuple

logger = logging.getLogger(__name__)

MIGRATION_INFO_TABLE = "migration_info"

ConnectionFactory = Callable[[], ContextManager[sqlite3.Connection]]


class MigrationError(Exception):
    """Raised when a database cannot be brought to, or is not at, the required version."""


class MigrationVersion(NamedTuple):
    """Semantic version of a database schema; compares field by field."""
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, version: str) -> "MigrationVersion":
        parts = version.strip().split(".")
        if len(parts) != 3:
            raise MigrationError(f"failed to parse version '{version}': expected MAJOR.MINOR.PATCH")
        try:
            major, minor, patch = (int(p) for p in parts)
        except ValueError as e:
            raise MigrationError(f"failed to parse version '{version}': {e}") from e
        if min(major, minor, patch) < 0:
            raise MigrationError(f"failed to parse version '{version}': negative component")
        return cls(major, minor, patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


ZERO_VERSION = MigrationVersion(0, 0, 0)


class Migration(ABC):
    """One schema upgrade step. `up` must be safe to run again after an interruption."""

    @abstractmethod
    def version(self) -> MigrationVersion:
        pass

    @abstractmethod
    def up(self, conn: sqlite3.Connection) -> None:
        pass


class SimpleMigrator:
    """
    Applies an ordered list of migrations to one database.

    The applied versions are recorded in the database itself. With
    `automigrate` disabled the migrator only verifies that the database is at
    least at the target version and never writes.
    """

    def __init__(self, connect: ConnectionFactory, db_name: str, automigrate: bool):
        self.connect = connect
        self.db_name = db_name
        self.automigrate = automigrate

    def _ensure_info_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(f'''
        CREATE TABLE IF NOT EXISTS {MIGRATION_INFO_TABLE} (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        ''')

    def current_version(self) -> MigrationVersion:
        """Highest version recorded in the database, 0.0.0 for a fresh one."""
        with self.connect() as conn:
            table = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (MIGRATION_INFO_TABLE,)
            ).fetchone()
            if table is None:
                return ZERO_VERSION
            rows = conn.execute(f"SELECT version FROM {MIGRATION_INFO_TABLE}").fetchall()

        last = ZERO_VERSION
        for row in rows:
            version = MigrationVersion.parse(row["version"])
            if version > last:
                last = version
        return last

    def _record(self, conn: sqlite3.Connection, version: MigrationVersion) -> None:
        self._ensure_info_table(conn)
        conn.execute(
            f"INSERT OR REPLACE INTO {MIGRATION_INFO_TABLE} (version, applied_at) VALUES (?, ?)",
            (str(version), datetime.now(timezone.utc).isoformat())
        )

    def apply(self, target: MigrationVersion, migrations: List[Migration]) -> None:
        """
        Bring the database to `target`, or verify it is there when automigrate is off.

        Raises:
            MigrationError: If verification fails or a step cannot be applied
        """
        last = self.current_version()
        logger.info(f"Database '{self.db_name}' is at version {last}, target version {target}.")

        if not self.automigrate:
            if last < target:
                raise MigrationError(
                    f"db needs migration: {self.db_name} has version {last}, needs version {target}"
                )
            if last > target:
                logger.warning(f"Database '{self.db_name}' version {last} is newer than target {target}.")
            return

        if last > target:
            logger.warning(f"Database '{self.db_name}' version {last} is newer than target {target}; nothing to apply.")
            return

        for migration in sorted(migrations, key=lambda m: m.version()):
            step = migration.version()
            if step > target:
                logger.warning(f"Migration to version {step} is beyond target {target}, skipped.")
                continue
            if step <= last:
                continue

            logger.info(f"Applying migration {step} to '{self.db_name}'.")
            try:
                with self.connect() as conn:
                    migration.up(conn)
                    self._record(conn, step)
            except sqlite3.Error as e:
                logger.error(f"Migration {step} failed on '{self.db_name}': {e}", exc_info=True)
                raise MigrationError(f"failed to apply migration {step}: {e}") from e
            last = step

        if last != target:
            with self.connect() as conn:
                self._record(conn, target)
        logger.info(f"Database '{self.db_name}' migrated to version {target}.")
