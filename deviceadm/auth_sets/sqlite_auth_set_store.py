# deviceadm/auth_sets/sqlite_auth_set_store.py
import sqlite3
import logging
import json
from datetime import datetime
from functools import partial
from typing import Optional, List, Dict, Any, Tuple
from uuid import uuid4

from .storage_interfaces import (
    AbstractDeviceAuthStore, StoreError, StoreNotFoundError, StoreConflictError, StoreTenantNotFoundError
)
from .models import DeviceAuth, AuthSetFilter, AuthSetStatus
from ..migrations import Migration, MigrationError, MigrationVersion, SimpleMigrator
from ..settings import settings
from ..storage.sqlite_base import (
    DB_NAME, TenantDatabaseMissingError, db_name_for_tenant, tenant_from_db_name,
    list_tenant_db_names, sqlite_connection,
)

logger = logging.getLogger(__name__)

DB_VERSION = "1.2.0"
DEVICE_AUTHS_TABLE = "device_auths"

_COLUMNS = ("id", "device_id", "device_identity", "key", "attributes", "status", "request_time")


class Migration_1_0_0(Migration):
    """Creates the auth set table."""

    def version(self) -> MigrationVersion:
        return MigrationVersion(1, 0, 0)

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute(f'''
        CREATE TABLE IF NOT EXISTS {DEVICE_AUTHS_TABLE} (
            id TEXT NOT NULL,
            device_id TEXT,
            device_identity TEXT,
            key TEXT,
            attributes TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            request_time TEXT
        )
        ''')


class Migration_1_1_0(Migration):
    """Makes auth set ids unique and indexes the lookup columns."""

    def version(self) -> MigrationVersion:
        return MigrationVersion(1, 1, 0)

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"CREATE UNIQUE INDEX IF NOT EXISTS uniqueDeviceIdIndex ON {DEVICE_AUTHS_TABLE} (id)"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS deviceIdIndex ON {DEVICE_AUTHS_TABLE} (device_id)"
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS deviceIdentityIndex ON {DEVICE_AUTHS_TABLE} (device_identity)"
        )


class Migration_1_2_0(Migration):
    """Allows at most one preauthorized auth set per identity."""

    def version(self) -> MigrationVersion:
        return MigrationVersion(1, 2, 0)

    def up(self, conn: sqlite3.Connection) -> None:
        conn.execute(f'''
        CREATE UNIQUE INDEX IF NOT EXISTS uniquePreauthorizedIdentityIndex
        ON {DEVICE_AUTHS_TABLE} (device_identity)
        WHERE status = 'preauthorized'
        ''')


MIGRATIONS: List[Migration] = [Migration_1_0_0(), Migration_1_1_0(), Migration_1_2_0()]


def _to_column(name: str, value: Any) -> Any:
    """Convert a model field value to its SQLite representation."""
    if name == "attributes":
        return json.dumps(value)
    if name == "request_time":
        return value.isoformat()
    if name == "status":
        return AuthSetStatus(value).value
    return value


class SQLiteDeviceAuthStore(AbstractDeviceAuthStore):
    """SQLite implementation of the auth set store, one database file per tenant."""

    def __init__(self, data_dir: str, automigrate: bool = False):
        self.data_dir = data_dir
        self.automigrate = automigrate

    async def initialize(self) -> None:
        logger.info(f"SQLiteDeviceAuthStore initialized (data_dir='{self.data_dir}', automigrate={self.automigrate}).")

    async def teardown(self) -> None:
        """Connections are opened per operation so there is nothing to close."""
        logger.info("SQLiteDeviceAuthStore teardown.")

    def _execute(
        self, tenant_id: Optional[str], query: str, params: tuple = ()
    ) -> Tuple[List[sqlite3.Row], int]:
        """
        Run one statement in its own connection and transaction.

        Returns:
            The fetched rows and the number of rows changed

        Raises:
            StoreTenantNotFoundError: If the tenant's database was never provisioned
            StoreConflictError: If a uniqueness constraint was violated
            StoreError: For any other SQLite failure
        """
        try:
            with sqlite_connection(self.data_dir, tenant_id) as conn:
                cursor = conn.execute(query, params)
                rows = cursor.fetchall()
                return rows, cursor.rowcount
        except TenantDatabaseMissingError as e:
            logger.warning(f"Rejected query for unprovisioned tenant '{tenant_id}': {e}")
            raise StoreTenantNotFoundError(f"tenant '{tenant_id}' not found") from e
        except sqlite3.IntegrityError as e:
            logger.warning(f"SQLite constraint violation executing query '{query}': {e}")
            raise StoreConflictError(str(e)) from e
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"SQLite error executing query '{query}': {e}", exc_info=True)
            raise StoreError(f"failed to execute query: {e}") from e

    def _row_to_device_auth(self, row: sqlite3.Row) -> DeviceAuth:
        request_time = row["request_time"]
        if isinstance(request_time, str):
            request_time = datetime.fromisoformat(request_time)
        return DeviceAuth(
            id=row["id"],
            device_id=row["device_id"],
            device_identity=row["device_identity"],
            key=row["key"],
            attributes=json.loads(row["attributes"]) if row["attributes"] else {},
            status=row["status"],
            request_time=request_time,
        )

    async def get_device_auths(
        self, tenant_id: Optional[str], skip: int, limit: int, filter: AuthSetFilter
    ) -> List[DeviceAuth]:
        where_clauses = []
        params: List[Any] = []
        if filter.status:
            where_clauses.append("status = ?")
            params.append(AuthSetStatus(filter.status).value)
        if filter.device_id:
            where_clauses.append("device_id = ?")
            params.append(filter.device_id)

        query = f"SELECT {', '.join(_COLUMNS)} FROM {DEVICE_AUTHS_TABLE}"
        if where_clauses:
            query += " WHERE " + " AND ".join(where_clauses)
        # A non-positive limit means no limit, -1 is SQLite's spelling of that
        query += " ORDER BY id LIMIT ? OFFSET ?"
        params.extend([limit if limit > 0 else -1, max(skip, 0)])

        rows, _ = self._execute(tenant_id, query, tuple(params))
        return [self._row_to_device_auth(row) for row in rows]

    async def get_device_auth(self, tenant_id: Optional[str], auth_id: str) -> DeviceAuth:
        query = f"SELECT {', '.join(_COLUMNS)} FROM {DEVICE_AUTHS_TABLE} WHERE id = ?"
        rows, _ = self._execute(tenant_id, query, (auth_id,))
        if not rows:
            raise StoreNotFoundError(f"auth set '{auth_id}' not found")
        return self._row_to_device_auth(rows[0])

    async def put_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> None:
        if not dev.id:
            raise StoreError("cannot store an auth set without an id")

        fields: Dict[str, Any] = dev.merge_fields()
        columns = ["id"] + list(fields)
        params = [dev.id] + [_to_column(name, value) for name, value in fields.items()]
        placeholders = ", ".join("?" for _ in columns)

        query = f"INSERT INTO {DEVICE_AUTHS_TABLE} ({', '.join(columns)}) VALUES ({placeholders})"
        if fields:
            # Only the supplied columns are overwritten on an existing record
            set_clauses = ", ".join(f"{name} = excluded.{name}" for name in fields)
            query += f" ON CONFLICT (id) DO UPDATE SET {set_clauses}"
        else:
            query += " ON CONFLICT (id) DO NOTHING"

        self._execute(tenant_id, query, tuple(params))

    async def update_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> None:
        fields = dev.merge_fields()
        if not fields:
            # Nothing to merge, but a missing record must still be reported
            await self.get_device_auth(tenant_id, dev.id)
            return

        set_clauses = ", ".join(f"{name} = ?" for name in fields)
        params = [_to_column(name, value) for name, value in fields.items()]
        params.append(dev.id)

        query = f"UPDATE {DEVICE_AUTHS_TABLE} SET {set_clauses} WHERE id = ?"
        _, changed = self._execute(tenant_id, query, tuple(params))
        if changed == 0:
            raise StoreNotFoundError(f"auth set '{dev.id}' not found")

    async def insert_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> DeviceAuth:
        stored = dev.model_copy(update={"id": str(uuid4()), "device_id": str(uuid4())})

        fields = stored.merge_fields()
        columns = ["id"] + list(fields)
        params = [stored.id] + [_to_column(name, value) for name, value in fields.items()]
        placeholders = ", ".join("?" for _ in columns)

        query = f"INSERT INTO {DEVICE_AUTHS_TABLE} ({', '.join(columns)}) VALUES ({placeholders})"
        self._execute(tenant_id, query, tuple(params))
        return stored

    async def delete_device_auth(self, tenant_id: Optional[str], auth_id: str) -> None:
        query = f"DELETE FROM {DEVICE_AUTHS_TABLE} WHERE id = ?"
        _, removed = self._execute(tenant_id, query, (auth_id,))
        if removed == 0:
            raise StoreNotFoundError(f"auth set '{auth_id}' not found")

    async def delete_device_auths_by_device(self, tenant_id: Optional[str], device_id: str) -> int:
        query = f"DELETE FROM {DEVICE_AUTHS_TABLE} WHERE device_id = ?"
        _, removed = self._execute(tenant_id, query, (device_id,))
        return removed

    async def get_device_auths_by_identity_data(
        self, tenant_id: Optional[str], identity_data: str
    ) -> List[DeviceAuth]:
        query = f"SELECT {', '.join(_COLUMNS)} FROM {DEVICE_AUTHS_TABLE} WHERE device_identity = ? ORDER BY id"
        rows, _ = self._execute(tenant_id, query, (identity_data,))
        return [self._row_to_device_auth(row) for row in rows]

    async def migrate_tenant(self, version: str, tenant_id: Optional[str]) -> None:
        """
        Bring one tenant database to `version`, or verify it is there.

        With automigrate the database is created if missing; without it a
        missing database is reported as needing migration.
        """
        target = MigrationVersion.parse(version)
        db_name = db_name_for_tenant(tenant_id)
        migrator = SimpleMigrator(
            connect=partial(sqlite_connection, self.data_dir, tenant_id, create=self.automigrate),
            db_name=db_name,
            automigrate=self.automigrate,
        )
        try:
            migrator.apply(target, MIGRATIONS)
        except TenantDatabaseMissingError as e:
            raise MigrationError(f"db needs migration: {db_name} does not exist, needs version {target}") from e

    async def migrate(self, version: str) -> None:
        db_names = list_tenant_db_names(self.data_dir)
        if not db_names:
            db_names = [DB_NAME]

        if self.automigrate:
            logger.info("automigrate is ON, will apply migrations")
        else:
            logger.info("automigrate is OFF, will check db version compatibility")

        for db_name in db_names:
            logger.info(f"migrating {db_name}")
            await self.migrate_tenant(version, tenant_from_db_name(db_name))

    def with_automigrate(self) -> "SQLiteDeviceAuthStore":
        return SQLiteDeviceAuthStore(self.data_dir, automigrate=True)


# Singleton instance management
_sqlite_device_auth_store_instance: Optional[SQLiteDeviceAuthStore] = None


async def get_sqlite_device_auth_store() -> SQLiteDeviceAuthStore:
    """
    Get or create the singleton SQLiteDeviceAuthStore configured from settings.
    """
    global _sqlite_device_auth_store_instance
    if _sqlite_device_auth_store_instance is None:
        _sqlite_device_auth_store_instance = SQLiteDeviceAuthStore(
            settings.data_dir, automigrate=settings.automigrate
        )
        await _sqlite_device_auth_store_instance.initialize()
    return _sqlite_device_auth_store_instance
