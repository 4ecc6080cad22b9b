# deviceadm/storage/sqlite_base.py
import re
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

DB_NAME = "deviceadm"
DB_SUFFIX = ".sqlite3"

_TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def db_name_for_tenant(tenant_id: Optional[str]) -> str:
    """
    Name of the database holding a tenant's data.

    The default scope (no tenant) uses the bare service database name,
    every tenant gets '<name>-<tenant_id>'.
    """
    if not tenant_id:
        return DB_NAME
    if not _TENANT_ID_PATTERN.match(tenant_id):
        raise ValueError(f"Invalid tenant id: '{tenant_id}'")
    return f"{DB_NAME}-{tenant_id}"


def tenant_from_db_name(db_name: str) -> Optional[str]:
    """Inverse of db_name_for_tenant; returns None for the default database."""
    if db_name == DB_NAME:
        return None
    prefix = f"{DB_NAME}-"
    if db_name.startswith(prefix):
        return db_name[len(prefix):]
    raise ValueError(f"'{db_name}' is not a {DB_NAME} database name")


def db_path_for_tenant(data_dir: str, tenant_id: Optional[str]) -> Path:
    return Path(data_dir).resolve() / f"{db_name_for_tenant(tenant_id)}{DB_SUFFIX}"


def list_tenant_db_names(data_dir: str) -> List[str]:
    """Names of the per-tenant databases present in `data_dir`, excluding the default one."""
    directory = Path(data_dir)
    if not directory.is_dir():
        return []
    names = []
    for path in sorted(directory.glob(f"{DB_NAME}-*{DB_SUFFIX}")):
        names.append(path.name[:-len(DB_SUFFIX)])
    return names


class TenantDatabaseMissingError(Exception):
    """Raised when opening a tenant database that has not been provisioned."""


@contextmanager
def sqlite_connection(
    data_dir: str, tenant_id: Optional[str], create: bool = False
) -> Iterator[sqlite3.Connection]:
    """
    Open a connection to a tenant's database for the duration of one operation.

    Only `create=True` callers (migrations, tenant provisioning) may bring a
    new database file into existence; everyone else gets
    TenantDatabaseMissingError for a tenant that was never provisioned.
    The connection commits when the block exits normally, rolls back when it
    raises, and is closed on every exit path.
    """
    db_path = db_path_for_tenant(data_dir, tenant_id)

    if create:
        # Ensure the database directory structure exists
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), timeout=10.0)
    else:
        if not db_path.is_file():
            raise TenantDatabaseMissingError(f"database '{db_path.name}' does not exist")
        try:
            conn = sqlite3.connect(f"{db_path.as_uri()}?mode=rw", uri=True, timeout=10.0)
        except sqlite3.OperationalError as e:
            raise TenantDatabaseMissingError(f"database '{db_path.name}' cannot be opened: {e}") from e

    # Enable column access by name instead of index
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    finally:
        conn.close()
