# deviceadm/cli/main_cli.py
import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from typing_extensions import Annotated

# <project>/deviceadm/cli/main_cli.py -> three .parent calls reach the project root
project_root = Path(__file__).parent.parent.parent.resolve()
load_dotenv(dotenv_path=project_root / '.env', override=False)

from ..settings import settings
from ..auth_sets.sqlite_auth_set_store import SQLiteDeviceAuthStore, DB_VERSION
from ..migrations import MigrationError
from ..auth_sets.storage_interfaces import StoreError

logger = logging.getLogger("deviceadm.cli")

app = typer.Typer(
    name="deviceadm",
    help="Device Admission Service.",
    no_args_is_help=True
)


@app.callback()
def main_callback(
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging.")] = False
):
    """Configure logging before any subcommand runs."""
    logging.basicConfig(
        level=logging.DEBUG if debug or settings.debug_mode else settings.log_level,
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s',
        force=True
    )


@app.command("server")
def server(
    automigrate: Annotated[bool, typer.Option("--automigrate", help="Run database migrations before starting.")] = False,
    host: Annotated[Optional[str], typer.Option(help="Address to listen on.")] = None,
    port: Annotated[Optional[int], typer.Option(help="Port to listen on.")] = None,
):
    """Run the service as a server."""
    import uvicorn

    logger.info(f"{settings.app_name} starting up")

    if automigrate:
        # The app's store singleton is created from settings on first use
        settings.automigrate = True

    store = SQLiteDeviceAuthStore(settings.data_dir, automigrate=settings.automigrate)
    try:
        asyncio.run(store.migrate(DB_VERSION))
    except (MigrationError, StoreError, ValueError) as e:
        typer.secho(f"failed to run migrations: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=3)

    listen_host = host or settings.listen_host
    listen_port = port or settings.listen_port
    logger.info(f"Starting Uvicorn server on {listen_host}:{listen_port}")
    uvicorn.run(
        "deviceadm.main:app",
        host=listen_host,
        port=listen_port,
        log_level="debug" if settings.debug_mode else "info",
    )


@app.command("migrate")
def migrate(
    tenant: Annotated[Optional[str], typer.Option("--tenant", help="Takes ID of specific tenant to migrate.")] = None,
):
    """Run migrations."""
    if tenant:
        logger.info(f"migrating tenant {tenant}")
    else:
        logger.info("migrating default tenant")

    # Migrations are applied, not just checked, when run explicitly
    store = SQLiteDeviceAuthStore(settings.data_dir).with_automigrate()
    try:
        asyncio.run(store.migrate_tenant(DB_VERSION, tenant))
    except (MigrationError, StoreError, ValueError) as e:
        typer.secho(f"failed to run migrations: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=3)

    typer.secho(f"Database migrated to version {DB_VERSION}.", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
