# deviceadm/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging

from .settings import settings
from .auth_sets.endpoints import management_router, internal_router
from .auth_sets.sqlite_auth_set_store import get_sqlite_device_auth_store, DB_VERSION

# Configure logging based on debug mode setting
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else settings.log_level,
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def deviceadm_app_lifespan(app_instance: FastAPI):
    """
    Verify (or, with automigrate, bring up to date) every tenant database
    before serving requests, and release the store on shutdown.
    """
    logger.info("Application startup initiated.")
    store = await get_sqlite_device_auth_store()
    try:
        await store.migrate(DB_VERSION)
    except Exception as e:
        logger.error(f"Failed to run migrations: {e}", exc_info=True)
        raise
    logger.info(f"{settings.app_name} databases at version {DB_VERSION}, ready to serve.")

    yield

    logger.info("Application shutdown initiated.")
    await store.teardown()


app = FastAPI(
    title=settings.app_name,
    lifespan=deviceadm_app_lifespan,
)

app.include_router(management_router)
app.include_router(internal_router)


@app.get("/health", include_in_schema=False)
async def health_check():
    return {"status": "ok"}
