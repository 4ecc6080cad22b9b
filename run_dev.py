import uvicorn
from dotenv import load_dotenv
import os
from pathlib import Path
import logging

# Configure logging before any application imports to ensure visibility
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s RUN_DEV.PY - [%(levelname)s] - %(message)s'
)
logger = logging.getLogger("run_dev_script")

if __name__ == "__main__":
    project_root = Path(__file__).parent.resolve()
    dotenv_path_explicit = project_root / ".env"

    if dotenv_path_explicit.exists():
        logger.info(f".env file FOUND at: {dotenv_path_explicit}")
        load_dotenv(dotenv_path=dotenv_path_explicit, override=True)
    else:
        logger.warning(f".env file NOT FOUND at: {dotenv_path_explicit}. "
                       "Will rely on OS environment variables or pydantic-settings defaults.")

    # Development databases are migrated on startup unless explicitly disabled
    os.environ.setdefault("DEVICEADM_AUTOMIGRATE", "true")

    logger.info(f"DEVICEADM_DATA_DIR: {os.getenv('DEVICEADM_DATA_DIR')}")
    logger.info(f"DEVICEADM_DEVAUTH_ADDR: {os.getenv('DEVICEADM_DEVAUTH_ADDR')}")

    host = os.getenv("DEV_SERVER_HOST", "127.0.0.1")
    port = int(os.getenv("DEV_SERVER_PORT", "8080"))
    reload_bool = os.getenv("DEV_SERVER_RELOAD", "false").lower() in ["true", "1", "yes", "on", "t"]

    logger.info(f"Starting Uvicorn server on {host}:{port} (reload: {reload_bool})")
    uvicorn.run(
        "deviceadm.main:app",
        host=host,
        port=port,
        log_level=os.getenv("DEV_SERVER_LOG_LEVEL", "info").lower(),
        reload=reload_bool
    )
