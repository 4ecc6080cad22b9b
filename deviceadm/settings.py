# deviceadm/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# This settings.py file is at <project>/deviceadm/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Service settings, read from DEVICEADM_* environment variables or the project .env file."""

    app_name: str = "Device Admission Service"
    debug_mode: bool = False
    log_level: str = "INFO"

    # HTTP listener
    listen_host: str = "127.0.0.1"
    listen_port: int = 8080

    # SQLite configuration - one database file per tenant lives in this directory
    data_dir: str = "./data"

    # Device authentication service (devauth)
    devauth_addr: str = Field(
        default="http://mender-device-auth:8080",
        description="Root address of the device authentication service."
    )
    devauth_timeout_seconds: float = Field(
        default=10.0,
        description="Total timeout for a single request to the device authentication service."
    )

    automigrate: bool = Field(
        default=False,
        description="Apply pending database migrations on startup instead of only checking versions."
    )
    delete_by_device_not_found_is_error: bool = Field(
        default=False,
        description="Report deleting the auth sets of a device that has none as 'not found'."
    )

    model_config = SettingsConfigDict(
        env_prefix="DEVICEADM_",
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )


settings = Settings()

logger.debug(
    f"Settings loaded: data_dir='{settings.data_dir}', devauth_addr='{settings.devauth_addr}', "
    f"automigrate={settings.automigrate}"
)
