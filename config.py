from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # License Control-Layer Endpoint (empty = auto-detect by environment)
    LICENSE_API_URL: Optional[str] = None
    LICENSE_API_TIMEOUT: int = 15

    # Site Info
    PLUGIN_ID: str = "datalayer-manager"
    SITE_URL: str = "http://localhost"
    SITE_ID: str = "default"

    # Environment Detection
    LICENSE_LOCAL_MODE: Optional[bool] = None
    ENVIRONMENT_TYPE: Optional[str] = None
    DEBUG: bool = False

    # Test Mode (no network access, only the test key is accepted)
    LICENSE_TEST_MODE: bool = False

    # Status Cache
    STATUS_CACHE_TTL_SECONDS: int = 86400
    STATUS_REFRESH_INTERVAL_HOURS: int = 24

    # Database
    DATABASE_URL: str = "sqlite:///./datalayer_manager.db"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


class ControlLayerSettings(BaseSettings):
    # Lemon Squeezy
    LEMON_SQUEEZY_API_KEY: str = ""
    LEMON_SQUEEZY_API_URL: str = "https://api.lemonsqueezy.com/v1/licenses/"
    UPSTREAM_TIMEOUT: int = 15

    # Plugin slug -> Lemon Squeezy variant id
    PRODUCT_MAP: Dict[str, str] = {"datalayer-manager": ""}

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
control_settings = ControlLayerSettings()
