import os

from pydantic import Field
from pydantic_settings import BaseSettings

# Project root (one level above the tile_erp package)
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir, os.pardir))
DEFAULT_DB_URL = "sqlite:///" + os.path.join(BASE_DIR, "tile_erp.db").replace("\\", "/")


class Settings(BaseSettings):
    app_name: str = Field(default="Tile ERP", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    database_url: str = Field(default=DEFAULT_DB_URL, alias="DATABASE_URL")
    db_busy_timeout: int = Field(default=60, alias="DB_BUSY_TIMEOUT")
    stock_policy: str = Field(default="enforce", alias="STOCK_POLICY")  # enforce | warn
    idempotency_ttl: int = Field(default=3600, alias="IDEMPOTENCY_TTL")
    idempotency_max_entries: int = Field(default=2048, alias="IDEMPOTENCY_MAX_ENTRIES")
    default_page_limit: int = Field(default=10, alias="DEFAULT_PAGE_LIMIT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"


settings = Settings()
