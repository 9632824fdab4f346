"""Application configuration via pydantic-settings."""

import os
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine the backend directory (where this file lives: backend/vendorsync/config.py)
_BACKEND_DIR = Path(__file__).resolve().parent.parent

# Default to SQLite in standalone mode
_DEFAULT_DB = f"sqlite+aiosqlite:///{_BACKEND_DIR / 'vendorsync.db'}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database – defaults to local SQLite so the app works without Docker
    DATABASE_URL: str = _DEFAULT_DB

    # Redis (only used by the Celery cleanup job)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Security – when unset, admin endpoints are open (local development)
    ADMIN_API_KEY: Optional[str] = None

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    LOG_LEVEL: str = "INFO"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    IMAGE_CLEANUP_HOUR: int = 3

    # Scraper
    SCRAPE_DELAY_MIN: float = 0.1
    SCRAPE_DELAY_MAX: float = 0.5
    SCRAPE_MAX_RETRIES: int = 3
    SCRAPE_TIMEOUT: float = 30.0
    SCRAPE_MAX_VEHICLES: int = 0  # 0 = every discovered vehicle

    # Image CDN
    IMAGES_ACCOUNT_ID: Optional[str] = None
    IMAGES_API_TOKEN: Optional[str] = None
    IMAGES_API_BASE: str = "https://api.cloudflare.com/client/v4"
    IMAGES_DELIVERY_URL: str = "https://imagedelivery.net/account-hash"
    IMAGE_ID_PREFIX: str = "VendorSync"
    IMAGE_MAX_BYTES: int = 10 * 1024 * 1024
    IMAGE_ID_MAX_LENGTH: int = 100
    IMAGE_UPLOAD_ATTEMPTS: int = 3
    IMAGE_RETRY_BASE_DELAY: float = 1.0

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL

    @property
    def sync_database_url(self) -> str:
        """Return sync database URL for Celery tasks."""
        if self.is_sqlite:
            return self.DATABASE_URL.replace("sqlite+aiosqlite", "sqlite")
        return self.DATABASE_URL.replace("postgresql+asyncpg", "postgresql+psycopg2")

    @property
    def images_enabled(self) -> bool:
        return bool(self.IMAGES_ACCOUNT_ID and self.IMAGES_API_TOKEN)


def _build_settings() -> Settings:
    """Build settings, fixing relative SQLite paths to be absolute."""
    s = Settings(
        _env_file=str(_BACKEND_DIR.parent / ".env"),
        _env_file_encoding="utf-8",
    )
    # Fix relative SQLite path to be absolute from backend dir
    if s.is_sqlite and ":///" in s.DATABASE_URL:
        db_path = s.DATABASE_URL.split(":///", 1)[1]
        if db_path != ":memory:" and not os.path.isabs(db_path):
            abs_path = str(_BACKEND_DIR / db_path)
            s.DATABASE_URL = f"sqlite+aiosqlite:///{abs_path}"
    return s


settings = _build_settings()
