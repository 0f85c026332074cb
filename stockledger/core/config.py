from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Iterable

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AppSettings(BaseSettings):
    """Environment-driven application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Stock Ledger"
    APP_ENV: str = "dev"

    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[2] / "data")

    DB_URL: str = Field(
        default="",
        validation_alias=AliasChoices("DB_URL", "DATABASE_URL"),
    )

    API_KEY: str = Field(default="", validation_alias=AliasChoices("API_KEY", "API_TOKEN"))
    JWT_SECRET: str = "change-me"
    JWT_ACCESS_TTL_MIN: int = 15
    JWT_REFRESH_TTL_DAYS: int = 7
    ALLOWED_ORIGINS: Annotated[list[str], NoDecode] = Field(default_factory=list)
    BOOTSTRAP_ADMIN_USERNAME: str = "admin"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # ---- Stock ledger
    # Upper bound on a single stock mutation transaction, lock wait included.
    STOCK_TXN_TIMEOUT_SECONDS: float = 10.0
    # How long a mutation waits for another one holding the product lock.
    STOCK_LOCK_WAIT_SECONDS: float = 5.0
    DEFAULT_LOW_STOCK_THRESHOLD: int = Field(default=10, ge=1)
    LOG_PAGE_SIZE_DEFAULT: int = Field(default=50, ge=1)
    LOG_PAGE_SIZE_MAX: int = Field(default=500, ge=1)
    RECENT_ACTIVITY_LIMIT: int = Field(default=5, ge=0)

    HOST: str = "0.0.0.0"
    PORT: int = 8090

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, Iterable):
            return [str(item).strip() for item in value if str(item).strip()]
        raise TypeError("ALLOWED_ORIGINS must be a comma separated string or list")

    @property
    def is_sqlite(self) -> bool:
        return self.DB_URL.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    settings = AppSettings()
    if not settings.DB_URL:
        settings.DB_URL = f"sqlite:///{settings.DATA_DIR / 'stockledger.db'}"
    if settings.is_sqlite:
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    return settings


# Importing ``settings`` anywhere gives the configured values without rebuilding
# the object each time.
settings = get_settings()
