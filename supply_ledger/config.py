from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ==============================
    # Application
    # ==============================
    APP_NAME: str = "Supply Ledger"
    ENVIRONMENT: str = "local"

    # ==============================
    # Database
    # ==============================
    DATABASE_URL: str = "sqlite:///./supply_ledger.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_RECYCLE: int = 1800
    DB_LOCK_TIMEOUT_SECONDS: float = 10.0
    DB_STATEMENT_TIMEOUT_SECONDS: float = 30.0
    DB_SLOW_TRANSACTION_MS: int = 1000

    # ==============================
    # Transaction retry
    # ==============================
    TX_MAX_ATTEMPTS: int = 3
    TX_RETRY_BASE_DELAY: float = 1.0
    TX_RETRY_MAX_DELAY: float = 5.0

    # ==============================
    # Ledger
    # ==============================
    DEFAULT_LOCATION_NAME: str = "Common Area"

    # ==============================
    # Logging
    # ==============================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ==============================
    # Security
    # ==============================
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None
    AUTH_COOKIE_NAME: str = "authToken"

    # ==============================
    # Low-stock notifications
    # ==============================
    WHATSAPP_API_URL: Optional[str] = None
    WHATSAPP_ACCESS_TOKEN: Optional[str] = None
    LOW_STOCK_ALERT_PHONES: Optional[str] = None

    def alert_phones(self) -> list[str]:
        if not self.LOW_STOCK_ALERT_PHONES:
            return []
        return [
            value.strip()
            for value in self.LOW_STOCK_ALERT_PHONES.split(",")
            if value.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    """Cached settings loader (once per process)."""
    return Settings()


__all__ = ["Settings", "get_settings"]
