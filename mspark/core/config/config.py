from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from decimal import Decimal
from pathlib import Path


class Settings(BaseSettings):
    """Application configuration loaded from .env and the environment"""

    # Main settings
    app_name: str = "Mspark Auctions API"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 1
    debug: bool = False

    # Database
    database_url: str = "sqlite://db.sqlite3"

    # Cache (aiocache backend class path)
    cache_backend: str = "aiocache.RedisCache"
    redis_host: str = "localhost"
    redis_port: int = 6379

    # App Security
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # CORS settings
    CORS_ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Public URLs used in gateway callbacks and redirects
    BASE_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"

    # CoinGate
    COINGATE_API_URL: str = "https://api-sandbox.coingate.com/api/v2"
    COINGATE_API_KEY: str
    COINGATE_TIMEOUT: float = 15.0

    # Settlement
    SETTLEMENT_PRICE_CURRENCY: str = "USD"
    SETTLEMENT_RECEIVE_CURRENCY: str = "BTC"
    EXCHANGE_RATE_TTL: int = 3600
    DEFAULT_PLATFORM_FEE: Decimal = Decimal("0.05")
    DEFAULT_VERIFICATION_FEE: Decimal = Decimal("0.02")

    # SMTP
    smtp_server: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_start_tls: bool = True
    MAIL_FROM: str = '"Auction System" <noreply-auto@mspark.com>'

    # Completion scheduler
    AUCTION_COMPLETION_MAX_ATTEMPTS: int = 3
    AUCTION_COMPLETION_BACKOFF_SECONDS: float = 5.0
    SCHEDULER_AUTOSTART: bool = True

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("EXCHANGE_RATE_TTL")
    @classmethod
    def cap_rate_ttl(cls, v: int) -> int:
        # exchange rates must not be served older than one hour
        return min(v, 3600)


settings = Settings()
