"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

from magicformula.strategy.validation import TradingParameters


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Magic Formula Trader"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["local", "development", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = ""

    # Database (holdings / transactions ledger)
    DATABASE_URL: str = "sqlite+aiosqlite:///./portfolio.db"
    DB_ECHO: bool = False

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    CELERY_TIMEZONE: str = "America/New_York"

    # Stock screener / fundamentals (Financial Modeling Prep)
    FMP_API_KEY: str = ""
    FMP_BASE_URL: str = "https://financialmodelingprep.com/api/v3"
    SCREENER_EXCHANGE: str = "NYSE"
    STOCK_SCREENER_MARKET_CAP: float = 1_000_000_000.0
    SCREENER_LIMIT: int = 248
    METRICS_BATCH_SIZE: int = 50  # concurrent symbol fetches per batch
    METRICS_BATCH_PAUSE_SEC: float = 1.0
    DATA_FEED_MAX_RETRIES: int = 3
    DATA_FEED_RETRY_BACKOFF_SEC: float = 0.5

    # Strategy Parameters
    NUMBER_OF_STOCKS_PER_BATCH: int = 5
    MAX_TOTAL_INVESTMENT_PERCENT: float = 0.25
    SELL_UNPROFITABLE_AFTER_DAYS: int = 358  # just before long-term status
    SELL_PROFITABLE_AFTER_DAYS: int = 372  # just after long-term status
    RANK_EXCLUDE_ZERO_FACTORS: bool = True
    ALLOCATOR_RESERVE_CASH: bool = True

    # Broker Configuration
    BROKER_MODE: Literal["paper", "live"] = "paper"
    ALPACA_API_KEY: str = ""
    ALPACA_SECRET_KEY: str = ""
    ALPACA_BASE_URL: str = "https://paper-api.alpaca.markets"
    ORDER_FILL_TIMEOUT_SEC: float = 30.0
    ORDER_FILL_POLL_SEC: float = 0.5

    # Cycle execution
    IO_TIMEOUT_SEC: float = 30.0
    LEDGER_WRITE_RETRIES: int = 3
    ENFORCE_RUN_LOCK: bool = True

    # Notifications
    EMAIL_FROM: str = ""
    EMAIL_PASS: str = ""
    EMAIL_TO: str = ""
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 465
    SLACK_WEBHOOK_URL: str = ""

    def trading_parameters(self) -> TradingParameters:
        """Build validated strategy parameters; raises InvalidInputError on bad values."""
        return TradingParameters(
            batch_size=self.NUMBER_OF_STOCKS_PER_BATCH,
            max_investment_percent=self.MAX_TOTAL_INVESTMENT_PERCENT,
            unprofitable_threshold_days=self.SELL_UNPROFITABLE_AFTER_DAYS,
            profitable_threshold_days=self.SELL_PROFITABLE_AFTER_DAYS,
            min_market_cap=self.STOCK_SCREENER_MARKET_CAP,
            exchange=self.SCREENER_EXCHANGE,
        )


# Global settings instance
settings = Settings()
