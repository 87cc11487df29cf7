"""Application configuration from environment variables."""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Pydantic loads values from OS environment variables first, then the
    .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./treasury.db",
        description="Async SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Log file path")

    # Locale (babel) and money
    locale: str = Field(default="fr_FR", description="Locale for amounts and dates")
    default_currency: str = Field(default="EUR", description="Currency of new requests")

    # Treasury rules
    low_balance_threshold: Decimal = Field(
        default=Decimal("500"),
        description="Balance under which a low_balance alert is raised",
    )
    income_types: list[str] = Field(
        default=["cotisation", "don", "evenement"],
        description="Ledger entry types counted as association income",
    )
    upcoming_repayment_days: int = Field(
        default=30, description="Horizon for upcoming repayments in the financial summary"
    )
    late_penalty_rate: Decimal = Field(
        default=Decimal("0.05"),
        description="Yearly rate applied per day late to an overdue installment's principal",
    )
    decision_retry_attempts: int = Field(
        default=3, description="Retries when a concurrent write invalidated a decision"
    )

    # Telegram notifications (bureau group chat)
    telegram_bot_token: str = Field(default="", description="Telegram bot token")
    telegram_bureau_chat_id: str = Field(
        default="", description="Telegram chat receiving treasury notifications"
    )

    # API
    api_title: str = Field(default="Association Treasury API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")
    api_host: str = Field(default="0.0.0.0", description="Interface uvicorn binds to")
    api_port: int = Field(default=8000, description="Port uvicorn listens on")


# Global settings instance
settings = Settings()
