from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # -------------------------
    # App core settings
    # -------------------------
    APP_NAME: str = "LoanBot"
    ENV: str = "dev"

    # -------------------------
    # Remote loan backend
    # -------------------------
    LOAN_API_BASE_URL: str = "https://nibterasales.nibbank.com.et/api"
    LOAN_API_TIMEOUT_SECONDS: float = 10.0
    LOAN_TERM_DAYS: int = 30
    CURRENCY: str = "ETB"
    HISTORY_LIMIT: int = 10

    # -------------------------
    # Telegram bot
    # -------------------------
    TELEGRAM_ENABLED: bool = True
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    TELEGRAM_DELIVERY_MODE: str = "polling"  # "polling" | "webhook"
    TELEGRAM_WEBHOOK_URL: Optional[str] = None
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = None
    TELEGRAM_POLL_TIMEOUT_SECONDS: int = 30

    # -------------------------
    # Conversation sessions
    # -------------------------
    # 0 disables idle eviction
    SESSION_IDLE_TIMEOUT_SECONDS: int = 3600

    # -------------------------
    # Text generation (application summaries)
    # -------------------------
    GOOGLE_API_KEY: Optional[str] = None
    GOOGLE_MODEL: str = "gemini-1.5-flash"

    # -------------------------
    # Pydantic v2 config
    # -------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid"
    )


# Singleton
settings = Settings()
