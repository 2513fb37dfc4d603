# parkbot/config.py
"""
Application configuration using Pydantic-Settings.
All settings can be overridden via environment variables or .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Database ──────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite:///./parkbot.db"

    # ── Network ───────────────────────────────────────────────────────────
    BACKEND_IP: str = "0.0.0.0"
    BACKEND_PORT: int = 8080

    # ── Security ──────────────────────────────────────────────────────────
    API_KEY: Optional[str] = None   # Set in .env to enable auth on API endpoints

    # ── Telegram ──────────────────────────────────────────────────────────
    TELEGRAM_BOT_TOKEN: str = "CHANGE_ME"
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = None   # X-Telegram-Bot-Api-Secret-Token
    WEB_APP_URL: str = "https://parkiraj.info"

    # ── TON (manual transfer rail) ────────────────────────────────────────
    TON_RECIPIENT_ADDRESS: str = ""
    TON_API_URL: str = "https://tonapi.io/v2"
    TON_API_KEY: Optional[str] = None
    TON_AMOUNT_TOLERANCE_NANO: int = 1_000_000     # 0.001 TON
    STARS_PER_TON: int = 200

    # ── Reservation engine ────────────────────────────────────────────────
    LINK_RESOLVE_ATTEMPTS: int = 3
    LINK_RESOLVE_BACKOFF_MS: int = 50
    PAYMENT_INTENT_WINDOW_MINUTES: int = 60
    DEFAULT_RESERVATION_HOURS: int = 1

    # ── Outbound HTTP ─────────────────────────────────────────────────────
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # ── Logging ───────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    @property
    def TELEGRAM_BOT_URL(self) -> str:
        return f"{self.TELEGRAM_API_URL.rstrip('/')}/bot{self.TELEGRAM_BOT_TOKEN}"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
