"""Application configuration.

Environment variables override all defaults. A `.env` file next to the
backend is loaded for local development.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env for local development (no-op when the file is absent)
_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _split_ids(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./ebookstore.db")

    # Telegram Bot (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    BOT_NAME: str = os.getenv("BOT_NAME", "Ebook Store Bot")
    OWNER_NAME: str = os.getenv("OWNER_NAME", "Store Owner")
    OWNER_IDS: List[str] = _split_ids(os.getenv("OWNER_IDS", ""))
    # Channel/group that receives masked transaction notices (empty = disabled)
    CHANNEL_ID: str = os.getenv("CHANNEL_ID", "")

    # Payment Gateway
    PAYMENT_API_KEY: str = os.getenv("PAYMENT_API_KEY", "")
    PAYMENT_API_BASE_URL: str = os.getenv("PAYMENT_API_BASE_URL", "https://ciaatopup.my.id")
    PAYMENT_METHOD: str = os.getenv("PAYMENT_METHOD", "QRISFAST")
    PAYMENT_TIMEOUT_SECONDS: float = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "15"))

    # Payment polling: interval x attempts is the advertised payment deadline (5 minutes)
    CHECK_INTERVAL_SECONDS: float = float(os.getenv("CHECK_INTERVAL_SECONDS", "10"))
    MAX_CHECK_ATTEMPTS: int = int(os.getenv("MAX_CHECK_ATTEMPTS", "30"))

    # Wizard state expiry
    STATE_TTL_SECONDS: float = float(os.getenv("STATE_TTL_SECONDS", "300"))
    STATE_SWEEP_INTERVAL_SECONDS: float = float(os.getenv("STATE_SWEEP_INTERVAL_SECONDS", "60"))

    # Store rules
    MIN_TOPUP: int = int(os.getenv("MIN_TOPUP", "5000"))
    BROADCAST_DELAY_SECONDS: float = float(os.getenv("BROADCAST_DELAY_SECONDS", "1"))
    COMMAND_PREFIX: str = os.getenv("COMMAND_PREFIX", "/")
    CANCEL_WORD: str = os.getenv("CANCEL_WORD", "cancel")

    # Durable error log (appended by AuditLog.log_error)
    ERROR_LOG: str = os.getenv("ERROR_LOG", "./logs/error.log")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def payment_deadline_seconds(self) -> float:
        return self.CHECK_INTERVAL_SECONDS * self.MAX_CHECK_ATTEMPTS

    def is_owner(self, user_id: str) -> bool:
        return str(user_id) in self.OWNER_IDS


settings = Settings()
