from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BASE_DIR / ".env", extra="ignore")

    log_level: str = "INFO"

    # Persistence
    database_url: str = f"sqlite:///{BASE_DIR / 'autopay_bridge.db'}"
    database_echo: bool = False

    # Razorpay
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    settlement_currency: str = "INR"

    # Shopify
    shopify_api_secret: str = ""
    shopify_api_version: str = "2025-01"
    shopify_app_handle: str = "autopay-subscriptions"

    # Notifications (SMTP)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    notification_email: Optional[str] = None

    # Admin API
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    @property
    def webhook_secret(self) -> str:
        # falls back to the key secret when no dedicated webhook secret is set
        return self.razorpay_webhook_secret or self.razorpay_key_secret

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)


@lru_cache
def get_settings() -> Settings:
    return Settings()
