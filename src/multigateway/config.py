"""Application configuration via environment variables."""

import logging
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

# Values shipped in sample configuration; treated the same as a missing key.
PLACEHOLDER_CREDENTIALS = frozenset({
    "",
    "sk_test_YOUR_STRIPE_SECRET_KEY",
    "YOUR_STRIPE_SECRET_KEY",
    "YOUR_RAZORPAY_KEY_ID",
    "YOUR_RAZORPAY_KEY_SECRET",
})


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./payments.db"
    log_level: str = "INFO"
    # Ordered; the first available entry is the default gateway.
    gateways: str = "stripe,razorpay"
    stripe_secret_key: str = ""
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    provider_timeout_seconds: float = 30.0

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def gateway_names(self) -> List[str]:
        return [name.strip().lower() for name in self.gateways.split(",") if name.strip()]


def is_placeholder(value: str) -> bool:
    return (value or "").strip() in PLACEHOLDER_CREDENTIALS


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
