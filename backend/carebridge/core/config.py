# backend/carebridge/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Optional, Set

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_CURRENCY


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


PROD_ENVIRONMENTS: Set[str] = {"prod", "production", "live"}


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    database_url: str = Field(
        default="sqlite:///./carebridge.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    # Payment gateway (Razorpay)
    razorpay_key_id: str = Field(default="", description="Razorpay key id (basic auth user)")
    razorpay_key_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Razorpay key secret; also signs order|payment verification payloads",
    )
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    razorpay_fake: bool = Field(
        default=False,
        description="Use the in-memory gateway instead of the Razorpay API (non-prod only)",
    )
    gateway_timeout_seconds: float = Field(default=8.0, gt=0)
    payment_currency: str = DEFAULT_CURRENCY

    # Pricing snapshot rates
    platform_fee_rate: Decimal = Field(default=Decimal("0.15"), ge=0)
    tax_rate: Decimal = Field(default=Decimal("0.18"), ge=0)

    # Refund finalization policy
    refund_finalize_max_attempts: int = Field(default=3, ge=1, le=10)
    refund_finalize_backoff_seconds: float = Field(default=0.2, ge=0)

    # Monitoring
    sentry_dsn: Optional[SecretStr] = None

    is_testing: bool = False

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("payment_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def is_production(self) -> bool:
        return (self.environment or "").strip().lower() in PROD_ENVIRONMENTS

    @property
    def payment_signature_secret(self) -> str:
        """Secret used for HMAC verification of client-submitted payments."""
        return self.razorpay_key_secret.get_secret_value()


settings = Settings()
