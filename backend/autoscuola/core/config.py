# backend/autoscuola/core/config.py
import logging
import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz

from .constants import (
    DEFAULT_TIMEZONE,
    INVOICE_SWEEP_DEFAULT_LIMIT,
    PAYMENT_RETRY_SWEEP_LIMIT,
    REPOSITION_SWEEP_DEFAULT_LIMIT,
)

load_dotenv()

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """Detect if code is running under pytest."""
    return os.getenv("PYTEST_CURRENT_TEST") is not None


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Deployment environment name",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./autoscuola.db",
        alias="DATABASE_URL",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Celery / Redis
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    default_timezone: str = Field(
        default=DEFAULT_TIMEZONE,
        alias="AUTOSCUOLA_DEFAULT_TIMEZONE",
        description="Fallback zone when a company has none configured",
    )

    # Payment gateway (Stripe)
    stripe_secret_key: Optional[SecretStr] = Field(default=None, alias="STRIPE_SECRET_KEY")
    payment_gateway_timeout_seconds: float = Field(
        default=10.0,
        alias="PAYMENT_GATEWAY_TIMEOUT_SECONDS",
        description="Request timeout for off-session charges",
    )

    # Invoicing provider
    invoicing_base_url: str = Field(
        default="https://api-v2.fattureincloud.it",
        alias="INVOICING_BASE_URL",
    )
    invoicing_api_key: Optional[SecretStr] = Field(default=None, alias="INVOICING_API_KEY")
    invoicing_company_ref: Optional[str] = Field(default=None, alias="INVOICING_COMPANY_REF")
    invoicing_timeout_seconds: float = Field(default=15.0, alias="INVOICING_TIMEOUT_SECONDS")

    # Sweep sizes
    reposition_sweep_limit: int = Field(
        default=REPOSITION_SWEEP_DEFAULT_LIMIT, alias="REPOSITION_SWEEP_LIMIT"
    )
    payment_sweep_limit: int = Field(default=PAYMENT_RETRY_SWEEP_LIMIT, alias="PAYMENT_SWEEP_LIMIT")
    invoice_sweep_limit: int = Field(
        default=INVOICE_SWEEP_DEFAULT_LIMIT, alias="INVOICE_SWEEP_LIMIT"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("default_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            logger.warning(f"Unknown timezone {value!r}, falling back to {DEFAULT_TIMEZONE}")
            return DEFAULT_TIMEZONE
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def invoicing_configured(self) -> bool:
        return bool(self.invoicing_api_key and self.invoicing_api_key.get_secret_value())


settings = Settings()
