import logging
from datetime import time
from enum import Enum
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    pass


class StripeMode(str, Enum):
    TEST = "test"
    LIVE = "live"


class RelayConfig(BaseModel):
    """Configuration resolved once at startup and handed to every component."""

    model_config = ConfigDict(frozen=True)

    mode: StripeMode | None
    stripe_secret_key: str
    webhook_secret: str
    webhook_tolerance: int = 300
    forward_url: str | None = None
    http_timeout: float = 10.0
    currency: str = "jpy"
    product_name: str = "Cottage SERAGAKI stay"
    payment_method_types: tuple[str, ...] = ("card", "konbini")
    success_url: str = "https://stay-oceanus.com/payment_success.html"
    cancel_url: str = "https://stay-oceanus.com/payment_cancel.html"
    booking_timezone: str = "Asia/Tokyo"
    booking_cutoff: time | None = time(12, 0)
    forward_provisional_reservations: bool = False


class Settings(BaseSettings):
    stripe_mode: StripeMode | None = None
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_test_secret_key: str = ""
    stripe_test_webhook_secret: str = ""
    stripe_live_secret_key: str = ""
    stripe_live_webhook_secret: str = ""

    forward_url: str | None = Field(
        default=None, validation_alias=AliasChoices("forward_url", "gas_endpoint")
    )
    port: int = 3000
    http_timeout: float = 10.0
    webhook_tolerance: int = 300
    allowed_origins: str = "http://localhost:5500"  # comma-separated
    max_body_size: int = 1_048_576  # 1 MiB
    log_level: str = "INFO"

    currency: str = "jpy"
    product_name: str = "Cottage SERAGAKI stay"
    payment_method_types: str = "card,konbini"
    success_url: str = "https://stay-oceanus.com/payment_success.html"
    cancel_url: str = "https://stay-oceanus.com/payment_cancel.html"
    booking_timezone: str = "Asia/Tokyo"
    booking_cutoff: time | None = time(12, 0)
    forward_provisional_reservations: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("stripe_mode", "booking_cutoff", "forward_url", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def _keys_for_mode(self) -> tuple[str, str]:
        if self.stripe_mode is StripeMode.TEST:
            return (
                self.stripe_test_secret_key or self.stripe_secret_key,
                self.stripe_test_webhook_secret or self.stripe_webhook_secret,
            )
        if self.stripe_mode is StripeMode.LIVE:
            return (
                self.stripe_live_secret_key or self.stripe_secret_key,
                self.stripe_live_webhook_secret or self.stripe_webhook_secret,
            )
        return self.stripe_secret_key, self.stripe_webhook_secret

    def resolve(self) -> RelayConfig:
        """Pick the credentials for the selected mode and freeze the result.

        Raises ConfigurationError when no secret key is available or the
        booking timezone is unknown, so a misconfigured deployment fails at
        startup instead of per request.
        """
        secret_key, webhook_secret = self._keys_for_mode()
        mode_label = self.stripe_mode.value if self.stripe_mode else "default"
        if not secret_key:
            raise ConfigurationError(
                f"No Stripe secret key configured for mode '{mode_label}'"
            )
        if not webhook_secret:
            logger.warning(
                f"No webhook signing secret configured for mode '{mode_label}'; "
                "all webhooks will be rejected"
            )
        try:
            ZoneInfo(self.booking_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(
                f"Unknown booking timezone '{self.booking_timezone}'"
            )
        if not self.forward_url:
            logger.warning("FORWARD_URL is not set; events will not be forwarded")

        methods = tuple(
            m.strip() for m in self.payment_method_types.split(",") if m.strip()
        )
        return RelayConfig(
            mode=self.stripe_mode,
            stripe_secret_key=secret_key,
            webhook_secret=webhook_secret,
            webhook_tolerance=self.webhook_tolerance,
            forward_url=self.forward_url,
            http_timeout=self.http_timeout,
            currency=self.currency,
            product_name=self.product_name,
            payment_method_types=methods,
            success_url=self.success_url,
            cancel_url=self.cancel_url,
            booking_timezone=self.booking_timezone,
            booking_cutoff=self.booking_cutoff,
            forward_provisional_reservations=self.forward_provisional_reservations,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_config() -> RelayConfig:
    return get_settings().resolve()
