"""Settings loaded from environment variables."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from az_marketplace.azure_api import (
    CacheConfig,
    CircuitBreakerConfig,
    RateLimitConfig,
    RetryConfig,
)

logger = logging.getLogger(__name__)


class MarketplaceSettings(BaseSettings):
    """Configuration for az-marketplace.

    Values are read from ``AZ_MARKETPLACE_*`` environment variables
    (case-insensitive) and optionally from a ``.env`` file in the working
    directory.
    """

    auth_mode: Literal["cli", "interactive"] = "cli"
    client_id: str = ""

    default_location: str = "eastus"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".az-marketplace")
    request_timeout: float = 30.0

    max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout: float = Field(default=60.0, ge=0)

    max_requests_per_minute: int = Field(default=60, ge=1)
    request_window: float = Field(default=60.0, gt=0)

    publishers_ttl: float = 300.0
    offers_ttl: float = 300.0
    skus_ttl: float = 300.0

    model_config = SettingsConfigDict(
        env_prefix="AZ_MARKETPLACE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _validate_interactive_vars(self) -> "MarketplaceSettings":
        if self.auth_mode == "interactive" and not self.client_id:
            raise ValueError(
                "AZ_MARKETPLACE_AUTH_MODE=interactive requires AZ_MARKETPLACE_CLIENT_ID "
                "to be set. Set AZ_MARKETPLACE_AUTH_MODE=cli to use the Azure CLI login."
            )
        return self

    @property
    def state_file(self) -> Path:
        return self.data_dir / "state.json"

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
        )

    def circuit_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
        )

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_requests_per_minute=self.max_requests_per_minute,
            request_window=self.request_window,
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            publishers_ttl=self.publishers_ttl,
            offers_ttl=self.offers_ttl,
            skus_ttl=self.skus_ttl,
        )
