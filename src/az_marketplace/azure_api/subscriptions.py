"""Subscription and location discovery."""

from __future__ import annotations

import logging

from az_marketplace.azure_api._auth import AZURE_MGMT_URL, TokenProvider
from az_marketplace.azure_api._circuit import CircuitBreaker, CircuitBreakerConfig
from az_marketplace.azure_api._retry import RetryConfig, RetryPolicy
from az_marketplace.azure_api._transport import DEFAULT_TIMEOUT, ArmTransport
from az_marketplace.errors import ValidationError
from az_marketplace.models import AzureLocation, Subscription

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_API_VERSION = "2020-01-01"
LOCATIONS_API_VERSION = "2022-12-01"


class SubscriptionClient:
    """Lists the subscriptions and locations the token can see.

    Every call goes circuit breaker -> retry -> token -> HTTP.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        retry_config: RetryConfig | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry: RetryPolicy | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.token_provider = token_provider
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            circuit_config, name="subscriptions"
        )
        self.transport = ArmTransport(
            token_provider,
            retry=retry or RetryPolicy(retry_config),
            timeout=timeout,
        )

    def get_access_token(self) -> str:
        return self.token_provider.get_access_token()

    def get_subscriptions(self) -> list[Subscription]:
        """Return every subscription visible to the current token."""
        url = f"{AZURE_MGMT_URL}/subscriptions?api-version={SUBSCRIPTIONS_API_VERSION}"

        def _fetch() -> list[Subscription]:
            raw = self.transport.get_all(url)
            return [Subscription.from_api(s) for s in raw if isinstance(s, dict)]

        return self.circuit_breaker.execute(_fetch)

    def get_subscription(self, subscription_id: str) -> Subscription:
        if not subscription_id:
            raise ValidationError("Subscription ID is required", field="subscription_id")

        url = (
            f"{AZURE_MGMT_URL}/subscriptions/{subscription_id}"
            f"?api-version={SUBSCRIPTIONS_API_VERSION}"
        )

        def _fetch() -> Subscription:
            data = self.transport.get_json(url)
            if not isinstance(data, dict):
                raise ValidationError("Invalid response format from subscription API")
            return Subscription.from_api(data)

        return self.circuit_breaker.execute(_fetch)

    def get_locations(self, subscription_id: str) -> list[AzureLocation]:
        """Return all ARM locations available to *subscription_id*."""
        if not subscription_id:
            raise ValidationError("Subscription ID is required", field="subscription_id")

        url = (
            f"{AZURE_MGMT_URL}/subscriptions/{subscription_id}/locations"
            f"?api-version={LOCATIONS_API_VERSION}"
        )

        def _fetch() -> list[AzureLocation]:
            data = self.transport.get_json(url)
            if not isinstance(data, dict) or not isinstance(data.get("value"), list):
                raise ValidationError("Invalid response format from locations API")
            return [AzureLocation.from_api(loc) for loc in data["value"] if isinstance(loc, dict)]

        return self.circuit_breaker.execute(_fetch)
