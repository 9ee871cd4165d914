"""Tenant-aware construction of the ARM clients.

A subscription may live in a different tenant than the one the user signed
in to, so tokens (and therefore clients) are scoped to the *subscription's*
tenant.  :class:`TenantAwareServiceFactory` rebuilds the clients only when
the signed-in account or the selected subscription actually changes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from azure.identity import DefaultAzureCredential

from az_marketplace.azure_api import (
    BrowserIdentityClient,
    CatalogClient,
    CredentialTokenProvider,
    IdentityTokenProvider,
    SubscriptionClient,
    TokenProvider,
)
from az_marketplace.models import Subscription
from az_marketplace.settings import MarketplaceSettings

logger = logging.getLogger(__name__)

# (account, tenant_id) -> provider.  ``tenant_id=None`` means the home tenant.
TokenProviderFactory = Callable[[Any, "str | None"], TokenProvider]


@dataclass(frozen=True)
class TenantServices:
    subscription_client: SubscriptionClient
    catalog_client: CatalogClient
    token_provider: TokenProvider
    subscription: Subscription


class TenantAwareServiceFactory:
    """Build (and memoize) the clients for the current selection.

    *sign_in* returns a fresh account for :meth:`MarketplaceSession.login`
    when the caller does not supply one.
    """

    def __init__(
        self,
        token_provider_factory: TokenProviderFactory,
        *,
        settings: MarketplaceSettings | None = None,
        sign_in: Callable[[], Any] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.token_provider_factory = token_provider_factory
        self.settings = settings or MarketplaceSettings()
        self.sign_in = sign_in
        self.clock = clock
        self._key: tuple | None = None
        self._services: TenantServices | None = None

    @property
    def current(self) -> TenantServices | None:
        """The last built services, without recomputing."""
        return self._services

    def _client_kwargs(self) -> dict[str, Any]:
        s = self.settings
        return {
            "retry_config": s.retry_config(),
            "circuit_config": s.circuit_config(),
            "timeout": s.request_timeout,
        }

    def home_subscription_client(self, accounts: Sequence[Any]) -> SubscriptionClient | None:
        """Client for listing subscriptions before one is selected."""
        if not accounts:
            return None
        provider = self.token_provider_factory(accounts[0], None)
        return SubscriptionClient(provider, **self._client_kwargs())

    def services_for(
        self,
        accounts: Sequence[Any],
        subscriptions: Sequence[Subscription],
        selected_subscription: str | None,
    ) -> TenantServices | None:
        """Return the clients for *selected_subscription*, or ``None``.

        ``None`` means "not ready" (nobody signed in or the selection does
        not resolve), not an error.
        """
        subscription = next(
            (s for s in subscriptions if s.subscription_id == selected_subscription),
            None,
        )
        if not accounts or subscription is None:
            self._key = None
            self._services = None
            return None

        key = (id(accounts[0]), subscription)
        if key == self._key and self._services is not None:
            return self._services

        logger.debug(
            "Building services for subscription %s (tenant %s)",
            subscription.subscription_id,
            subscription.tenant_id,
        )
        provider = self.token_provider_factory(accounts[0], subscription.tenant_id)
        kwargs = self._client_kwargs()
        self._services = TenantServices(
            subscription_client=SubscriptionClient(provider, **kwargs),
            catalog_client=CatalogClient(
                provider,
                cache_config=self.settings.cache_config(),
                rate_limit_config=self.settings.rate_limit_config(),
                clock=self.clock,
                **kwargs,
            ),
            token_provider=provider,
            subscription=subscription,
        )
        self._key = key
        return self._services


def build_factory(settings: MarketplaceSettings) -> TenantAwareServiceFactory:
    """Wire the factory for ``settings.auth_mode``.

    ``cli`` uses :class:`~azure.identity.DefaultAzureCredential` (Azure CLI
    login, managed identity, environment variables); ``interactive`` signs
    in through the browser with the configured app registration.
    """
    if settings.auth_mode == "interactive":
        identity_client = BrowserIdentityClient(settings.client_id)

        def _identity_provider(account: Any, tenant_id: str | None) -> TokenProvider:
            return IdentityTokenProvider(identity_client, account, tenant_id)

        return TenantAwareServiceFactory(
            _identity_provider, settings=settings, sign_in=identity_client.sign_in
        )

    def _credential_provider(credential: Any, tenant_id: str | None) -> TokenProvider:
        return CredentialTokenProvider(credential, tenant_id)

    return TenantAwareServiceFactory(
        _credential_provider,
        settings=settings,
        sign_in=DefaultAzureCredential,
    )
