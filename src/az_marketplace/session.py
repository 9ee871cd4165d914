"""Session coordinator tying the stores to the ARM clients.

:class:`MarketplaceSession` is the only writer of the stores outside tests.
It sequences every cross-store invalidation the same way: state reset
first, then the catalog store and client cache are cleared, and only then
may a new fetch start.

Fetch results are fenced by a generation counter plus the selection they
were issued for.  A result that arrives after the user switched tenant,
subscription or location is returned to the caller but never written to
the stores.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, TypeVar

from az_marketplace.azure_api import user_from_token
from az_marketplace.errors import (
    AuthenticationError,
    AuthorizationError,
    MarketplaceError,
    ValidationError,
)
from az_marketplace.models import AzureLocation, Offer, Publisher, Sku, Subscription, User
from az_marketplace.services import TenantAwareServiceFactory, TenantServices
from az_marketplace.stores import (
    AuthStore,
    CatalogLevel,
    CatalogStore,
    Invalidation,
    InvalidationReason,
    NavigationStore,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MarketplaceSession:
    def __init__(
        self,
        factory: TenantAwareServiceFactory,
        *,
        auth: AuthStore | None = None,
        catalog: CatalogStore | None = None,
        navigation: NavigationStore | None = None,
        user_resolver: Callable[[str], User] = user_from_token,
    ) -> None:
        self.factory = factory
        self.auth = auth or AuthStore()
        self.catalog = catalog or CatalogStore()
        self.navigation = navigation or NavigationStore()
        self.user_resolver = user_resolver
        self.accounts: list[Any] = []
        self._generation = 0
        self._lock = threading.Lock()
        self.auth.add_invalidation_listener(self._on_invalidation)

    # -- invalidation ----------------------------------------------------------

    def _on_invalidation(self, invalidation: Invalidation) -> None:
        with self._lock:
            self._generation += 1
        logger.debug("Invalidation %s (generation %d)", invalidation.reason, self._generation)

        self.catalog.clear_all()
        self.navigation.reset()

        current = self.factory.current
        if current is None:
            return
        if invalidation.reason == InvalidationReason.SUBSCRIPTION_CHANGED:
            if invalidation.previous:
                current.catalog_client.clear_cache_for_subscription(invalidation.previous)
        elif invalidation.reason in (InvalidationReason.TENANT_SWITCH, InvalidationReason.LOGOUT):
            current.catalog_client.clear_cache()

    def _selection_key(self) -> tuple[str | None, str | None, str]:
        state = self.auth.state
        user = state.user
        return (
            user.tenant_id if user else None,
            state.selected_subscription,
            state.selected_location,
        )

    def _is_current(self, generation: int, key: tuple) -> bool:
        return generation == self._generation and key == self._selection_key()

    def _fetch(
        self,
        store: AuthStore | CatalogStore,
        what: str,
        fetch: Callable[[], T],
        apply: Callable[[T], None],
    ) -> T:
        """Run *fetch*, surface failures on *store*, apply fresh results."""
        generation = self._generation
        key = self._selection_key()
        store.set_loading(True)
        try:
            result = fetch()
        except MarketplaceError as exc:
            logger.warning("Failed to load %s: %s", what, exc)
            store.set_error(exc.user_message)
            raise
        finally:
            store.set_loading(False)

        if self._is_current(generation, key):
            apply(result)
        else:
            logger.info("Discarding stale %s result issued for %s", what, key)
        return result

    # -- auth ----------------------------------------------------------------

    @property
    def services(self) -> TenantServices | None:
        state = self.auth.state
        return self.factory.services_for(
            self.accounts, state.subscriptions, state.selected_subscription
        )

    def _require_services(self) -> TenantServices:
        if not self.accounts:
            raise AuthenticationError("Not signed in")
        services = self.services
        if services is None:
            raise ValidationError("No subscription selected", field="subscription_id")
        return services

    def login(self, account: Any = None) -> User:
        """Sign in with *account* (or the factory's sign-in flow).

        Returns the signed-in user.  Signing in as another user or tenant
        wipes all tenant-specific state before anything is fetched.
        """
        if account is None:
            if self.factory.sign_in is None:
                raise AuthenticationError("No sign-in method configured")
            try:
                account = self.factory.sign_in()
            except Exception as exc:
                error = AuthenticationError(f"Sign-in failed: {exc}", original_error=exc)
                self.auth.set_error(error.user_message)
                raise error from exc

        provider = self.factory.token_provider_factory(account, None)
        try:
            user = self.user_resolver(provider.get_access_token())
        except MarketplaceError as exc:
            self.auth.set_error(exc.user_message)
            raise

        self.accounts = [account]
        switched = self.auth.login(user)
        logger.info("Signed in as %s (tenant %s, switch=%s)", user.id, user.tenant_id, switched)
        return user

    def logout(self) -> None:
        self.accounts = []
        self.auth.logout()
        if self.auth.persistence is not None:
            self.auth.persistence.clear()

    # -- subscriptions & locations ---------------------------------------------

    def load_subscriptions(self) -> list[Subscription]:
        client = self.factory.home_subscription_client(self.accounts)
        if client is None:
            raise AuthenticationError("Not signed in")

        def _apply(subscriptions: list[Subscription]) -> None:
            self.auth.set_subscriptions(subscriptions)
            state = self.auth.state
            # A persisted selection may not exist for this user any more.
            if state.selected_subscription and self.auth.current_subscription is None:
                logger.warning(
                    "Stored subscription %s no longer available", state.selected_subscription
                )
                if subscriptions:
                    self.auth.select_subscription(subscriptions[0].subscription_id)

        return self._fetch(self.auth, "subscriptions", client.get_subscriptions, _apply)

    def select_subscription(self, subscription_id: str) -> Subscription:
        if not self.auth.select_subscription(subscription_id):
            raise AuthorizationError(self.auth.state.error or "Unknown subscription")
        subscription = self.auth.current_subscription
        if subscription is None:
            raise AuthorizationError(f"Subscription with ID {subscription_id} not found")
        return subscription

    def load_locations(self) -> list[AzureLocation]:
        services = self._require_services()
        subscription_id = services.subscription.subscription_id

        def _apply(locations: list[AzureLocation]) -> None:
            self.auth.set_locations(locations)
            self.auth.reconcile_location()

        return self._fetch(
            self.auth,
            "locations",
            lambda: services.subscription_client.get_locations(subscription_id),
            _apply,
        )

    def select_location(self, location: str) -> None:
        if not location:
            raise ValidationError("Location is required", field="location")
        self.auth.select_location(location)

    # -- catalog ---------------------------------------------------------------

    def load_publishers(self) -> list[Publisher]:
        services = self._require_services()
        subscription_id = services.subscription.subscription_id
        location = self.auth.state.selected_location
        return self._fetch(
            self.catalog,
            "publishers",
            lambda: services.catalog_client.get_publishers(subscription_id, location),
            self.catalog.set_publishers,
        )

    def load_offers(self, publisher: str) -> list[Offer]:
        services = self._require_services()
        subscription_id = services.subscription.subscription_id
        location = self.auth.state.selected_location

        def _apply(offers: list[Offer]) -> None:
            self.catalog.set_offers(offers, publisher)
            self.navigation.navigate_to_offers(publisher)

        return self._fetch(
            self.catalog,
            "offers",
            lambda: services.catalog_client.get_offers(subscription_id, publisher, location),
            _apply,
        )

    def load_skus(self, publisher: str, offer: str) -> list[Sku]:
        services = self._require_services()
        subscription_id = services.subscription.subscription_id
        location = self.auth.state.selected_location

        def _apply(skus: list[Sku]) -> None:
            self.catalog.set_skus(skus, publisher, offer)
            self.navigation.navigate_to_skus(publisher, offer)

        return self._fetch(
            self.catalog,
            "SKUs",
            lambda: services.catalog_client.get_skus(subscription_id, publisher, offer, location),
            _apply,
        )

    def load_versions(self, publisher: str, offer: str, sku: str) -> list[str]:
        """Fetch versions of *sku*.  An empty list may mean a transient failure."""
        services = self._require_services()
        subscription_id = services.subscription.subscription_id
        location = self.auth.state.selected_location

        def _apply(versions: list[str]) -> None:
            if self.catalog.state.loaded_skus == (publisher, offer):
                self.catalog.set_sku_versions(sku, versions)

        return self._fetch(
            self.catalog,
            "versions",
            lambda: services.catalog_client.get_sku_versions(
                subscription_id, publisher, offer, sku, location
            ),
            _apply,
        )

    def search(self, query: str, level: CatalogLevel | None = None) -> None:
        """Filter loaded catalog lists; *level* restricts it to one list."""
        if level is None:
            self.catalog.set_search_query(query)
            return
        setters: dict[CatalogLevel, Callable[[str], None]] = {
            CatalogLevel.PUBLISHERS: self.catalog.set_publishers_search,
            CatalogLevel.OFFERS: self.catalog.set_offers_search,
            CatalogLevel.SKUS: self.catalog.set_skus_search,
        }
        setters[CatalogLevel(level)](query)

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready summary of the auth and navigation state."""
        state = self.auth.state
        nav = self.navigation.state
        user = state.user
        return {
            "isAuthenticated": state.is_authenticated,
            "user": (
                {"id": user.id, "tenantId": user.tenant_id, "name": user.name, "email": user.email}
                if user
                else None
            ),
            "subscriptions": [s.to_api() for s in state.subscriptions],
            "selectedSubscription": state.selected_subscription,
            "locations": [loc.to_api() for loc in state.locations],
            "selectedLocation": state.selected_location,
            "loading": state.loading or self.catalog.state.loading,
            "error": state.error or self.catalog.state.error,
            "navigation": {
                "level": str(nav.level),
                "selectedPublisher": nav.selected_publisher,
                "selectedOffer": nav.selected_offer,
                "breadcrumb": [
                    {"label": c.label, "level": str(c.level)} for c in self.navigation.breadcrumb
                ],
            },
        }

