"""VM image catalog queries: publishers, offers, SKUs and versions."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any, TypeVar

from az_marketplace.azure_api._auth import AZURE_MGMT_URL, TokenProvider
from az_marketplace.azure_api._cache import CacheConfig, TTLCache
from az_marketplace.azure_api._circuit import CircuitBreaker, CircuitBreakerConfig
from az_marketplace.azure_api._rate_limit import RateLimitConfig, SlidingWindowRateLimiter
from az_marketplace.azure_api._retry import RetryConfig, RetryPolicy
from az_marketplace.azure_api._transport import DEFAULT_TIMEOUT, ArmTransport, extract_items
from az_marketplace.errors import MarketplaceError, ValidationError
from az_marketplace.models import Offer, Publisher, Sku

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMPUTE_API_VERSION = "2023-07-01"
# Newest first; older versions are tried when a newer one is rejected.
VERSIONS_API_VERSIONS = ("2023-07-01", "2023-03-01", "2022-11-01", "2022-08-01")
DEFAULT_LOCATION = "eastus"

_CHUNK_RE = re.compile(r"(\d+)")


def _natural_key(value: str) -> tuple[tuple[int, int, str], ...]:
    """Sort key comparing digit runs numerically (``"900" < "1006"``)."""
    key: list[tuple[int, int, str]] = []
    for chunk in _CHUNK_RE.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            key.append((0, int(chunk), ""))
        else:
            key.append((1, 0, chunk.lower()))
    return tuple(key)


def sort_versions(names: list[str]) -> list[str]:
    """Order versions newest first, with ``"latest"`` always on top."""
    latest = [n for n in names if n == "latest"]
    others = sorted((n for n in names if n != "latest"), key=_natural_key, reverse=True)
    return latest + others


class CatalogClient:
    """Marketplace image catalog for one subscription context.

    Publishers, offers and SKUs are cached per
    ``subscription-[publisher-[offer-]]location`` key.  SKU versions are
    always fetched fresh.  The caches, the rate-limiter window and the
    circuit breaker belong to this instance alone.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        cache_config: CacheConfig | None = None,
        rate_limit_config: RateLimitConfig | None = None,
        retry_config: RetryConfig | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] | None = None,
        retry: RetryPolicy | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.token_provider = token_provider
        self.cache_config = cache_config or CacheConfig()
        clock_kwargs: dict[str, Any] = {"clock": clock} if clock else {}

        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            rate_limit_config, **clock_kwargs
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            circuit_config, name="catalog", **clock_kwargs
        )
        self.transport = ArmTransport(
            token_provider,
            retry=retry or RetryPolicy(retry_config),
            rate_limiter=self.rate_limiter,
            timeout=timeout,
        )
        self._publishers: TTLCache[list[Publisher]] = TTLCache(**clock_kwargs)
        self._offers: TTLCache[list[Offer]] = TTLCache(**clock_kwargs)
        self._skus: TTLCache[list[Sku]] = TTLCache(**clock_kwargs)

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _base_url(subscription_id: str, location: str) -> str:
        return (
            f"{AZURE_MGMT_URL}/subscriptions/{subscription_id}/providers/"
            f"Microsoft.Compute/locations/{location}/publishers"
        )

    def _fetch_list(
        self,
        url: str,
        what: str,
        build: Callable[[dict], T],
    ) -> list[T]:
        data = self.transport.get_json(url)
        items = extract_items(data)
        if items is None:
            logger.error("%s API returned an unexpected payload: %r", what, data)
            raise ValidationError(f"Invalid response format from {what} API")
        return [build(item) for item in items if isinstance(item, dict)]

    # -- publishers / offers / SKUs ----------------------------------------

    def get_publishers(
        self, subscription_id: str, location: str = DEFAULT_LOCATION
    ) -> list[Publisher]:
        """Return VM image publishers in *location*."""
        if not subscription_id:
            raise ValidationError("Subscription ID is required", field="subscription_id")

        cache_key = f"{subscription_id}-{location}"
        cached = self._publishers.get(cache_key)
        if cached is not None:
            return cached

        url = f"{self._base_url(subscription_id, location)}?api-version={COMPUTE_API_VERSION}"

        def _fetch() -> list[Publisher]:
            publishers = self._fetch_list(
                url,
                "publishers",
                # Publishers have no separate display name in ARM.
                lambda p: Publisher(
                    name=p.get("name", ""),
                    display_name=p.get("name", ""),
                    location=location,
                ),
            )
            self._publishers.set(cache_key, publishers, self.cache_config.publishers_ttl)
            return publishers

        return self.circuit_breaker.execute(_fetch)

    def get_offers(
        self,
        subscription_id: str,
        publisher: str,
        location: str = DEFAULT_LOCATION,
    ) -> list[Offer]:
        if not subscription_id or not publisher:
            raise ValidationError(
                "Subscription ID and publisher name are required",
                field="subscription_id" if not subscription_id else "publisher",
            )

        cache_key = f"{subscription_id}-{publisher}-{location}"
        cached = self._offers.get(cache_key)
        if cached is not None:
            return cached

        url = (
            f"{self._base_url(subscription_id, location)}/{publisher}"
            f"/artifacttypes/vmimage/offers?api-version={COMPUTE_API_VERSION}"
        )

        def _fetch() -> list[Offer]:
            offers = self._fetch_list(
                url,
                "offers",
                lambda o: Offer(
                    name=o.get("name", ""),
                    display_name=o.get("name", ""),
                    publisher=publisher,
                    location=location,
                ),
            )
            self._offers.set(cache_key, offers, self.cache_config.offers_ttl)
            return offers

        return self.circuit_breaker.execute(_fetch)

    def get_skus(
        self,
        subscription_id: str,
        publisher: str,
        offer: str,
        location: str = DEFAULT_LOCATION,
    ) -> list[Sku]:
        """Return the SKUs of an offer.  ``versions`` is always empty here."""
        if not subscription_id or not publisher or not offer:
            raise ValidationError("Subscription ID, publisher name, and offer name are required")

        cache_key = f"{subscription_id}-{publisher}-{offer}-{location}"
        cached = self._skus.get(cache_key)
        if cached is not None:
            return cached

        url = (
            f"{self._base_url(subscription_id, location)}/{publisher}"
            f"/artifacttypes/vmimage/offers/{offer}/skus?api-version={COMPUTE_API_VERSION}"
        )
        logger.debug("Fetching SKUs from %s", url)

        def _fetch() -> list[Sku]:
            skus = self._fetch_list(
                url,
                "SKUs",
                lambda s: Sku(
                    name=s.get("name", ""),
                    display_name=s.get("name", ""),
                    publisher=publisher,
                    offer=offer,
                    location=location,
                ),
            )
            self._skus.set(cache_key, skus, self.cache_config.skus_ttl)
            return skus

        return self.circuit_breaker.execute(_fetch)

    # -- versions ------------------------------------------------------------

    def get_sku_versions(
        self,
        subscription_id: str,
        publisher: str,
        offer: str,
        sku: str,
        location: str = DEFAULT_LOCATION,
    ) -> list[str]:
        """Return image versions for a SKU, ``"latest"`` first.

        Each API version in :data:`VERSIONS_API_VERSIONS` is tried in turn.
        When all of them fail an empty list is returned rather than an
        error; callers should offer a manual retry.
        """
        if not subscription_id or not publisher or not offer or not sku:
            raise ValidationError(
                "Subscription ID, publisher name, offer name, and SKU name are required"
            )

        base = (
            f"{self._base_url(subscription_id, location)}/{publisher}"
            f"/artifacttypes/vmimage/offers/{offer}/skus/{sku}/versions"
        )

        for api_version in VERSIONS_API_VERSIONS:
            url = f"{base}?api-version={api_version}"
            try:
                data = self.transport.get_json(url)
            except MarketplaceError as exc:
                if exc.status_code in (400, 404):
                    logger.debug(
                        "API version %s rejected (%s), trying next", api_version, exc.status_code
                    )
                else:
                    logger.warning("API version %s failed: %s", api_version, exc)
                continue

            items = extract_items(data)
            if items is None:
                logger.warning("API version %s returned a non-array payload", api_version)
                continue

            names = [
                item.get("name")
                for item in items
                if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"]
            ]
            return sort_versions(names)

        logger.error(
            "All API versions failed for %s/%s/%s in %s", publisher, offer, sku, location
        )
        return []

    # -- cache management --------------------------------------------------

    def clear_cache(self) -> None:
        self._publishers.clear()
        self._offers.clear()
        self._skus.clear()

    def clear_cache_for_subscription(self, subscription_id: str) -> None:
        removed = sum(
            cache.clear_prefix(subscription_id)
            for cache in (self._publishers, self._offers, self._skus)
        )
        logger.debug("Cleared %d cache entries for subscription %s", removed, subscription_id)
