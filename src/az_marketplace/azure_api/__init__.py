"""Resilient Azure Resource Manager client layer.

Token providers, retry / circuit-breaker / rate-limit policies and the two
resource clients (subscriptions and the VM image catalog).  Every public
operation returns plain dataclasses from :mod:`az_marketplace.models` or
raises a :class:`~az_marketplace.errors.MarketplaceError`.
"""

# -- Auth & constants -------------------------------------------------------
from az_marketplace.azure_api._auth import (  # noqa: F401
    ARM_DEFAULT_SCOPE,
    ARM_USER_SCOPE,
    AZURE_MGMT_URL,
    MULTI_TENANT_AUTHORITY,
    BrowserIdentityClient,
    CredentialTokenProvider,
    IdentityClient,
    IdentityTokenProvider,
    TokenProvider,
    TokenRequest,
    authority_for,
    authority_host,
    user_from_token,
)

# -- Policies ----------------------------------------------------------------
from az_marketplace.azure_api._cache import CacheConfig, CacheEntry, TTLCache  # noqa: F401
from az_marketplace.azure_api._circuit import (  # noqa: F401
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from az_marketplace.azure_api._rate_limit import (  # noqa: F401
    RateLimitConfig,
    SlidingWindowRateLimiter,
)
from az_marketplace.azure_api._retry import RetryConfig, RetryPolicy, with_retry  # noqa: F401
from az_marketplace.azure_api._transport import ArmTransport, extract_items  # noqa: F401

# -- Clients -----------------------------------------------------------------
from az_marketplace.azure_api.catalog import (  # noqa: F401
    COMPUTE_API_VERSION,
    DEFAULT_LOCATION,
    VERSIONS_API_VERSIONS,
    CatalogClient,
    sort_versions,
)
from az_marketplace.azure_api.subscriptions import (  # noqa: F401
    LOCATIONS_API_VERSION,
    SUBSCRIPTIONS_API_VERSION,
    SubscriptionClient,
)
