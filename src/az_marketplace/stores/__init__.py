"""Client state: auth/selection, catalog and navigation slices."""

from az_marketplace.stores.auth import (  # noqa: F401
    FALLBACK_LOCATION,
    AuthState,
    AuthStore,
    Invalidation,
    InvalidationReason,
    is_tenant_switch,
)
from az_marketplace.stores.catalog import (  # noqa: F401
    DEFAULT_PAGE_SIZES,
    CatalogLevel,
    CatalogState,
    CatalogStore,
    PageState,
    PageView,
    filter_items,
)
from az_marketplace.stores.navigation import (  # noqa: F401
    BreadcrumbItem,
    NavigationState,
    NavigationStore,
)
from az_marketplace.stores.persistence import StateFile  # noqa: F401
