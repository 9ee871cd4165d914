"""Authentication, subscription and location selection state.

The store is an explicitly constructed container: create it, mutate it only
through its actions, and :meth:`AuthStore.logout` (or :meth:`reset`) to go
back to the initial state.  Each action swaps in a new :class:`AuthState`
in a single assignment, so readers never observe a half-applied update.

State owned by other components (the catalog store, the catalog client
cache) is invalidated through listeners registered with
:meth:`AuthStore.add_invalidation_listener`.  Listeners run synchronously,
after the state change and before the action returns.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from az_marketplace.models import AzureLocation, Subscription, User
from az_marketplace.stores.persistence import StateFile

logger = logging.getLogger(__name__)

FALLBACK_LOCATION = "eastus"

_PERSISTED_FIELDS = ("subscriptions", "selected_subscription", "locations", "selected_location")


class InvalidationReason(StrEnum):
    TENANT_SWITCH = "tenant_switch"
    SUBSCRIPTION_CHANGED = "subscription_changed"
    LOCATION_CHANGED = "location_changed"
    LOGOUT = "logout"


@dataclass(frozen=True)
class Invalidation:
    reason: InvalidationReason
    previous: str | None = None
    current: str | None = None


InvalidationListener = Callable[[Invalidation], None]


@dataclass(frozen=True)
class AuthState:
    is_authenticated: bool = False
    user: User | None = None
    subscriptions: tuple[Subscription, ...] = field(default_factory=tuple)
    selected_subscription: str | None = None
    locations: tuple[AzureLocation, ...] = field(default_factory=tuple)
    selected_location: str = FALLBACK_LOCATION
    loading: bool = False
    error: str | None = None


def is_tenant_switch(previous: User | None, current: User) -> bool:
    """Return *True* when signing in as *current* replaces another identity.

    No previous user counts as a switch: any persisted selection may belong
    to whoever was signed in last.
    """
    if previous is None:
        return True
    return previous.id != current.id or previous.tenant_id != current.tenant_id


class AuthStore:
    """Auth slice of the client state."""

    def __init__(
        self,
        persistence: StateFile | None = None,
        fallback_location: str = FALLBACK_LOCATION,
    ) -> None:
        self.persistence = persistence
        self.fallback_location = fallback_location
        self._initial = AuthState(selected_location=fallback_location)
        self._state = self._initial
        self._listeners: list[InvalidationListener] = []

    # -- plumbing --------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    def add_invalidation_listener(self, listener: InvalidationListener) -> Callable[[], None]:
        """Register *listener*; return a callable that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, invalidation: Invalidation) -> None:
        for listener in list(self._listeners):
            listener(invalidation)

    def _set(self, **changes: Any) -> None:
        previous = self._state
        self._state = replace(previous, **changes)
        if self.persistence is not None and any(
            getattr(previous, name) != getattr(self._state, name) for name in _PERSISTED_FIELDS
        ):
            self._persist()

    def _persist(self) -> None:
        assert self.persistence is not None
        state = self._state
        try:
            self.persistence.save(
                {
                    "selectedSubscription": state.selected_subscription,
                    "selectedLocation": state.selected_location,
                    "subscriptions": [s.to_api() for s in state.subscriptions],
                    "locations": [loc.to_api() for loc in state.locations],
                }
            )
        except OSError:
            logger.warning("Could not persist selection state", exc_info=True)

    def restore(self) -> bool:
        """Load the persisted selection state; return *True* if any was found."""
        if self.persistence is None:
            return False
        data = self.persistence.load()
        if not data:
            return False

        subscriptions = tuple(
            Subscription.from_api(s) for s in data.get("subscriptions") or [] if isinstance(s, dict)
        )
        locations = tuple(
            AzureLocation.from_api(loc)
            for loc in data.get("locations") or []
            if isinstance(loc, dict)
        )
        self._state = replace(
            self._state,
            subscriptions=subscriptions,
            selected_subscription=data.get("selectedSubscription") or None,
            locations=locations,
            selected_location=data.get("selectedLocation") or self.fallback_location,
        )
        return True

    @property
    def current_subscription(self) -> Subscription | None:
        selected = self._state.selected_subscription
        if not selected:
            return None
        return next(
            (s for s in self._state.subscriptions if s.subscription_id == selected),
            None,
        )

    # -- actions ---------------------------------------------------------------

    def login(self, user: User) -> bool:
        """Mark *user* as signed in; return *True* on a tenant switch.

        A tenant switch drops every tenant-specific field in the same
        update and notifies listeners so dependent caches are cleared.
        """
        previous = self._state.user
        if is_tenant_switch(previous, user):
            logger.info(
                "Different user/tenant detected, clearing tenant-specific data "
                "(previous tenant=%s, new tenant=%s)",
                previous.tenant_id if previous else None,
                user.tenant_id,
            )
            self._set(
                is_authenticated=True,
                user=user,
                subscriptions=(),
                selected_subscription=None,
                locations=(),
                selected_location=self.fallback_location,
                loading=False,
                error=None,
            )
            self._notify(
                Invalidation(
                    InvalidationReason.TENANT_SWITCH,
                    previous=previous.tenant_id if previous else None,
                    current=user.tenant_id,
                )
            )
            return True

        self._set(is_authenticated=True, user=user, error=None)
        return False

    def logout(self) -> None:
        previous = self._state.user
        self.reset()
        self._notify(
            Invalidation(
                InvalidationReason.LOGOUT,
                previous=previous.tenant_id if previous else None,
            )
        )

    def reset(self) -> None:
        self._set(**{name: getattr(self._initial, name) for name in AuthState.__dataclass_fields__})

    def set_subscriptions(self, subscriptions: list[Subscription]) -> None:
        """Replace the list; auto-select the first one only if none is selected."""
        selected = self._state.selected_subscription or (
            subscriptions[0].subscription_id if subscriptions else None
        )
        self._set(subscriptions=tuple(subscriptions), selected_subscription=selected, error=None)

    def select_subscription(self, subscription_id: str) -> bool:
        """Select a known subscription; unknown ids only set ``error``."""
        if not any(s.subscription_id == subscription_id for s in self._state.subscriptions):
            self._set(error=f"Subscription with ID {subscription_id} not found")
            return False

        previous = self._state.selected_subscription
        self._set(selected_subscription=subscription_id, error=None)
        if previous != subscription_id:
            logger.info("Subscription changed from %s to %s", previous, subscription_id)
            self._notify(
                Invalidation(
                    InvalidationReason.SUBSCRIPTION_CHANGED,
                    previous=previous,
                    current=subscription_id,
                )
            )
        return True

    def set_locations(self, locations: list[AzureLocation]) -> None:
        selected = self._state.selected_location or (
            locations[0].name if locations else self.fallback_location
        )
        self._set(locations=tuple(locations), selected_location=selected, error=None)

    def select_location(self, location: str) -> None:
        # The API response is the source of truth for valid locations; see
        # reconcile_location() for the consistency check.
        previous = self._state.selected_location
        self._set(selected_location=location, error=None)
        if previous != location:
            logger.info("Location changed from %s to %s", previous, location)
            self._notify(
                Invalidation(
                    InvalidationReason.LOCATION_CHANGED,
                    previous=previous,
                    current=location,
                )
            )

    def reconcile_location(self) -> str | None:
        """Fix a selected location missing from the loaded list.

        Falls back to the first loaded location.  Returns the new location
        when a fix was applied, else ``None``.
        """
        state = self._state
        if not state.locations:
            return None
        if any(loc.name == state.selected_location for loc in state.locations):
            return None

        fallback = state.locations[0].name or self.fallback_location
        logger.warning(
            "Fixing invalid stored location %r to %r", state.selected_location, fallback
        )
        self.select_location(fallback)
        return fallback

    def set_loading(self, loading: bool) -> None:
        self._set(loading=loading)

    def set_error(self, error: str | None) -> None:
        self._set(error=error)

    def clear_error(self) -> None:
        self._set(error=None)

    def clear_tenant_data(self) -> None:
        self._set(
            subscriptions=(),
            selected_subscription=None,
            locations=(),
            selected_location=self.fallback_location,
            error=None,
        )
