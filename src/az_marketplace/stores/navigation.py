"""Drill-down position in the catalog: publishers -> offers -> SKUs."""

from __future__ import annotations

from dataclasses import dataclass

from az_marketplace.stores.catalog import CatalogLevel


@dataclass(frozen=True)
class BreadcrumbItem:
    label: str
    level: CatalogLevel


@dataclass(frozen=True)
class NavigationState:
    level: CatalogLevel = CatalogLevel.PUBLISHERS
    selected_publisher: str | None = None
    selected_offer: str | None = None


class NavigationStore:
    def __init__(self) -> None:
        self._state = NavigationState()

    @property
    def state(self) -> NavigationState:
        return self._state

    def navigate_to_publishers(self) -> None:
        self._state = NavigationState()

    def navigate_to_offers(self, publisher: str) -> None:
        self._state = NavigationState(CatalogLevel.OFFERS, publisher, None)

    def navigate_to_skus(self, publisher: str, offer: str) -> None:
        self._state = NavigationState(CatalogLevel.SKUS, publisher, offer)

    def go_back(self) -> None:
        state = self._state
        if state.level == CatalogLevel.SKUS and state.selected_publisher:
            self.navigate_to_offers(state.selected_publisher)
        elif state.level != CatalogLevel.PUBLISHERS:
            self.navigate_to_publishers()

    def reset(self) -> None:
        self._state = NavigationState()

    @property
    def breadcrumb(self) -> list[BreadcrumbItem]:
        state = self._state
        crumbs = [BreadcrumbItem("Publishers", CatalogLevel.PUBLISHERS)]
        if state.selected_publisher and state.level in (CatalogLevel.OFFERS, CatalogLevel.SKUS):
            crumbs.append(BreadcrumbItem(state.selected_publisher, CatalogLevel.OFFERS))
        if state.selected_publisher and state.selected_offer and state.level == CatalogLevel.SKUS:
            crumbs.append(BreadcrumbItem(state.selected_offer, CatalogLevel.SKUS))
        return crumbs
