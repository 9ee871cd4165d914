"""Catalog slice: loaded publishers, offers and SKUs with search and paging."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Generic, Protocol, TypeVar

from az_marketplace.models import Offer, Publisher, Sku

logger = logging.getLogger(__name__)


class _Named(Protocol):
    name: str
    display_name: str


N = TypeVar("N", bound=_Named)


class CatalogLevel(StrEnum):
    PUBLISHERS = "publishers"
    OFFERS = "offers"
    SKUS = "skus"


DEFAULT_PAGE_SIZES = {
    CatalogLevel.PUBLISHERS: 12,
    CatalogLevel.OFFERS: 10,
    CatalogLevel.SKUS: 8,
}


def filter_items(items: Sequence[N], query: str) -> Sequence[N]:
    """Case-insensitive substring match on ``name`` and ``display_name``.

    A blank query returns *items* itself, not a copy.
    """
    needle = query.strip().lower()
    if not needle:
        return items
    return tuple(
        item
        for item in items
        if needle in item.name.lower() or needle in item.display_name.lower()
    )


@dataclass(frozen=True)
class PageState:
    current_page: int = 1
    items_per_page: int = 10


@dataclass(frozen=True)
class PageView(Generic[N]):
    """What a list component needs to render one catalog level."""

    items: tuple[N, ...]
    all_items: tuple[N, ...]
    filtered: tuple[N, ...]
    loaded: Any
    search_query: str
    current_page: int
    items_per_page: int
    total_items: int
    total_pages: int


def _default_pagination() -> dict[CatalogLevel, PageState]:
    return {level: PageState(1, size) for level, size in DEFAULT_PAGE_SIZES.items()}


@dataclass(frozen=True)
class CatalogState:
    publishers: tuple[Publisher, ...] = ()
    offers: tuple[Offer, ...] = ()
    skus: tuple[Sku, ...] = ()
    filtered_publishers: tuple[Publisher, ...] = ()
    filtered_offers: tuple[Offer, ...] = ()
    filtered_skus: tuple[Sku, ...] = ()
    loaded_publishers: bool = False
    # (publisher,) and (publisher, offer) identify what the lists belong to.
    loaded_offers: tuple[str] | None = None
    loaded_skus: tuple[str, str] | None = None
    loading: bool = False
    error: str | None = None
    search_query: str = ""
    pagination: dict[CatalogLevel, PageState] = field(default_factory=_default_pagination)


class CatalogStore:
    """Catalog slice of the client state."""

    def __init__(self) -> None:
        self._state = CatalogState()

    @property
    def state(self) -> CatalogState:
        return self._state

    def _set(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)

    def _first_page(self, *levels: CatalogLevel) -> dict[CatalogLevel, PageState]:
        """Pagination with *levels* moved back to page 1."""
        pagination = dict(self._state.pagination)
        for level in levels:
            pagination[level] = replace(pagination[level], current_page=1)
        return pagination

    # -- data ----------------------------------------------------------------

    def set_publishers(self, publishers: Sequence[Publisher]) -> None:
        publishers = tuple(publishers)
        self._set(
            publishers=publishers,
            filtered_publishers=tuple(filter_items(publishers, self._state.search_query)),
            loaded_publishers=True,
            error=None,
        )

    def clear_publishers(self) -> None:
        self._set(publishers=(), filtered_publishers=(), loaded_publishers=False)

    def set_offers(self, offers: Sequence[Offer], publisher: str) -> None:
        """Replace offers for *publisher*; SKUs of the previous offer are dropped."""
        offers = tuple(offers)
        levels = [CatalogLevel.SKUS]
        if self._state.loaded_offers != (publisher,):
            levels.append(CatalogLevel.OFFERS)
        self._set(
            offers=offers,
            filtered_offers=tuple(filter_items(offers, self._state.search_query)),
            loaded_offers=(publisher,),
            skus=(),
            filtered_skus=(),
            loaded_skus=None,
            error=None,
            pagination=self._first_page(*levels),
        )

    def clear_offers(self) -> None:
        self._set(
            offers=(),
            filtered_offers=(),
            loaded_offers=None,
            skus=(),
            filtered_skus=(),
            loaded_skus=None,
        )

    def set_skus(self, skus: Sequence[Sku], publisher: str, offer: str) -> None:
        skus = tuple(skus)
        pagination = self._state.pagination
        if self._state.loaded_skus != (publisher, offer):
            pagination = self._first_page(CatalogLevel.SKUS)
        self._set(
            skus=skus,
            filtered_skus=tuple(filter_items(skus, self._state.search_query)),
            loaded_skus=(publisher, offer),
            error=None,
            pagination=pagination,
        )

    def clear_skus(self) -> None:
        self._set(skus=(), filtered_skus=(), loaded_skus=None)

    def set_sku_versions(self, sku_name: str, versions: Sequence[str]) -> None:
        """Attach fetched *versions* to the loaded SKU named *sku_name*."""
        versions = tuple(versions)
        skus = tuple(
            replace(s, versions=versions) if s.name == sku_name else s for s in self._state.skus
        )
        self._set(
            skus=skus,
            filtered_skus=tuple(filter_items(skus, self._state.search_query)),
        )

    # -- status ----------------------------------------------------------------

    def set_loading(self, loading: bool) -> None:
        self._set(loading=loading)

    def set_error(self, error: str | None) -> None:
        self._set(error=error, loading=False)

    def clear_error(self) -> None:
        self._set(error=None)

    # -- search ----------------------------------------------------------------

    def _searched(self, query: str, *levels: CatalogLevel) -> dict[CatalogLevel, PageState]:
        """Pagination after a search; a changed query starts *levels* on page 1."""
        if query == self._state.search_query:
            return self._state.pagination
        return self._first_page(*levels)

    def set_search_query(self, query: str) -> None:
        state = self._state
        self._set(
            search_query=query,
            pagination=self._searched(query, *CatalogLevel),
            filtered_publishers=tuple(filter_items(state.publishers, query)),
            filtered_offers=tuple(filter_items(state.offers, query)),
            filtered_skus=tuple(filter_items(state.skus, query)),
        )

    def set_publishers_search(self, query: str) -> None:
        self._set(
            search_query=query,
            pagination=self._searched(query, CatalogLevel.PUBLISHERS),
            filtered_publishers=tuple(filter_items(self._state.publishers, query)),
        )

    def set_offers_search(self, query: str) -> None:
        self._set(
            search_query=query,
            pagination=self._searched(query, CatalogLevel.OFFERS),
            filtered_offers=tuple(filter_items(self._state.offers, query)),
        )

    def set_skus_search(self, query: str) -> None:
        self._set(
            search_query=query,
            pagination=self._searched(query, CatalogLevel.SKUS),
            filtered_skus=tuple(filter_items(self._state.skus, query)),
        )

    def clear_search(self) -> None:
        state = self._state
        self._set(
            search_query="",
            pagination=self._searched("", *CatalogLevel),
            filtered_publishers=state.publishers,
            filtered_offers=state.offers,
            filtered_skus=state.skus,
        )

    # -- pagination ------------------------------------------------------------

    def _filtered(self, level: CatalogLevel) -> tuple[Any, ...]:
        state = self._state
        return {
            CatalogLevel.PUBLISHERS: state.filtered_publishers,
            CatalogLevel.OFFERS: state.filtered_offers,
            CatalogLevel.SKUS: state.filtered_skus,
        }[CatalogLevel(level)]

    def total_pages(self, level: CatalogLevel) -> int:
        level = CatalogLevel(level)
        per_page = self._state.pagination[level].items_per_page
        return math.ceil(len(self._filtered(level)) / per_page)

    def set_page(self, level: CatalogLevel, page: int) -> bool:
        """Move *level* to *page*; out-of-range pages are ignored.

        Page 1 is always accepted so an empty list stays addressable.
        """
        level = CatalogLevel(level)
        if page < 1 or page > max(self.total_pages(level), 1):
            logger.debug("Ignoring out-of-range page %d for %s", page, level)
            return False
        pagination = dict(self._state.pagination)
        pagination[level] = replace(pagination[level], current_page=page)
        self._set(pagination=pagination)
        return True

    def set_items_per_page(self, level: CatalogLevel, items_per_page: int) -> None:
        if items_per_page < 1:
            raise ValueError("items_per_page must be at least 1")
        level = CatalogLevel(level)
        pagination = dict(self._state.pagination)
        pagination[level] = PageState(current_page=1, items_per_page=items_per_page)
        self._set(pagination=pagination)

    def view(self, level: CatalogLevel) -> PageView:
        level = CatalogLevel(level)
        state = self._state
        page = state.pagination[level]
        all_items, filtered, loaded = {
            CatalogLevel.PUBLISHERS: (
                state.publishers,
                state.filtered_publishers,
                state.loaded_publishers,
            ),
            CatalogLevel.OFFERS: (state.offers, state.filtered_offers, state.loaded_offers),
            CatalogLevel.SKUS: (state.skus, state.filtered_skus, state.loaded_skus),
        }[level]
        total_pages = math.ceil(len(filtered) / page.items_per_page)
        current_page = min(page.current_page, max(total_pages, 1))
        start = (current_page - 1) * page.items_per_page
        return PageView(
            items=tuple(filtered[start : start + page.items_per_page]),
            all_items=all_items,
            filtered=filtered,
            loaded=loaded,
            search_query=state.search_query,
            current_page=current_page,
            items_per_page=page.items_per_page,
            total_items=len(filtered),
            total_pages=total_pages,
        )

    # -- lifecycle -------------------------------------------------------------

    def reset(self) -> None:
        self._state = CatalogState()

    def clear_all(self) -> None:
        """Drop all catalog data; the in-flight ``loading`` flag is kept."""
        self._set(
            publishers=(),
            offers=(),
            skus=(),
            filtered_publishers=(),
            filtered_offers=(),
            filtered_skus=(),
            loaded_publishers=False,
            loaded_offers=None,
            loaded_skus=None,
            error=None,
            pagination=self._first_page(*CatalogLevel),
        )
