"""az-marketplace – FastAPI web application.

JSON API over the marketplace session: sign-in, subscription and location
selection, drill-down through publishers, offers, SKUs and versions, and
IaC snippets for the chosen image.
"""

import logging
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from az_marketplace import __version__
from az_marketplace.errors import (
    AuthenticationError,
    AuthorizationError,
    MarketplaceError,
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
)
from az_marketplace.iac import AVAILABLE_FORMATS, generate_all_formats, render
from az_marketplace.models import VMImageReference
from az_marketplace.services import build_factory
from az_marketplace.session import MarketplaceSession
from az_marketplace.settings import MarketplaceSettings
from az_marketplace.stores import AuthStore, CatalogLevel, PageView, StateFile

# ---------------------------------------------------------------------------
# Session – one per process, built from settings on first use
# ---------------------------------------------------------------------------

_session: MarketplaceSession | None = None
_session_lock = threading.Lock()


def create_session(settings: MarketplaceSettings | None = None) -> MarketplaceSession:
    """Build a session wired for *settings*, with persisted selection restored."""
    settings = settings or MarketplaceSettings()
    auth = AuthStore(StateFile(settings.state_file), fallback_location=settings.default_location)
    auth.restore()
    return MarketplaceSession(build_factory(settings), auth=auth)


def get_session() -> MarketplaceSession:
    global _session
    with _session_lock:
        if _session is None:
            _session = create_session()
        return _session


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("az-marketplace %s starting", __version__)
    yield


app = FastAPI(
    title="az-marketplace API",
    version=__version__,
    description=(
        "REST API for browsing the Azure VM Marketplace. "
        "Lists subscriptions and locations, drills down through image "
        "publishers, offers, SKUs and versions, and renders image references "
        "as ARM, Terraform, Bicep or Ansible snippets."
    ),
    license_info={"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Colored logging (reuse uvicorn's formatter)
# ---------------------------------------------------------------------------


def _setup_logging(level: int = logging.WARNING) -> None:
    """Configure the root ``az_marketplace`` logger with uvicorn-style colours."""
    from uvicorn.logging import DefaultFormatter

    handler = logging.StreamHandler()
    handler.setFormatter(
        DefaultFormatter(fmt="%(levelprefix)s %(name)s - %(message)s", use_colors=True)
    )
    app_logger = logging.getLogger("az_marketplace")
    app_logger.handlers = [handler]
    app_logger.setLevel(level)
    app_logger.propagate = False

    # Silence noisy third-party loggers
    logging.getLogger("azure").setLevel(logging.WARNING)


_setup_logging()
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: list[tuple[type[MarketplaceError], int]] = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (RateLimitError, 429),
    (ServiceUnavailableError, 503),
]


def _error_response(exc: MarketplaceError) -> JSONResponse:
    status = next((s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)), 502)
    body: dict[str, Any] = {"error": exc.user_message, "code": exc.code}
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    if status >= 500:
        logger.warning("Upstream failure (%s): %s", exc.code, exc)
    return JSONResponse(body, status_code=status, headers=headers)


def _page_json(view: PageView, key: str) -> dict[str, Any]:
    return {
        key: [item.to_api() for item in view.items],
        "searchQuery": view.search_query,
        "pagination": {
            "currentPage": view.current_page,
            "itemsPerPage": view.items_per_page,
            "totalItems": view.total_items,
            "totalPages": view.total_pages,
        },
    }


def _apply_paging(
    session: MarketplaceSession,
    level: CatalogLevel,
    search: str | None,
    page: int | None,
    items_per_page: int | None,
) -> PageView:
    if search is not None:
        session.search(search, level)
    if items_per_page is not None:
        session.catalog.set_items_per_page(level, items_per_page)
    if page is not None:
        session.catalog.set_page(level, page)
    return session.catalog.view(level)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Meta"], summary="Liveness probe")
def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": __version__})


@app.get("/api/session", tags=["Session"], summary="Current session state")
def get_session_state(session: MarketplaceSession = Depends(get_session)) -> JSONResponse:
    return JSONResponse(session.snapshot())


@app.post("/api/login", tags=["Session"], summary="Sign in")
def login(session: MarketplaceSession = Depends(get_session)) -> JSONResponse:
    """Sign in with the configured credential and load subscriptions."""
    try:
        session.login()
        session.load_subscriptions()
    except MarketplaceError as exc:
        return _error_response(exc)
    return JSONResponse(session.snapshot())


@app.post("/api/logout", tags=["Session"], summary="Sign out")
def logout(session: MarketplaceSession = Depends(get_session)) -> JSONResponse:
    session.logout()
    return JSONResponse(session.snapshot())


@app.get("/api/subscriptions", tags=["Discovery"], summary="List subscriptions")
def list_subscriptions(session: MarketplaceSession = Depends(get_session)) -> JSONResponse:
    try:
        subscriptions = session.load_subscriptions()
    except MarketplaceError as exc:
        return _error_response(exc)
    return JSONResponse(
        {
            "subscriptions": [s.to_api() for s in subscriptions],
            "selectedSubscription": session.auth.state.selected_subscription,
        }
    )


@app.post(
    "/api/subscriptions/{subscription_id}/select",
    tags=["Discovery"],
    summary="Select a subscription",
)
def select_subscription(
    subscription_id: str, session: MarketplaceSession = Depends(get_session)
) -> JSONResponse:
    try:
        subscription = session.select_subscription(subscription_id)
    except MarketplaceError as exc:
        return _error_response(exc)
    return JSONResponse({"selectedSubscription": subscription.to_api()})


@app.get("/api/locations", tags=["Discovery"], summary="List locations")
def list_locations(session: MarketplaceSession = Depends(get_session)) -> JSONResponse:
    try:
        locations = session.load_locations()
    except MarketplaceError as exc:
        return _error_response(exc)
    return JSONResponse(
        {
            "locations": [loc.to_api() for loc in locations],
            "selectedLocation": session.auth.state.selected_location,
        }
    )


@app.post("/api/locations/{location}/select", tags=["Discovery"], summary="Select a location")
def select_location(
    location: str, session: MarketplaceSession = Depends(get_session)
) -> JSONResponse:
    try:
        session.select_location(location)
    except MarketplaceError as exc:
        return _error_response(exc)
    return JSONResponse({"selectedLocation": session.auth.state.selected_location})


@app.get("/api/publishers", tags=["Catalog"], summary="List image publishers")
def list_publishers(
    search: str | None = Query(None, description="Case-insensitive name filter."),
    page: int | None = Query(None, ge=1),
    itemsPerPage: int | None = Query(None, ge=1),  # noqa: N803
    session: MarketplaceSession = Depends(get_session),
) -> JSONResponse:
    try:
        session.load_publishers()
    except MarketplaceError as exc:
        return _error_response(exc)
    view = _apply_paging(session, CatalogLevel.PUBLISHERS, search, page, itemsPerPage)
    return JSONResponse(_page_json(view, "publishers"))


@app.get("/api/publishers/{publisher}/offers", tags=["Catalog"], summary="List offers")
def list_offers(
    publisher: str,
    search: str | None = Query(None, description="Case-insensitive name filter."),
    page: int | None = Query(None, ge=1),
    itemsPerPage: int | None = Query(None, ge=1),  # noqa: N803
    session: MarketplaceSession = Depends(get_session),
) -> JSONResponse:
    try:
        session.load_offers(publisher)
    except MarketplaceError as exc:
        return _error_response(exc)
    view = _apply_paging(session, CatalogLevel.OFFERS, search, page, itemsPerPage)
    return JSONResponse(_page_json(view, "offers"))


@app.get(
    "/api/publishers/{publisher}/offers/{offer}/skus",
    tags=["Catalog"],
    summary="List SKUs",
)
def list_skus(
    publisher: str,
    offer: str,
    search: str | None = Query(None, description="Case-insensitive name filter."),
    page: int | None = Query(None, ge=1),
    itemsPerPage: int | None = Query(None, ge=1),  # noqa: N803
    session: MarketplaceSession = Depends(get_session),
) -> JSONResponse:
    try:
        session.load_skus(publisher, offer)
    except MarketplaceError as exc:
        return _error_response(exc)
    view = _apply_paging(session, CatalogLevel.SKUS, search, page, itemsPerPage)
    return JSONResponse(_page_json(view, "skus"))


@app.get(
    "/api/publishers/{publisher}/offers/{offer}/skus/{sku}/versions",
    tags=["Catalog"],
    summary="List image versions",
)
def list_versions(
    publisher: str,
    offer: str,
    sku: str,
    session: MarketplaceSession = Depends(get_session),
) -> JSONResponse:
    """Return versions newest first.

    An empty list can also mean every API version failed; the UI should
    offer a retry.
    """
    try:
        versions = session.load_versions(publisher, offer, sku)
    except MarketplaceError as exc:
        return _error_response(exc)
    return JSONResponse({"versions": versions})


@app.get("/api/iac", tags=["IaC"], summary="Render an image reference as IaC")
def iac_snippets(
    publisher: str = Query(...),
    offer: str = Query(...),
    sku: str = Query(...),
    version: str = Query("latest"),
    fmt: str | None = Query(
        None, alias="format", description="One of arm, terraform, bicep, ansible."
    ),
) -> JSONResponse:
    ref = VMImageReference(publisher=publisher, offer=offer, sku=sku, version=version)
    if fmt is not None and fmt not in AVAILABLE_FORMATS:
        return JSONResponse(
            {
                "error": f"Unknown format '{fmt}'. Expected one of: "
                + ", ".join(AVAILABLE_FORMATS),
                "code": ValidationError.code,
            },
            status_code=400,
        )
    try:
        if fmt is not None:
            return JSONResponse({"format": fmt, "snippet": render(ref, fmt)})
        return JSONResponse({"formats": asdict(generate_all_formats(ref))})
    except MarketplaceError as exc:
        return _error_response(exc)
