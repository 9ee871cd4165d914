"""Unified CLI for az-marketplace.

Subcommands:
    az-marketplace web        – run the web API (FastAPI + uvicorn)
    az-marketplace iac        – render an image reference as IaC
    az-marketplace publishers – list image publishers
    az-marketplace offers     – list a publisher's offers
    az-marketplace skus       – list an offer's SKUs
    az-marketplace versions   – list a SKU's image versions

Running ``az-marketplace`` without a subcommand defaults to ``web``.
"""

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import click

from az_marketplace import __version__

if TYPE_CHECKING:
    from az_marketplace.azure_api import CatalogClient
    from az_marketplace.session import MarketplaceSession


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="az-marketplace")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Azure VM Marketplace browser."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(web)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Host to bind to.")
@click.option("--port", default=5002, show_default=True, help="Port to listen on.")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Auto-reload on code changes (development only).",
)
def web(host: str, port: int, verbose: bool, reload: bool) -> None:
    """Run the web API (default)."""
    import logging
    from pathlib import Path

    import uvicorn

    from az_marketplace.app import _setup_logging, app

    log_level = "info" if verbose else "warning"
    _setup_logging(level=logging.DEBUG if verbose else logging.WARNING)

    url = f"http://{host}:{port}"
    click.echo(f"✦ az-marketplace running at {click.style(url, fg='cyan', bold=True)}")
    if reload:
        click.echo(f"  {click.style('⟳ Auto-reload enabled', fg='yellow')}")
    click.echo("  Press Ctrl+C to stop.\n")

    if reload:
        uvicorn.run(
            "az_marketplace.app:app",
            host=host,
            port=port,
            log_level=log_level,
            reload=True,
            reload_dirs=[str(Path(__file__).resolve().parent)],
        )
    else:
        uvicorn.run(app, host=host, port=port, log_level=log_level)


@cli.command()
@click.option("--publisher", required=True, help="Image publisher, e.g. Canonical.")
@click.option("--offer", required=True, help="Image offer.")
@click.option("--sku", required=True, help="Image SKU.")
@click.option("--version", "image_version", default="latest", show_default=True)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["all", "arm", "terraform", "bicep", "ansible"]),
    default="all",
    show_default=True,
)
def iac(publisher: str, offer: str, sku: str, image_version: str, fmt: str) -> None:
    """Render an image reference as an IaC snippet."""
    from az_marketplace.errors import ValidationError
    from az_marketplace.iac import AVAILABLE_FORMATS, generate_all_formats, render
    from az_marketplace.models import VMImageReference

    ref = VMImageReference(publisher=publisher, offer=offer, sku=sku, version=image_version)
    try:
        if fmt != "all":
            click.echo(render(ref, fmt))
            return
        formats = generate_all_formats(ref)
    except ValidationError as exc:
        raise click.ClickException(exc.message) from exc

    for key, label in AVAILABLE_FORMATS.items():
        click.echo(click.style(f"# {label}", bold=True))
        click.echo(getattr(formats, key))
        click.echo()


# ---------------------------------------------------------------------------
# Catalog browsing
# ---------------------------------------------------------------------------


def _catalog(
    subscription_id: str | None, verbose: bool
) -> tuple["MarketplaceSession", "CatalogClient", str]:
    """Sign in and return ``(session, catalog_client, subscription_id)``."""
    import logging

    from az_marketplace.app import _setup_logging, create_session
    from az_marketplace.errors import MarketplaceError

    _setup_logging(level=logging.DEBUG if verbose else logging.WARNING)
    session = create_session()
    try:
        session.login()
        session.load_subscriptions()
        if subscription_id:
            session.select_subscription(subscription_id)
        services = session.services
    except MarketplaceError as exc:
        raise click.ClickException(f"{exc.user_message} ({exc.message})") from exc
    if services is None:
        raise click.ClickException("No subscription available for the signed-in account.")
    return session, services.catalog_client, services.subscription.subscription_id


def _common_options(func: Callable[..., None]) -> Callable[..., None]:
    func = click.option(
        "--subscription", "subscription_id", default=None, help="Subscription ID to use."
    )(func)
    func = click.option("--location", default=None, help="Azure region, e.g. westeurope.")(func)
    func = click.option("--verbose", "-v", is_flag=True, default=False)(func)
    return func


def _run(
    subscription_id: str | None,
    location: str | None,
    verbose: bool,
    fetch: Callable[["CatalogClient", str, str], Sequence[Any]],
) -> None:
    from az_marketplace.errors import MarketplaceError

    session, client, sub_id = _catalog(subscription_id, verbose)
    loc = location or session.auth.state.selected_location
    try:
        items = fetch(client, sub_id, loc)
    except MarketplaceError as exc:
        raise click.ClickException(f"{exc.user_message} ({exc.message})") from exc
    for item in items:
        click.echo(item if isinstance(item, str) else item.name)


@cli.command()
@_common_options
def publishers(subscription_id: str | None, location: str | None, verbose: bool) -> None:
    """List VM image publishers in a location."""
    _run(subscription_id, location, verbose, lambda c, s, loc: c.get_publishers(s, loc))


@cli.command()
@click.argument("publisher")
@_common_options
def offers(
    publisher: str, subscription_id: str | None, location: str | None, verbose: bool
) -> None:
    """List the offers of PUBLISHER."""
    _run(subscription_id, location, verbose, lambda c, s, loc: c.get_offers(s, publisher, loc))


@cli.command()
@click.argument("publisher")
@click.argument("offer")
@_common_options
def skus(
    publisher: str,
    offer: str,
    subscription_id: str | None,
    location: str | None,
    verbose: bool,
) -> None:
    """List the SKUs of PUBLISHER/OFFER."""
    _run(
        subscription_id,
        location,
        verbose,
        lambda c, s, loc: c.get_skus(s, publisher, offer, loc),
    )


@cli.command()
@click.argument("publisher")
@click.argument("offer")
@click.argument("sku")
@_common_options
def versions(
    publisher: str,
    offer: str,
    sku: str,
    subscription_id: str | None,
    location: str | None,
    verbose: bool,
) -> None:
    """List image versions of PUBLISHER/OFFER/SKU, newest first."""
    _run(
        subscription_id,
        location,
        verbose,
        lambda c, s, loc: c.get_sku_versions(s, publisher, offer, sku, loc),
    )
