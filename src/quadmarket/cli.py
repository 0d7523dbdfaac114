"""Quad Market CLI for browsing listings and watching auctions."""

import asyncio
from decimal import Decimal
from typing import Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .backends import MarketBackend, create_backend
from .bidding import Countdown, CountdownTick, evaluate_status, place_bid
from .browse import ALL_CATEGORIES, ListingQuery, apply_query
from .db import get_all_listings, get_listing
from .errors import MarketError, NotFound
from .listings import build_listing_view
from .models import BiddingStatus, Condition, DurationPreset, Listing, SortOrder
from .session import SessionContext

app = typer.Typer(name="quadmarket", help="Quad Market - campus marketplace with time-boxed bidding")
console = Console()

STATUS_COLORS = {
    BiddingStatus.DISABLED: "white",
    BiddingStatus.OPEN: "green",
    BiddingStatus.CLOSED: "red",
}

TOKEN_OPTION = typer.Option(None, envvar="QUADMARKET_TOKEN", help="Access token to act as a signed-in viewer")


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


async def _with_backend(action):
    """Run ``action(backend)`` and close the backend afterwards.

    Domain errors are printed as a notice panel and exit non-zero.
    """
    backend = create_backend()
    try:
        await backend.init()
        return await action(backend)
    except MarketError as e:
        console.print(Panel(e.description or e.title, title=f"[red]{e.title}[/]"))
        raise typer.Exit(code=1)
    finally:
        await backend.close()


async def _require_listing(backend: MarketBackend, listing_id: int) -> Listing:
    listing = await get_listing(backend, listing_id)
    if listing is None:
        raise NotFound("Product Not Found", f"No listing with id {listing_id}.")
    return listing


# ============================================================
# Server
# ============================================================

@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the Quad Market API."""
    import uvicorn

    console.print(f"[bold blue]Starting Quad Market on http://{host}:{port}[/]")
    uvicorn.run("quadmarket.api:app", host=host, port=port, reload=reload)


# ============================================================
# Listing Commands
# ============================================================

@app.command()
def browse(
    category: str = typer.Option(ALL_CATEGORIES, help="Category or 'all'"),
    search: str = typer.Option("", help="Search title and description"),
    min_price: Optional[float] = typer.Option(None, help="Minimum price"),
    max_price: Optional[float] = typer.Option(None, help="Maximum price"),
    condition: list[Condition] = typer.Option([], help="Condition (repeatable)"),
    bidding_only: bool = typer.Option(False, help="Only listings that accept bids"),
    sort: SortOrder = typer.Option(SortOrder.NEWEST, help="Sort order"),
):
    """List listings with Buy page filters."""
    try:
        query = ListingQuery(
            category=category,
            search=search,
            min_price=Decimal(str(min_price)) if min_price is not None else None,
            max_price=Decimal(str(max_price)) if max_price is not None else None,
            conditions=set(condition),
            bidding_only=bidding_only,
            sort=sort,
        )
    except ValueError:
        console.print(f"[red]Unknown category '{category}'[/]")
        raise typer.Exit(code=1)

    async def _browse(backend: MarketBackend):
        listings = apply_query(await get_all_listings(backend), query)

        if not listings:
            console.print("[yellow]No listings found.[/]")
            return

        table = Table(title="Listings")
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("Title", style="green")
        table.add_column("Category")
        table.add_column("Condition")
        table.add_column("Price", justify="right")
        table.add_column("Bidding")

        for listing in listings:
            status = evaluate_status(listing)
            price = listing.highest_bid if listing.highest_bid is not None else listing.price
            table.add_row(
                str(listing.id),
                listing.title,
                listing.category.label,
                listing.condition.label,
                f"${price:.2f}",
                f"[{STATUS_COLORS[status]}]{status.value}[/]",
            )

        console.print(table)

    run_async(_with_backend(_browse))


@app.command()
def show(listing_id: int, token: Optional[str] = TOKEN_OPTION):
    """Show a listing as the product page would."""

    async def _show(backend: MarketBackend):
        session = SessionContext(backend)
        await session.establish(token)
        listing = await _require_listing(backend, listing_id)
        view = build_listing_view(listing, session.viewer_id)

        color = STATUS_COLORS[view.status]
        lines = [
            f"[bold]Category:[/] {view.category_label}",
            f"[bold]Condition:[/] {view.condition_label}",
            f"[bold]Price:[/] ${listing.price:.2f}",
            f"[bold]Seller:[/] {view.seller_name}",
            f"[bold]Bidding:[/] [{color}]{view.status.value}[/]",
        ]
        if view.status is not BiddingStatus.DISABLED:
            if listing.highest_bid is not None:
                lines.append(f"[bold]Highest bid:[/] ${listing.highest_bid:.2f}")
            lines.append(f"[bold]Time left:[/] {view.remaining_label}")
        if view.minimum_bid is not None:
            lines.append(f"[bold]Minimum bid:[/] ${view.minimum_bid:.2f}")
        if view.is_highest_bidder:
            lines.append("[green]You are the highest bidder[/]")
        if view.contact_info:
            lines.append(f"[bold]Contact:[/] {view.contact_info}")
        if view.contact_notice:
            lines.append(f"[dim]{view.contact_notice}[/]")
        if listing.description:
            lines += ["", listing.description]

        console.print(Panel("\n".join(lines), title=f"[green]{listing.title}[/]"))

    run_async(_with_backend(_show))


def _render_tick(listing: Listing, tick: CountdownTick) -> Panel:
    color = STATUS_COLORS[tick.status]
    return Panel(
        f"[bold]Status:[/] [{color}]{tick.status.value}[/]\n[bold]Time left:[/] {tick.label}",
        title=f"{listing.title} (#{listing.id})",
    )


@app.command()
def watch(
    listing_id: int,
    interval: Optional[float] = typer.Option(None, help="Seconds between refreshes"),
):
    """Live countdown until bidding closes."""

    async def _watch(backend: MarketBackend):
        listing = await _require_listing(backend, listing_id)
        if evaluate_status(listing) is BiddingStatus.DISABLED:
            console.print("[yellow]This listing does not accept bids.[/]")
            return

        async with Countdown(listing, interval=interval) as countdown:
            with Live(console=console, refresh_per_second=4) as live:
                async for tick in countdown:
                    live.update(_render_tick(listing, tick))

    run_async(_with_backend(_watch))


@app.command()
def bid(listing_id: int, amount: str, token: Optional[str] = TOKEN_OPTION):
    """Place a bid as the signed-in viewer."""

    async def _bid(backend: MarketBackend):
        session = SessionContext(backend)
        await session.establish(token)
        acting = backend.for_session(session.access_token)
        listing = await _require_listing(acting, listing_id)
        placed, _ = await place_bid(acting, listing, session.viewer_id, amount)
        console.print(Panel(
            f"Your bid of ${placed.amount:.2f} has been placed!",
            title="[green]Bid placed successfully[/]",
        ))

    run_async(_with_backend(_bid))


@app.command()
def durations():
    """Bidding duration presets offered on the Sell form."""
    table = Table(title="Bidding Durations")
    table.add_column("Value", style="cyan")
    table.add_column("Label", style="green")
    table.add_column("Seconds", justify="right")

    for preset in DurationPreset:
        table.add_row(preset.value, preset.label, str(preset.seconds))

    console.print(table)


if __name__ == "__main__":
    app()
