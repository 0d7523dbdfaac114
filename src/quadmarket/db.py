"""Listing and bid table operations for Quad Market.

Thin wrappers that turn backend rows into models. Each function is exactly
one remote call; nothing here coordinates several of them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Any

import structlog

from .backends.base import MarketBackend
from .models import Bid, Listing, as_utc

logger = structlog.get_logger()


# ============================================================
# Table Names
# ============================================================

LISTINGS_TABLE = "listings"
BIDS_TABLE = "bids"


def serialize_row(data: dict[str, Any]) -> dict[str, Any]:
    """Convert model values to JSON-friendly row values."""
    result = {}
    for key, value in data.items():
        if isinstance(value, Decimal):
            result[key] = float(value)
        elif isinstance(value, datetime):
            result[key] = as_utc(value).isoformat()
        elif isinstance(value, Enum):
            result[key] = value.value
        else:
            result[key] = value
    return result


# ============================================================
# Listing Operations
# ============================================================

async def create_listing(backend: MarketBackend, listing_data: dict[str, Any]) -> Listing:
    """Insert a listing row. Returns the stored listing with its id."""
    row = await backend.insert_row(LISTINGS_TABLE, serialize_row(listing_data))
    listing = Listing(**row)
    logger.info("listing_created", listing_id=listing.id, seller_id=listing.seller_id)
    return listing


async def get_listing(backend: MarketBackend, listing_id: int) -> Optional[Listing]:
    """Get listing by ID."""
    rows = await backend.select_rows(LISTINGS_TABLE, filters={"id": listing_id})
    return Listing(**rows[0]) if rows else None


async def get_all_listings(backend: MarketBackend) -> list[Listing]:
    """All listings, newest first."""
    rows = await backend.select_rows(LISTINGS_TABLE, order_by="created_at", descending=True)
    return [Listing(**row) for row in rows]


async def update_listing(
    backend: MarketBackend,
    listing_id: int,
    updates: dict[str, Any],
) -> Optional[Listing]:
    """Update listing fields."""
    row = await backend.update_row(LISTINGS_TABLE, listing_id, serialize_row(updates))
    return Listing(**row) if row else None


# ============================================================
# Bid Operations
# ============================================================

async def create_bid(backend: MarketBackend, bid_data: dict[str, Any]) -> Bid:
    """Insert a bid row. Bids are never updated or deleted afterwards."""
    row = await backend.insert_row(BIDS_TABLE, serialize_row(bid_data))
    bid = Bid(**row)
    logger.info("bid_created", bid_id=bid.id, listing_id=bid.listing_id)
    return bid


async def get_bids_for_listing(backend: MarketBackend, listing_id: int) -> list[Bid]:
    """All bids on a listing, newest first."""
    rows = await backend.select_rows(
        BIDS_TABLE,
        filters={"listing_id": listing_id},
        order_by="created_at",
        descending=True,
    )
    return [Bid(**row) for row in rows]
