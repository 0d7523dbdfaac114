"""Bid placement for signed-in viewers."""

from datetime import datetime
from typing import Optional

import structlog

from ..backends.base import MarketBackend
from ..db import create_bid, get_bids_for_listing, get_listing, update_listing
from ..errors import AuthRequired, BidRejected, NotFound, RemoteCallError
from ..models import Bid, BiddingStatus, BidHistoryEntry, Listing
from .lifecycle import BidValidation, check_bid_amount, evaluate_status

logger = structlog.get_logger()


def _check_amount(listing: Listing, bidder_id: str, amount) -> BidValidation:
    validation = check_bid_amount(listing, amount)
    if not validation.ok:
        logger.info(
            "bid_rejected",
            listing_id=listing.id,
            bidder_id=bidder_id,
            minimum=str(validation.minimum),
            reason=validation.reason,
        )
        raise BidRejected("Invalid bid amount", validation.reason)
    return validation


async def place_bid(
    backend: MarketBackend,
    listing: Listing,
    bidder_id: Optional[str],
    amount,
    now: Optional[datetime] = None,
) -> tuple[Bid, Listing]:
    """Place a bid on a listing the bidder is looking at.

    The amount is checked against the displayed listing before anything is
    sent. Then the listing is re-read to confirm the window is still open,
    the bid is inserted, and the listing's highest bid is overwritten.
    Those are three separate remote calls with nothing tying them together:
    two bidders reading the same highest bid can both pass, both bids are
    stored and the later listing update wins. If the final update fails the
    bid row stays.

    Args:
        backend: Backend acting for the bidder
        listing: Listing as currently displayed to the bidder
        bidder_id: Signed-in viewer's user id (None when anonymous)
        amount: Candidate amount as entered
        now: Evaluation instant (defaults to the current time)

    Returns:
        The stored bid and the listing after the update
    """
    if not bidder_id:
        raise AuthRequired("Please sign in to place a bid.")
    if not listing.allows_bidding:
        raise BidRejected("Bidding is not enabled", "This item is sold at a fixed price.")

    _check_amount(listing, bidder_id, amount)

    try:
        current = await get_listing(backend, listing.id)
    except RemoteCallError as e:
        raise e.retitled("Failed to place bid")
    if current is None:
        raise NotFound("Product Not Found", f"Listing {listing.id} does not exist.")
    if evaluate_status(current, now) is not BiddingStatus.OPEN:
        raise BidRejected("Bidding has ended", "The bidding period for this item has ended.")

    # Someone may have outbid the displayed price meanwhile
    validation = _check_amount(current, bidder_id, amount)

    try:
        bid = await create_bid(backend, {
            "listing_id": listing.id,
            "bidder_id": bidder_id,
            "amount": validation.amount,
        })
        updated = await update_listing(backend, listing.id, {
            "highest_bid": validation.amount,
            "highest_bidder_id": bidder_id,
        })
    except RemoteCallError as e:
        logger.error("bid_placement_failed", listing_id=listing.id, bidder_id=bidder_id, error=str(e))
        raise e.retitled("Failed to place bid")

    if updated is None:
        # Row gone, or hidden from this caller by row-level access rules
        logger.warning("bid_listing_update_missed", bid_id=bid.id, listing_id=listing.id, bidder_id=bidder_id)
        updated = current

    logger.info(
        "bid_placed",
        bid_id=bid.id,
        listing_id=listing.id,
        bidder_id=bidder_id,
        amount=str(validation.amount),
    )

    return bid, updated


async def get_bid_history(
    backend: MarketBackend,
    listing_id: int,
    viewer_id: Optional[str],
) -> list[BidHistoryEntry]:
    """Bids on a listing, newest first, as shown to a signed-in viewer."""
    if not viewer_id:
        raise AuthRequired("Sign in to view bid history.")

    try:
        bids = await get_bids_for_listing(backend, listing_id)
    except RemoteCallError as e:
        raise e.retitled("Failed to load bids")

    return [
        BidHistoryEntry(
            id=bid.id,
            amount=bid.amount,
            created_at=bid.created_at,
            is_mine=bid.bidder_id == viewer_id,
            label="Your bid" if bid.bidder_id == viewer_id else "User",
        )
        for bid in bids
    ]
