"""Quad Market - campus peer-to-peer marketplace with time-boxed bidding.

Example usage:
    from quadmarket import Listing, evaluate_status, minimum_next_bid

    status = evaluate_status(listing)
    if status is BiddingStatus.OPEN:
        print(f"Minimum bid: ${minimum_next_bid(listing)}")

Run the API with ``quadmarket serve``.
"""

from .bidding import (
    can_view_contact,
    compute_remaining,
    evaluate_status,
    minimum_next_bid,
    place_bid,
    resolve_bid_duration,
)
from .models import BiddingStatus, Bid, Category, Condition, Listing
from .session import SessionContext

__version__ = "0.1.0"
__all__ = [
    "Bid",
    "BiddingStatus",
    "Category",
    "Condition",
    "Listing",
    "SessionContext",
    "can_view_contact",
    "compute_remaining",
    "evaluate_status",
    "minimum_next_bid",
    "place_bid",
    "resolve_bid_duration",
]
