"""Bidding system module."""

from .lifecycle import (
    BID_INCREMENT,
    BidValidation,
    can_view_contact,
    check_bid_amount,
    compute_remaining,
    evaluate_status,
    format_remaining,
    minimum_next_bid,
    resolve_bid_duration,
)
from .submit import place_bid, get_bid_history
from .countdown import Countdown, CountdownTick

__all__ = [
    "BID_INCREMENT",
    "BidValidation",
    "can_view_contact",
    "check_bid_amount",
    "compute_remaining",
    "evaluate_status",
    "format_remaining",
    "minimum_next_bid",
    "resolve_bid_duration",
    "place_bid",
    "get_bid_history",
    "Countdown",
    "CountdownTick",
]
