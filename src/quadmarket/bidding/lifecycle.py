"""Bid lifecycle evaluation.

Decides, for one listing at one instant, whether bidding is disabled, open or
closed, what the smallest acceptable next bid is, how long the window has
left, and who may see the seller's contact details.

Everything here is a pure function over an already-fetched ``Listing``:
no I/O, no clock reads unless ``now`` is omitted.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from ..errors import InvalidDuration
from ..models import (
    CENT,
    BiddingStatus,
    CustomDuration,
    DurationPreset,
    Listing,
    as_utc,
    to_money,
    utcnow,
)

# Smallest currency increment a new bid must clear the floor by
BID_INCREMENT = CENT

DurationSelection = Union[DurationPreset, CustomDuration, str]


@dataclass(frozen=True)
class BidValidation:
    """Outcome of checking a candidate bid amount."""
    ok: bool
    minimum: Decimal
    amount: Optional[Decimal] = None
    reason: str = ""


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else utcnow()


def evaluate_status(listing: Listing, now: Optional[datetime] = None) -> BiddingStatus:
    """Classify the listing's bidding window at ``now``.

    A bidding listing without an end time has no window to bid in and is
    reported as closed.
    """
    if not listing.allows_bidding:
        return BiddingStatus.DISABLED
    if listing.bidding_end_time is None:
        return BiddingStatus.CLOSED
    if _now(now) < listing.bidding_end_time:
        return BiddingStatus.OPEN
    return BiddingStatus.CLOSED


def minimum_next_bid(listing: Listing) -> Decimal:
    """Current highest bid (or the asking price) plus one cent."""
    floor = listing.highest_bid if listing.highest_bid is not None else listing.price
    return to_money(floor) + BID_INCREMENT


def check_bid_amount(listing: Listing, candidate) -> BidValidation:
    """Validate a candidate amount against ``minimum_next_bid``.

    Accepts strings, ints, floats or Decimals. Never raises; failures come
    back as ``BidValidation(ok=False, reason=...)``.
    """
    minimum = minimum_next_bid(listing)
    try:
        amount = Decimal(str(candidate).strip())
    except (InvalidOperation, ValueError):
        return BidValidation(False, minimum, reason="Bid amount must be a number")

    if not amount.is_finite():
        return BidValidation(False, minimum, reason="Bid amount must be a number")
    if amount <= 0:
        return BidValidation(False, minimum, reason="Bid amount must be positive")
    if amount < minimum:
        return BidValidation(
            False, minimum, amount=amount,
            reason=f"Your bid must be at least ${minimum:.2f}",
        )
    return BidValidation(True, minimum, amount=to_money(amount))


def compute_remaining(listing: Listing, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time left in an open window; None once closed or when disabled."""
    now = _now(now)
    if evaluate_status(listing, now) is not BiddingStatus.OPEN:
        return None
    return listing.bidding_end_time - now


def format_remaining(remaining: Optional[timedelta]) -> str:
    """Render a countdown such as ``1d 2h 3m 4s``.

    Leading zero units are dropped; seconds are always shown.
    """
    if remaining is None or remaining.total_seconds() <= 0:
        return "Bidding ended"

    total = int(remaining.total_seconds())
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0 or days > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or hours > 0 or days > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def can_view_contact(
    listing: Listing,
    viewer_id: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """Whether ``viewer_id`` may see the seller's contact details.

    Always for non-bidding listings; otherwise only the recorded highest
    bidder, and only after the window has closed.
    """
    status = evaluate_status(listing, now)
    if status is BiddingStatus.DISABLED:
        return True
    if status is BiddingStatus.OPEN or not viewer_id:
        return False
    return listing.highest_bidder_id is not None and viewer_id == listing.highest_bidder_id


def duration_seconds(selection: DurationSelection) -> int:
    """Length in seconds of a preset or custom bidding window."""
    if isinstance(selection, CustomDuration):
        if selection.value <= 0:
            raise InvalidDuration(
                "Invalid bidding duration",
                "Custom duration must be a positive whole number.",
            )
        return selection.value * selection.unit.seconds

    try:
        preset = DurationPreset(selection)
    except ValueError:
        raise InvalidDuration(
            "Invalid bidding duration",
            f"Unknown duration '{selection}'.",
        )
    return preset.seconds


def resolve_bid_duration(selection: DurationSelection, now: Optional[datetime] = None) -> datetime:
    """Absolute bidding end time for a duration chosen at listing time."""
    return _now(now) + timedelta(seconds=duration_seconds(selection))
