"""Pydantic models for Quad Market tables and views."""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Any

from pydantic import BaseModel, Field, field_validator


CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a stored number to a cent-quantized Decimal.

    Floats go through ``str`` so 75.1 stays 75.10 rather than its binary
    expansion.
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        amount = Decimal(value)
    if not amount.is_finite():
        return amount
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# Enums
# ============================================================

class Category(str, Enum):
    ELECTRONICS = "electronics"
    BOOKS = "books"
    SPORTS = "sports"
    OTHER = "other"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS: dict[Category, str] = {
    Category.ELECTRONICS: "Electronics",
    Category.BOOKS: "Books",
    Category.SPORTS: "Sports",
    Category.OTHER: "Other",
}


class Condition(str, Enum):
    NEW = "new"
    LIKE_NEW = "like_new"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @property
    def label(self) -> str:
        return CONDITION_LABELS[self]


CONDITION_LABELS: dict[Condition, str] = {
    Condition.NEW: "New",
    Condition.LIKE_NEW: "Like New",
    Condition.GOOD: "Good",
    Condition.FAIR: "Fair",
    Condition.POOR: "Poor",
}


class BiddingStatus(str, Enum):
    DISABLED = "disabled"
    OPEN = "open"
    CLOSED = "closed"


class DurationUnit(str, Enum):
    SECONDS = "s"
    MINUTES = "m"
    HOURS = "h"
    DAYS = "d"

    @property
    def seconds(self) -> int:
        return UNIT_SECONDS[self]


UNIT_SECONDS: dict[DurationUnit, int] = {
    DurationUnit.SECONDS: 1,
    DurationUnit.MINUTES: 60,
    DurationUnit.HOURS: 3600,
    DurationUnit.DAYS: 86400,
}

UNIT_LABELS: dict[DurationUnit, str] = {
    DurationUnit.SECONDS: "second",
    DurationUnit.MINUTES: "minute",
    DurationUnit.HOURS: "hour",
    DurationUnit.DAYS: "day",
}


class DurationPreset(str, Enum):
    """Bidding windows offered when creating a listing."""
    S10 = "10s"
    S30 = "30s"
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H2 = "2h"
    H4 = "4h"
    H8 = "8h"
    H12 = "12h"
    D1 = "1d"
    D3 = "3d"
    D7 = "7d"
    D14 = "14d"
    D30 = "30d"

    @property
    def amount(self) -> int:
        return int(self.value[:-1])

    @property
    def unit(self) -> DurationUnit:
        return DurationUnit(self.value[-1])

    @property
    def seconds(self) -> int:
        return self.amount * self.unit.seconds

    @property
    def label(self) -> str:
        noun = UNIT_LABELS[self.unit]
        return f"{self.amount} {noun}" + ("s" if self.amount != 1 else "")


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"


# ============================================================
# Table Models
# ============================================================

class Listing(BaseModel):
    """Row of the listings table."""
    id: int
    title: str
    description: str = ""
    price: Decimal
    category: Category
    condition: Condition
    contact_info: str = ""
    image_url: Optional[str] = None
    seller_id: str
    created_at: datetime = Field(default_factory=utcnow)

    # Bidding (ignored when allows_bidding is false)
    allows_bidding: bool = False
    bidding_end_time: Optional[datetime] = None
    highest_bid: Optional[Decimal] = None
    highest_bidder_id: Optional[str] = None

    @field_validator("price", "highest_bid", mode="before")
    @classmethod
    def _money(cls, v):
        return None if v is None else to_money(v)

    @field_validator("created_at", "bidding_end_time")
    @classmethod
    def _utc(cls, v):
        return None if v is None else as_utc(v)

    @field_validator("description", "contact_info", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""


class Bid(BaseModel):
    """Row of the bids table. Immutable once written."""
    id: str
    listing_id: int
    bidder_id: str
    amount: Decimal
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return str(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _money(cls, v):
        return to_money(v)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v):
        return as_utc(v)


# ============================================================
# Auth Models
# ============================================================

class UserInfo(BaseModel):
    """Identity yielded by the auth service."""
    id: str
    email: str = ""
    email_verified: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    access_token: str
    user: UserInfo


# ============================================================
# Form / View Models
# ============================================================

class CustomDuration(BaseModel):
    value: int
    unit: DurationUnit = DurationUnit.DAYS


class ListingForm(BaseModel):
    """Raw Sell page input; validated by ``listings.create_listing``."""
    title: str = ""
    description: str = ""
    price: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    contact_info: str = ""
    allows_bidding: bool = False
    bidding_duration: str = "3d"  # a DurationPreset value or "custom"
    custom_duration: Optional[CustomDuration] = None


class ImageUpload(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


class BidRequest(BaseModel):
    amount: str

    @field_validator("amount", mode="before")
    @classmethod
    def amount_as_text(cls, v):
        # JSON clients may send a number; check_bid_amount judges it
        if isinstance(v, (int, float, Decimal)):
            return str(v)
        return v


class BidHistoryEntry(BaseModel):
    id: str
    amount: Decimal
    created_at: datetime
    is_mine: bool
    label: str


class ListingView(BaseModel):
    """Product detail page as seen by one viewer at one instant."""
    listing: Listing
    category_label: str
    condition_label: str
    status: BiddingStatus
    remaining_seconds: Optional[float] = None
    remaining_label: Optional[str] = None
    minimum_bid: Optional[Decimal] = None
    is_highest_bidder: bool = False
    seller_name: str
    contact_info: Optional[str] = None
    contact_notice: Optional[str] = None
