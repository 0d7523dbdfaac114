"""Listing search, filters and sort for the Buy page.

All listings are fetched once, newest first; everything below narrows and
reorders that list in memory.
"""

import math
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from .models import Category, Condition, Listing, SortOrder

ALL_CATEGORIES = "all"

# Slider range when there is nothing to derive it from
DEFAULT_PRICE_BOUNDS = (0, 1000)


class ListingQuery(BaseModel):
    """Buy page filter state."""
    category: Union[Category, str] = ALL_CATEGORIES
    search: str = ""
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    conditions: set[Condition] = Field(default_factory=set)
    bidding_only: bool = False
    sort: SortOrder = SortOrder.NEWEST

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v):
        if v is None or v == "" or v == ALL_CATEGORIES:
            return ALL_CATEGORIES
        return Category(v)

    def matches(self, listing: Listing) -> bool:
        if self.category != ALL_CATEGORIES and listing.category != self.category:
            return False

        if self.search:
            needle = self.search.lower()
            if needle not in listing.title.lower() and needle not in listing.description.lower():
                return False

        if self.min_price is not None and listing.price < self.min_price:
            return False
        if self.max_price is not None and listing.price > self.max_price:
            return False

        if self.conditions and listing.condition not in self.conditions:
            return False

        if self.bidding_only and not listing.allows_bidding:
            return False

        return True


_SORT_KEYS = {
    SortOrder.NEWEST: (lambda l: l.created_at, True),
    SortOrder.OLDEST: (lambda l: l.created_at, False),
    SortOrder.PRICE_ASC: (lambda l: l.price, False),
    SortOrder.PRICE_DESC: (lambda l: l.price, True),
    SortOrder.NAME_ASC: (lambda l: l.title.casefold(), False),
    SortOrder.NAME_DESC: (lambda l: l.title.casefold(), True),
}


def apply_query(listings: list[Listing], query: ListingQuery) -> list[Listing]:
    """Filter then sort. The input list is left untouched."""
    filtered = [listing for listing in listings if query.matches(listing)]
    key, reverse = _SORT_KEYS[query.sort]
    return sorted(filtered, key=key, reverse=reverse)


def price_bounds(listings: list[Listing]) -> tuple[int, int]:
    """Whole-dollar price range covering every listing."""
    if not listings:
        return DEFAULT_PRICE_BOUNDS
    prices = [listing.price for listing in listings]
    return math.floor(min(prices)), math.ceil(max(prices))
