import os

# Must be set before settings are first read
os.environ["BACKEND_MODE"] = "memory"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from quadmarket.backends.memory import MemoryMarketBackend
from quadmarket.db import create_listing
from quadmarket.models import Category, Condition, Listing

NOW = datetime(2026, 3, 2, 15, 0, 0, tzinfo=timezone.utc)


def make_listing(**overrides) -> Listing:
    """Listing model with sensible defaults, not stored anywhere."""
    fields = {
        "id": 1,
        "title": "Calculus textbook",
        "description": "Stewart, 8th edition, light highlighting",
        "price": Decimal("50.00"),
        "category": Category.BOOKS,
        "condition": Condition.GOOD,
        "contact_info": "seller@campus.edu",
        "seller_id": "seller-0001-abcdef",
        "created_at": NOW - timedelta(days=1),
    }
    fields.update(overrides)
    return Listing(**fields)


async def store_listing(backend, **overrides) -> Listing:
    """Insert a listing row and return it as stored."""
    fields = {
        "title": "Calculus textbook",
        "description": "Stewart, 8th edition, light highlighting",
        "price": Decimal("50.00"),
        "category": Category.BOOKS,
        "condition": Condition.GOOD,
        "contact_info": "seller@campus.edu",
        "seller_id": "seller-0001-abcdef",
        "allows_bidding": False,
        "bidding_end_time": None,
        "highest_bid": None,
        "highest_bidder_id": None,
    }
    fields.update(overrides)
    return await create_listing(backend, fields)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def backend():
    return MemoryMarketBackend(public_base_url="http://testserver")


@pytest.fixture
async def seller(backend):
    return await backend.sign_up("sam@campus.edu", "hunter22", {"full_name": "Sam Seller"})


@pytest.fixture
async def bidder(backend):
    return await backend.sign_up("bea@campus.edu", "hunter22", {"full_name": "Bea Bidder"})


@pytest.fixture
async def rival(backend):
    return await backend.sign_up("rex@campus.edu", "hunter22", {"full_name": "Rex Rival"})
