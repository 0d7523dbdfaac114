from datetime import timedelta
from decimal import Decimal

import pytest

from quadmarket.bidding import evaluate_status, minimum_next_bid, place_bid
from quadmarket.db import get_listing
from quadmarket.errors import AuthRequired, InvalidDuration, RemoteCallError, ValidationFailed
from quadmarket.listings import CONTACT_HIDDEN_NOTICE, build_listing_view, create_listing
from quadmarket.models import (
    BiddingStatus,
    Category,
    Condition,
    CustomDuration,
    DurationUnit,
    ImageUpload,
    ListingForm,
)

from conftest import NOW, make_listing


def sell_form(**overrides) -> ListingForm:
    fields = {
        "title": "Mini fridge",
        "description": "Fits under a dorm desk",
        "price": "45.00",
        "category": "electronics",
        "condition": "like_new",
        "contact_info": "text 555-0100",
    }
    fields.update(overrides)
    return ListingForm(**fields)


PNG = ImageUpload(filename="fridge.PNG", content=b"\x89PNG\r\n\x1a\nfake", content_type="image/png")


# ============================================================
# create_listing
# ============================================================

async def test_round_trip_keeps_seller_supplied_fields(backend, seller):
    created = await create_listing(backend, seller.user.id, sell_form(), now=NOW)

    fetched = await get_listing(backend, created.id)

    assert fetched.price == Decimal("45.00")
    assert fetched.category is Category.ELECTRONICS
    assert fetched.condition is Condition.LIKE_NEW
    assert fetched.title == "Mini fridge"
    assert fetched.contact_info == "text 555-0100"
    assert fetched.seller_id == seller.user.id
    assert fetched.allows_bidding is False
    assert fetched.bidding_end_time is None
    assert fetched.highest_bid is None


async def test_anonymous_seller_is_rejected(backend):
    with pytest.raises(AuthRequired):
        await create_listing(backend, None, sell_form())


@pytest.mark.parametrize("field", ["title", "description", "price", "category", "condition"])
async def test_required_fields(backend, seller, field):
    form = sell_form(**{field: "" if field in ("title", "description") else None})

    with pytest.raises(ValidationFailed) as exc_info:
        await create_listing(backend, seller.user.id, form)

    assert exc_info.value.title == "Missing information"
    assert await backend.select_rows("listings") == []


@pytest.mark.parametrize("price", ["abc", "0", "-4", "Infinity"])
async def test_price_must_be_finite_and_positive(backend, seller, price):
    with pytest.raises(ValidationFailed) as exc_info:
        await create_listing(backend, seller.user.id, sell_form(price=price))
    assert exc_info.value.title == "Invalid price"


async def test_unknown_category_is_rejected(backend, seller):
    with pytest.raises(ValidationFailed) as exc_info:
        await create_listing(backend, seller.user.id, sell_form(category="furniture"))
    assert exc_info.value.title == "Invalid selection"


async def test_bidding_preset_sets_end_time(backend, seller):
    form = sell_form(allows_bidding=True, bidding_duration="1h")

    listing = await create_listing(backend, seller.user.id, form, now=NOW)

    assert listing.allows_bidding is True
    assert listing.bidding_end_time == NOW + timedelta(hours=1)


async def test_bidding_defaults_to_three_days(backend, seller):
    listing = await create_listing(backend, seller.user.id, sell_form(allows_bidding=True), now=NOW)
    assert listing.bidding_end_time == NOW + timedelta(days=3)


async def test_custom_bidding_duration(backend, seller):
    form = sell_form(
        allows_bidding=True,
        bidding_duration="custom",
        custom_duration=CustomDuration(value=45, unit=DurationUnit.MINUTES),
    )

    listing = await create_listing(backend, seller.user.id, form, now=NOW)

    assert listing.bidding_end_time == NOW + timedelta(seconds=2700)


async def test_zero_custom_duration_is_rejected_before_insert(backend, seller):
    form = sell_form(
        allows_bidding=True,
        bidding_duration="custom",
        custom_duration=CustomDuration(value=0, unit=DurationUnit.DAYS),
    )

    with pytest.raises(InvalidDuration):
        await create_listing(backend, seller.user.id, form, now=NOW)

    assert await backend.select_rows("listings") == []


async def test_duration_ignored_without_bidding(backend, seller):
    form = sell_form(allows_bidding=False, bidding_duration="not-a-duration")
    listing = await create_listing(backend, seller.user.id, form, now=NOW)
    assert listing.bidding_end_time is None


async def test_image_is_stored_under_seller_folder(backend, seller):
    listing = await create_listing(backend, seller.user.id, sell_form(), image=PNG, now=NOW)

    prefix = f"http://testserver/files/{seller.user.id}/"
    assert listing.image_url.startswith(prefix)
    assert listing.image_url.endswith(".png")

    path = listing.image_url[len("http://testserver/files/"):]
    content, content_type = await backend.read_blob(path)
    assert content == PNG.content
    assert content_type == "image/png"


async def test_image_type_is_checked_before_upload(backend, seller):
    image = ImageUpload(filename="notes.pdf", content=b"%PDF-1.7")

    with pytest.raises(ValidationFailed) as exc_info:
        await create_listing(backend, seller.user.id, sell_form(), image=image)

    assert exc_info.value.title == "Invalid image"
    assert await backend.select_rows("listings") == []


async def test_oversized_image_is_rejected(backend, seller):
    image = ImageUpload(filename="huge.jpg", content=b"\0" * (5 * 1024 * 1024 + 1))

    with pytest.raises(ValidationFailed) as exc_info:
        await create_listing(backend, seller.user.id, sell_form(), image=image)

    assert exc_info.value.title == "Image too large"


async def test_storage_failure_is_reported_and_nothing_inserted(backend, seller):
    async def refuse(path, content, content_type):
        raise RemoteCallError("new row violates row-level security policy", status=403)

    backend.upload = refuse

    with pytest.raises(RemoteCallError) as exc_info:
        await create_listing(backend, seller.user.id, sell_form(), image=PNG)

    assert exc_info.value.title == "Error creating listing"
    assert exc_info.value.description == "new row violates row-level security policy"
    assert await backend.select_rows("listings") == []


async def test_ten_second_listing_scenario(backend, seller, bidder, rival):
    form = sell_form(price="20.00", allows_bidding=True, bidding_duration="10s")
    listing = await create_listing(backend, seller.user.id, form, now=NOW)

    assert evaluate_status(listing, NOW) is BiddingStatus.OPEN
    assert minimum_next_bid(listing) == Decimal("20.01")

    _, updated = await place_bid(backend, listing, bidder.user.id, "20.01", now=NOW + timedelta(seconds=2))
    assert updated.highest_bid == Decimal("20.01")

    later = NOW + timedelta(seconds=10)
    winner_view = build_listing_view(updated, bidder.user.id, later)
    rival_view = build_listing_view(updated, rival.user.id, later)
    seller_view = build_listing_view(updated, seller.user.id, later)

    assert winner_view.status is BiddingStatus.CLOSED
    assert winner_view.contact_info == "text 555-0100"
    assert winner_view.is_highest_bidder
    assert rival_view.contact_info is None
    assert rival_view.contact_notice == CONTACT_HIDDEN_NOTICE
    assert seller_view.contact_info is None


# ============================================================
# build_listing_view
# ============================================================

def test_fixed_price_view_shows_contact_to_anyone():
    view = build_listing_view(make_listing(allows_bidding=False), None, NOW)

    assert view.status is BiddingStatus.DISABLED
    assert view.contact_info == "seller@campus.edu"
    assert view.listing.contact_info == "seller@campus.edu"
    assert view.minimum_bid is None
    assert view.remaining_label is None
    assert view.contact_notice is None


def test_open_view_hides_contact_and_offers_minimum():
    listing = make_listing(
        allows_bidding=True,
        bidding_end_time=NOW + timedelta(hours=1, minutes=1, seconds=1),
        highest_bid=Decimal("60.00"),
        highest_bidder_id="leader",
    )

    view = build_listing_view(listing, "leader", NOW)

    assert view.status is BiddingStatus.OPEN
    assert view.contact_info is None
    assert view.listing.contact_info == ""
    assert view.minimum_bid == Decimal("60.01")
    assert view.remaining_seconds == 3661
    assert view.remaining_label == "1h 1m 1s"
    assert view.is_highest_bidder
    assert view.contact_notice is None


def test_view_labels_and_seller_name():
    view = build_listing_view(make_listing(condition=Condition.LIKE_NEW), None, NOW)

    assert view.category_label == "Books"
    assert view.condition_label == "Like New"
    assert view.seller_name == "Seller #seller-0"


def test_anonymous_viewer_is_never_highest_bidder():
    listing = make_listing(allows_bidding=True, bidding_end_time=NOW + timedelta(hours=1))
    assert not build_listing_view(listing, None, NOW).is_highest_bidder
