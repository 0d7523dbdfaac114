"""Listing creation and the product detail view.

Creating a listing is up to two remote calls: an optional image upload
followed by the row insert. Nothing undoes the upload if the insert fails.
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import structlog

from .backends.base import MarketBackend
from .bidding.lifecycle import (
    can_view_contact,
    compute_remaining,
    evaluate_status,
    format_remaining,
    minimum_next_bid,
    resolve_bid_duration,
)
from .config import get_settings
from .db import create_listing as insert_listing
from .errors import AuthRequired, RemoteCallError, ValidationFailed
from .models import (
    BiddingStatus,
    Category,
    Condition,
    ImageUpload,
    Listing,
    ListingForm,
    ListingView,
    to_money,
    utcnow,
)

logger = structlog.get_logger()

ALLOWED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}

CUSTOM_DURATION = "custom"

CONTACT_HIDDEN_NOTICE = "Contact information is only visible to the highest bidder after bidding ends."
CONTACT_WINNER_NOTICE = "As the highest bidder, you can contact the seller."


# ============================================================
# Form Validation
# ============================================================

def _missing() -> ValidationFailed:
    return ValidationFailed("Missing information", "Please fill in all required fields.")


def parse_price(raw: Optional[str]) -> Decimal:
    """Asking price from form text. Must be a finite positive amount."""
    if raw is None or not str(raw).strip():
        raise _missing()
    try:
        price = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationFailed("Invalid price", "Price must be a number.")
    if not price.is_finite() or price <= 0:
        raise ValidationFailed("Invalid price", "Price must be greater than zero.")
    return to_money(price)


def _parse_choice(enum_cls, raw: Optional[str]):
    if not raw:
        raise _missing()
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValidationFailed("Invalid selection", f"Unknown {enum_cls.__name__.lower()} '{raw}'.")


def image_extension(filename: str) -> str:
    """Lowercased extension without the dot, if it is an allowed image type."""
    ext = Path(filename).suffix.lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        allowed = ", ".join(sorted(e.lstrip(".") for e in ALLOWED_IMAGE_EXTENSIONS))
        raise ValidationFailed("Invalid image", f"Image must be one of: {allowed}.")
    return ext.lstrip(".")


def validate_image(image: ImageUpload) -> str:
    """Check type and size. Returns the extension to store under."""
    ext = image_extension(image.filename)
    max_mb = get_settings().max_image_size_mb
    if len(image.content) > max_mb * 1024 * 1024:
        raise ValidationFailed("Image too large", f"Image must be {max_mb}MB or smaller.")
    return ext


def bidding_end_time(form: ListingForm, now: Optional[datetime] = None) -> Optional[datetime]:
    """End of the bidding window chosen on the form, or None without bidding."""
    if not form.allows_bidding:
        return None
    if form.bidding_duration == CUSTOM_DURATION:
        if form.custom_duration is None:
            raise ValidationFailed("Invalid bidding duration", "Enter a custom duration.")
        return resolve_bid_duration(form.custom_duration, now)
    return resolve_bid_duration(form.bidding_duration or get_settings().default_bid_duration, now)


# ============================================================
# Listing Creation
# ============================================================

async def upload_image(backend: MarketBackend, seller_id: str, image: ImageUpload) -> str:
    """Store a listing image under the seller's folder. Returns its public URL."""
    ext = validate_image(image)
    path = f"{seller_id}/{uuid.uuid4()}.{ext}"
    await backend.upload(path, image.content, image.content_type)
    url = backend.get_public_url(path)
    logger.info("image_uploaded", seller_id=seller_id, path=path, size_bytes=len(image.content))
    return url


async def create_listing(
    backend: MarketBackend,
    viewer_id: Optional[str],
    form: ListingForm,
    image: Optional[ImageUpload] = None,
    now: Optional[datetime] = None,
) -> Listing:
    """Validate a Sell form, upload its image and insert the listing.

    Args:
        backend: Backend acting for the seller
        viewer_id: Signed-in seller's user id
        form: Raw form values
        image: Optional product photo
        now: Creation instant the bidding window is measured from

    Returns:
        The stored listing

    Raises:
        AuthRequired: No signed-in viewer
        ValidationFailed: Bad form input, before any remote call
        RemoteCallError: Upload or insert failed
    """
    if not viewer_id:
        raise AuthRequired("You must be signed in to create a listing.")

    title = form.title.strip()
    description = form.description.strip()
    if not title or not description:
        raise _missing()
    price = parse_price(form.price)
    category = _parse_choice(Category, form.category)
    condition = _parse_choice(Condition, form.condition)

    now = now or utcnow()
    end_time = bidding_end_time(form, now)
    if image is not None:
        validate_image(image)

    try:
        image_url = await upload_image(backend, viewer_id, image) if image is not None else None
        listing = await insert_listing(backend, {
            "title": title,
            "description": description,
            "price": price,
            "category": category,
            "condition": condition,
            "contact_info": form.contact_info.strip(),
            "image_url": image_url,
            "seller_id": viewer_id,
            "allows_bidding": form.allows_bidding,
            "bidding_end_time": end_time,
            "highest_bid": None,
            "highest_bidder_id": None,
        })
    except RemoteCallError as e:
        logger.error("listing_create_failed", seller_id=viewer_id, error=str(e))
        raise e.retitled("Error creating listing")

    return listing


# ============================================================
# Product Detail
# ============================================================

def seller_display_name(seller_id: str) -> str:
    return "Seller #" + seller_id[:8]


def redact_contact(listing: Listing, viewer_id: Optional[str], now: Optional[datetime] = None) -> Listing:
    """Copy of the listing with contact_info blanked unless the viewer may see it."""
    if can_view_contact(listing, viewer_id, now):
        return listing
    return listing.model_copy(update={"contact_info": ""})


def build_listing_view(
    listing: Listing,
    viewer_id: Optional[str],
    now: Optional[datetime] = None,
) -> ListingView:
    """Everything the product page shows one viewer at one instant."""
    now = now or utcnow()
    status = evaluate_status(listing, now)
    remaining = compute_remaining(listing, now)
    is_highest = bool(viewer_id) and listing.highest_bidder_id == viewer_id
    visible = can_view_contact(listing, viewer_id, now)

    notice = None
    if listing.contact_info and status is BiddingStatus.CLOSED:
        notice = CONTACT_WINNER_NOTICE if visible else CONTACT_HIDDEN_NOTICE

    return ListingView(
        listing=redact_contact(listing, viewer_id, now),
        category_label=listing.category.label,
        condition_label=listing.condition.label,
        status=status,
        remaining_seconds=remaining.total_seconds() if remaining is not None else None,
        remaining_label=format_remaining(remaining) if status is not BiddingStatus.DISABLED else None,
        minimum_bid=minimum_next_bid(listing) if status is BiddingStatus.OPEN else None,
        is_highest_bidder=is_highest,
        seller_name=seller_display_name(listing.seller_id),
        contact_info=listing.contact_info if visible and listing.contact_info else None,
        contact_notice=notice,
    )
