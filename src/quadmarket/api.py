"""Quad Market API.

JSON views for each page of the marketplace (home, buy, sell, login, sign up,
product detail) plus the REST endpoints they call, and a Server-Sent Events
stream for the live bidding countdown.
"""

import json
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, Depends, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response, StreamingResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
import structlog
from dotenv import load_dotenv

from . import __version__
from .backends import MarketBackend, create_backend
from .bidding import Countdown, evaluate_status, get_bid_history, place_bid
from .browse import ALL_CATEGORIES, ListingQuery, apply_query, price_bounds
from .config import get_settings
from .db import get_all_listings, get_listing
from .errors import AuthRequired, MarketError, NotFound, RemoteCallError, ValidationFailed
from .listings import build_listing_view, create_listing, redact_contact
from .models import (
    Category,
    Condition,
    CustomDuration,
    DurationPreset,
    DurationUnit,
    ImageUpload,
    BidRequest,
    Listing,
    ListingForm,
    SortOrder,
    UNIT_LABELS,
    UserInfo,
)
from .session import SessionContext, SignUpForm

load_dotenv()
logger = structlog.get_logger()

app = FastAPI(
    title="Quad Market",
    description="Campus peer-to-peer marketplace with time-boxed bidding",
    version=__version__,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_backend: Optional[MarketBackend] = None


# ============================================================
# Request Models
# ============================================================

class LoginRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    full_name: str
    email: str
    password: str
    confirm_password: str
    agree_terms: bool = False


# ============================================================
# Lifecycle / Dependencies
# ============================================================

@app.on_event("startup")
async def startup():
    global _backend
    settings = get_settings()
    _backend = create_backend(settings)
    await _backend.init()
    logger.info("quadmarket_api_started", backend_mode=settings.backend_mode)


@app.on_event("shutdown")
async def shutdown():
    global _backend
    if _backend is not None:
        await _backend.close()
        _backend = None
    logger.info("quadmarket_api_stopped")


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    """Render domain errors as a notice the client shows as a toast."""
    logger.warning(
        "request_failed",
        path=request.url.path,
        status_code=exc.status_code,
        title=exc.title,
        description=exc.description,
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthRequired) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"notice": exc.notice.model_dump()},
        headers=headers,
    )


def get_backend() -> MarketBackend:
    if _backend is None:
        raise RuntimeError("Backend not initialised; the app has not started")
    return _backend


security = HTTPBearer(auto_error=False)


async def get_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    backend: MarketBackend = Depends(get_backend),
) -> SessionContext:
    """Session context for this request, established from the bearer token."""
    session = SessionContext(backend)
    await session.establish(credentials.credentials if credentials else None)
    return session


async def get_current_viewer(
    session: SessionContext = Depends(get_session),
) -> Optional[UserInfo]:
    return session.user


async def require_viewer(
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
) -> UserInfo:
    if viewer is None:
        raise AuthRequired()
    return viewer


def acting_backend(session: SessionContext = Depends(get_session)) -> MarketBackend:
    """Backend scoped to the caller's token for writes."""
    return session.backend.for_session(session.access_token)


def _viewer_id(viewer: Optional[UserInfo]) -> Optional[str]:
    return viewer.id if viewer else None


# ============================================================
# Shared loaders
# ============================================================

async def _load_listing(backend: MarketBackend, listing_id: int) -> Listing:
    try:
        listing = await get_listing(backend, listing_id)
    except RemoteCallError as e:
        logger.error("listing_fetch_failed", listing_id=listing_id, error=str(e))
        raise e.retitled("Failed to load listing")
    if listing is None:
        raise NotFound("Product Not Found", "The product you're looking for doesn't exist or has been removed.")
    return listing


async def _load_all_listings(backend: MarketBackend) -> list[Listing]:
    try:
        return await get_all_listings(backend)
    except RemoteCallError as e:
        logger.error("listings_fetch_failed", error=str(e))
        raise e.retitled("Failed to load listings")


def _listing_card(listing: Listing, viewer_id: Optional[str]) -> dict:
    card = redact_contact(listing, viewer_id).model_dump(mode="json")
    card["status"] = evaluate_status(listing).value
    card["category_label"] = listing.category.label
    card["condition_label"] = listing.condition.label
    return card


def _build_query(
    category: str,
    search: str,
    min_price: Optional[Decimal],
    max_price: Optional[Decimal],
    conditions: list[Condition],
    bidding_only: bool,
    sort: SortOrder,
) -> ListingQuery:
    try:
        return ListingQuery(
            category=category,
            search=search,
            min_price=min_price,
            max_price=max_price,
            conditions=set(conditions),
            bidding_only=bidding_only,
            sort=sort,
        )
    except ValueError:
        raise ValidationFailed("Invalid filter", f"Unknown category '{category}'.")


async def _browse(backend: MarketBackend, query: ListingQuery, viewer_id: Optional[str]) -> dict:
    listings = await _load_all_listings(backend)
    matched = apply_query(listings, query)
    low, high = price_bounds(listings)
    return {
        "category": query.category.value if isinstance(query.category, Category) else query.category,
        "price_bounds": {"min": low, "max": high},
        "total": len(matched),
        "listings": [_listing_card(listing, viewer_id) for listing in matched],
    }


def _category_options() -> list[dict]:
    return [{"value": ALL_CATEGORIES, "label": "All Categories"}] + [
        {"value": c.value, "label": c.label} for c in Category
    ]


def _duration_options() -> dict:
    return {
        "presets": [
            {"value": p.value, "label": p.label, "seconds": p.seconds} for p in DurationPreset
        ],
        "units": [
            {"value": u.value, "label": UNIT_LABELS[u].capitalize() + "s", "seconds": u.seconds}
            for u in DurationUnit
        ],
        "default": get_settings().default_bid_duration,
    }


# ============================================================
# Authentication Endpoints
# ============================================================

@app.post("/api/auth/signup")
async def sign_up(
    request: SignUpRequest,
    session: SessionContext = Depends(get_session),
):
    """Create an account and sign in."""
    form = SignUpForm(**request.model_dump())
    try:
        auth = await session.sign_up(form)
    except RemoteCallError as e:
        raise e.retitled("Registration failed")
    return {
        "access_token": auth.access_token,
        "user": auth.user.model_dump(),
        "notice": {
            "title": "Account created",
            "description": "Your account has been created successfully. You are now signed in.",
            "variant": "default",
        },
    }


@app.post("/api/auth/login")
async def login(
    request: LoginRequest,
    session: SessionContext = Depends(get_session),
):
    try:
        auth = await session.sign_in(request.email, request.password)
    except RemoteCallError as e:
        raise e.retitled("Login failed")
    return {"access_token": auth.access_token, "user": auth.user.model_dump()}


@app.post("/api/auth/logout")
async def logout(
    viewer: UserInfo = Depends(require_viewer),
    session: SessionContext = Depends(get_session),
):
    """End the current session."""
    await session.sign_out()
    return {"success": True}


@app.get("/api/auth/me")
async def me(viewer: UserInfo = Depends(require_viewer)):
    return {"user": viewer.model_dump(), "authenticated": True}


# ============================================================
# Listing Endpoints
# ============================================================

@app.get("/api/listings")
async def list_listings(
    category: str = ALL_CATEGORIES,
    search: str = "",
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    condition: list[Condition] = Query(default=[]),
    bidding_only: bool = False,
    sort: SortOrder = SortOrder.NEWEST,
    backend: MarketBackend = Depends(get_backend),
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
):
    """Browse listings with filters and sort."""
    query = _build_query(category, search, min_price, max_price, condition, bidding_only, sort)
    return await _browse(backend, query, _viewer_id(viewer))


@app.post("/api/listings", status_code=201)
async def post_listing(
    title: str = Form(default=""),
    description: str = Form(default=""),
    price: Optional[str] = Form(default=None),
    category: Optional[str] = Form(default=None),
    condition: Optional[str] = Form(default=None),
    contact_info: str = Form(default=""),
    allows_bidding: bool = Form(default=False),
    bidding_duration: str = Form(default="3d"),
    custom_duration_value: Optional[int] = Form(default=None),
    custom_duration_unit: DurationUnit = Form(default=DurationUnit.DAYS),
    image: Optional[UploadFile] = File(default=None),
    viewer: UserInfo = Depends(require_viewer),
    backend: MarketBackend = Depends(acting_backend),
):
    """Create a listing from the Sell form, with an optional image."""
    custom = None
    if custom_duration_value is not None:
        custom = CustomDuration(value=custom_duration_value, unit=custom_duration_unit)

    form = ListingForm(
        title=title,
        description=description,
        price=price,
        category=category,
        condition=condition,
        contact_info=contact_info,
        allows_bidding=allows_bidding,
        bidding_duration=bidding_duration,
        custom_duration=custom,
    )

    upload = None
    if image is not None and image.filename:
        upload = ImageUpload(
            filename=image.filename,
            content=await image.read(),
            content_type=image.content_type or "application/octet-stream",
        )

    listing = await create_listing(backend, viewer.id, form, upload)
    return {
        "listing": listing.model_dump(mode="json"),
        "notice": {
            "title": "Listing created",
            "description": "Your item has been listed successfully!",
            "variant": "default",
        },
    }


@app.get("/api/listings/{listing_id}")
async def get_listing_detail(
    listing_id: int,
    backend: MarketBackend = Depends(get_backend),
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
):
    """Product detail as seen by the caller."""
    listing = await _load_listing(backend, listing_id)
    return build_listing_view(listing, _viewer_id(viewer)).model_dump(mode="json")


@app.post("/api/listings/{listing_id}/bids", status_code=201)
async def post_bid(
    listing_id: int,
    request: BidRequest,
    viewer: UserInfo = Depends(require_viewer),
    backend: MarketBackend = Depends(acting_backend),
):
    """Place a bid on a listing."""
    listing = await _load_listing(backend, listing_id)
    bid, updated = await place_bid(backend, listing, viewer.id, request.amount)
    return {
        "bid": bid.model_dump(mode="json"),
        "view": build_listing_view(updated, viewer.id).model_dump(mode="json"),
        "notice": {
            "title": "Bid placed successfully",
            "description": f"Your bid of ${bid.amount:.2f} has been placed!",
            "variant": "default",
        },
    }


@app.get("/api/listings/{listing_id}/bids")
async def list_bids(
    listing_id: int,
    viewer: UserInfo = Depends(require_viewer),
    backend: MarketBackend = Depends(get_backend),
):
    """Bid history, newest first. Signed-in viewers only."""
    entries = await get_bid_history(backend, listing_id, viewer.id)
    return {"bids": [entry.model_dump(mode="json") for entry in entries]}


@app.get("/api/listings/{listing_id}/countdown")
async def stream_countdown(
    listing_id: int,
    backend: MarketBackend = Depends(get_backend),
):
    """Server-Sent Events: one tick per interval until bidding closes.

    The stream ends after the first closed (or disabled) tick. A client
    disconnect closes the generator, which cancels the timer.
    """
    listing = await _load_listing(backend, listing_id)

    async def events():
        async with Countdown(listing) as countdown:
            async for tick in countdown:
                yield f"event: tick\ndata: {json.dumps(tick.to_dict())}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/api/durations")
async def list_durations():
    """Bidding duration choices for the Sell form."""
    return _duration_options()


@app.get("/files/{path:path}")
async def get_file(path: str, backend: MarketBackend = Depends(get_backend)):
    """Serve blobs for backends without their own public storage URLs."""
    blob = await backend.read_blob(path)
    if blob is None:
        raise NotFound("File not found", path)
    content, content_type = blob
    return Response(content=content, media_type=content_type)


# ============================================================
# Page Views
# ============================================================

@app.get("/")
async def home(
    backend: MarketBackend = Depends(get_backend),
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
):
    """Landing page: categories and the newest listings."""
    listings = await _load_all_listings(backend)
    return {
        "name": "Quad Market",
        "version": __version__,
        "categories": _category_options()[1:],
        "recent": [_listing_card(listing, _viewer_id(viewer)) for listing in listings[:4]],
    }


@app.get("/buy")
async def buy_page(
    category: str = ALL_CATEGORIES,
    backend: MarketBackend = Depends(get_backend),
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
):
    """Buy page seeded from the ``category`` query parameter."""
    query = _build_query(category, "", None, None, [], False, SortOrder.NEWEST)
    page = await _browse(backend, query, _viewer_id(viewer))
    page["categories"] = _category_options()
    page["conditions"] = [{"value": c.value, "label": c.label} for c in Condition]
    page["sort_options"] = [s.value for s in SortOrder]
    return page


@app.get("/sell")
async def sell_page(viewer: UserInfo = Depends(require_viewer)):
    """Sell form options. Signed-in viewers only."""
    return {
        "seller_id": viewer.id,
        "categories": _category_options()[1:],
        "conditions": [{"value": c.value, "label": c.label} for c in Condition],
        "durations": _duration_options(),
        "max_image_size_mb": get_settings().max_image_size_mb,
    }


@app.get("/login")
@app.get("/signup")
async def auth_page(
    request: Request,
    next_path: str = Query("/", alias="next", description="Page to return to once signed in"),
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
):
    """Signed-in viewers go back where they came from; everyone else gets the form."""
    if viewer is not None:
        # Only local paths, never another host
        target = next_path if next_path.startswith("/") and not next_path.startswith(("//", "/\\")) else "/"
        return RedirectResponse(target, status_code=303)
    return {"page": request.url.path.strip("/"), "authenticated": False, "next": next_path}


@app.get("/product/{listing_id}")
async def product_page(
    listing_id: int,
    backend: MarketBackend = Depends(get_backend),
    viewer: Optional[UserInfo] = Depends(get_current_viewer),
):
    """Product detail page, with bid history for signed-in viewers."""
    listing = await _load_listing(backend, listing_id)
    view = build_listing_view(listing, _viewer_id(viewer)).model_dump(mode="json")
    if viewer is not None:
        entries = await get_bid_history(backend, listing_id, viewer.id)
        view["bids"] = [entry.model_dump(mode="json") for entry in entries]
    return view
