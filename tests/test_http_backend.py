import json

import httpx
import pytest

from quadmarket.backends.http import HTTPMarketBackend
from quadmarket.errors import RemoteCallError

BASE_URL = "http://backend.test"


class FakeService:
    """Records requests and replies from a queue of canned responses."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list = []

    def reply(self, status_code=200, json_body=None, exc=None):
        self.responses.append((status_code, json_body, exc))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body, exc = self.responses.pop(0)
        if exc is not None:
            raise exc("connection refused", request=request)
        return httpx.Response(status_code, json=body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
async def http_backend(service):
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(service))
    backend = HTTPMarketBackend(BASE_URL, "anon-key", bucket="listings", client=client)
    yield backend
    await client.aclose()


USER = {
    "id": "0c5e6a9e-1111-2222-3333-444455556666",
    "email": "sam@campus.edu",
    "email_confirmed_at": "2026-03-01T10:00:00Z",
    "user_metadata": {"full_name": "Sam Seller"},
}


# ============================================================
# Tables
# ============================================================

async def test_select_builds_filter_and_order_params(http_backend, service):
    service.reply(json_body=[{"id": 5, "title": "Lamp"}])

    rows = await http_backend.select_rows("listings", filters={"id": 5}, order_by="created_at")

    assert rows == [{"id": 5, "title": "Lamp"}]
    request = service.last
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/listings"
    assert request.url.params["select"] == "*"
    assert request.url.params["id"] == "eq.5"
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["Authorization"] == "Bearer anon-key"


async def test_select_null_and_bool_filters(http_backend, service):
    service.reply(json_body=[])

    await http_backend.select_rows(
        "listings", filters={"highest_bidder_id": None, "allows_bidding": True},
        order_by="price", descending=False,
    )

    params = service.last.url.params
    assert params["highest_bidder_id"] == "is.null"
    assert params["allows_bidding"] == "eq.true"
    assert params["order"] == "price.asc"


async def test_insert_asks_for_the_stored_row(http_backend, service):
    service.reply(201, json_body=[{"id": 9, "amount": 20.01}])

    row = await http_backend.insert_row("bids", {"amount": 20.01})

    assert row == {"id": 9, "amount": 20.01}
    assert service.last.method == "POST"
    assert service.last.headers["Prefer"] == "return=representation"
    assert json.loads(service.last.content) == {"amount": 20.01}


async def test_update_targets_one_row(http_backend, service):
    service.reply(json_body=[{"id": 7, "highest_bid": 30.0}])

    row = await http_backend.update_row("listings", 7, {"highest_bid": 30.0})

    assert row == {"id": 7, "highest_bid": 30.0}
    assert service.last.method == "PATCH"
    assert service.last.url.params["id"] == "eq.7"


async def test_update_of_missing_row_returns_none(http_backend, service):
    service.reply(json_body=[])
    assert await http_backend.update_row("listings", 404, {"title": "x"}) is None


async def test_error_response_keeps_backend_message(http_backend, service):
    service.reply(409, json_body={"message": "duplicate key value violates unique constraint", "code": "23505"})

    with pytest.raises(RemoteCallError) as exc_info:
        await http_backend.insert_row("bids", {"amount": 1})

    assert exc_info.value.status == 409
    assert exc_info.value.description == "duplicate key value violates unique constraint"


async def test_unreachable_backend_is_a_remote_error(http_backend, service):
    service.reply(exc=httpx.ConnectError)

    with pytest.raises(RemoteCallError) as exc_info:
        await http_backend.select_rows("listings")

    assert exc_info.value.status is None
    assert exc_info.value.description == "connection refused"


async def test_session_backend_sends_user_token(http_backend, service):
    service.reply(json_body=[])

    await http_backend.for_session("user-jwt").select_rows("bids")

    assert service.last.headers["Authorization"] == "Bearer user-jwt"
    assert http_backend.for_session(None) is http_backend


# ============================================================
# Auth
# ============================================================

async def test_sign_in_uses_password_grant(http_backend, service):
    service.reply(json_body={"access_token": "jwt-123", "user": USER})

    auth = await http_backend.sign_in("sam@campus.edu", "hunter22")

    assert auth.access_token == "jwt-123"
    assert auth.user.id == USER["id"]
    assert auth.user.email_verified is True
    assert auth.user.metadata == {"full_name": "Sam Seller"}
    assert service.last.url.path == "/auth/v1/token"
    assert service.last.url.params["grant_type"] == "password"


async def test_sign_in_failure_message(http_backend, service):
    service.reply(400, json_body={"error": "invalid_grant", "error_description": "Invalid login credentials"})

    with pytest.raises(RemoteCallError) as exc_info:
        await http_backend.sign_in("sam@campus.edu", "nope")

    assert exc_info.value.description == "Invalid login credentials"


async def test_sign_up_sends_profile_as_metadata(http_backend, service):
    service.reply(json_body={"access_token": "jwt-456", "user": {**USER, "email_confirmed_at": None}})

    auth = await http_backend.sign_up("sam@campus.edu", "hunter22", {"full_name": "Sam Seller"})

    body = json.loads(service.last.content)
    assert body["data"] == {"full_name": "Sam Seller"}
    assert service.last.url.path == "/auth/v1/signup"
    assert auth.user.email_verified is False


async def test_sign_up_pending_confirmation(http_backend, service):
    service.reply(json_body={"id": USER["id"], "email": USER["email"]})

    with pytest.raises(RemoteCallError) as exc_info:
        await http_backend.sign_up("sam@campus.edu", "hunter22", {})

    assert exc_info.value.title == "Confirm your email"


async def test_get_user_with_expired_token_is_none(http_backend, service):
    service.reply(401, json_body={"msg": "JWT expired"})
    assert await http_backend.get_user("old-jwt") is None


async def test_get_user_server_error_propagates(http_backend, service):
    service.reply(500, json_body={"message": "internal"})
    with pytest.raises(RemoteCallError):
        await http_backend.get_user("jwt")


async def test_sign_out_sends_the_session_token(http_backend, service):
    service.reply(204)

    await http_backend.sign_out("jwt-123")

    assert service.last.url.path == "/auth/v1/logout"
    assert service.last.headers["Authorization"] == "Bearer jwt-123"


# ============================================================
# Storage
# ============================================================

async def test_upload_and_public_url(http_backend, service):
    service.reply(json_body={"Key": "listings/u1/abc.png"})

    await http_backend.for_session("user-jwt").upload("u1/abc.png", b"png-bytes", "image/png")

    request = service.last
    assert request.url.path == "/storage/v1/object/listings/u1/abc.png"
    assert request.headers["Content-Type"] == "image/png"
    assert request.content == b"png-bytes"
    assert http_backend.get_public_url("u1/abc.png") == (
        "http://backend.test/storage/v1/object/public/listings/u1/abc.png"
    )
