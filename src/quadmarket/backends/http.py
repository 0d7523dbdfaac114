"""HTTP backend for a hosted database/auth/storage service."""

from typing import Any, Optional

import httpx
import structlog

from ..errors import RemoteCallError
from ..models import AuthSession, UserInfo
from .base import MarketBackend

logger = structlog.get_logger()


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return response.text or response.reason_phrase or f"HTTP {response.status_code}"


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _user_from_payload(data: dict[str, Any]) -> UserInfo:
    return UserInfo(
        id=str(data["id"]),
        email=data.get("email") or "",
        email_verified=bool(data.get("email_confirmed_at")),
        metadata=data.get("user_metadata") or {},
    )


class HTTPMarketBackend(MarketBackend):
    """Client for REST tables, token auth and object storage.

    Tables follow the ``/rest/v1/{table}`` convention with ``col=eq.value``
    filters; auth lives under ``/auth/v1`` and storage under ``/storage/v1``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str = "listings",
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.access_token = access_token
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={"apikey": api_key},
            timeout=30.0,
        )

    def for_session(self, access_token: Optional[str]) -> "HTTPMarketBackend":
        if access_token == self.access_token:
            return self
        return HTTPMarketBackend(
            self.base_url,
            self.api_key,
            bucket=self.bucket,
            access_token=access_token,
            client=self.client,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            await self.client.aclose()

    def _headers(self, token: Optional[str] = None, **extra: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {token or self.access_token or self.api_key}"}
        headers.update(extra)
        return headers

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("backend_unreachable", method=method, url=url, error=str(e))
            raise RemoteCallError(str(e) or "Backend unreachable")

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "backend_request_failed",
                method=method,
                url=url,
                status=response.status_code,
                error=message,
            )
            raise RemoteCallError(message, status=response.status_code)
        return response

    # ============================================================
    # Table Operations
    # ============================================================

    async def select_rows(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"select": "*"}
        for column, value in (filters or {}).items():
            op = "is" if value is None else "eq"
            params[column] = f"{op}.{_filter_value(value)}"
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"

        response = await self._request(
            "GET", f"/rest/v1/{table}", params=params, headers=self._headers()
        )
        return response.json()

    async def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers=self._headers(Prefer="return=representation"),
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) else rows

    async def update_row(
        self,
        table: str,
        row_id: Any,
        partial: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params={"id": f"eq.{row_id}"},
            json=partial,
            headers=self._headers(Prefer="return=representation"),
        )
        rows = response.json()
        return rows[0] if rows else None

    # ============================================================
    # Auth Operations
    # ============================================================

    def _session_from_payload(self, data: dict[str, Any]) -> AuthSession:
        token = data.get("access_token")
        if not token:
            # Account exists but the service wants the address confirmed first
            raise RemoteCallError(
                "Check your inbox to confirm your email address, then sign in.",
                title="Confirm your email",
            )
        return AuthSession(access_token=token, user=_user_from_payload(data["user"]))

    async def sign_up(
        self,
        email: str,
        password: str,
        profile: Optional[dict[str, Any]] = None,
    ) -> AuthSession:
        response = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": profile or {}},
            headers=self._headers(self.api_key),
        )
        return self._session_from_payload(response.json())

    async def sign_in(self, email: str, password: str) -> AuthSession:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(self.api_key),
        )
        return self._session_from_payload(response.json())

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/auth/v1/logout", headers=self._headers(access_token))

    async def get_user(self, access_token: str) -> Optional[UserInfo]:
        try:
            response = await self._request(
                "GET", "/auth/v1/user", headers=self._headers(access_token)
            )
        except RemoteCallError as e:
            if e.status in (401, 403):
                return None
            raise
        return _user_from_payload(response.json())

    # ============================================================
    # Blob Storage Operations
    # ============================================================

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        await self._request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{path}",
            content=content,
            headers=self._headers(**{"Content-Type": content_type}),
        )

    def get_public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"
