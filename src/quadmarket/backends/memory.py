"""In-process backend for local runs and tests.

Same contract as the hosted backend, nothing persisted. Rows are copied in
and out so callers never share state with the store.
"""

import copy
from collections import defaultdict
from typing import Any, Optional

import structlog

from ..errors import RemoteCallError
from ..models import AuthSession, UserInfo, utcnow
from .base import (
    MIN_PASSWORD_LENGTH,
    MarketBackend,
    hash_password,
    new_access_token,
    verify_password,
)

logger = structlog.get_logger()


def _sort_key(value: Any) -> tuple:
    # None sorts first ascending, last descending
    return (value is not None, value)


class MemoryMarketBackend(MarketBackend):
    """Dictionary-backed tables, accounts and blobs."""

    def __init__(self, public_base_url: str = "http://localhost:8000"):
        self.public_base_url = public_base_url.rstrip("/")
        self._tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._next_id: dict[str, int] = defaultdict(int)
        self._users: dict[str, dict[str, Any]] = {}  # email -> account
        self._sessions: dict[str, str] = {}  # token -> user id
        self._blobs: dict[str, tuple[bytes, str]] = {}

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
        rows = [
            r for r in self._tables[table]
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
        return copy.deepcopy(rows)

    async def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(row)
        if stored.get("id") is None:
            self._next_id[table] += 1
            stored["id"] = self._next_id[table]
        stored.setdefault("created_at", utcnow().isoformat())
        self._tables[table].append(stored)
        return copy.deepcopy(stored)

    async def update_row(
        self,
        table: str,
        row_id: Any,
        partial: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        for row in self._tables[table]:
            if str(row.get("id")) == str(row_id):
                row.update(copy.deepcopy(partial))
                return copy.deepcopy(row)
        return None

    # ============================================================
    # Auth Operations
    # ============================================================

    async def sign_up(
        self,
        email: str,
        password: str,
        profile: Optional[dict[str, Any]] = None,
    ) -> AuthSession:
        email = email.strip().lower()
        if email in self._users:
            raise RemoteCallError("User already registered", status=422)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise RemoteCallError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters", status=422
            )

        self._next_id["users"] += 1
        account = {
            "id": f"user-{self._next_id['users']:04d}",
            "email": email,
            "password": hash_password(password),
            "metadata": dict(profile or {}),
        }
        self._users[email] = account
        logger.info("account_created", user_id=account["id"])
        return self._open_session(account)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        account = self._users.get(email.strip().lower())
        if not account or not verify_password(password, account["password"]):
            raise RemoteCallError("Invalid login credentials", status=400)
        return self._open_session(account)

    async def sign_out(self, access_token: str) -> None:
        self._sessions.pop(access_token, None)

    async def get_user(self, access_token: str) -> Optional[UserInfo]:
        user_id = self._sessions.get(access_token)
        if user_id is None:
            return None
        for account in self._users.values():
            if account["id"] == user_id:
                return self._user_info(account)
        return None

    def _open_session(self, account: dict[str, Any]) -> AuthSession:
        token = new_access_token(account["id"])
        self._sessions[token] = account["id"]
        return AuthSession(access_token=token, user=self._user_info(account))

    @staticmethod
    def _user_info(account: dict[str, Any]) -> UserInfo:
        return UserInfo(
            id=account["id"],
            email=account["email"],
            email_verified=True,
            metadata=dict(account["metadata"]),
        )

    # ============================================================
    # Blob Storage Operations
    # ============================================================

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        if path in self._blobs:
            raise RemoteCallError("The resource already exists", status=409)
        self._blobs[path] = (bytes(content), content_type)

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/files/{path}"

    async def read_blob(self, path: str) -> Optional[tuple[bytes, str]]:
        return self._blobs.get(path)
