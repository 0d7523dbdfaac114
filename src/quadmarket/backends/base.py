"""Abstract backend interface for Quad Market.

The marketplace owns no data engine: listings and bids live in a hosted
table store, identities in an auth service, images in a blob store. A
backend bundles the three request/response contracts.
"""

import hashlib
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

import bcrypt

from ..models import AuthSession, UserInfo


class MarketBackend(ABC):
    """Remote table store, auth service and blob storage.

    Implementations talk to a hosted REST backend, to MongoDB directly, or
    keep everything in process memory.
    """

    # ============================================================
    # Table Operations
    # ============================================================

    @abstractmethod
    async def select_rows(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> list[dict[str, Any]]:
        """Rows matching all equality ``filters``, optionally ordered."""
        ...

    @abstractmethod
    async def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored (with its assigned id)."""
        ...

    @abstractmethod
    async def update_row(
        self,
        table: str,
        row_id: Any,
        partial: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        """Apply ``partial`` to the row with ``row_id``; None if missing."""
        ...

    # ============================================================
    # Auth Operations
    # ============================================================

    @abstractmethod
    async def sign_up(
        self,
        email: str,
        password: str,
        profile: Optional[dict[str, Any]] = None,
    ) -> AuthSession:
        """Create an account and return its first session."""
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Exchange credentials for a session."""
        ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        """Invalidate a session."""
        ...

    @abstractmethod
    async def get_user(self, access_token: str) -> Optional[UserInfo]:
        """Identity behind a session token, or None if it is not valid."""
        ...

    # ============================================================
    # Blob Storage Operations
    # ============================================================

    @abstractmethod
    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        """Store a file under ``path``."""
        ...

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        """Public URL for a stored path."""
        ...

    async def read_blob(self, path: str) -> Optional[tuple[bytes, str]]:
        """Content and type of a stored file, for backends this API serves.

        Hosted storage serves its own public URLs, so the default is None.
        """
        return None

    def for_session(self, access_token: Optional[str]) -> "MarketBackend":
        """Backend acting on behalf of a signed-in user.

        Only backends that enforce row-level access per caller need a
        distinct instance; the rest return themselves.
        """
        return self

    async def init(self) -> None:
        """Prepare the store (indexes, collections). No-op by default."""
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


# ============================================================
# Credential helpers shared by self-hosted backends
# ============================================================

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 6


def _password_bytes(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), stored.encode("utf-8"))
    except ValueError:
        return False


def new_access_token(user_id: str) -> str:
    return hashlib.sha256(f"{user_id}-{uuid.uuid4().hex}-{time.time()}".encode()).hexdigest()
