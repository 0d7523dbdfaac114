"""MongoDB backend: tables, accounts and GridFS blobs in one database."""

from typing import Any, Optional

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorDatabase,
    AsyncIOMotorGridFSBucket,
)
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
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

USERS_COLLECTION = "users"
SESSIONS_COLLECTION = "sessions"
COUNTERS_COLLECTION = "counters"
BLOB_BUCKET = "uploads"


def _strip(doc: dict) -> dict:
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


class MongoMarketBackend(MarketBackend):
    """Direct MongoDB connection via motor."""

    def __init__(self, uri: str, database: str, public_base_url: str = "http://localhost:8000"):
        self.public_base_url = public_base_url.rstrip("/")
        self._client = AsyncIOMotorClient(uri)
        self._db: AsyncIOMotorDatabase = self._client[database]
        self._bucket = AsyncIOMotorGridFSBucket(self._db, bucket_name=BLOB_BUCKET)
        logger.info("mongodb_connected", database=database)

    async def close(self) -> None:
        self._client.close()
        logger.info("mongodb_disconnected")

    async def init(self) -> None:
        """Create indexes for all collections."""
        try:
            await self._db["listings"].create_index([("id", 1)], unique=True)
            await self._db["listings"].create_index([("created_at", -1)])
            await self._db["bids"].create_index([("id", 1)], unique=True)
            await self._db["bids"].create_index([("listing_id", 1), ("created_at", -1)])
            await self._db[USERS_COLLECTION].create_index([("email", 1)], unique=True)
            await self._db[SESSIONS_COLLECTION].create_index([("token", 1)], unique=True)
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        logger.info("indexes_created")

    async def _next_id(self, table: str) -> int:
        doc = await self._db[COUNTERS_COLLECTION].find_one_and_update(
            {"_id": table},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return doc["seq"]

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
        try:
            cursor = self._db[table].find(dict(filters or {}))
            if order_by:
                cursor = cursor.sort(order_by, -1 if descending else 1)
            return [_strip(doc) async for doc in cursor]
        except PyMongoError as e:
            raise RemoteCallError(str(e))

    async def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        doc = dict(row)
        try:
            if doc.get("id") is None:
                doc["id"] = await self._next_id(table)
            doc.setdefault("created_at", utcnow().isoformat())
            await self._db[table].insert_one(doc)
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        return _strip(doc)

    async def update_row(
        self,
        table: str,
        row_id: Any,
        partial: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        try:
            doc = await self._db[table].find_one_and_update(
                {"id": row_id},
                {"$set": partial},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        return _strip(doc) if doc else None

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
        if len(password) < MIN_PASSWORD_LENGTH:
            raise RemoteCallError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters", status=422
            )
        try:
            account = {
                "id": f"user-{await self._next_id(USERS_COLLECTION):06d}",
                "email": email,
                "password": hash_password(password),
                "metadata": dict(profile or {}),
                "created_at": utcnow(),
            }
            await self._db[USERS_COLLECTION].insert_one(account)
        except DuplicateKeyError:
            raise RemoteCallError("User already registered", status=422)
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        logger.info("account_created", user_id=account["id"])
        return await self._open_session(account)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            account = await self._db[USERS_COLLECTION].find_one({"email": email.strip().lower()})
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        if not account or not verify_password(password, account["password"]):
            raise RemoteCallError("Invalid login credentials", status=400)
        return await self._open_session(account)

    async def sign_out(self, access_token: str) -> None:
        try:
            await self._db[SESSIONS_COLLECTION].delete_one({"token": access_token})
        except PyMongoError as e:
            raise RemoteCallError(str(e))

    async def get_user(self, access_token: str) -> Optional[UserInfo]:
        try:
            session = await self._db[SESSIONS_COLLECTION].find_one({"token": access_token})
            if not session:
                return None
            account = await self._db[USERS_COLLECTION].find_one({"id": session["user_id"]})
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        return self._user_info(account) if account else None

    async def _open_session(self, account: dict[str, Any]) -> AuthSession:
        token = new_access_token(account["id"])
        try:
            await self._db[SESSIONS_COLLECTION].insert_one(
                {"token": token, "user_id": account["id"], "created_at": utcnow()}
            )
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        return AuthSession(access_token=token, user=self._user_info(account))

    @staticmethod
    def _user_info(account: dict[str, Any]) -> UserInfo:
        return UserInfo(
            id=account["id"],
            email=account["email"],
            email_verified=True,
            metadata=account.get("metadata") or {},
        )

    # ============================================================
    # Blob Storage Operations
    # ============================================================

    async def upload(self, path: str, content: bytes, content_type: str) -> None:
        try:
            await self._bucket.upload_from_stream(
                path, content, metadata={"contentType": content_type}
            )
        except PyMongoError as e:
            raise RemoteCallError(str(e))

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/files/{path}"

    async def read_blob(self, path: str) -> Optional[tuple[bytes, str]]:
        try:
            meta = await self._db[f"{BLOB_BUCKET}.files"].find_one({"filename": path})
            if not meta:
                return None
            stream = await self._bucket.open_download_stream(meta["_id"])
            data = await stream.read()
        except PyMongoError as e:
            raise RemoteCallError(str(e))
        content_type = (meta.get("metadata") or {}).get("contentType") or "application/octet-stream"
        return data, content_type
