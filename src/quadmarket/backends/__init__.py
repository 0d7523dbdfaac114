"""Backends for the remote table store, auth service and blob storage."""

from typing import Optional

from ..config import Settings, get_settings
from .base import MarketBackend
from .http import HTTPMarketBackend
from .memory import MemoryMarketBackend


def create_backend(settings: Optional[Settings] = None) -> MarketBackend:
    """Create the appropriate backend based on configuration."""
    settings = settings or get_settings()

    if settings.backend_mode == "http":
        return HTTPMarketBackend(
            base_url=settings.backend_url,
            api_key=settings.backend_api_key,
            bucket=settings.storage_bucket,
        )
    if settings.backend_mode == "mongo":
        # Imported lazily so http/memory modes don't open a motor client
        from .mongo import MongoMarketBackend

        return MongoMarketBackend(
            uri=settings.mongodb_uri,
            database=settings.mongodb_database,
            public_base_url=settings.public_base_url,
        )
    return MemoryMarketBackend(public_base_url=settings.public_base_url)


__all__ = [
    "MarketBackend",
    "HTTPMarketBackend",
    "MemoryMarketBackend",
    "create_backend",
]
