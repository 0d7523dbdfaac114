"""Configuration settings for Quad Market.

## Backend modes

- http: hosted backend (REST tables, token auth, blob storage) at BACKEND_URL
- mongo: direct MongoDB connection, blobs kept in GridFS
- memory: in-process store for local runs and tests

Only connection credentials and a handful of UI defaults live here; there is
no other on-disk state.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Quad Market settings from environment."""

    # Backend selection
    backend_mode: Literal["http", "mongo", "memory"] = "http"

    # Hosted backend (http mode)
    backend_url: str = "http://localhost:54321"
    backend_api_key: str = ""
    storage_bucket: str = "listings"

    # MongoDB (mongo mode)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "quadmarket"

    # Base URL used for blob links served by this API (mongo/memory modes)
    public_base_url: str = "http://localhost:8000"

    # Listing settings
    max_image_size_mb: int = 5
    default_bid_duration: str = "3d"

    # Countdown refresh, seconds
    countdown_interval_seconds: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
