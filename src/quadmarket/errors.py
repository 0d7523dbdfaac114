"""Error taxonomy for Quad Market.

Every failure that reaches a user is rendered as a ``Notice``: the short
title/description pair shown as a transient notification. Domain code raises
these exceptions; the API layer turns them into responses.
"""

from typing import Literal

from pydantic import BaseModel


class Notice(BaseModel):
    """User-visible notification."""
    title: str
    description: str = ""
    variant: Literal["default", "destructive"] = "destructive"


class MarketError(Exception):
    """Base class for errors surfaced to the user."""

    status_code = 500

    def __init__(self, title: str, description: str = ""):
        super().__init__(f"{title}: {description}" if description else title)
        self.title = title
        self.description = description

    @property
    def notice(self) -> Notice:
        return Notice(title=self.title, description=self.description)


class ValidationFailed(MarketError, ValueError):
    """Malformed or out-of-range input, rejected before any remote call."""

    status_code = 400


class BidRejected(ValidationFailed):
    """Bid amount or bidding window check failed."""


class InvalidDuration(ValidationFailed):
    """Bidding duration selection could not be resolved."""


class AuthRequired(MarketError):
    status_code = 401

    def __init__(self, description: str = "Please sign in to continue."):
        super().__init__("Authentication required", description)


class NotFound(MarketError):
    status_code = 404


class RemoteCallError(MarketError):
    """Failure reported by the backend; message kept near-verbatim."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None, title: str = "Request failed"):
        super().__init__(title, message)
        self.status = status

    def retitled(self, title: str) -> "RemoteCallError":
        """Same failure, reported under the caller's action title."""
        return RemoteCallError(self.description, status=self.status, title=title)
