"""Viewer session context.

The current viewer is an explicit object handed to whatever needs an
identity, rather than ambient global state. Its lifecycle:

1. ``establish()`` when the application starts (restoring a saved token
   if there is one),
2. ``sign_in()`` / ``sign_up()`` replace it,
3. ``sign_out()`` tears it down.

Every transition is pushed to subscribers.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from .backends.base import MarketBackend
from .errors import ValidationFailed
from .models import AuthSession, UserInfo

logger = structlog.get_logger()

SessionListener = Callable[[Optional[AuthSession]], None]


@dataclass
class SignUpForm:
    full_name: str
    email: str
    password: str
    confirm_password: str
    agree_terms: bool = False


def validate_sign_up(form: SignUpForm) -> None:
    """Reject a sign-up form before anything is sent to the auth service."""
    if not form.full_name.strip():
        raise ValidationFailed("Missing information", "Please enter your full name.")
    if form.password != form.confirm_password:
        raise ValidationFailed("Passwords don't match", "Please make sure both passwords match.")
    if not form.agree_terms:
        raise ValidationFailed("Terms agreement required", "You must agree to the Terms of Service.")
    if "@" not in form.email:
        raise ValidationFailed("Invalid email", "Please enter a valid email address.")


class SessionContext:
    """Current session plus change notifications."""

    def __init__(self, backend: MarketBackend):
        self.backend = backend
        self._session: Optional[AuthSession] = None
        self._listeners: list[SessionListener] = []

    @property
    def current(self) -> Optional[AuthSession]:
        return self._session

    @property
    def user(self) -> Optional[UserInfo]:
        return self._session.user if self._session else None

    @property
    def viewer_id(self) -> Optional[str]:
        return self._session.user.id if self._session else None

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register for session changes. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, session: Optional[AuthSession]) -> None:
        self._session = session
        for listener in list(self._listeners):
            listener(session)

    async def establish(self, access_token: Optional[str] = None) -> Optional[AuthSession]:
        """Initial session at startup; an unknown or expired token gives none."""
        session = None
        if access_token:
            user = await self.backend.get_user(access_token)
            if user is not None:
                session = AuthSession(access_token=access_token, user=user)
        logger.debug("session_established", signed_in=session is not None)
        self._set(session)
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        session = await self.backend.sign_in(email, password)
        logger.info("signed_in", user_id=session.user.id)
        self._set(session)
        return session

    async def sign_up(self, form: SignUpForm) -> AuthSession:
        validate_sign_up(form)
        session = await self.backend.sign_up(
            form.email, form.password, {"full_name": form.full_name.strip()}
        )
        logger.info("signed_up", user_id=session.user.id)
        self._set(session)
        return session

    async def sign_out(self) -> None:
        """End the session remotely, then locally."""
        session = self._session
        if session is None:
            return
        try:
            await self.backend.sign_out(session.access_token)
        finally:
            logger.info("signed_out", user_id=session.user.id)
            self._set(None)
