"""Session authentication.

Every protected request carries an opaque session token (cookie or
``Authorization: Bearer``). The SessionAuthenticator is the only
component that issues, validates, renews and revokes tokens; endpoint
handlers receive a user id and nothing else.

Expiry is fixed by default. Sliding renewal is opt-in through
SESSION_SLIDING and, when enabled, pushes ``expires_at`` forward by the
full TTL on every successful validation.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from fastapi import Depends, Header, Request

from apps.api.core.config import Settings, get_app_settings
from apps.api.core.credentials import CredentialVerifier
from apps.api.core.errors import InvalidCredentials, SessionExpired, SessionInvalid
from apps.api.core.sessions import Session, SessionStore

logger = structlog.get_logger()

TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionAuthenticator:
    def __init__(
        self,
        sessions: SessionStore,
        verifier: CredentialVerifier,
        ttl_seconds: int = 3600,
        sliding: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.sessions = sessions
        self.verifier = verifier
        self.ttl = timedelta(seconds=ttl_seconds)
        self.sliding = sliding
        self._clock = clock

    async def login(self, username: str, password: str) -> Session:
        """Verify credentials and issue a fresh session.

        Raises:
            InvalidCredentials: unknown user or wrong password.
        """
        user_id = await self.verifier.verify(username, password)
        if not user_id:
            logger.info("login_failed", username=username)
            raise InvalidCredentials()

        now = self._clock()
        session = Session(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            user_id=user_id,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        await self.sessions.put(session)
        logger.info("session_issued", user_id=user_id)
        return session

    async def validate(self, token: Optional[str]) -> str:
        """Return the user id owning ``token``.

        Raises:
            SessionInvalid: token missing or never issued (or revoked).
            SessionExpired: token issued but past its expiry.
            SessionStoreUnavailable: session backend unreachable.
        """
        if not token:
            raise SessionInvalid("Authentication required")

        session = await self.sessions.get(token)
        if session is None:
            raise SessionInvalid()

        now = self._clock()
        if session.is_expired(now):
            await self.sessions.delete(token)
            logger.info("session_expired", user_id=session.user_id)
            raise SessionExpired()

        if self.sliding:
            renewed = Session(
                token=session.token,
                user_id=session.user_id,
                issued_at=session.issued_at,
                expires_at=now + self.ttl,
            )
            await self.sessions.put(renewed)

        return session.user_id

    async def logout(self, token: Optional[str]) -> None:
        """Revoke ``token``. Revoking an unknown token is a no-op."""
        if token:
            await self.sessions.delete(token)


def get_authenticator(request: Request) -> SessionAuthenticator:
    return request.app.state.services.authenticator


async def get_session_token(
    request: Request,
    authorization: str = Header(default=""),
    settings: Settings = Depends(get_app_settings),
) -> Optional[str]:
    """Extract the session token from the cookie, falling back to a Bearer header."""
    session_cookie = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if session_cookie:
        return session_cookie
    if authorization.startswith("Bearer "):
        token = authorization[7:].strip()
        return token or None
    return None
