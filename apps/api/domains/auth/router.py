"""Auth router: session login and logout.

The session token travels in an HTTP-only cookie; the body only reports
who logged in and when the session ends.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Response

from apps.api.core.auth import SessionAuthenticator, get_authenticator, get_session_token
from apps.api.core.config import Settings, get_app_settings
from apps.api.domains.auth.schemas import LoginRequest, LoginResponse, LogoutResponse

router = APIRouter(tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    response: Response,
    authenticator: SessionAuthenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_app_settings),
):
    session = await authenticator.login(credentials.username, credentials.password)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.token,
        max_age=int(authenticator.ttl.total_seconds()),
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return LoginResponse(user_id=session.user_id, expires_at=session.expires_at)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    authenticator: SessionAuthenticator = Depends(get_authenticator),
    settings: Settings = Depends(get_app_settings),
):
    """Revoke the current session. Succeeds even without a session."""
    await authenticator.logout(token)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return LogoutResponse()
