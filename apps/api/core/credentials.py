"""Credential verification backends for /login.

A verifier answers one question: do these credentials belong to a user,
and if so which user id. Session issuance lives in core/auth.py.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import bcrypt
from supabase import AuthError, Client

logger = logging.getLogger(__name__)


class CredentialVerifier(ABC):
    @abstractmethod
    async def verify(self, username: str, password: str) -> Optional[str]:
        """Return the user id for valid credentials, otherwise None."""


class PasswordCredentialVerifier(CredentialVerifier):
    """Checks passwords against bcrypt hashes configured in AUTH_USERS.

    The username doubles as the user id.
    """

    def __init__(self, users: dict[str, str]):
        self._users = {name: hashed.encode("utf-8") for name, hashed in users.items()}

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    async def verify(self, username: str, password: str) -> Optional[str]:
        hashed = self._users.get(username)
        if hashed is None or not password:
            return None
        try:
            ok = await asyncio.to_thread(bcrypt.checkpw, password.encode("utf-8"), hashed)
        except ValueError:
            logger.warning(f"Malformed password hash configured for user '{username}'")
            return None
        return username if ok else None


class SupabaseCredentialVerifier(CredentialVerifier):
    """Delegates to Supabase Auth email/password sign-in.

    Only the Supabase user id is kept; the Supabase session is discarded
    since the API issues its own session tokens.
    """

    def __init__(self, client: Client):
        self.client = client

    async def verify(self, username: str, password: str) -> Optional[str]:
        if not username or not password:
            return None
        try:
            response = await asyncio.to_thread(
                self.client.auth.sign_in_with_password,
                {"email": username, "password": password},
            )
        except AuthError as e:
            logger.info(f"Supabase sign-in rejected for '{username}': {e}")
            return None
        user = getattr(response, "user", None)
        return str(user.id) if user is not None else None
