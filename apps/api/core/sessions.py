"""Session records and their storage backends.

Only the SessionAuthenticator (core/auth.py) creates, renews or deletes
sessions; everything else sees a user id.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from apps.api.core.errors import SessionStoreUnavailable


@dataclass(frozen=True)
class Session:
    token: str
    user_id: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps(
            {
                "token": self.token,
                "user_id": self.user_id,
                "issued_at": self.issued_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Session":
        data = json.loads(raw)
        return cls(
            token=data["token"],
            user_id=data["user_id"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class SessionStore(ABC):
    @abstractmethod
    async def get(self, token: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def put(self, session: Session) -> None:
        pass

    @abstractmethod
    async def delete(self, token: str) -> None:
        """Remove a session; unknown tokens are ignored."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Process-local sessions (development and tests)."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    async def get(self, token: str) -> Optional[Session]:
        return self._sessions.get(token)

    async def put(self, session: Session) -> None:
        self._sessions[session.token] = session

    async def delete(self, token: str) -> None:
        self._sessions.pop(token, None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Sessions shared across API workers via Redis.

    Keys carry a Redis TTL matching the session expiry so abandoned
    sessions are reclaimed; the authenticator still checks ``expires_at``
    itself on every validation.
    """

    KEY_PREFIX = "session:"

    def __init__(self, client: aioredis.Redis, clock=None):
        self.client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisSessionStore":
        return cls(aioredis.from_url(url, socket_connect_timeout=2), **kwargs)

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    async def get(self, token: str) -> Optional[Session]:
        try:
            raw = await self.client.get(self._key(token))
        except (RedisError, OSError) as e:
            raise SessionStoreUnavailable() from e
        return Session.from_json(raw) if raw else None

    async def put(self, session: Session) -> None:
        ttl = max(1, int((session.expires_at - self._clock()).total_seconds()) + 1)
        try:
            await self.client.set(self._key(session.token), session.to_json(), ex=ttl)
        except (RedisError, OSError) as e:
            raise SessionStoreUnavailable() from e

    async def delete(self, token: str) -> None:
        try:
            await self.client.delete(self._key(token))
        except (RedisError, OSError) as e:
            raise SessionStoreUnavailable() from e

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self.client.aclose()
