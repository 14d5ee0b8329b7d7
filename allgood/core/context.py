from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

Clock = Callable[[], float]


class SessionStore:
    """
    In-memory admin sessions keyed by a random hex id.

    Expiry is checked on access; nothing runs in the background.
    """

    def __init__(self, max_age_seconds: int, clock: Clock = time.time):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._sessions: Dict[str, float] = {}

    def create(self) -> str:
        self.purge_expired()
        session_id = secrets.token_hex(32)
        self._sessions[session_id] = self._clock()
        return session_id

    def is_valid(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        created = self._sessions.get(session_id)
        if created is None:
            return False
        if self._clock() - created > self.max_age_seconds:
            self._sessions.pop(session_id, None)
            return False
        return True

    def revoke(self, session_id: Optional[str]) -> None:
        if session_id:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, created in self._sessions.items() if now - created > self.max_age_seconds]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class TokenCache:
    """
    Single access token with an expiry.

    Two callers racing on a stale token both refetch; that is harmless
    because a refresh-token grant can be repeated.
    """

    def __init__(self, ttl_seconds: int, clock: Clock = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    def get(self, fetch: Callable[[], str]) -> str:
        if self._token and self._clock() < self._expires_at:
            return self._token
        token = fetch()
        self._token = token
        self._expires_at = self._clock() + self.ttl_seconds
        return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


@dataclass
class AppContext:
    """Process-wide mutable state, created once in the app lifespan."""

    sessions: SessionStore
    zoho_tokens: TokenCache
    started_at: float = field(default_factory=time.time)


def build_app_context(settings) -> AppContext:
    return AppContext(
        sessions=SessionStore(settings.ADMIN_SESSION_MAX_AGE_SECONDS),
        zoho_tokens=TokenCache(settings.ZOHO_TOKEN_TTL_SECONDS),
    )
