"""Cookie-backed session handling for the dashboard.

Sessions live in the signed Starlette session cookie, so the process holds no
session table and requests share no mutable state.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, MutableMapping, Optional

from .identity import IdentitySession
from .models import Session

SESSION_KEY = "auth"
OAUTH_FLOW_KEY = "oauth_flow"


class SessionManager:
    """Issue, resolve and destroy dashboard sessions."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(hours=8),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def now(self) -> datetime:
        return self._clock()

    def new_session(
        self,
        *,
        user_id: str,
        email: str,
        name: Optional[str] = None,
        provider: str = "credentials",
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> Session:
        return Session(
            user_id=user_id,
            email=email,
            name=name,
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self.now() + self._ttl,
        )

    def from_identity(self, identity: IdentitySession, *, provider: str) -> Session:
        return self.new_session(
            user_id=identity.user_id,
            email=identity.email,
            name=identity.name,
            provider=provider,
            access_token=identity.access_token,
            refresh_token=identity.refresh_token,
        )

    def create(self, storage: MutableMapping[str, Any], session: Session) -> None:
        storage.pop(SESSION_KEY, None)
        storage[SESSION_KEY] = _serialize(session)

    def resolve(self, storage: MutableMapping[str, Any]) -> Optional[Session]:
        raw = storage.get(SESSION_KEY)
        if not raw:
            return None
        session = _deserialize(raw)
        if session is None or session.is_expired(self.now()):
            storage.pop(SESSION_KEY, None)
            return None
        return session

    def destroy(self, storage: MutableMapping[str, Any]) -> None:
        storage.pop(SESSION_KEY, None)
        storage.pop(OAUTH_FLOW_KEY, None)


def _serialize(session: Session) -> Dict[str, Any]:
    return {
        "user_id": session.user_id,
        "email": session.email,
        "name": session.name,
        "provider": session.provider,
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "expires_at": session.expires_at.isoformat(),
    }


def _deserialize(raw: Any) -> Optional[Session]:
    if not isinstance(raw, dict):
        return None
    try:
        expires_at = datetime.fromisoformat(str(raw["expires_at"]))
        user_id = str(raw["user_id"])
        email = str(raw["email"])
    except (KeyError, TypeError, ValueError):
        return None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return Session(
        user_id=user_id,
        email=email,
        name=raw.get("name"),
        provider=str(raw.get("provider") or "credentials"),
        access_token=raw.get("access_token"),
        refresh_token=raw.get("refresh_token"),
        expires_at=expires_at,
    )


__all__ = ["OAUTH_FLOW_KEY", "SESSION_KEY", "SessionManager"]
