"""Adapter for the hosted identity subsystem (Supabase Auth).

Every call builds its own short-lived auth client backed by an in-memory
storage object, so no tokens or PKCE verifiers are shared between requests.
State that has to survive a browser round trip (the OAuth code verifier) is
handed back to the caller as a plain mapping and passed in again later.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Protocol

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from .errors import IdentityError
from .models import OtpType

logger = logging.getLogger("invoicedesk.identity")


@dataclass(frozen=True)
class IdentitySession:
    """Session material returned by the identity subsystem."""

    user_id: str
    email: str
    expires_at: datetime
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class IdentityUser:
    id: str
    email: str
    identity_count: int = 1


@dataclass(frozen=True)
class OAuthRedirect:
    url: str
    flow_state: Dict[str, str] = field(default_factory=dict)


class IdentityProvider(Protocol):
    """Operations consumed from the identity subsystem."""

    async def verify_otp(self, token_hash: str, otp_type: OtpType) -> IdentitySession: ...

    async def sign_in_with_password(self, email: str, password: str) -> IdentitySession: ...

    async def sign_up(
        self, email: str, password: str, *, name: Optional[str] = None, redirect_to: Optional[str] = None
    ) -> IdentityUser: ...

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthRedirect: ...

    async def exchange_code_for_session(
        self, code: str, flow_state: Mapping[str, str]
    ) -> IdentitySession: ...

    async def reset_password_for_email(self, email: str, *, redirect_to: Optional[str] = None) -> None: ...

    async def update_user(self, access_token: str, refresh_token: str, *, password: str) -> None: ...

    async def sign_out(self, access_token: str, refresh_token: str) -> None: ...


class _RequestStorage:
    """Auth storage that lives only as long as a single identity call."""

    def __init__(self, items: Optional[Mapping[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(items or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._items)


def _expiry_from(session: Any) -> datetime:
    expires_at = getattr(session, "expires_at", None)
    if expires_at:
        return datetime.fromtimestamp(int(expires_at), tz=timezone.utc)
    expires_in = getattr(session, "expires_in", None) or 3600
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


def _session_from_response(response: Any) -> IdentitySession:
    session = getattr(response, "session", None)
    user = getattr(response, "user", None) or getattr(session, "user", None)
    if session is None or user is None:
        raise IdentityError("Identity provider did not return a session")
    metadata = getattr(user, "user_metadata", None) or {}
    name = metadata.get("full_name") or metadata.get("name")
    return IdentitySession(
        user_id=str(user.id),
        email=str(user.email or ""),
        expires_at=_expiry_from(session),
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        name=str(name) if name else None,
    )


class SupabaseIdentity:
    """:class:`IdentityProvider` implemented with supabase-py's auth client."""

    def __init__(self, supabase_url: str, supabase_key: str) -> None:
        if not supabase_url or not supabase_key:
            raise ValueError("Supabase URL and key must both be provided")
        self._url = supabase_url
        self._key = supabase_key

    async def _client(self, storage: _RequestStorage) -> AsyncClient:
        options = AsyncClientOptions(
            storage=storage,
            auto_refresh_token=False,
            persist_session=False,
            flow_type="pkce",
        )
        return await acreate_client(self._url, self._key, options=options)

    async def _call(self, operation: str, coro) -> Any:
        try:
            return await coro
        except IdentityError:
            raise
        except Exception as exc:
            code = getattr(exc, "code", None)
            raise IdentityError(f"{operation} failed: {exc}", code=str(code) if code else None) from exc

    async def verify_otp(self, token_hash: str, otp_type: OtpType) -> IdentitySession:
        client = await self._client(_RequestStorage())
        response = await self._call(
            "verify_otp",
            client.auth.verify_otp({"token_hash": token_hash, "type": otp_type.value}),
        )
        return _session_from_response(response)

    async def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        client = await self._client(_RequestStorage())
        response = await self._call(
            "sign_in_with_password",
            client.auth.sign_in_with_password({"email": email, "password": password}),
        )
        return _session_from_response(response)

    async def sign_up(
        self, email: str, password: str, *, name: Optional[str] = None, redirect_to: Optional[str] = None
    ) -> IdentityUser:
        client = await self._client(_RequestStorage())
        options: Dict[str, Any] = {}
        if name:
            options["data"] = {"full_name": name}
        if redirect_to:
            options["email_redirect_to"] = redirect_to
        credentials: Dict[str, Any] = {"email": email, "password": password}
        if options:
            credentials["options"] = options
        response = await self._call("sign_up", client.auth.sign_up(credentials))
        user = getattr(response, "user", None)
        if user is None:
            raise IdentityError("Identity provider did not return a user")
        identities = getattr(user, "identities", None)
        return IdentityUser(
            id=str(user.id),
            email=str(user.email or email),
            identity_count=len(identities) if identities is not None else 1,
        )

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthRedirect:
        storage = _RequestStorage()
        client = await self._client(storage)
        response = await self._call(
            "sign_in_with_oauth",
            client.auth.sign_in_with_oauth({"provider": provider, "options": {"redirect_to": redirect_to}}),
        )
        url = getattr(response, "url", None)
        if not url:
            raise IdentityError("Identity provider did not return a redirect URL")
        return OAuthRedirect(url=str(url), flow_state=storage.snapshot())

    async def exchange_code_for_session(
        self, code: str, flow_state: Mapping[str, str]
    ) -> IdentitySession:
        client = await self._client(_RequestStorage(flow_state))
        response = await self._call(
            "exchange_code_for_session",
            client.auth.exchange_code_for_session({"auth_code": code}),
        )
        return _session_from_response(response)

    async def reset_password_for_email(self, email: str, *, redirect_to: Optional[str] = None) -> None:
        client = await self._client(_RequestStorage())
        options = {"redirect_to": redirect_to} if redirect_to else {}
        await self._call("reset_password_for_email", client.auth.reset_password_for_email(email, options))

    async def update_user(self, access_token: str, refresh_token: str, *, password: str) -> None:
        client = await self._client(_RequestStorage())
        await self._call("set_session", client.auth.set_session(access_token, refresh_token))
        await self._call("update_user", client.auth.update_user({"password": password}))

    async def sign_out(self, access_token: str, refresh_token: str) -> None:
        client = await self._client(_RequestStorage())
        await self._call("set_session", client.auth.set_session(access_token, refresh_token))
        await self._call("sign_out", client.auth.sign_out())


__all__ = [
    "IdentityProvider",
    "IdentitySession",
    "IdentityUser",
    "OAuthRedirect",
    "SupabaseIdentity",
]
