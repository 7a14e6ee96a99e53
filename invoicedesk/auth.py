"""Authentication flows: credential login, OAuth, email tokens and password resets.

Every public coroutine returns an :class:`AuthOutcome` instead of raising, so
the HTTP layer only has to translate outcomes into responses.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote

from .credentials import CredentialStore, DuplicateEmailError, normalize_email
from .errors import GENERIC_ERROR_MESSAGE, AuthenticationError, DatabaseError, IdentityError, ValidationError
from .forms import ForgotPasswordForm, LoginForm, RegisterForm, ResetPasswordForm, validate_form
from .identity import IdentityProvider
from .models import Credentials, OneTimeToken, OtpType, Session
from .passwords import hash_password, needs_rehash, verify_password
from .sessions import SessionManager

logger = logging.getLogger("invoicedesk.auth")

DASHBOARD_PATH = "/dashboard"
LOGIN_PATH = "/login"
ERROR_PATH = "/error?error=true"
OAUTH_ERROR_PATH = "/login?error=auth-code-error"
RESET_PASSWORD_PATH = "/forgot-password/reset-password"
REGISTER_CONFIRMATION_PATH = "/register/confirmation"
FORGOT_PASSWORD_CONFIRMATION_PATH = "/forgot-password/confirmation"

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."
EMAIL_IN_USE_MESSAGE = "Email already in use"
RESET_EXPIRED_MESSAGE = "Your password reset link has expired. Please request a new one."


@dataclass(frozen=True)
class AuthOutcome:
    """Result of an authentication step.

    Exactly one of ``validation_errors``, ``error`` or ``redirect_to`` drives
    what the caller does next. ``session`` is set when a session must be
    established, ``clear_session`` when the current one must be dropped.
    """

    validation_errors: Dict[str, List[str]] = field(default_factory=dict)
    error: Optional[str] = None
    redirect_to: Optional[str] = None
    session: Optional[Session] = None
    clear_session: bool = False
    flow_state: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return not self.validation_errors and self.error is None and self.redirect_to is not None


def safe_next(next_path: Optional[str], default: str = DASHBOARD_PATH) -> str:
    """Return ``next_path`` when it is a local absolute path, ``default`` otherwise."""

    if not next_path:
        return default
    candidate = next_path.strip()
    if not candidate.startswith("/") or candidate.startswith("//") or "\\" in candidate:
        return default
    return candidate


class SessionAuthenticator:
    """Turn a login submission into a session or a generic failure."""

    def __init__(
        self,
        credentials: CredentialStore,
        identity: IdentityProvider,
        sessions: SessionManager,
        *,
        strategy: str = "credentials",
    ) -> None:
        self._credentials = credentials
        self._identity = identity
        self._sessions = sessions
        strategies: Dict[str, Callable[[Credentials], Awaitable[Session]]] = {
            "credentials": self._check_stored_credentials,
            "identity": self._check_with_identity,
        }
        try:
            self._strategy = strategies[strategy]
        except KeyError as exc:
            raise ValueError(f"Unknown password strategy '{strategy}'") from exc
        self._decoy_hash: Optional[str] = None

    def _decoy(self) -> str:
        if self._decoy_hash is None:
            self._decoy_hash = hash_password("decoy-password-for-unknown-users")
        return self._decoy_hash

    async def _check_stored_credentials(self, credentials: Credentials) -> Session:
        user = await self._credentials.get_user(credentials.email)
        if user is None:
            # Keep the response time close to that of a wrong password.
            verify_password(credentials.password, self._decoy())
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        if not verify_password(credentials.password, user.password):
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        if needs_rehash(user.password):
            try:
                await self._credentials.set_password(user.email, credentials.password)
            except DatabaseError:
                logger.warning("Could not upgrade the password hash for %s", user.id)
        return self._sessions.new_session(user_id=user.id, email=user.email, name=user.name or None)

    async def _check_with_identity(self, credentials: Credentials) -> Session:
        try:
            identity = await self._identity.sign_in_with_password(credentials.email, credentials.password)
        except IdentityError as exc:
            logger.info("Identity provider rejected sign-in: %s", exc)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE) from exc
        return self._sessions.from_identity(identity, provider="password")

    async def authenticate(self, form_data: Mapping[str, Any]) -> AuthOutcome:
        try:
            payload = validate_form(LoginForm, form_data).unwrap()
        except ValidationError as exc:
            return AuthOutcome(validation_errors=exc.errors)

        credentials = Credentials(
            email=normalize_email(payload.email),
            password=payload.password,
        )
        try:
            session = await self._strategy(credentials)
        except AuthenticationError as exc:
            logger.warning("Failed login attempt for %s", credentials.email)
            return AuthOutcome(error=exc.message)
        except DatabaseError:
            return AuthOutcome(error=GENERIC_ERROR_MESSAGE)

        logger.info("User %s signed in", session.user_id)
        return AuthOutcome(session=session, redirect_to=DASHBOARD_PATH)


class OAuthState(str, enum.Enum):
    IDLE = "idle"
    REDIRECTING = "redirecting"
    CALLBACK_PENDING = "callback_pending"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


_OAUTH_TRANSITIONS: Dict[OAuthState, Tuple[OAuthState, ...]] = {
    OAuthState.IDLE: (OAuthState.REDIRECTING, OAuthState.FAILED),
    OAuthState.REDIRECTING: (OAuthState.CALLBACK_PENDING, OAuthState.FAILED),
    OAuthState.CALLBACK_PENDING: (OAuthState.AUTHENTICATED, OAuthState.FAILED),
    OAuthState.AUTHENTICATED: (),
    OAuthState.FAILED: (),
}


@dataclass
class OAuthAttempt:
    """One pass through the OAuth handshake."""

    provider: str
    state: OAuthState = OAuthState.IDLE
    history: List[OAuthState] = field(default_factory=list)

    def advance(self, target: OAuthState) -> None:
        if target not in _OAUTH_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal OAuth transition {self.state.value} -> {target.value}")
        self.history.append(self.state)
        self.state = target


class OAuthCoordinator:
    """Start third-party sign-ins and exchange the returned code for a session."""

    def __init__(
        self,
        identity: IdentityProvider,
        sessions: SessionManager,
        *,
        providers: Iterable[str] = ("google",),
        callback_path: str = "/auth/callback",
    ) -> None:
        self._identity = identity
        self._sessions = sessions
        self._providers = tuple(provider.lower() for provider in providers)
        self._callback_path = callback_path

    @property
    def providers(self) -> Tuple[str, ...]:
        return self._providers

    def _fail(self, attempt: OAuthAttempt, reason: str) -> AuthOutcome:
        attempt.advance(OAuthState.FAILED)
        logger.warning("OAuth sign-in with %s failed: %s", attempt.provider or "unknown provider", reason)
        return AuthOutcome(redirect_to=OAUTH_ERROR_PATH)

    async def begin(self, provider: str, origin: str, *, next_path: Optional[str] = None) -> AuthOutcome:
        """Build the provider redirect. ``flow_state`` must be kept for :meth:`complete`."""

        attempt = OAuthAttempt(provider=provider.lower())
        if attempt.provider not in self._providers:
            return self._fail(attempt, "provider not enabled")

        callback = origin.rstrip("/") + self._callback_path
        try:
            redirect = await self._identity.sign_in_with_oauth(attempt.provider, callback)
        except IdentityError as exc:
            return self._fail(attempt, str(exc))

        attempt.advance(OAuthState.REDIRECTING)
        flow_state = {
            "provider": attempt.provider,
            "storage": dict(redirect.flow_state),
            "next": safe_next(next_path),
        }
        return AuthOutcome(redirect_to=redirect.url, flow_state=flow_state)

    async def complete(
        self,
        code: Optional[str],
        flow_state: Optional[Mapping[str, Any]],
        next_path: Optional[str] = None,
    ) -> AuthOutcome:
        """Handle the provider callback and establish a session.

        ``next_path`` from the callback URL wins over the one remembered by
        :meth:`begin`; either is honoured only when it is a local path.
        """

        provider = str((flow_state or {}).get("provider") or "")
        attempt = OAuthAttempt(provider=provider, state=OAuthState.REDIRECTING)
        attempt.advance(OAuthState.CALLBACK_PENDING)

        if not flow_state or not provider:
            return self._fail(attempt, "no sign-in in progress")
        if not code:
            return self._fail(attempt, "callback did not carry an authorization code")

        storage = flow_state.get("storage")
        try:
            identity = await self._identity.exchange_code_for_session(
                code, dict(storage) if isinstance(storage, Mapping) else {}
            )
        except IdentityError as exc:
            return self._fail(attempt, str(exc))

        attempt.advance(OAuthState.AUTHENTICATED)
        session = self._sessions.from_identity(identity, provider=provider)
        logger.info("User %s signed in with %s", session.user_id, provider)
        return AuthOutcome(
            session=session,
            redirect_to=safe_next(next_path or str(flow_state.get("next") or "")),
        )


class EmailVerificationFlow:
    """Verify one-time tokens delivered through email links."""

    def __init__(self, identity: IdentityProvider, sessions: SessionManager) -> None:
        self._identity = identity
        self._sessions = sessions

    async def confirm(
        self,
        token_hash: Optional[str],
        otp_type: Optional[str],
        next_path: Optional[str] = None,
    ) -> AuthOutcome:
        token = OneTimeToken.from_link(token_hash, otp_type)
        if token is None:
            return AuthOutcome(redirect_to=ERROR_PATH)

        try:
            identity = await self._identity.verify_otp(token.token_hash, token.type)
        except IdentityError as exc:
            logger.warning("Email token verification failed (%s): %s", token.type.value, exc)
            return AuthOutcome(redirect_to=ERROR_PATH)

        session = self._sessions.from_identity(identity, provider=f"otp:{token.type.value}")
        if token.type is OtpType.RECOVERY:
            location = f"{RESET_PASSWORD_PATH}?token={quote(token.token_hash, safe='')}"
        else:
            location = safe_next(next_path)
        return AuthOutcome(session=session, redirect_to=location)


class AccountActions:
    """Registration, password recovery and sign-out."""

    def __init__(
        self,
        credentials: CredentialStore,
        identity: IdentityProvider,
    ) -> None:
        self._credentials = credentials
        self._identity = identity

    async def register(self, form_data: Mapping[str, Any], *, origin: Optional[str] = None) -> AuthOutcome:
        try:
            payload = validate_form(RegisterForm, form_data).unwrap()
        except ValidationError as exc:
            return AuthOutcome(validation_errors=exc.errors)
        email = normalize_email(payload.email)

        redirect_to = f"{origin.rstrip('/')}/auth/confirm" if origin else None
        try:
            user = await self._identity.sign_up(
                email, payload.password, name=payload.name or None, redirect_to=redirect_to
            )
        except IdentityError as exc:
            if exc.code in {"user_already_exists", "email_exists"}:
                return AuthOutcome(error=EMAIL_IN_USE_MESSAGE)
            logger.error("Registration failed for %s: %s", email, exc)
            return AuthOutcome(error=GENERIC_ERROR_MESSAGE)

        # The identity service reports an existing address as a user without identities.
        if user.identity_count == 0:
            return AuthOutcome(error=EMAIL_IN_USE_MESSAGE)

        try:
            await self._credentials.create_user(payload.name, email, payload.password)
        except DuplicateEmailError:
            return AuthOutcome(error=EMAIL_IN_USE_MESSAGE)
        except DatabaseError:
            return AuthOutcome(error=GENERIC_ERROR_MESSAGE)

        logger.info("Registered new account %s", email)
        return AuthOutcome(redirect_to=REGISTER_CONFIRMATION_PATH)

    async def forgot_password(self, form_data: Mapping[str, Any], *, origin: Optional[str] = None) -> AuthOutcome:
        try:
            email = normalize_email(validate_form(ForgotPasswordForm, form_data).unwrap().email)
        except ValidationError as exc:
            return AuthOutcome(validation_errors=exc.errors)

        redirect_to = f"{origin.rstrip('/')}/auth/confirm" if origin else None
        try:
            await self._identity.reset_password_for_email(email, redirect_to=redirect_to)
        except IdentityError as exc:
            logger.error("Password reset request failed for %s: %s", email, exc)
            return AuthOutcome(error=GENERIC_ERROR_MESSAGE)

        logger.info("Password reset requested for %s", email)
        return AuthOutcome(redirect_to=FORGOT_PASSWORD_CONFIRMATION_PATH)

    async def reset_password(self, form_data: Mapping[str, Any], session: Optional[Session]) -> AuthOutcome:
        try:
            payload = validate_form(ResetPasswordForm, form_data).unwrap()
        except ValidationError as exc:
            return AuthOutcome(validation_errors=exc.errors)

        if session is None or not session.access_token or not session.refresh_token:
            return AuthOutcome(error=RESET_EXPIRED_MESSAGE)

        password = payload.password
        try:
            await self._identity.update_user(session.access_token, session.refresh_token, password=password)
        except IdentityError as exc:
            logger.error("Password update failed for %s: %s", session.user_id, exc)
            return AuthOutcome(error=GENERIC_ERROR_MESSAGE)

        try:
            await self._credentials.set_password(session.email, password)
        except DatabaseError:
            return AuthOutcome(error=GENERIC_ERROR_MESSAGE)

        logger.info("Password reset completed for %s", session.user_id)
        return AuthOutcome(redirect_to=DASHBOARD_PATH)

    async def logout(self, session: Optional[Session]) -> AuthOutcome:
        if session is not None and session.access_token and session.refresh_token:
            try:
                await self._identity.sign_out(session.access_token, session.refresh_token)
            except IdentityError as exc:
                logger.warning("Server-side sign-out failed for %s: %s", session.user_id, exc)
        return AuthOutcome(redirect_to=LOGIN_PATH, clear_session=True)


__all__ = [
    "AccountActions",
    "AuthOutcome",
    "DASHBOARD_PATH",
    "ERROR_PATH",
    "EmailVerificationFlow",
    "INVALID_CREDENTIALS_MESSAGE",
    "LOGIN_PATH",
    "OAUTH_ERROR_PATH",
    "OAuthAttempt",
    "OAuthCoordinator",
    "OAuthState",
    "RESET_EXPIRED_MESSAGE",
    "RESET_PASSWORD_PATH",
    "SessionAuthenticator",
    "safe_next",
]
