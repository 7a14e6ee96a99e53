import asyncio

from conftest import SEEDED_EMAIL, SEEDED_PASSWORD
from invoicedesk.auth import (
    EMAIL_IN_USE_MESSAGE,
    RESET_EXPIRED_MESSAGE,
    AccountActions,
    EmailVerificationFlow,
)
from invoicedesk.credentials import CredentialStore
from invoicedesk.errors import GENERIC_ERROR_MESSAGE
from invoicedesk.forms import PASSWORD_MISMATCH_MESSAGE
from invoicedesk.models import OtpType
from invoicedesk.passwords import verify_password
from invoicedesk.sessions import SessionManager

ORIGIN = "http://testserver"


def _actions(store, identity) -> AccountActions:
    return AccountActions(CredentialStore(store), identity)


def _registration(email: str = "ada@example.com", **overrides) -> dict:
    form = {"name": "Ada", "email": email, "password": "abcdef", "passwordConfirm": "abcdef"}
    form.update(overrides)
    return form


def test_register_creates_identity_and_credential_user(store, identity) -> None:
    outcome = asyncio.run(_actions(store, identity).register(_registration(), origin=ORIGIN))

    assert outcome.redirect_to == "/register/confirmation"
    assert "ada@example.com" in identity.users
    assert identity.sent_emails == [("ada@example.com", "http://testserver/auth/confirm")]
    [row] = store.rows("users")
    assert row["email"] == "ada@example.com"
    assert row["name"] == "Ada"
    assert verify_password("abcdef", row["password"])


def test_register_reports_existing_identity(store, identity) -> None:
    identity.add_user("ada@example.com")

    outcome = asyncio.run(_actions(store, identity).register(_registration(), origin=ORIGIN))

    assert outcome.error == EMAIL_IN_USE_MESSAGE
    assert store.rows("users") == []


def test_register_reports_existing_credential_user(seeded_store, identity) -> None:
    outcome = asyncio.run(_actions(seeded_store, identity).register(_registration(SEEDED_EMAIL), origin=ORIGIN))

    assert outcome.error == EMAIL_IN_USE_MESSAGE


def test_register_validation_runs_first(store, identity) -> None:
    outcome = asyncio.run(
        _actions(store, identity).register(_registration(passwordConfirm="abcdeg"), origin=ORIGIN)
    )

    assert outcome.validation_errors == {"passwordConfirm": [PASSWORD_MISMATCH_MESSAGE]}
    assert identity.calls == []
    assert store.calls == []


def test_forgot_password_sends_link(store, identity) -> None:
    outcome = asyncio.run(
        _actions(store, identity).forgot_password({"email": "Ada@Example.com"}, origin=ORIGIN)
    )

    assert outcome.redirect_to == "/forgot-password/confirmation"
    assert identity.sent_emails == [("ada@example.com", "http://testserver/auth/confirm")]


def test_forgot_password_hides_provider_failures(store, identity) -> None:
    identity.failing.add("reset_password_for_email")

    outcome = asyncio.run(_actions(store, identity).forgot_password({"email": "ada@example.com"}, origin=ORIGIN))

    assert outcome.error == GENERIC_ERROR_MESSAGE


def test_reset_password_updates_both_stores(seeded_store, identity) -> None:
    identity.add_user(SEEDED_EMAIL, SEEDED_PASSWORD)
    token = identity.issue_token(SEEDED_EMAIL, OtpType.RECOVERY)
    confirmed = asyncio.run(EmailVerificationFlow(identity, SessionManager()).confirm(token, "recovery"))

    outcome = asyncio.run(
        _actions(seeded_store, identity).reset_password(
            {"password": "n3w-pass", "passwordConfirm": "n3w-pass"}, confirmed.session
        )
    )

    assert outcome.redirect_to == "/dashboard"
    assert identity.users[SEEDED_EMAIL]["password"] == "n3w-pass"
    user = asyncio.run(CredentialStore(seeded_store).get_user(SEEDED_EMAIL))
    assert verify_password("n3w-pass", user.password)
    assert not verify_password(SEEDED_PASSWORD, user.password)


def test_reset_password_without_recovery_session(store, identity) -> None:
    outcome = asyncio.run(
        _actions(store, identity).reset_password({"password": "abcdef", "passwordConfirm": "abcdef"}, None)
    )

    assert outcome.error == RESET_EXPIRED_MESSAGE
    assert identity.calls == []


def test_logout_signs_out_and_clears_session(store, identity) -> None:
    identity.add_user("ada@example.com")
    token = identity.issue_token("ada@example.com", OtpType.SIGNUP)
    session = asyncio.run(EmailVerificationFlow(identity, SessionManager()).confirm(token, "signup")).session

    outcome = asyncio.run(_actions(store, identity).logout(session))

    assert outcome.clear_session
    assert outcome.redirect_to == "/login"
    assert identity.signed_out == [session.access_token]


def test_logout_survives_provider_failure(store, identity) -> None:
    identity.add_user("ada@example.com")
    token = identity.issue_token("ada@example.com", OtpType.SIGNUP)
    session = asyncio.run(EmailVerificationFlow(identity, SessionManager()).confirm(token, "signup")).session
    identity.failing.add("sign_out")

    outcome = asyncio.run(_actions(store, identity).logout(session))

    assert outcome.clear_session
