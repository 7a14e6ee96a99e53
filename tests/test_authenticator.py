import asyncio

import pytest

from conftest import SEEDED_EMAIL, SEEDED_PASSWORD
from invoicedesk.auth import DASHBOARD_PATH, INVALID_CREDENTIALS_MESSAGE, SessionAuthenticator
from invoicedesk.credentials import CredentialStore
from invoicedesk.errors import GENERIC_ERROR_MESSAGE
from invoicedesk.forms import EMAIL_MESSAGE
from invoicedesk.sessions import SessionManager


def _authenticator(store, identity, strategy="credentials") -> SessionAuthenticator:
    return SessionAuthenticator(CredentialStore(store), identity, SessionManager(), strategy=strategy)


def test_valid_credentials_establish_a_session(seeded_store, identity) -> None:
    outcome = asyncio.run(
        _authenticator(seeded_store, identity).authenticate({"email": SEEDED_EMAIL, "password": SEEDED_PASSWORD})
    )

    assert outcome.ok
    assert outcome.redirect_to == DASHBOARD_PATH
    assert outcome.session.email == SEEDED_EMAIL
    assert outcome.session.name == "User"


def test_email_lookup_ignores_case(seeded_store, identity) -> None:
    outcome = asyncio.run(
        _authenticator(seeded_store, identity).authenticate(
            {"email": "USER@nextmail.com", "password": SEEDED_PASSWORD}
        )
    )

    assert outcome.ok


def test_unknown_email_and_wrong_password_share_one_message(seeded_store, identity) -> None:
    authenticator = _authenticator(seeded_store, identity)

    unknown = asyncio.run(authenticator.authenticate({"email": "nobody@example.com", "password": "123456"}))
    wrong = asyncio.run(authenticator.authenticate({"email": SEEDED_EMAIL, "password": "654321"}))

    assert unknown.error == wrong.error == INVALID_CREDENTIALS_MESSAGE
    assert unknown.session is None and wrong.session is None


def test_malformed_email_never_reaches_the_store(seeded_store, identity) -> None:
    outcome = asyncio.run(
        _authenticator(seeded_store, identity).authenticate({"email": "user@", "password": SEEDED_PASSWORD})
    )

    assert outcome.validation_errors == {"email": [EMAIL_MESSAGE]}
    assert seeded_store.calls == []
    assert identity.calls == []


def test_store_failure_yields_generic_message(seeded_store, identity) -> None:
    seeded_store.fail("select", "users")

    outcome = asyncio.run(
        _authenticator(seeded_store, identity).authenticate({"email": SEEDED_EMAIL, "password": SEEDED_PASSWORD})
    )

    assert outcome.error == GENERIC_ERROR_MESSAGE
    assert outcome.session is None


def test_identity_strategy_signs_in_with_the_provider(store, identity) -> None:
    identity.add_user("ada@example.com", "abcdef", name="Ada")
    authenticator = _authenticator(store, identity, strategy="identity")

    outcome = asyncio.run(authenticator.authenticate({"email": "ada@example.com", "password": "abcdef"}))
    failed = asyncio.run(authenticator.authenticate({"email": "ada@example.com", "password": "abcdeg"}))

    assert outcome.ok
    assert outcome.session.access_token is not None
    assert outcome.session.provider == "password"
    assert failed.error == INVALID_CREDENTIALS_MESSAGE
    assert store.calls == []


def test_unknown_strategy_is_rejected(store, identity) -> None:
    with pytest.raises(ValueError):
        _authenticator(store, identity, strategy="ldap")


def test_legacy_hash_is_upgraded_after_login(seeded_store, identity) -> None:
    from passlib.hash import pbkdf2_sha256

    [user] = seeded_store.rows("users")
    user["password"] = pbkdf2_sha256.hash(SEEDED_PASSWORD)

    outcome = asyncio.run(
        _authenticator(seeded_store, identity).authenticate({"email": SEEDED_EMAIL, "password": SEEDED_PASSWORD})
    )

    assert outcome.ok
    assert user["password"].startswith("$2")
