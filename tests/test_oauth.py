import asyncio

import pytest

from invoicedesk.auth import OAUTH_ERROR_PATH, OAuthAttempt, OAuthCoordinator, OAuthState, safe_next
from invoicedesk.sessions import SessionManager

ORIGIN = "http://testserver"


def _coordinator(identity) -> OAuthCoordinator:
    return OAuthCoordinator(identity, SessionManager(), providers=("google",))


def test_begin_returns_provider_url_and_flow_state(identity) -> None:
    outcome = asyncio.run(_coordinator(identity).begin("Google", ORIGIN))

    assert outcome.redirect_to.startswith("https://auth.example.test/authorize?provider=google")
    assert "redirect_to=http://testserver/auth/callback" in outcome.redirect_to
    assert outcome.flow_state["provider"] == "google"
    assert outcome.flow_state["next"] == "/dashboard"
    assert "code-verifier" in outcome.flow_state["storage"]
    assert outcome.session is None


def test_disabled_provider_fails_without_contacting_identity(identity) -> None:
    outcome = asyncio.run(_coordinator(identity).begin("github", ORIGIN))

    assert outcome.redirect_to == OAUTH_ERROR_PATH
    assert identity.calls == []


def test_identity_failure_on_begin_redirects_to_error(identity) -> None:
    identity.failing.add("sign_in_with_oauth")

    outcome = asyncio.run(_coordinator(identity).begin("google", ORIGIN))

    assert outcome.redirect_to == OAUTH_ERROR_PATH
    assert outcome.flow_state is None


def test_complete_exchanges_code_for_session(identity) -> None:
    coordinator = _coordinator(identity)
    started = asyncio.run(coordinator.begin("google", ORIGIN, next_path="/dashboard/invoices"))
    code = identity.issue_oauth_code("ada@example.com", started.flow_state["storage"]["code-verifier"])

    outcome = asyncio.run(coordinator.complete(code, started.flow_state))

    assert outcome.ok
    assert outcome.redirect_to == "/dashboard/invoices"
    assert outcome.session.email == "ada@example.com"
    assert outcome.session.provider == "google"


def test_callback_next_must_be_local(identity) -> None:
    coordinator = _coordinator(identity)
    started = asyncio.run(coordinator.begin("google", ORIGIN))
    code = identity.issue_oauth_code("ada@example.com", started.flow_state["storage"]["code-verifier"])

    outcome = asyncio.run(coordinator.complete(code, started.flow_state, "https://evil.example.com"))

    assert outcome.redirect_to == "/dashboard"


@pytest.mark.parametrize("code, keep_flow", [(None, True), ("", True), ("code-x", False)])
def test_missing_code_or_flow_fails(identity, code, keep_flow) -> None:
    coordinator = _coordinator(identity)
    started = asyncio.run(coordinator.begin("google", ORIGIN))

    outcome = asyncio.run(coordinator.complete(code, started.flow_state if keep_flow else None))

    assert outcome.redirect_to == OAUTH_ERROR_PATH
    assert outcome.session is None
    assert "exchange_code_for_session" not in identity.calls


def test_code_cannot_be_replayed(identity) -> None:
    coordinator = _coordinator(identity)
    started = asyncio.run(coordinator.begin("google", ORIGIN))
    code = identity.issue_oauth_code("ada@example.com", started.flow_state["storage"]["code-verifier"])

    first = asyncio.run(coordinator.complete(code, started.flow_state))
    second = asyncio.run(coordinator.complete(code, started.flow_state))

    assert first.ok
    assert second.redirect_to == OAUTH_ERROR_PATH


def test_attempt_rejects_illegal_transitions() -> None:
    attempt = OAuthAttempt(provider="google")
    attempt.advance(OAuthState.REDIRECTING)

    with pytest.raises(RuntimeError):
        attempt.advance(OAuthState.AUTHENTICATED)

    attempt.advance(OAuthState.FAILED)
    assert attempt.history == [OAuthState.IDLE, OAuthState.REDIRECTING]


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, "/dashboard"),
        ("/dashboard/customers", "/dashboard/customers"),
        ("//evil.example.com", "/dashboard"),
        ("https://evil.example.com", "/dashboard"),
        ("/\\evil.example.com", "/dashboard"),
    ],
)
def test_safe_next(value, expected) -> None:
    assert safe_next(value) == expected
