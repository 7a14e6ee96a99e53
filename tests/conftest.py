"""Shared fixtures: an in-memory data store and a fake identity provider."""

from __future__ import annotations

import asyncio
import copy
import itertools
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoicedesk.config import AppConfig
from invoicedesk.database import QueryResult
from invoicedesk.errors import IdentityError, StoreError
from invoicedesk.identity import IdentitySession, IdentityUser, OAuthRedirect
from invoicedesk.models import OtpType
from invoicedesk.seed import seed_database
from invoicedesk.service import create_app


SEEDED_EMAIL = "user@nextmail.com"
SEEDED_PASSWORD = "123456"

_UNIQUE_COLUMNS = {"users": ("id", "email"), "customers": ("id",), "invoices": ("id",), "revenue": ("month",)}


def _matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    return all(row.get(column) == value for column, value in (filters or {}).items())


def _contains(haystack: Any, needle: str) -> bool:
    return needle.lower() in str(haystack).lower()


class InMemoryStore:
    """Dictionary-backed stand-in for the remote store."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failing: Set[str] = set()

    def fail(self, operation: str, table: str = "*") -> None:
        """Make ``operation`` on ``table`` raise :class:`StoreError`."""

        self.failing.add(f"{operation}:{table}")

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _record(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if f"{operation}:{table}" in self.failing or f"{operation}:*" in self.failing:
            raise StoreError(f"{operation} on {table} failed: connection reset")

    def _check_unique(self, table: str, row: Mapping[str, Any], *, ignore: Optional[Mapping[str, Any]] = None) -> None:
        for column in _UNIQUE_COLUMNS.get(table, ()):
            if column not in row:
                continue
            for existing in self.rows(table):
                if existing is ignore:
                    continue
                if existing.get(column) == row[column]:
                    raise StoreError(
                        f'duplicate key value violates unique constraint "{table}_{column}_key" (23505)'
                    )

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        count: bool = False,
    ) -> QueryResult:
        self._record("select", table)
        matched = [copy.deepcopy(row) for row in self.rows(table) if _matches(row, filters)]
        if "customers(" in columns:
            customers = {row["id"]: row for row in self.rows("customers")}
            for row in matched:
                row["customers"] = copy.deepcopy(customers.get(row.get("customer_id")))
        if order:
            matched.sort(key=lambda row: row.get(order), reverse=descending)
        total = len(matched)
        if limit is not None:
            matched = matched[:limit]
        return QueryResult(data=matched, count=total if count else None)

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> QueryResult:
        self._record("insert", table)
        inserted = []
        for row in rows:
            record = dict(row)
            record.setdefault("id", str(uuid.uuid4()))
            self._check_unique(table, record)
            self.rows(table).append(record)
            inserted.append(copy.deepcopy(record))
        return QueryResult(data=inserted)

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> QueryResult:
        self._record("update", table)
        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return QueryResult(data=updated)

    async def delete(self, table: str, *, filters: Mapping[str, Any]) -> QueryResult:
        self._record("delete", table)
        kept, removed = [], []
        for row in self.rows(table):
            (removed if _matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        return QueryResult(data=removed)

    async def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        on_conflict: Optional[str] = None,
    ) -> QueryResult:
        self._record("upsert", table)
        key = on_conflict or "id"
        written = []
        for row in rows:
            record = dict(row)
            existing = next((item for item in self.rows(table) if item.get(key) == record.get(key)), None)
            if existing is None:
                self.rows(table).append(record)
            else:
                existing.update(record)
            written.append(copy.deepcopy(record))
        return QueryResult(data=written)

    async def rpc(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        self._record("rpc", name)
        params = dict(params or {})
        if name == "search_invoices":
            rows = self._invoice_search(params.get("query", ""))
            offset = int(params.get("page_offset", 0))
            return rows[offset : offset + int(params.get("items_per_page", 6))]
        if name == "count_invoices":
            return len(self._invoice_search(params.get("query", "")))
        if name == "search_customers":
            return self._customer_search(params.get("query", ""))
        raise StoreError(f"rpc {name} failed: function does not exist")

    def _invoice_search(self, query: str) -> List[Dict[str, Any]]:
        customers = {row["id"]: row for row in self.rows("customers")}
        results = []
        for invoice in self.rows("invoices"):
            customer = customers.get(invoice.get("customer_id"), {})
            row = {
                "id": invoice["id"],
                "customer_id": invoice.get("customer_id"),
                "name": customer.get("name", ""),
                "email": customer.get("email", ""),
                "image_url": customer.get("image_url", ""),
                "date": invoice.get("date"),
                "amount": invoice.get("amount"),
                "status": invoice.get("status"),
            }
            fields = (row["name"], row["email"], row["amount"], row["date"], row["status"])
            if not query or any(_contains(value, query) for value in fields):
                results.append(row)
        results.sort(key=lambda row: row["date"] or "", reverse=True)
        return results

    def _customer_search(self, query: str) -> List[Dict[str, Any]]:
        results = []
        for customer in sorted(self.rows("customers"), key=lambda row: row["name"]):
            if query and not (_contains(customer["name"], query) or _contains(customer["email"], query)):
                continue
            invoices = [row for row in self.rows("invoices") if row.get("customer_id") == customer["id"]]
            results.append(
                {
                    **customer,
                    "total_invoices": len(invoices),
                    "total_pending": sum(row["amount"] for row in invoices if row["status"] == "pending"),
                    "total_paid": sum(row["amount"] for row in invoices if row["status"] == "paid"),
                }
            )
        return results


class FakeIdentity:
    """In-process identity provider with single-use email tokens and OAuth codes."""

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, Tuple[str, OtpType]] = {}
        self.oauth_codes: Dict[str, Tuple[str, str]] = {}
        self.access_tokens: Dict[str, str] = {}
        self.calls: List[str] = []
        self.sent_emails: List[Tuple[str, Optional[str]]] = []
        self.signed_out: List[str] = []
        self.failing: Set[str] = set()
        self._counter = itertools.count(1)

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise IdentityError(f"{operation} failed: service unavailable", code="unexpected_failure")

    def add_user(self, email: str, password: str = "secret-pass", *, name: Optional[str] = None) -> str:
        user_id = str(uuid.uuid4())
        self.users[email] = {"id": user_id, "password": password, "name": name}
        return user_id

    def issue_token(self, email: str, otp_type: OtpType) -> str:
        token_hash = f"token-{next(self._counter)}"
        self.tokens[token_hash] = (email, otp_type)
        return token_hash

    def issue_oauth_code(self, email: str, verifier: str) -> str:
        if email not in self.users:
            self.add_user(email, name="OAuth User")
        code = f"code-{next(self._counter)}"
        self.oauth_codes[code] = (email, verifier)
        return code

    def _session_for(self, email: str) -> IdentitySession:
        user = self.users[email]
        access_token = f"access-{next(self._counter)}"
        self.access_tokens[access_token] = email
        return IdentitySession(
            user_id=user["id"],
            email=email,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            access_token=access_token,
            refresh_token=f"refresh-{access_token}",
            name=user.get("name"),
        )

    async def verify_otp(self, token_hash: str, otp_type: OtpType) -> IdentitySession:
        self._record("verify_otp")
        entry = self.tokens.pop(token_hash, None)
        if entry is None or entry[1] is not otp_type:
            raise IdentityError("Token has expired or is invalid", code="otp_expired")
        return self._session_for(entry[0])

    async def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        self._record("sign_in_with_password")
        user = self.users.get(email)
        if user is None or user["password"] != password:
            raise IdentityError("Invalid login credentials", code="invalid_credentials")
        return self._session_for(email)

    async def sign_up(
        self, email: str, password: str, *, name: Optional[str] = None, redirect_to: Optional[str] = None
    ) -> IdentityUser:
        self._record("sign_up")
        if email in self.users:
            return IdentityUser(id=str(uuid.uuid4()), email=email, identity_count=0)
        user_id = self.add_user(email, password, name=name)
        self.sent_emails.append((email, redirect_to))
        return IdentityUser(id=user_id, email=email, identity_count=1)

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthRedirect:
        self._record("sign_in_with_oauth")
        verifier = f"verifier-{next(self._counter)}"
        return OAuthRedirect(
            url=f"https://auth.example.test/authorize?provider={provider}&redirect_to={redirect_to}",
            flow_state={"code-verifier": verifier},
        )

    async def exchange_code_for_session(self, code: str, flow_state: Mapping[str, str]) -> IdentitySession:
        self._record("exchange_code_for_session")
        entry = self.oauth_codes.pop(code, None)
        if entry is None or flow_state.get("code-verifier") != entry[1]:
            raise IdentityError("invalid flow state, no valid flow state found", code="bad_code_verifier")
        return self._session_for(entry[0])

    async def reset_password_for_email(self, email: str, *, redirect_to: Optional[str] = None) -> None:
        self._record("reset_password_for_email")
        self.sent_emails.append((email, redirect_to))

    async def update_user(self, access_token: str, refresh_token: str, *, password: str) -> None:
        self._record("update_user")
        email = self.access_tokens.get(access_token)
        if email is None:
            raise IdentityError("Auth session missing!", code="session_not_found")
        self.users[email]["password"] = password

    async def sign_out(self, access_token: str, refresh_token: str) -> None:
        self._record("sign_out")
        self.access_tokens.pop(access_token, None)
        self.signed_out.append(access_token)


def make_config(**overrides: Any) -> AppConfig:
    values: Dict[str, Any] = {
        "supabase_url": "https://project.supabase.co",
        "supabase_key": "anon-key",
        "session_secret": "tests-secret-key",
        "site_url": "http://testserver",
    }
    values.update(overrides)
    return AppConfig.from_dict(values)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def seeded_store(store: InMemoryStore) -> InMemoryStore:
    asyncio.run(seed_database(store))
    store.calls.clear()
    return store


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def app(seeded_store: InMemoryStore, identity: FakeIdentity):
    return create_app(make_config(), store=seeded_store, identity=identity)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client


def login(client, email: str = SEEDED_EMAIL, password: str = SEEDED_PASSWORD):
    return client.post(
        "/login",
        data={"email": email, "password": password},
        follow_redirects=False,
    )
