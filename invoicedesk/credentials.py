"""Lookup and registration of credential users in the remote ``users`` table."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional

from .database import DataStore
from .errors import DatabaseError, StoreError
from .models import User
from .passwords import hash_password

logger = logging.getLogger("invoicedesk.credentials")

USERS_TABLE = "users"


class DuplicateEmailError(ValueError):
    """Raised when a user with the same email already exists."""


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        email=str(row["email"]),
        password=str(row.get("password") or ""),
    )


def _is_unique_violation(exc: BaseException) -> bool:
    text = str(exc).lower()
    return "23505" in text or "duplicate key" in text or "already exists" in text


class CredentialStore:
    """Gateway to user records. Read-only apart from registration and resets."""

    def __init__(self, store: DataStore) -> None:
        self._store = store

    async def get_user(self, email: str) -> Optional[User]:
        """Return the user registered under ``email`` or ``None``."""

        try:
            result = await self._store.select(
                USERS_TABLE,
                "id, name, email, password",
                filters={"email": normalize_email(email)},
                limit=1,
            )
        except StoreError as exc:
            logger.error("Failed to fetch user: %s", exc, exc_info=True)
            raise DatabaseError("Failed to fetch user.") from exc

        row = result.first()
        return _row_to_user(row) if row else None

    async def create_user(self, name: str, email: str, password: str) -> User:
        """Hash ``password`` and insert a new user row."""

        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("Email must not be empty")
        record = {
            "id": str(uuid.uuid4()),
            "name": name.strip() or normalized.split("@", 1)[0],
            "email": normalized,
            "password": hash_password(password),
        }
        try:
            result = await self._store.insert(USERS_TABLE, [record])
        except StoreError as exc:
            if _is_unique_violation(exc):
                raise DuplicateEmailError("Email already in use") from exc
            logger.error("Failed to create user %s: %s", normalized, exc, exc_info=True)
            raise DatabaseError("Failed to create user.") from exc

        return _row_to_user(result.first() or record)

    async def set_password(self, email: str, password: str) -> None:
        normalized = normalize_email(email)
        try:
            await self._store.update(
                USERS_TABLE,
                {"password": hash_password(password)},
                filters={"email": normalized},
            )
        except StoreError as exc:
            logger.error("Failed to update password for %s: %s", normalized, exc, exc_info=True)
            raise DatabaseError("Failed to update password.") from exc


__all__ = ["CredentialStore", "DuplicateEmailError", "USERS_TABLE", "normalize_email"]
