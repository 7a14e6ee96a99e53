"""Password hashing and verification for credential logins."""

from __future__ import annotations

from typing import Optional

from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt", "pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Return a salted hash suitable for the ``users.password`` column."""

    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    """Check ``password`` against ``hashed`` in constant time.

    The scheme, salt and work factor are taken from the stored hash itself.
    Unknown or malformed hashes never match.
    """

    if not password or not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


def needs_rehash(hashed: str) -> bool:
    try:
        return _pwd_context.needs_update(hashed)
    except (ValueError, TypeError):
        return True


__all__ = ["hash_password", "needs_rehash", "verify_password"]
