"""Error types shared by the dashboard's business and adapter layers."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class InvoiceDeskError(Exception):
    """Base class for every error raised by the application."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(InvoiceDeskError):
    """Raised when a submission fails schema validation."""

    def __init__(
        self,
        errors: Mapping[str, Sequence[str]],
        message: str = "Please correct the highlighted fields.",
    ) -> None:
        super().__init__(message)
        self.errors: Dict[str, List[str]] = {field: list(items) for field, items in errors.items()}


class AuthenticationError(InvoiceDeskError):
    """Bad credentials or an expired token.

    The message is always generic so callers cannot tell which factor failed.
    """

    def __init__(self, message: str = "Invalid email or password.") -> None:
        super().__init__(message)


class DatabaseError(InvoiceDeskError):
    """A remote store operation failed; the message never carries backend detail."""


class RedirectFailure(InvoiceDeskError):
    """The request cannot be served here and the user must be sent to ``location``."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE, *, location: Optional[str] = None) -> None:
        super().__init__(message)
        self.location = location


class StoreError(Exception):
    """Raised by the store adapter when the backend rejects a request."""


class IdentityError(Exception):
    """Raised by the identity adapter when the auth backend rejects a request."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


__all__ = [
    "GENERIC_ERROR_MESSAGE",
    "AuthenticationError",
    "DatabaseError",
    "IdentityError",
    "InvoiceDeskError",
    "RedirectFailure",
    "StoreError",
    "ValidationError",
]
