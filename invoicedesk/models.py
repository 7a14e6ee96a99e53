"""Domain models for users, sessions, invoices and customers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class OtpType(str, enum.Enum):
    """Kinds of one-time tokens delivered through email links."""

    SIGNUP = "signup"
    INVITE = "invite"
    MAGICLINK = "magiclink"
    RECOVERY = "recovery"
    EMAIL_CHANGE = "email_change"
    EMAIL = "email"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["OtpType"]:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class User:
    """A row of the ``users`` table. ``password`` holds the salted hash."""

    id: str
    name: str
    email: str
    password: str


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str


@dataclass(frozen=True)
class Session:
    """Proof of authentication kept in the signed session cookie."""

    user_id: str
    email: str
    expires_at: datetime
    name: Optional[str] = None
    provider: str = "credentials"
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return self.expires_at <= current

    @property
    def display_name(self) -> str:
        return self.name or self.email


@dataclass(frozen=True)
class OneTimeToken:
    """A single-use token carried by an email link."""

    token_hash: str
    type: OtpType

    @classmethod
    def from_link(cls, token_hash: Optional[str], raw_type: Optional[str]) -> Optional["OneTimeToken"]:
        """Build a token from link parameters, or ``None`` when either is missing or unknown."""

        otp_type = OtpType.parse(raw_type)
        token_hash = (token_hash or "").strip()
        if not token_hash or otp_type is None:
            return None
        return cls(token_hash=token_hash, type=otp_type)


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    email: str
    image_url: str


@dataclass(frozen=True)
class Invoice:
    """An invoice as persisted; ``amount`` is integer cents."""

    id: str
    customer_id: str
    amount: int
    status: InvoiceStatus
    date: str


@dataclass(frozen=True)
class EditableInvoice:
    """An invoice prepared for the edit form, amount in dollars."""

    id: str
    customer_id: str
    amount: Decimal
    status: InvoiceStatus


@dataclass(frozen=True)
class InvoiceRow:
    """One row of the invoice search results."""

    id: str
    customer_id: str
    name: str
    email: str
    image_url: str
    date: str
    amount: str
    status: InvoiceStatus


@dataclass(frozen=True)
class LatestInvoice:
    id: str
    name: str
    email: str
    image_url: str
    amount: str


@dataclass(frozen=True)
class CustomerField:
    id: str
    name: str


@dataclass(frozen=True)
class CustomerRow:
    id: str
    name: str
    email: str
    image_url: str
    total_invoices: int
    total_pending: str
    total_paid: str


@dataclass(frozen=True)
class Revenue:
    month: str
    revenue: int


@dataclass(frozen=True)
class CardData:
    number_of_customers: int
    number_of_invoices: int
    total_paid_invoices: str
    total_pending_invoices: str


__all__ = [
    "CardData",
    "Credentials",
    "Customer",
    "CustomerField",
    "CustomerRow",
    "EditableInvoice",
    "Invoice",
    "InvoiceRow",
    "InvoiceStatus",
    "LatestInvoice",
    "OneTimeToken",
    "OtpType",
    "Revenue",
    "Session",
    "User",
]
