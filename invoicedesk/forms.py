"""Schemas for every form the dashboard accepts.

Submissions arrive as flat string mappings. :func:`validate_form` turns one
into either a typed payload or a map of field name to error messages; it
never raises and never touches a backing store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Dict, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from .errors import ValidationError
from .models import InvoiceStatus
from .money import format_currency, from_cents, to_cents

PASSWORD_MIN_LENGTH = 6
# Amounts are stored as cents in a 32-bit integer column.
MAX_AMOUNT_CENTS = 2_147_483_647

EMAIL_MESSAGE = "Please enter a valid email address."
PASSWORD_LENGTH_MESSAGE = f"Password must contain at least {PASSWORD_MIN_LENGTH} characters"
PASSWORD_MISMATCH_MESSAGE = "Passwords do not match."
CUSTOMER_MESSAGE = "Please select a customer."
AMOUNT_MESSAGE = "Please enter an amount greater than $0."
AMOUNT_TOO_LARGE_MESSAGE = f"Please enter an amount no greater than {format_currency(MAX_AMOUNT_CENTS)}."
STATUS_MESSAGE = "Please select an invoice status."

_OWN_ERROR_TYPES = {
    "invalid_email",
    "password_too_short",
    "customer_missing",
    "amount_not_positive",
    "amount_too_large",
}

_DEFAULT_MESSAGES = {
    "missing": "Required",
    "string_type": "Expected text",
}


def _check_email(value: str) -> str:
    candidate = value.strip()
    try:
        result = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        raise PydanticCustomError("invalid_email", EMAIL_MESSAGE)
    return result.normalized


def _check_password(value: str) -> str:
    if len(value) < PASSWORD_MIN_LENGTH:
        raise PydanticCustomError("password_too_short", PASSWORD_LENGTH_MESSAGE)
    return value


class FormSchema(BaseModel):
    """Base class for form schemas."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    # Fallback message per wire field name for type, parsing and missing-field errors.
    field_messages: ClassVar[Dict[str, str]] = {}
    # (source, target, message): ``target`` must repeat ``source``; the error lands on ``target``.
    matching_fields: ClassVar[Tuple[Tuple[str, str, str], ...]] = ()


class LoginForm(FormSchema):
    email: str
    password: str

    field_messages: ClassVar[Dict[str, str]] = {
        "email": EMAIL_MESSAGE,
        "password": PASSWORD_LENGTH_MESSAGE,
    }

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


class RegisterForm(FormSchema):
    name: str = ""
    email: str
    password: str
    password_confirm: str = Field(alias="passwordConfirm")

    field_messages: ClassVar[Dict[str, str]] = {
        "email": EMAIL_MESSAGE,
        "password": PASSWORD_LENGTH_MESSAGE,
    }
    matching_fields: ClassVar[Tuple[Tuple[str, str, str], ...]] = (
        ("password", "passwordConfirm", PASSWORD_MISMATCH_MESSAGE),
    )

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()


class ForgotPasswordForm(FormSchema):
    email: str

    field_messages: ClassVar[Dict[str, str]] = {"email": EMAIL_MESSAGE}

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)


class ResetPasswordForm(FormSchema):
    password: str
    password_confirm: str = Field(alias="passwordConfirm")

    field_messages: ClassVar[Dict[str, str]] = {"password": PASSWORD_LENGTH_MESSAGE}
    matching_fields: ClassVar[Tuple[Tuple[str, str, str], ...]] = (
        ("password", "passwordConfirm", PASSWORD_MISMATCH_MESSAGE),
    )

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return _check_password(value)


class InvoiceForm(FormSchema):
    """Create and update share one schema; ``amount`` is in dollars."""

    customer_id: str = Field(alias="customerId")
    amount: Decimal
    status: InvoiceStatus

    field_messages: ClassVar[Dict[str, str]] = {
        "customerId": CUSTOMER_MESSAGE,
        "amount": AMOUNT_MESSAGE,
        "status": STATUS_MESSAGE,
    }

    @field_validator("customer_id")
    @classmethod
    def require_customer(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise PydanticCustomError("customer_missing", CUSTOMER_MESSAGE)
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def blank_amount(cls, value: Any) -> Any:
        # An empty input coerces to zero and is then rejected as not positive.
        if isinstance(value, str) and not value.strip():
            return Decimal(0)
        return value.strip() if isinstance(value, str) else value

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, value: Decimal) -> Decimal:
        if value > from_cents(MAX_AMOUNT_CENTS):
            raise PydanticCustomError("amount_too_large", AMOUNT_TOO_LARGE_MESSAGE)
        if value <= 0 or to_cents(value) < 1:
            raise PydanticCustomError("amount_not_positive", AMOUNT_MESSAGE)
        return value


F = TypeVar("F", bound=FormSchema)


@dataclass(frozen=True)
class FormResult(Generic[F]):
    """Either a validated payload or the errors for each offending field."""

    payload: Optional[F] = None
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.payload is not None and not self.errors

    def unwrap(self) -> F:
        """Return the payload or raise :class:`ValidationError` with the field errors."""

        if not self.ok:
            raise ValidationError(self.errors)
        assert self.payload is not None
        return self.payload


def _flatten(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Collapse multi-value form data to the first value of each field."""

    flat: Dict[str, Any] = {}
    getlist = getattr(data, "getlist", None)
    for key in data.keys():
        if callable(getlist):
            values = getlist(key)
            flat[key] = values[0] if values else None
        else:
            flat[key] = data[key]
    return flat


def _message_for(schema: Type[FormSchema], field_name: str, error: Mapping[str, Any]) -> str:
    if error.get("type") in _OWN_ERROR_TYPES:
        return str(error["msg"])
    fallback = schema.field_messages.get(field_name)
    if fallback:
        return fallback
    return _DEFAULT_MESSAGES.get(str(error.get("type")), str(error.get("msg")))


def validate_form(schema: Type[F], data: Mapping[str, Any]) -> FormResult[F]:
    """Validate ``data`` against ``schema`` as a single all-or-nothing step."""

    raw = _flatten(data)
    errors: Dict[str, List[str]] = {}
    payload: Optional[F] = None

    try:
        payload = schema.model_validate(raw)
    except PydanticValidationError as exc:
        for item in exc.errors():
            loc = item.get("loc") or ()
            field_name = str(loc[0]) if loc else "form"
            message = _message_for(schema, field_name, item)
            messages = errors.setdefault(field_name, [])
            if message not in messages:
                messages.append(message)

    for source, target, message in schema.matching_fields:
        if target in errors:
            continue
        if raw.get(source) != raw.get(target):
            errors.setdefault(target, []).append(message)

    if errors:
        return FormResult(errors=errors)
    return FormResult(payload=payload)


__all__ = [
    "AMOUNT_MESSAGE",
    "AMOUNT_TOO_LARGE_MESSAGE",
    "CUSTOMER_MESSAGE",
    "EMAIL_MESSAGE",
    "MAX_AMOUNT_CENTS",
    "ForgotPasswordForm",
    "FormResult",
    "FormSchema",
    "InvoiceForm",
    "LoginForm",
    "PASSWORD_LENGTH_MESSAGE",
    "PASSWORD_MIN_LENGTH",
    "PASSWORD_MISMATCH_MESSAGE",
    "RegisterForm",
    "ResetPasswordForm",
    "STATUS_MESSAGE",
    "validate_form",
]
