"""Invoice and customer data access.

Each coroutine takes the store handle explicitly, performs one logical round
trip and converts between stored cents and displayed currency. Store
failures are logged with their cause and re-raised as :class:`DatabaseError`
with a generic message.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Dict, List, Mapping, Optional, TypeVar

from .database import DataStore
from .errors import DatabaseError, StoreError
from .forms import InvoiceForm, validate_form
from .models import (
    CardData,
    CustomerField,
    CustomerRow,
    EditableInvoice,
    InvoiceRow,
    InvoiceStatus,
    LatestInvoice,
    Revenue,
)
from .money import format_currency, from_cents, to_cents

logger = logging.getLogger("invoicedesk.data")

ITEMS_PER_PAGE = 6
LATEST_INVOICES_LIMIT = 5
INVOICES_PATH = "/dashboard/invoices"

MONTH_ORDER = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

T = TypeVar("T")


@dataclass(frozen=True)
class ActionOutcome:
    """Result of an invoice mutation: field errors with a message, or a redirect."""

    errors: Dict[str, List[str]] = field(default_factory=dict)
    message: Optional[str] = None
    redirect_to: Optional[str] = None


async def _guard(message: str, operation: Awaitable[T]) -> T:
    try:
        return await operation
    except StoreError as exc:
        logger.error("Database Error: %s", exc, exc_info=True)
        raise DatabaseError(message) from exc


def format_date(value: Any) -> str:
    """Render an ISO date as e.g. ``Dec 6, 2022``."""

    if isinstance(value, datetime):
        parsed = value.date()
    elif isinstance(value, date):
        parsed = value
    else:
        try:
            parsed = date.fromisoformat(str(value)[:10])
        except ValueError:
            return str(value)
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"


def _status(value: Any) -> InvoiceStatus:
    try:
        return InvoiceStatus(str(value))
    except ValueError:
        return InvoiceStatus.PENDING


def _month_index(month: str) -> int:
    try:
        return MONTH_ORDER.index(month)
    except ValueError:
        return len(MONTH_ORDER)


async def fetch_revenue(store: DataStore) -> List[Revenue]:
    result = await _guard("Failed to fetch revenue data.", store.select("revenue"))
    rows = [Revenue(month=str(row["month"]), revenue=int(row["revenue"])) for row in result.data]
    rows.sort(key=lambda item: _month_index(item.month))
    return rows


async def fetch_latest_invoices(store: DataStore) -> List[LatestInvoice]:
    result = await _guard(
        "Failed to fetch latest invoices.",
        store.select(
            "invoices",
            "id, amount, customers(id, name, image_url, email)",
            order="date",
            descending=True,
            limit=LATEST_INVOICES_LIMIT,
        ),
    )
    latest: List[LatestInvoice] = []
    for row in result.data:
        customer = row.get("customers") or {}
        latest.append(
            LatestInvoice(
                id=str(row["id"]),
                name=str(customer.get("name", "")),
                email=str(customer.get("email", "")),
                image_url=str(customer.get("image_url", "")),
                amount=format_currency(int(row["amount"])),
            )
        )
    return latest


async def fetch_card_data(store: DataStore) -> CardData:
    """Fetch the dashboard summary with four concurrent reads.

    A failure in any read fails the whole summary; partial results are never
    returned.
    """

    invoice_count, paid, pending, customer_count = await _guard(
        "Failed to fetch card data.",
        asyncio.gather(
            store.select("invoices", "id", count=True),
            store.select("invoices", "amount", filters={"status": InvoiceStatus.PAID.value}),
            store.select("invoices", "amount", filters={"status": InvoiceStatus.PENDING.value}),
            store.select("customers", "id", count=True),
        ),
    )

    total_paid = sum(int(row["amount"]) for row in paid.data)
    total_pending = sum(int(row["amount"]) for row in pending.data)
    return CardData(
        number_of_customers=customer_count.count or 0,
        number_of_invoices=invoice_count.count or 0,
        total_paid_invoices=format_currency(total_paid),
        total_pending_invoices=format_currency(total_pending),
    )


async def fetch_filtered_invoices(store: DataStore, query: str, current_page: int) -> List[InvoiceRow]:
    page = max(int(current_page), 1)
    offset = (page - 1) * ITEMS_PER_PAGE
    rows = await _guard(
        "Failed to fetch invoices.",
        store.rpc(
            "search_invoices",
            {"query": query, "items_per_page": ITEMS_PER_PAGE, "page_offset": offset},
        ),
    )
    return [
        InvoiceRow(
            id=str(row["id"]),
            customer_id=str(row.get("customer_id", "")),
            name=str(row.get("name", "")),
            email=str(row.get("email", "")),
            image_url=str(row.get("image_url", "")),
            date=format_date(row.get("date", "")),
            amount=format_currency(int(row["amount"])),
            status=_status(row.get("status")),
        )
        for row in rows or []
    ]


async def fetch_invoice_pages(store: DataStore, query: str) -> int:
    total = await _guard("Failed to fetch invoices pages.", store.rpc("count_invoices", {"query": query}))
    return math.ceil(int(total or 0) / ITEMS_PER_PAGE)


async def fetch_customers(store: DataStore) -> List[CustomerField]:
    result = await _guard(
        "Failed to fetch customers.",
        store.select("customers", "id, name", order="name"),
    )
    return [CustomerField(id=str(row["id"]), name=str(row["name"])) for row in result.data]


async def fetch_invoice_by_id(store: DataStore, invoice_id: str) -> Optional[EditableInvoice]:
    result = await _guard(
        "Failed to fetch invoice.",
        store.select(
            "invoices",
            "id, amount, status, date, customer_id",
            filters={"id": invoice_id},
            limit=1,
        ),
    )
    row = result.first()
    if row is None:
        return None
    return EditableInvoice(
        id=str(row["id"]),
        customer_id=str(row["customer_id"]),
        amount=from_cents(int(row["amount"])),
        status=_status(row.get("status")),
    )


async def fetch_filtered_customers(store: DataStore, query: str) -> List[CustomerRow]:
    rows = await _guard("Failed to fetch customers.", store.rpc("search_customers", {"query": query}))
    return [
        CustomerRow(
            id=str(row["id"]),
            name=str(row.get("name", "")),
            email=str(row.get("email", "")),
            image_url=str(row.get("image_url", "")),
            total_invoices=int(row.get("total_invoices") or 0),
            total_pending=format_currency(int(row.get("total_pending") or 0)),
            total_paid=format_currency(int(row.get("total_paid") or 0)),
        )
        for row in rows or []
    ]


async def create_invoice(
    store: DataStore,
    form_data: Mapping[str, Any],
    *,
    today: Optional[date] = None,
) -> ActionOutcome:
    result = validate_form(InvoiceForm, form_data)
    if not result.ok:
        return ActionOutcome(errors=result.errors, message="Missing Fields. Failed to Create Invoice.")
    assert result.payload is not None
    payload = result.payload

    record = {
        "customer_id": payload.customer_id,
        "amount": to_cents(payload.amount),
        "status": payload.status.value,
        "date": (today or date.today()).isoformat(),
    }
    await _guard("Failed to create invoice.", store.insert("invoices", [record]))
    logger.info("Created invoice for customer %s", payload.customer_id)
    return ActionOutcome(redirect_to=INVOICES_PATH)


async def update_invoice(store: DataStore, invoice_id: str, form_data: Mapping[str, Any]) -> ActionOutcome:
    result = validate_form(InvoiceForm, form_data)
    if not result.ok:
        return ActionOutcome(errors=result.errors, message="Missing Fields. Failed to Update Invoice.")
    assert result.payload is not None
    payload = result.payload

    values = {
        "customer_id": payload.customer_id,
        "amount": to_cents(payload.amount),
        "status": payload.status.value,
    }
    await _guard("Failed to update invoice.", store.update("invoices", values, filters={"id": invoice_id}))
    logger.info("Updated invoice %s", invoice_id)
    return ActionOutcome(redirect_to=INVOICES_PATH)


async def delete_invoice(store: DataStore, invoice_id: str) -> ActionOutcome:
    await _guard("Failed to delete invoice.", store.delete("invoices", filters={"id": invoice_id}))
    logger.info("Deleted invoice %s", invoice_id)
    return ActionOutcome(message="Invoice deleted successfully.", redirect_to=INVOICES_PATH)


__all__ = [
    "ActionOutcome",
    "INVOICES_PATH",
    "ITEMS_PER_PAGE",
    "create_invoice",
    "delete_invoice",
    "fetch_card_data",
    "fetch_customers",
    "fetch_filtered_customers",
    "fetch_filtered_invoices",
    "fetch_invoice_by_id",
    "fetch_invoice_pages",
    "fetch_latest_invoices",
    "fetch_revenue",
    "format_date",
    "update_invoice",
]
