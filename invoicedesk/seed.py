"""Populate the remote store with fixture data."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Mapping, Sequence

from .credentials import USERS_TABLE
from .database import DataStore
from .errors import DatabaseError, StoreError
from .passwords import hash_password
from .placeholder_data import CUSTOMERS, INVOICES, REVENUE, USERS

logger = logging.getLogger("invoicedesk.seed")

_INVOICE_NAMESPACE = uuid.UUID("5a0c2f3e-93d4-4b7e-8f61-2d0f4c1b7a90")


def _invoice_id(invoice: Mapping[str, Any]) -> str:
    # Stable ids keep re-seeding idempotent.
    key = f"{invoice['customer_id']}:{invoice['date']}:{invoice['amount']}"
    return str(uuid.uuid5(_INVOICE_NAMESPACE, key))


async def _upsert_rows(
    store: DataStore,
    table: str,
    rows: Sequence[Mapping[str, Any]],
    *,
    on_conflict: str,
) -> int:
    await asyncio.gather(*(store.upsert(table, [row], on_conflict=on_conflict) for row in rows))
    return len(rows)


def _user_rows() -> List[Dict[str, Any]]:
    return [
        {
            "id": user["id"],
            "name": user["name"],
            "email": user["email"].lower(),
            "password": hash_password(user["password"]),
        }
        for user in USERS
    ]


def _invoice_rows() -> List[Dict[str, Any]]:
    return [{"id": _invoice_id(invoice), **invoice} for invoice in INVOICES]


async def seed_database(store: DataStore) -> Dict[str, int]:
    """Upsert users, customers, invoices and revenue; return the rows written per table."""

    counts: Dict[str, int] = {}
    try:
        counts[USERS_TABLE] = await _upsert_rows(store, USERS_TABLE, _user_rows(), on_conflict="id")
        counts["customers"] = await _upsert_rows(store, "customers", CUSTOMERS, on_conflict="id")
        counts["invoices"] = await _upsert_rows(store, "invoices", _invoice_rows(), on_conflict="id")
        counts["revenue"] = await _upsert_rows(store, "revenue", REVENUE, on_conflict="month")
    except StoreError as exc:
        logger.error("Seeding failed: %s", exc, exc_info=True)
        raise DatabaseError("Failed to seed database.") from exc

    logger.info("Database seeded: %s", ", ".join(f"{table}={count}" for table, count in counts.items()))
    return counts


__all__ = ["seed_database"]
