"""Handle for the hosted Supabase (PostgREST) data store.

The handle is created once at process start and passed explicitly into the
application factory and every data-access function. It exposes a small
table-style API so the rest of the application never builds PostgREST
queries itself, and so tests can substitute an in-memory implementation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from supabase import AsyncClient, acreate_client

from .errors import StoreError

logger = logging.getLogger("invoicedesk.database")


@dataclass(frozen=True)
class QueryResult:
    """Rows returned by a table operation, plus the exact count when requested."""

    data: List[Dict[str, Any]] = field(default_factory=list)
    count: Optional[int] = None

    def first(self) -> Optional[Dict[str, Any]]:
        return self.data[0] if self.data else None


class DataStore(Protocol):
    """Operations the application needs from the remote relational store."""

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
    ) -> QueryResult: ...

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> QueryResult: ...

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]
    ) -> QueryResult: ...

    async def delete(self, table: str, *, filters: Mapping[str, Any]) -> QueryResult: ...

    async def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        on_conflict: Optional[str] = None,
    ) -> QueryResult: ...

    async def rpc(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any: ...


class SupabaseStore:
    """:class:`DataStore` backed by a supabase-py ``AsyncClient``."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    @classmethod
    async def connect(cls, supabase_url: str, supabase_key: str) -> "SupabaseStore":
        if not supabase_url or not supabase_key:
            raise ValueError("Supabase URL and key must both be provided")
        client = await acreate_client(supabase_url, supabase_key)
        logger.info("Supabase client initialised for %s", supabase_url)
        return cls(client)

    async def _execute(self, description: str, builder: Any) -> Any:
        try:
            return await builder.execute()
        except Exception as exc:
            raise StoreError(f"{description} failed: {exc}") from exc

    @staticmethod
    def _apply_filters(builder: Any, filters: Optional[Mapping[str, Any]]) -> Any:
        for column, value in (filters or {}).items():
            builder = builder.eq(column, value)
        return builder

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
        if count:
            builder = self._client.table(table).select(columns, count="exact")
        else:
            builder = self._client.table(table).select(columns)
        builder = self._apply_filters(builder, filters)
        if order:
            builder = builder.order(order, desc=descending)
        if limit is not None:
            builder = builder.limit(limit)
        response = await self._execute(f"select from {table}", builder)
        return QueryResult(data=list(response.data or []), count=response.count)

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> QueryResult:
        builder = self._client.table(table).insert([dict(row) for row in rows])
        response = await self._execute(f"insert into {table}", builder)
        return QueryResult(data=list(response.data or []))

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]
    ) -> QueryResult:
        if not filters:
            raise ValueError("Refusing to update every row of a table")
        builder = self._apply_filters(self._client.table(table).update(dict(values)), filters)
        response = await self._execute(f"update {table}", builder)
        return QueryResult(data=list(response.data or []))

    async def delete(self, table: str, *, filters: Mapping[str, Any]) -> QueryResult:
        if not filters:
            raise ValueError("Refusing to delete every row of a table")
        builder = self._apply_filters(self._client.table(table).delete(), filters)
        response = await self._execute(f"delete from {table}", builder)
        return QueryResult(data=list(response.data or []))

    async def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        on_conflict: Optional[str] = None,
    ) -> QueryResult:
        payload = [dict(row) for row in rows]
        if on_conflict:
            builder = self._client.table(table).upsert(payload, on_conflict=on_conflict)
        else:
            builder = self._client.table(table).upsert(payload)
        response = await self._execute(f"upsert into {table}", builder)
        return QueryResult(data=list(response.data or []))

    async def rpc(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        builder = self._client.rpc(name, dict(params or {}))
        response = await self._execute(f"rpc {name}", builder)
        return response.data


__all__ = ["DataStore", "QueryResult", "SupabaseStore"]
