"""Supabase implementations of the store protocols.

The supabase client is synchronous; every request runs in a worker thread
via ``asyncio.to_thread`` so repository coroutines only suspend at network
boundaries. Backend errors are classified here, once, into the closed
error hierarchy from :mod:`lovestory.protocols`.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from postgrest.exceptions import APIError

from supabase import Client, create_client

from .config import Settings, get_settings
from .protocols import (
    ConflictError,
    NetworkError,
    NotFoundError,
    SchemaDegradedError,
    StoreError,
)

logger = logging.getLogger(__name__)

# PostgREST / Postgres error codes the core distinguishes
MISSING_RELATIONSHIP_CODE = "PGRST200"
NO_ROWS_CODE = "PGRST116"
UNIQUE_VIOLATION_CODE = "23505"

_admin_client: Client | None = None


def get_supabase_client(
    settings: Settings | None = None, access_token: str | None = None
) -> Client:
    """Create a client acting as the signed-in viewer.

    Row-level security on the backend evaluates as ``access_token``'s user
    when one is given, and as the anonymous role otherwise.
    """
    if settings is None:
        settings = get_settings()
    api_key = settings.public_key
    if not api_key:
        raise ValueError(
            "Either LOVESTORY_SUPABASE_PUBLISHABLE_KEY or LOVESTORY_SUPABASE_ANON_KEY must be set"
        )
    client = create_client(settings.supabase_url, api_key)
    if access_token:
        client.postgrest.auth(access_token)
        # storage is created lazily from these headers
        client.options.headers["Authorization"] = f"Bearer {access_token}"
    return client


def get_admin_client(settings: Settings | None = None) -> Client:
    """Get cached privileged client (account purge only)."""
    global _admin_client
    if _admin_client is None:
        if settings is None:
            settings = get_settings()
        api_key = settings.admin_key
        if not api_key:
            raise ValueError(
                "Either LOVESTORY_SUPABASE_SECRET_KEY or "
                "LOVESTORY_SUPABASE_SERVICE_ROLE_KEY must be set"
            )
        _admin_client = create_client(settings.supabase_url, api_key)
    return _admin_client


# =============================================================================
# Error classification
# =============================================================================


def classify_error(exc: BaseException) -> StoreError:
    """Map a raw backend/transport exception onto the closed error type."""
    if isinstance(exc, StoreError):
        return exc

    if isinstance(exc, APIError):
        code = exc.code
        message = exc.message or str(exc)
        if code == MISSING_RELATIONSHIP_CODE:
            return SchemaDegradedError(message, code)
        if code == NO_ROWS_CODE:
            return NotFoundError(message, code)
        if code == UNIQUE_VIOLATION_CODE:
            return ConflictError(message, code)
        return StoreError(message, code)

    if isinstance(exc, httpx.RequestError):
        return NetworkError(f"Network error: {exc}")

    return StoreError(str(exc) or exc.__class__.__name__)


def _has_embeds(columns: str) -> bool:
    return "(" in columns


def _apply_filters(
    query: Any,
    *,
    eq: Optional[Dict[str, Any]] = None,
    neq: Optional[Dict[str, Any]] = None,
    in_: Optional[Dict[str, Iterable[Any]]] = None,
    or_eq: Optional[Dict[str, Any]] = None,
    ilike: Optional[Dict[str, str]] = None,
) -> Any:
    for column, value in (eq or {}).items():
        query = query.eq(column, value)
    for column, value in (neq or {}).items():
        query = query.neq(column, value)
    for column, values in (in_ or {}).items():
        query = query.in_(column, list(values))
    if or_eq:
        query = query.or_(",".join(f"{column}.eq.{value}" for column, value in or_eq.items()))
    for column, pattern in (ilike or {}).items():
        query = query.ilike(column, pattern)
    return query


# =============================================================================
# Relational store
# =============================================================================


class SupabaseStore:
    """RelationalStore over a supabase ``Client``.

    Writes that ask for embedded columns are atomic with respect to a
    missing relationship: the embedding is probed before anything is
    written, so a SchemaDegradedError means no row changed.
    """

    def __init__(self, client: Client):
        self._client = client

    async def _run(self, build: Callable[[], Any]) -> List[Dict[str, Any]]:
        def _execute():
            return build().execute()

        try:
            result = await asyncio.to_thread(_execute)
        except Exception as exc:
            raise classify_error(exc) from exc
        return list(result.data or [])

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: Optional[Dict[str, Any]] = None,
        neq: Optional[Dict[str, Any]] = None,
        in_: Optional[Dict[str, Iterable[Any]]] = None,
        or_eq: Optional[Dict[str, Any]] = None,
        ilike: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        def _build():
            query = self._client.table(table).select(columns)
            query = _apply_filters(query, eq=eq, neq=neq, in_=in_, or_eq=or_eq, ilike=ilike)
            if order_by:
                query = query.order(order_by, desc=descending)
            if limit is not None:
                query = query.limit(limit)
            return query

        return await self._run(_build)

    async def _probe_embeds(self, table: str, columns: str) -> None:
        if _has_embeds(columns):
            await self.select(table, columns, limit=0)

    async def _reselect(
        self, table: str, columns: str, rows: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        ids = [row["id"] for row in rows if "id" in row]
        if not _has_embeds(columns) or not ids:
            return rows
        try:
            joined = await self.select(table, columns, in_={"id": ids})
        except SchemaDegradedError:
            # Relationship vanished between probe and write; rows are written
            logger.warning(f"Embedded re-select on {table} failed after write")
            return rows
        order = {row_id: position for position, row_id in enumerate(ids)}
        return sorted(joined, key=lambda row: order.get(row.get("id"), len(order)))

    async def insert(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        *,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        await self._probe_embeds(table, columns)
        written = await self._run(lambda: self._client.table(table).insert(rows))
        return await self._reselect(table, columns, written)

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        eq: Dict[str, Any],
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        await self._probe_embeds(table, columns)
        written = await self._run(
            lambda: _apply_filters(self._client.table(table).update(values), eq=eq)
        )
        return await self._reselect(table, columns, written)

    async def delete(self, table: str, *, eq: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._run(lambda: _apply_filters(self._client.table(table).delete(), eq=eq))


# =============================================================================
# Object storage
# =============================================================================


class SupabaseObjectStorage:
    """ObjectStorage over one supabase storage bucket."""

    def __init__(self, client: Client, bucket: str, cache_control: str = "3600"):
        self._client = client
        self.bucket = bucket
        self.cache_control = cache_control

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        def _upload():
            return self._client.storage.from_(self.bucket).upload(
                path,
                data,
                file_options={
                    "content-type": content_type,
                    "cache-control": self.cache_control,
                    "upsert": "false",
                },
            )

        try:
            await asyncio.to_thread(_upload)
        except Exception as exc:
            raise classify_error(exc) from exc
        return path

    def public_url(self, path: str) -> str:
        # Some client versions append an empty query string
        return self._client.storage.from_(self.bucket).get_public_url(path).rstrip("?")

    async def remove(self, paths: List[str]) -> None:
        if not paths:
            return
        try:
            await asyncio.to_thread(lambda: self._client.storage.from_(self.bucket).remove(paths))
        except Exception as exc:
            raise classify_error(exc) from exc


# =============================================================================
# Identity administration
# =============================================================================


class SupabaseIdentityAdmin:
    """IdentityAdmin over the supabase auth admin API."""

    def __init__(self, client: Client):
        self._client = client

    async def delete_user(self, user_id: str) -> None:
        try:
            await asyncio.to_thread(lambda: self._client.auth.admin.delete_user(user_id))
        except Exception as exc:
            raise classify_error(exc) from exc
