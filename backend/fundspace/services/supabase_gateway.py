"""PostgREST (supabase-py) adapter for :class:`DataStoreGateway`.

Used when ``STORE_BACKEND=supabase``.  supabase-py is synchronous, so every
call is wrapped in :func:`asyncio.to_thread` to keep the event loop free.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from fundspace.errors import (
    DuplicateError,
    NotFoundError,
    PermissionDeniedError,
    TrackingError,
    TransientError,
)
from fundspace.services.store_gateway import COLLECTIONS

logger = logging.getLogger(__name__)

# PostgREST / PostgreSQL error codes
UNIQUE_VIOLATION = "23505"
INSUFFICIENT_PRIVILEGE = "42501"
NO_ROWS = "PGRST116"

# Rows per ranged read; keep at or below the project's PostgREST max-rows
PAGE_SIZE = 1000

PRIMARY_KEYS: dict[str, str] = {
    "grant_categories": "grant_id",
    "grant_locations": "grant_id",
}

# Total order for ranged reads
SORT_KEYS: dict[str, tuple[str, ...]] = {
    "grant_categories": ("grant_id", "category_id"),
    "grant_locations": ("grant_id", "location_id"),
}


def _ordered(query: Any, collection: str, skip: Optional[str] = None) -> Any:
    for key in SORT_KEYS.get(collection, ("id",)):
        if key != skip:
            query = query.order(key)
    return query


class SupabaseGateway:
    """Gateway backed by a supabase-py ``Client`` (service or user key)."""

    def __init__(self, client: Client):
        self.client = client

    @staticmethod
    def _check(collection: str) -> None:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")

    @staticmethod
    def _translate(exc: Exception, collection: str) -> TrackingError:
        if isinstance(exc, APIError):
            code = str(exc.code or "")
            if code == UNIQUE_VIOLATION:
                return DuplicateError(f"Row already exists in {collection}", collection=collection)
            if code == INSUFFICIENT_PRIVILEGE:
                return PermissionDeniedError(
                    f"Not permitted to modify {collection}", collection=collection
                )
            if code == NO_ROWS:
                return NotFoundError(f"No {collection} row found", collection=collection)
            return TransientError(f"PostgREST error on {collection}: {exc.message}", collection=collection)
        return TransientError(f"Store unavailable ({collection}): {exc}", collection=collection)

    async def _run(self, collection: str, call: Callable[[], Any]) -> list[dict]:
        try:
            response = await asyncio.to_thread(call)
        except (APIError, httpx.HTTPError) as e:
            raise self._translate(e, collection) from e
        return list(response.data or [])

    async def _run_paged(
        self, collection: str, build: Callable[[], Any], limit: Optional[int] = None
    ) -> list[dict]:
        """Read every row of an ordered select, ``PAGE_SIZE`` rows per request.

        PostgREST caps a response at the project's ``max-rows`` setting, so a
        single unranged select can silently come back short.
        """
        rows: list[dict] = []
        start = 0
        while True:
            size = PAGE_SIZE if limit is None else min(PAGE_SIZE, limit - len(rows))
            if size <= 0:
                break
            end = start + size - 1
            page = await self._run(
                collection, lambda: build().range(start, end).execute()
            )
            rows.extend(page)
            if len(page) < size:
                break
            start += size
        if start:
            logger.debug("Read %d rows from %s in pages of %d", len(rows), collection, PAGE_SIZE)
        return rows

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def query_by_ids(self, collection: str, ids: Iterable[Any]) -> list[dict]:
        self._check(collection)
        ids = list(ids)
        if not ids:
            return []
        pk = PRIMARY_KEYS.get(collection, "id")
        return await self._run_paged(
            collection,
            lambda: _ordered(self.client.table(collection).select("*").in_(pk, ids), collection),
        )

    async def query_all(self, collection: str, *, limit: Optional[int] = None) -> list[dict]:
        self._check(collection)
        return await self._run_paged(
            collection,
            lambda: _ordered(self.client.table(collection).select("*"), collection),
            limit=limit,
        )

    async def query_join(
        self, collection: str, foreign_key_field: str, ids: Iterable[Any]
    ) -> list[dict]:
        self._check(collection)
        ids = list(ids)
        if not ids:
            return []
        return await self._run_paged(
            collection,
            lambda: _ordered(
                self.client.table(collection).select("*").in_(foreign_key_field, ids),
                collection,
            ),
        )

    async def count_distinct_actors(
        self,
        collection: str,
        group_key: str,
        ids: Iterable[Any],
        actor_field: str = "user_id",
    ) -> dict[Any, int]:
        self._check(collection)
        ids = list(ids)
        if not ids:
            return {}
        rows = await self._run_paged(
            collection,
            lambda: self.client.table(collection)
            .select(f"{group_key}, {actor_field}")
            .in_(group_key, ids)
            .order(group_key)
            .order(actor_field),
        )
        actors: dict[Any, set] = defaultdict(set)
        for row in rows:
            actors[row[group_key]].add(row[actor_field])
        return {key: len(values) for key, values in actors.items()}

    async def query_by_scope(
        self,
        collection: str,
        scope_field: str,
        scope_id: Any,
        *,
        match: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        self._check(collection)

        def build():
            query = self.client.table(collection).select("*").eq(scope_field, scope_id)
            for name, value in (match or {}).items():
                query = query.eq(name, value)
            if order_by:
                query = query.order(order_by, desc=descending)
            return _ordered(query, collection, skip=order_by)

        return await self._run_paged(collection, build)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict:
        self._check(collection)
        payload = {
            k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in fields.items()
        }
        rows = await self._run(
            collection,
            lambda: self.client.table(collection).insert(payload).execute(),
        )
        if not rows:
            # RLS can silently filter the returned representation
            raise PermissionDeniedError(
                f"Insert into {collection} returned no row", collection=collection
            )
        return rows[0]

    async def delete(self, collection: str, match: Mapping[str, Any]) -> None:
        self._check(collection)
        if not match:
            raise ValueError("Refusing to delete without match criteria")

        def call():
            query = self.client.table(collection).delete()
            for name, value in match.items():
                query = query.eq(name, value)
            return query.execute()

        rows = await self._run(collection, call)
        if not rows:
            raise NotFoundError(f"No {collection} row matched {dict(match)}", collection=collection)
