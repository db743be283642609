"""
Unit Tests for SupabaseGateway with a mocked supabase-py client

Usage:
    cd backend && pytest tests/test_supabase_gateway.py -v
"""

import pytest
import sys
import os
from typing import Any, Dict, List

import httpx
from postgrest.exceptions import APIError

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fundspace.errors import (  # noqa: E402
    DuplicateError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from fundspace.services import supabase_gateway  # noqa: E402
from fundspace.services.supabase_gateway import SupabaseGateway  # noqa: E402


# ============================================================================
# MOCK SUPABASE RESPONSE CLASSES
# ============================================================================

class MockSupabaseResponse:
    """Mock Supabase response object."""
    def __init__(self, data: List[Dict] = None):
        self.data = data if data is not None else []


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""
    def __init__(self, table: List[Dict], error: Exception = None, returning: bool = True):
        self._table = table
        self._filtered_data = list(table)
        self._error = error
        self._returning = returning
        self._op = "select"
        self._payload = None
        self.order_calls = []
        self.range_calls = []
        self._range = None
        self._limit = None

    def select(self, *args, **kwargs):
        return self

    def eq(self, field: str, value: Any):
        self._filtered_data = [row for row in self._filtered_data if row.get(field) == value]
        return self

    def in_(self, field: str, values: List):
        self._filtered_data = [row for row in self._filtered_data if row.get(field) in values]
        return self

    def order(self, field: str, desc: bool = False):
        self.order_calls.append((field, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self.range_calls.append((start, end))
        self._range = (start, end)
        return self

    def _rows(self):
        rows = list(self._filtered_data)
        # first order() call is the primary key
        for field, desc in reversed(self.order_calls):
            rows.sort(key=lambda row: row.get(field), reverse=desc)
        if self._range is not None:
            rows = rows[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            rows = rows[:self._limit]
        return rows

    def insert(self, payload: Dict):
        self._op = "insert"
        self._payload = payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    def execute(self):
        if self._error is not None:
            raise self._error
        if self._op == "insert":
            row = {"id": len(self._table) + 1, **self._payload}
            self._table.append(row)
            return MockSupabaseResponse([row] if self._returning else [])
        if self._op == "delete":
            for row in self._filtered_data:
                self._table.remove(row)
            return MockSupabaseResponse(self._filtered_data if self._returning else [])
        return MockSupabaseResponse(self._rows())


class MockSupabaseClient:
    def __init__(self, tables: Dict[str, List[Dict]]):
        self.tables = tables
        self.error = None
        self.returning = True
        self.queries: List[MockSupabaseQuery] = []

    def table(self, name: str):
        query = MockSupabaseQuery(self.tables.setdefault(name, []), self.error, self.returning)
        self.queries.append(query)
        return query


def api_error(code: str) -> APIError:
    return APIError({"message": f"error {code}", "code": code, "hint": None, "details": None})


@pytest.fixture
def client():
    return MockSupabaseClient({
        "grants": [{"id": 2, "title": "B"}, {"id": 1, "title": "A"}],
        "grant_categories": [{"grant_id": 1, "category_id": 5}],
        "saved_grants": [
            {"id": 1, "grant_id": 1, "user_id": "a"},
            {"id": 2, "grant_id": 1, "user_id": "b"},
            {"id": 3, "grant_id": 2, "user_id": "a"},
        ],
    })


# ============================================================================
# TESTS
# ============================================================================

class TestReads:
    @pytest.mark.asyncio
    async def test_query_by_ids(self, client):
        rows = await SupabaseGateway(client).query_by_ids("grants", [1])
        assert rows == [{"id": 1, "title": "A"}]

    @pytest.mark.asyncio
    async def test_query_by_ids_uses_grant_id_for_join_tables(self, client):
        rows = await SupabaseGateway(client).query_by_ids("grant_categories", [1])
        assert rows == [{"grant_id": 1, "category_id": 5}]

    @pytest.mark.asyncio
    async def test_query_all_orders_by_key(self, client):
        rows = await SupabaseGateway(client).query_all("grants")
        assert [r["id"] for r in rows] == [1, 2]

    @pytest.mark.asyncio
    async def test_count_distinct_actors(self, client):
        counts = await SupabaseGateway(client).count_distinct_actors(
            "saved_grants", "grant_id", [1, 2]
        )
        assert counts == {1: 2, 2: 1}

    @pytest.mark.asyncio
    async def test_query_by_scope_applies_match_and_order(self, client):
        rows = await SupabaseGateway(client).query_by_scope(
            "saved_grants", "user_id", "a", match={"grant_id": 2},
            order_by="id", descending=True,
        )
        assert [r["id"] for r in rows] == [3]
        assert client.queries[-1].order_calls == [("id", True)]

    @pytest.mark.asyncio
    async def test_unknown_collection(self, client):
        with pytest.raises(ValueError):
            await SupabaseGateway(client).query_all("users")


class TestPagedReads:
    """Reads walk ranged pages so PostgREST max-rows cannot truncate them."""

    @pytest.fixture
    def paged_client(self, monkeypatch):
        monkeypatch.setattr(supabase_gateway, "PAGE_SIZE", 2)
        return MockSupabaseClient({
            "grants": [{"id": i, "title": f"G{i}"} for i in (5, 3, 1, 4, 2)],
            "saved_grants": [
                {"id": i, "grant_id": 1 if i <= 3 else 2, "user_id": f"u{i}"}
                for i in range(1, 6)
            ],
        })

    def ranges(self, client):
        return [call for query in client.queries for call in query.range_calls]

    @pytest.mark.asyncio
    async def test_query_all_reads_every_page(self, paged_client):
        rows = await SupabaseGateway(paged_client).query_all("grants")
        assert [r["id"] for r in rows] == [1, 2, 3, 4, 5]
        assert self.ranges(paged_client) == [(0, 1), (2, 3), (4, 5)]

    @pytest.mark.asyncio
    async def test_limit_stops_paging(self, paged_client):
        rows = await SupabaseGateway(paged_client).query_all("grants", limit=3)
        assert [r["id"] for r in rows] == [1, 2, 3]
        assert self.ranges(paged_client) == [(0, 1), (2, 2)]

    @pytest.mark.asyncio
    async def test_count_spans_pages(self, paged_client):
        counts = await SupabaseGateway(paged_client).count_distinct_actors(
            "saved_grants", "grant_id", [1, 2]
        )
        assert counts == {1: 3, 2: 2}

    @pytest.mark.asyncio
    async def test_scoped_read_adds_key_tiebreak(self, paged_client):
        await SupabaseGateway(paged_client).query_by_scope(
            "saved_grants", "user_id", "u1", order_by="created_at", descending=True
        )
        assert paged_client.queries[-1].order_calls == [("created_at", True), ("id", False)]


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_returns_row(self, client):
        row = await SupabaseGateway(client).insert("saved_grants", {"grant_id": 2, "user_id": "b"})
        assert row["grant_id"] == 2
        assert len(client.tables["saved_grants"]) == 4

    @pytest.mark.asyncio
    async def test_insert_without_returned_row_is_permission_denied(self, client):
        client.returning = False
        with pytest.raises(PermissionDeniedError):
            await SupabaseGateway(client).insert("saved_grants", {"grant_id": 2, "user_id": "b"})

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_found(self, client):
        with pytest.raises(NotFoundError):
            await SupabaseGateway(client).delete("saved_grants", {"grant_id": 9, "user_id": "a"})

    @pytest.mark.asyncio
    async def test_delete_existing(self, client):
        await SupabaseGateway(client).delete("saved_grants", {"grant_id": 2, "user_id": "a"})
        assert len(client.tables["saved_grants"]) == 2


class TestErrorTranslation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [
            ("23505", DuplicateError),
            ("42501", PermissionDeniedError),
            ("PGRST116", NotFoundError),
            ("57014", TransientError),
        ],
    )
    async def test_api_error_codes(self, client, code, expected):
        client.error = api_error(code)
        with pytest.raises(expected):
            await SupabaseGateway(client).query_by_ids("grants", [1])

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, client):
        client.error = httpx.ConnectError("connection refused")
        with pytest.raises(TransientError):
            await SupabaseGateway(client).query_all("grants")
