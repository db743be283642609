"""
Integration Tests for SqlAlchemyGateway against in-memory SQLite

Exercises the real ORM models, unique constraints and SAVEPOINT handling
through aiosqlite, plus the error translation table.

Usage:
    cd backend && pytest tests/test_store_gateway.py -v
"""

import pytest
import sys
import os
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest_asyncio
from fastapi import HTTPException
from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fundspace import database, deps  # noqa: E402
from fundspace.errors import (  # noqa: E402
    DuplicateError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from fundspace.models.db import (  # noqa: E402
    Base,
    Category,
    Grant,
    GrantApplication,
    GrantCategory,
    Organization,
    SavedGrant,
)
from fundspace.models.tracking_models import Scope  # noqa: E402
from fundspace.services.engagement_ledger import EngagementLedger  # noqa: E402
from fundspace.services.record_assembly import RecordAssemblyService  # noqa: E402
from fundspace.services.store_gateway import SqlAlchemyGateway  # noqa: E402


# ============================================================================
# TEST FIXTURES
# ============================================================================

@pytest_asyncio.fixture
async def session():
    """Fresh in-memory database with a tiny catalog."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transactions break SAVEPOINT; take over BEGIN.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        db.add_all([
            Organization(id=1, name="Bay Area Foundation"),
            Category(id=1, name="Health"),
        ])
        await db.flush()
        db.add_all([
            Grant(id=101, title="Community Health Grant", organization_id=1,
                  deadline=date(2030, 6, 1), max_funding_amount=50000),
            Grant(id=102, title="Arts Access Fund", organization_id=1,
                  funding_amount_text="Up to $25,000"),
        ])
        await db.flush()
        db.add(GrantCategory(grant_id=101, category_id=1))
        await db.commit()
        yield db
    await engine.dispose()


@pytest.fixture
def gw(session):
    return SqlAlchemyGateway(session)


# ============================================================================
# READS
# ============================================================================

class TestReads:
    @pytest.mark.asyncio
    async def test_query_by_ids(self, gw):
        rows = await gw.query_by_ids("grants", [101, 999])
        assert [r["id"] for r in rows] == [101]
        assert rows[0]["deadline"] == date(2030, 6, 1)

    @pytest.mark.asyncio
    async def test_query_by_ids_empty_skips_store(self, gw):
        assert await gw.query_by_ids("grants", []) == []

    @pytest.mark.asyncio
    async def test_query_all_is_ordered_by_key(self, gw):
        rows = await gw.query_all("grants")
        assert [r["id"] for r in rows] == [101, 102]
        assert len(await gw.query_all("grants", limit=1)) == 1

    @pytest.mark.asyncio
    async def test_query_join(self, gw):
        rows = await gw.query_join("grant_categories", "grant_id", [101, 102])
        assert rows == [{"grant_id": 101, "category_id": 1}]

    @pytest.mark.asyncio
    async def test_count_distinct_actors(self, gw, session):
        session.add_all([
            SavedGrant(grant_id=101, user_id="a"),
            SavedGrant(grant_id=101, user_id="b"),
            SavedGrant(grant_id=102, user_id="a"),
        ])
        await session.flush()
        counts = await gw.count_distinct_actors("saved_grants", "grant_id", [101, 102])
        assert counts == {101: 2, 102: 1}

    @pytest.mark.asyncio
    async def test_query_by_scope_with_match_and_order(self, gw, session):
        session.add_all([
            GrantApplication(grant_id=101, scope_kind="organization", scope_id="7",
                             applied_date=datetime(2025, 1, 1, tzinfo=timezone.utc)),
            GrantApplication(grant_id=102, scope_kind="organization", scope_id="7",
                             applied_date=datetime(2025, 2, 1, tzinfo=timezone.utc)),
            GrantApplication(grant_id=101, scope_kind="individual", scope_id="7"),
        ])
        await session.flush()
        rows = await gw.query_by_scope(
            "grant_applications", "scope_id", "7",
            match={"scope_kind": "organization"}, order_by="applied_date", descending=True,
        )
        assert [r["grant_id"] for r in rows] == [102, 101]

    @pytest.mark.asyncio
    async def test_unknown_collection_and_column(self, gw):
        with pytest.raises(ValueError):
            await gw.query_all("users")
        with pytest.raises(ValueError):
            await gw.query_join("grants", "no_such_column", [1])


# ============================================================================
# WRITES
# ============================================================================

class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_returns_stored_row(self, gw):
        row = await gw.insert("saved_grants", {"grant_id": 101, "user_id": "a"})
        assert row["id"] is not None
        assert row["created_at"] is not None

    @pytest.mark.asyncio
    async def test_unique_violation_is_duplicate_and_session_survives(self, gw):
        await gw.insert("saved_grants", {"grant_id": 101, "user_id": "a"})
        with pytest.raises(DuplicateError):
            await gw.insert("saved_grants", {"grant_id": 101, "user_id": "a"})
        # savepoint rollback leaves earlier work intact
        rows = await gw.query_by_scope("saved_grants", "user_id", "a")
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_application_unique_per_scope(self, gw):
        fields = {"grant_id": 101, "scope_kind": "organization", "scope_id": "7"}
        await gw.insert("grant_applications", fields)
        with pytest.raises(DuplicateError):
            await gw.insert("grant_applications", fields)
        await gw.insert("grant_applications", {**fields, "scope_kind": "individual"})

    @pytest.mark.asyncio
    async def test_delete(self, gw):
        await gw.insert("saved_grants", {"grant_id": 101, "user_id": "a"})
        await gw.delete("saved_grants", {"grant_id": 101, "user_id": "a"})
        with pytest.raises(NotFoundError):
            await gw.delete("saved_grants", {"grant_id": 101, "user_id": "a"})

    @pytest.mark.asyncio
    async def test_delete_requires_match(self, gw):
        with pytest.raises(ValueError):
            await gw.delete("saved_grants", {})


# ============================================================================
# ERROR TRANSLATION
# ============================================================================

class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(sqlstate)
        self.sqlstate = sqlstate


class TestErrorTranslation:
    def _failing_gateway(self, exc):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=exc)
        return SqlAlchemyGateway(db)

    @pytest.mark.asyncio
    async def test_operational_error_is_transient(self):
        gw = self._failing_gateway(OperationalError("SELECT 1", {}, Exception("down")))
        with pytest.raises(TransientError) as info:
            await gw.query_by_ids("grants", [1])
        assert info.value.retryable

    @pytest.mark.asyncio
    async def test_insufficient_privilege_is_permission_denied(self):
        gw = self._failing_gateway(ProgrammingError("SELECT 1", {}, _PgError("42501")))
        with pytest.raises(PermissionDeniedError):
            await gw.query_by_ids("grants", [1])

    @pytest.mark.asyncio
    async def test_integrity_error_is_duplicate(self):
        gw = self._failing_gateway(IntegrityError("INSERT", {}, _PgError("23505")))
        with pytest.raises(DuplicateError):
            await gw.query_by_ids("grants", [1])


# ============================================================================
# END TO END OVER SQLITE
# ============================================================================

class TestLedgerOverSqlite:
    @pytest.mark.asyncio
    async def test_save_apply_and_assemble(self, gw):
        scope = Scope(kind="individual", id="a", actor_id="a")
        ledger = EngagementLedger(gw)

        assert await ledger.save(101, "a") is True
        assert await ledger.save(101, "a") is False
        await ledger.mark_applied(101, scope)

        assert await ledger.list_saved(scope) == []
        views = await RecordAssemblyService(gw).assemble(await ledger.list_applications(scope))
        assert [v.id for v in views] == [101]
        assert views[0].categories == ["Health"]
        assert views[0].funding_amount == 50000.0
        assert views[0].save_count == 1


# ============================================================================
# REQUEST SESSION DEPENDENCY
# ============================================================================

class TestGetGateway:
    """deps.get_gateway commits through database.get_db, or rolls back."""

    def _session_factory(self):
        db = MagicMock()
        db.commit = AsyncMock()
        db.rollback = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=db)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)
        return factory, db

    @pytest.fixture
    def request_session(self, monkeypatch):
        factory, db = self._session_factory()
        monkeypatch.setattr(deps, "STORE_BACKEND", "sqlalchemy")
        monkeypatch.setattr(database, "async_session_factory", factory)
        return db

    @pytest.mark.asyncio
    async def test_commits_on_success(self, request_session):
        gen = deps.get_gateway()
        gateway = await gen.__anext__()
        assert isinstance(gateway, SqlAlchemyGateway)
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()
        request_session.commit.assert_awaited_once()
        request_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, request_session):
        gen = deps.get_gateway()
        await gen.__anext__()
        with pytest.raises(RuntimeError):
            await gen.athrow(RuntimeError("handler failed"))
        request_session.rollback.assert_awaited_once()
        request_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconfigured_database_is_503(self, monkeypatch):
        monkeypatch.setattr(deps, "STORE_BACKEND", "sqlalchemy")
        monkeypatch.setattr(database, "async_session_factory", None)
        with pytest.raises(HTTPException) as info:
            await deps.get_gateway().__anext__()
        assert info.value.status_code == 503
