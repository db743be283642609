"""Data store gateway: the narrow interface tracking code uses to reach the store.

:class:`DataStoreGateway` is the protocol; :class:`SqlAlchemyGateway` is the
default adapter on top of an ``AsyncSession``.  The PostgREST adapter lives
in :mod:`fundspace.services.supabase_gateway`.

Rows cross this boundary as plain dicts keyed by column name, so callers
never depend on which adapter is active.  Store exceptions are translated
into the :mod:`fundspace.errors` taxonomy here and nowhere else.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Protocol

from sqlalchemy import delete, distinct, func, inspect, select
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from fundspace.errors import (
    DuplicateError,
    NotFoundError,
    PermissionDeniedError,
    TrackingError,
    TransientError,
)
from fundspace.models.db import (
    Category,
    Grant,
    GrantApplication,
    GrantAward,
    GrantCategory,
    GrantLocation,
    Location,
    Organization,
    OrganizationMember,
    SavedGrant,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for insufficient_privilege (also raised by RLS policies)
INSUFFICIENT_PRIVILEGE = "42501"

COLLECTIONS: dict[str, type] = {
    "grants": Grant,
    "organizations": Organization,
    "organization_members": OrganizationMember,
    "categories": Category,
    "locations": Location,
    "grant_categories": GrantCategory,
    "grant_locations": GrantLocation,
    "saved_grants": SavedGrant,
    "grant_applications": GrantApplication,
    "grant_awards": GrantAward,
}


class DataStoreGateway(Protocol):
    """Operations the tracking subsystem needs from the remote store."""

    async def query_by_ids(self, collection: str, ids: Iterable[Any]) -> list[dict]:
        """Bulk fetch rows by primary key."""
        ...

    async def query_all(self, collection: str, *, limit: Optional[int] = None) -> list[dict]:
        """Every row of a (small) collection, e.g. the public grant catalog."""
        ...

    async def query_join(
        self, collection: str, foreign_key_field: str, ids: Iterable[Any]
    ) -> list[dict]:
        """Bulk fetch join rows whose ``foreign_key_field`` is in ``ids``."""
        ...

    async def count_distinct_actors(
        self,
        collection: str,
        group_key: str,
        ids: Iterable[Any],
        actor_field: str = "user_id",
    ) -> dict[Any, int]:
        """Distinct ``actor_field`` values per ``group_key`` value."""
        ...

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict:
        """Insert one row and return it as stored."""
        ...

    async def delete(self, collection: str, match: Mapping[str, Any]) -> None:
        """Delete rows equal to ``match``; NotFoundError when none matched."""
        ...

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
        """Rows owned by one actor or organization."""
        ...


def _row_to_dict(row: Any) -> dict:
    mapper = inspect(row).mapper
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class SqlAlchemyGateway:
    """Gateway backed by a SQLAlchemy ``AsyncSession``.

    Inserts and deletes run inside a SAVEPOINT so a constraint violation
    only rolls back that statement and leaves the request's session usable.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _model(collection: str) -> type:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}") from None

    @staticmethod
    def _column(model: type, name: str):
        column = getattr(model, name, None)
        if column is None:
            raise ValueError(f"{model.__tablename__} has no column '{name}'")
        return column

    def _translate(self, exc: SQLAlchemyError, collection: str) -> TrackingError:
        if isinstance(exc, IntegrityError):
            return DuplicateError(f"Row already exists in {collection}", collection=collection)
        if isinstance(exc, DBAPIError):
            if _sqlstate(exc) == INSUFFICIENT_PRIVILEGE:
                return PermissionDeniedError(
                    f"Not permitted to modify {collection}", collection=collection
                )
            if exc.connection_invalidated or isinstance(
                exc, (OperationalError, InterfaceError)
            ):
                return TransientError(f"Store unavailable ({collection})", collection=collection)
        return TransientError(f"Store error on {collection}: {exc}", collection=collection)

    async def _select(self, collection: str, stmt) -> list[dict]:
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._translate(e, collection) from e
        return [_row_to_dict(row) for row in result.scalars().all()]

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def query_by_ids(self, collection: str, ids: Iterable[Any]) -> list[dict]:
        ids = list(ids)
        if not ids:
            return []
        model = self._model(collection)
        pk = inspect(model).primary_key[0]
        return await self._select(collection, select(model).where(pk.in_(ids)))

    async def query_all(self, collection: str, *, limit: Optional[int] = None) -> list[dict]:
        model = self._model(collection)
        pk = inspect(model).primary_key[0]
        stmt = select(model).order_by(pk)
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._select(collection, stmt)

    async def query_join(
        self, collection: str, foreign_key_field: str, ids: Iterable[Any]
    ) -> list[dict]:
        ids = list(ids)
        if not ids:
            return []
        model = self._model(collection)
        column = self._column(model, foreign_key_field)
        return await self._select(collection, select(model).where(column.in_(ids)))

    async def count_distinct_actors(
        self,
        collection: str,
        group_key: str,
        ids: Iterable[Any],
        actor_field: str = "user_id",
    ) -> dict[Any, int]:
        ids = list(ids)
        if not ids:
            return {}
        model = self._model(collection)
        group_column = self._column(model, group_key)
        actor_column = self._column(model, actor_field)
        stmt = (
            select(group_column, func.count(distinct(actor_column)))
            .where(group_column.in_(ids))
            .group_by(group_column)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._translate(e, collection) from e
        return {row[0]: int(row[1]) for row in result.all()}

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
        model = self._model(collection)
        stmt = select(model).where(self._column(model, scope_field) == scope_id)
        for name, value in (match or {}).items():
            stmt = stmt.where(self._column(model, name) == value)
        if order_by:
            column = self._column(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        return await self._select(collection, stmt)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> dict:
        model = self._model(collection)
        row = model(**dict(fields))
        try:
            async with self.db.begin_nested():
                self.db.add(row)
            await self.db.refresh(row)
        except SQLAlchemyError as e:
            raise self._translate(e, collection) from e
        logger.debug("Inserted %s row %s", collection, fields)
        return _row_to_dict(row)

    async def delete(self, collection: str, match: Mapping[str, Any]) -> None:
        if not match:
            raise ValueError("Refusing to delete without match criteria")
        model = self._model(collection)
        stmt = delete(model)
        for name, value in match.items():
            stmt = stmt.where(self._column(model, name) == value)
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise self._translate(e, collection) from e
        if not result.rowcount:
            raise NotFoundError(f"No {collection} row matched {dict(match)}", collection=collection)
