"""Shared dependencies for all Fundspace API routers.

Centralises the Supabase client singleton, the store-gateway dependency,
the authentication dependency and small utility helpers so that every
router module can ``from fundspace.deps import …`` without pulling in
``main``.
"""

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import HTTPException, status
from supabase import Client, create_client

from fundspace import database
from fundspace.auth import get_current_user  # noqa: F401
from fundspace.errors import ErrorKind, TrackingError, USER_MESSAGES
from fundspace.services.store_gateway import DataStoreGateway, SqlAlchemyGateway
from fundspace.services.supabase_gateway import SupabaseGateway

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
STORE_BACKEND = os.getenv("STORE_BACKEND", "sqlalchemy").lower()
TRACKING_PAGE_SIZE = int(os.getenv("TRACKING_PAGE_SIZE", "12"))

# ---------------------------------------------------------------------------
# Supabase client (singleton)
# ---------------------------------------------------------------------------
_supabase_url = os.getenv("SUPABASE_URL")
_supabase_service_key = os.getenv("SUPABASE_SERVICE_KEY")

supabase: Optional[Client] = None
if _supabase_url and _supabase_service_key:
    supabase = create_client(_supabase_url, _supabase_service_key)


# ---------------------------------------------------------------------------
# Store gateway dependency
# ---------------------------------------------------------------------------


async def get_gateway() -> AsyncGenerator[DataStoreGateway, None]:
    """Yield the configured store gateway for one request.

    With the SQLAlchemy backend the request shares one session that is
    committed on success and rolled back on any exception.
    """
    if STORE_BACKEND == "supabase":
        if supabase is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Supabase store is not configured",
            )
        yield SupabaseGateway(supabase)
        return

    if database.async_session_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )
    async with asynccontextmanager(database.get_db)() as session:
        yield SqlAlchemyGateway(session)


# ---------------------------------------------------------------------------
# Small utility helpers
# ---------------------------------------------------------------------------


def _safe_error(operation: str, e: Exception) -> str:
    """Log the full exception but return a safe message without internal details.

    This prevents leaking stack traces, file paths, or database internals
    to API consumers while preserving full diagnostics in server logs.
    """
    logger.exception("Error during %s", operation)
    return f"{operation} failed. Please try again or contact support."


_STATUS_FOR_KIND: dict[ErrorKind, int] = {
    ErrorKind.PERMISSION: status.HTTP_403_FORBIDDEN,
    ErrorKind.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.ASSEMBLY: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DUPLICATE: status.HTTP_409_CONFLICT,
}


def status_for(kind: ErrorKind) -> int:
    return _STATUS_FOR_KIND.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def tracking_http_error(operation: str, e: TrackingError) -> HTTPException:
    """Map a tracking error to an HTTPException with a user-facing message."""
    logger.warning("%s failed with %s: %s", operation, e.kind.value, e)
    return HTTPException(
        status_code=status_for(e.kind),
        detail=USER_MESSAGES.get(e.kind, f"{operation} failed. Please try again."),
    )
