"""Health-check router."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from fundspace import __version__, database
from fundspace.deps import STORE_BACKEND, supabase

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check"""
    return {"status": "ok", "message": "Fundspace API is running"}


@router.get("/api/v1/health")
async def health_check():
    """Report which store backend is configured and reachable in principle."""
    degraded = []
    if STORE_BACKEND == "supabase" and supabase is None:
        degraded.append("supabase")
    if STORE_BACKEND != "supabase" and database.async_session_factory is None:
        degraded.append("database")

    return {
        "status": "degraded" if degraded else "healthy",
        "version": __version__,
        "store_backend": STORE_BACKEND,
        "degraded": degraded,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
