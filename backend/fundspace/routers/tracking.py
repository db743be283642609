"""Tracking router: the signed-in user's Saved / Applied / Received sections.

Scope is resolved once per request and handed to every downstream call, so
one request never mixes individual and organization ownership.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError

from fundspace.deps import (
    TRACKING_PAGE_SIZE,
    _safe_error,
    get_current_user,
    get_gateway,
    status_for,
    tracking_http_error,
)
from fundspace.errors import TrackingError
from fundspace.models.tracking_models import (
    TRACKING_SECTIONS,
    ActionResult,
    FilterConfig,
    RangeFilter,
    SectionCounts,
    TrackedPageResponse,
    TrackingActionRequest,
)
from fundspace.services.engagement_ledger import EngagementLedger
from fundspace.services.list_engine import get_filtered_page
from fundspace.services.record_assembly import RecordAssemblyService
from fundspace.services.scope_resolver import ScopeResolver
from fundspace.services.store_gateway import DataStoreGateway
from fundspace.services.tracking_orchestrator import TrackingOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["tracking"])


def _orchestrator(gateway: DataStoreGateway) -> TrackingOrchestrator:
    return TrackingOrchestrator(EngagementLedger(gateway), RecordAssemblyService(gateway))


# ---------------------------------------------------------------------------
# GET  /me/tracking/counts
# ---------------------------------------------------------------------------


@router.get("/me/tracking/counts", response_model=SectionCounts)
async def get_tracking_counts(
    gateway: DataStoreGateway = Depends(get_gateway),
    current_user: dict = Depends(get_current_user),
):
    """Number of base records in each tracking section for the resolved scope."""
    try:
        scope = await ScopeResolver(gateway).resolve(current_user["id"])
        return await EngagementLedger(gateway).section_counts(scope)
    except TrackingError as e:
        raise tracking_http_error("loading tracking counts", e) from e


# ---------------------------------------------------------------------------
# GET  /me/tracking/{section}
# ---------------------------------------------------------------------------


@router.get("/me/tracking/{section}", response_model=TrackedPageResponse)
async def get_tracked_section(
    section: str,
    q: str = Query("", description="Free-text search term"),
    category: List[str] = Query([], description="Category names (any of)"),
    location: List[str] = Query([], description="Location names (any of)"),
    grant_type: Optional[str] = Query(None, description="Exact grant type"),
    status_filter: Optional[str] = Query(
        None, alias="status", description="Open, Rolling or Closed"
    ),
    min_funding: Optional[float] = Query(None, ge=0),
    max_funding: Optional[float] = Query(None, ge=0),
    sort: str = Query("due_date_asc", description="Sort criterion"),
    page: int = Query(1, description="1-indexed page"),
    page_size: int = Query(TRACKING_PAGE_SIZE, ge=1, le=100),
    gateway: DataStoreGateway = Depends(get_gateway),
    current_user: dict = Depends(get_current_user),
):
    """Assembled grants for one tracking section, filtered, sorted and paged.

    Args:
        section: ``saved``, ``applications`` or ``received``.
        q: Search term matched against title, description, funder and categories.
        category: Category filter, matches grants tagged with any of them.
        location: Location filter, matches grants tagged with any of them.
        grant_type: Exact grant type.
        status_filter: Derived deadline status.
        min_funding: Lower bound of the funding range filter.
        max_funding: Upper bound of the funding range filter.
        sort: One of the grant sort criteria.
        page: Page number (values below 1 are treated as 1).
        page_size: Items per page.

    Returns:
        TrackedPageResponse with the page of grants and totals.
    """
    if section not in TRACKING_SECTIONS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown tracking section '{section}'",
        )

    try:
        config = FilterConfig(
            search_term=q,
            selections={"category": category, "location": location},
            scalars={"grant_type": grant_type},
            status=status_filter,
            ranges=(
                {"funding": RangeFilter(min=min_funding, max=max_funding)}
                if min_funding is not None or max_funding is not None
                else {}
            ),
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e

    try:
        scope = await ScopeResolver(gateway).resolve(current_user["id"])
        views = await _orchestrator(gateway).get_tracked_section(section, scope)
        result = get_filtered_page(views, config, sort, page, page_size)
    except TrackingError as e:
        raise tracking_http_error(f"loading {section}", e) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error(f"loading {section}", e),
        ) from e

    return TrackedPageResponse(
        section=section,
        scope=scope,
        grants=result.items,
        page=result.page,
        total_count=result.total_count,
        total_pages=result.total_pages,
    )


# ---------------------------------------------------------------------------
# POST /me/tracking/actions
# ---------------------------------------------------------------------------


@router.post("/me/tracking/actions", response_model=ActionResult)
async def perform_tracking_action(
    body: TrackingActionRequest,
    response: Response,
    gateway: DataStoreGateway = Depends(get_gateway),
    current_user: dict = Depends(get_current_user),
):
    """Save, unsave, mark applied / received, or undo either mark.

    Duplicate and already-removed outcomes are reported as success.  Other
    failures return ``success: false`` with the error kind and a status code
    matching it.
    """
    try:
        scope = await ScopeResolver(gateway).resolve(current_user["id"])
    except TrackingError as e:
        raise tracking_http_error("resolving tracking scope", e) from e

    result = await _orchestrator(gateway).perform_action(
        body.action,
        body.grant_id,
        scope,
        {"amount": body.amount, "notes": body.notes},
    )
    if not result.success and result.error is not None:
        response.status_code = status_for(result.error)
    logger.info(
        "User %s %s grant %s (%s %s): success=%s",
        current_user["id"],
        body.action,
        body.grant_id,
        scope.kind,
        scope.id,
        result.success,
    )
    return result
