"""Public grant catalog: search with filters and facets, bookmark counts."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from fundspace.deps import _safe_error, get_gateway, tracking_http_error
from fundspace.errors import TrackingError
from fundspace.models.tracking_models import (
    CatalogRecord,
    GrantSearchRequest,
    GrantSearchResponse,
)
from fundspace.services.bookmark_counter import BookmarkCounter
from fundspace.services.list_engine import facet_values, get_filtered_page
from fundspace.services.record_assembly import RecordAssemblyService
from fundspace.services.store_gateway import DataStoreGateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["grants"])


# ---------------------------------------------------------------------------
# POST /grants/search
# ---------------------------------------------------------------------------


@router.post("/grants/search", response_model=GrantSearchResponse)
async def search_grants(
    body: GrantSearchRequest,
    gateway: DataStoreGateway = Depends(get_gateway),
):
    """Filter, sort and page the whole grant catalog.

    Facets are computed over the full catalog so the filter options do not
    shrink as filters are applied.
    """
    try:
        grant_rows = await gateway.query_all("grants")
        views = await RecordAssemblyService(gateway).assemble(
            [CatalogRecord(grant_id=row["id"]) for row in grant_rows]
        )
        result = get_filtered_page(
            views, body.filter, body.sort, body.page, body.page_size
        )
    except TrackingError as e:
        raise tracking_http_error("searching grants", e) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("searching grants", e),
        ) from e

    return GrantSearchResponse(
        grants=result.items,
        page=result.page,
        total_count=result.total_count,
        total_pages=result.total_pages,
        facets=facet_values(views),
    )


# ---------------------------------------------------------------------------
# GET  /grants/{grant_id}/bookmarks
# ---------------------------------------------------------------------------


@router.get("/grants/{grant_id}/bookmarks")
async def get_bookmark_count(
    grant_id: int,
    gateway: DataStoreGateway = Depends(get_gateway),
):
    """How many distinct users have saved ``grant_id``."""
    try:
        count = await BookmarkCounter(gateway).count(grant_id)
    except TrackingError as e:
        raise tracking_http_error("counting bookmarks", e) from e
    return {"grant_id": grant_id, "save_count": count}
