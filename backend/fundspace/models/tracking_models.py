"""Pydantic schemas for engagement tracking and list views."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from fundspace.errors import ErrorKind

SCOPE_KINDS = ["individual", "organization"]
TRACKING_SECTIONS = ["saved", "applications", "received"]
TRACKING_ACTIONS = [
    "save",
    "unsave",
    "mark_applied",
    "remove_application",
    "mark_received",
    "remove_award",
]
GRANT_STATUSES = ["Open", "Rolling", "Closed"]


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


class Scope(BaseModel):
    """Resolved ownership unit for one operation.

    ``actor_id`` is the user who triggered the operation.  Saved records are
    always owned by the actor; application and award records by ``kind``/``id``.
    """

    kind: str
    id: str
    actor_id: str

    model_config = {"frozen": True}

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        if v not in SCOPE_KINDS:
            raise ValueError(
                f"Invalid scope kind '{v}'. Must be one of: {', '.join(SCOPE_KINDS)}"
            )
        return v

    @property
    def is_organization(self) -> bool:
        return self.kind == "organization"


# ---------------------------------------------------------------------------
# Base records
# ---------------------------------------------------------------------------


class SavedRecord(BaseModel):
    """A ``saved_grants`` row: one actor bookmarked one grant."""

    grant_id: int
    save_id: Optional[int] = None
    actor_id: str
    saved_date: Optional[datetime] = None

    def view_metadata(self) -> Dict[str, Any]:
        return {"save_id": self.save_id, "saved_date": self.saved_date}


class ApplicationRecord(BaseModel):
    """A ``grant_applications`` row owned by a scope."""

    grant_id: int
    application_id: Optional[int] = None
    scope_id: str
    status: Optional[str] = "submitted"
    applied_date: Optional[datetime] = None
    notes: Optional[str] = None

    def view_metadata(self) -> Dict[str, Any]:
        return {
            "application_id": self.application_id,
            "application_status": self.status,
            "applied_date": self.applied_date,
            "application_notes": self.notes,
        }


class AwardRecord(BaseModel):
    """A ``grant_awards`` row owned by a scope."""

    grant_id: int
    award_id: Optional[int] = None
    scope_id: str
    amount: Optional[float] = None
    award_date: Optional[datetime] = None
    status: Optional[str] = "active"
    notes: Optional[str] = None

    def view_metadata(self) -> Dict[str, Any]:
        return {
            "award_id": self.award_id,
            "award_amount": self.amount,
            "award_date": self.award_date,
            "award_status": self.status,
            "award_notes": self.notes,
        }


class CatalogRecord(BaseModel):
    """An untracked reference to a grant, used for the public grant list."""

    grant_id: int

    def view_metadata(self) -> Dict[str, Any]:
        return {}


BaseRecord = Union[SavedRecord, ApplicationRecord, AwardRecord, CatalogRecord]


# ---------------------------------------------------------------------------
# View model
# ---------------------------------------------------------------------------


class OrganizationSummary(BaseModel):
    id: int
    name: str
    image_url: Optional[str] = None
    banner_image_url: Optional[str] = None
    slug: Optional[str] = None


class GrantView(BaseModel):
    """Denormalized, display-ready grant.  Built on every read, never stored."""

    id: int
    title: str
    description: Optional[str] = None
    grant_type: Optional[str] = None
    eligibility_criteria: Optional[str] = None
    application_url: Optional[str] = None
    status: Optional[str] = None
    max_funding_amount: Optional[float] = None
    funding_amount_text: Optional[str] = None
    funding_amount: Union[float, str] = "Not specified"
    funding_display: str = "Not specified"
    due_date: Optional[date] = None
    created_at: Optional[datetime] = None

    # Resolved organization
    organization_id: int
    foundation_name: str
    funder_logo_url: Optional[str] = None
    organization: OrganizationSummary

    # Resolved tags
    categories: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)

    # Live aggregate
    save_count: int = 0

    # Tracking metadata (whichever base record produced this view)
    save_id: Optional[int] = None
    saved_date: Optional[datetime] = None
    application_id: Optional[int] = None
    application_status: Optional[str] = None
    applied_date: Optional[datetime] = None
    application_notes: Optional[str] = None
    award_id: Optional[int] = None
    award_amount: Optional[float] = None
    award_date: Optional[datetime] = None
    award_status: Optional[str] = None
    award_notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Filtering / paging
# ---------------------------------------------------------------------------


class RangeFilter(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class FilterConfig(BaseModel):
    """Filter values for one list view.  Keys are validated per entity profile."""

    search_term: str = ""
    selections: Dict[str, List[str]] = Field(default_factory=dict)
    scalars: Dict[str, Optional[str]] = Field(default_factory=dict)
    status: Optional[str] = None
    ranges: Dict[str, RangeFilter] = Field(default_factory=dict)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v in (None, ""):
            return None
        if v not in GRANT_STATUSES:
            raise ValueError(
                f"Invalid status '{v}'. Must be one of: {', '.join(GRANT_STATUSES)}"
            )
        return v


class PageResult(BaseModel):
    items: List[Any] = Field(default_factory=list)
    page: int = 1
    page_size: int = 0
    total_count: int = 0
    total_pages: int = 0


# ---------------------------------------------------------------------------
# Request / response bodies
# ---------------------------------------------------------------------------


class TrackingActionRequest(BaseModel):
    """Body for ``POST /me/tracking/actions``."""

    action: str
    grant_id: int
    amount: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        if v not in TRACKING_ACTIONS:
            raise ValueError(
                f"Invalid action '{v}'. Must be one of: {', '.join(TRACKING_ACTIONS)}"
            )
        return v


class ActionResult(BaseModel):
    success: bool
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    section: List[GrantView] = Field(default_factory=list)


class SectionCounts(BaseModel):
    saved: int = 0
    applications: int = 0
    received: int = 0


class TrackedPageResponse(BaseModel):
    section: str
    scope: Scope
    grants: List[GrantView]
    page: int
    total_count: int
    total_pages: int


class GrantSearchRequest(BaseModel):
    """Body for ``POST /grants/search``."""

    filter: FilterConfig = Field(default_factory=FilterConfig)
    sort: str = "due_date_asc"
    page: int = 1
    page_size: int = Field(12, ge=1, le=100)


class GrantSearchResponse(BaseModel):
    grants: List[GrantView]
    page: int
    total_count: int
    total_pages: int
    facets: Dict[str, List[str]] = Field(default_factory=dict)
