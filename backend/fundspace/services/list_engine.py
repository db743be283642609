"""Generic filter / sort / paginate engine behind every list view.

The three stages compose in order and know nothing about each other::

    filtered = filter_items(items, config, GRANT_PROFILE)
    ordered = sort_items(filtered, "due_date_asc", GRANT_PROFILE)
    result = paginate(ordered, page=2, page_size=12)

``filter_items`` always takes and returns the whole collection.  Per-field
predicates are built internally from an :class:`EntityProfile`, which names
the fields each entity type (grants, funders, nonprofits) exposes.  Filter
configs are validated against the profile up front, so a predicate never
has to guess at a missing field.

Items may be plain dicts or attribute objects such as
:class:`~fundspace.models.tracking_models.GrantView`.
"""

import logging
import math
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, TypeVar

from fundspace.helpers.funding import (
    coerce_date,
    funding_bounds,
    numeric_bounds,
    parse_budget_range,
    parse_max_funding_amount,
)
from fundspace.models.tracking_models import FilterConfig, PageResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Bounds = Callable[[Any], tuple[float, float]]


# ---------------------------------------------------------------------------
# Entity profiles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityProfile:
    """Field map for one entity type.

    Attributes:
        name: Profile label used in error messages.
        name_field: Field used by ``name_asc`` / ``name_desc``.
        text_fields: Fields searched by the free-text term.
        multi_select_fields: Filter key -> item field holding a name list.
        scalar_fields: Filter key -> item field compared for equality.
        range_fields: Filter key -> (item field, bounds parser).
        due_date_field: Field the derived Open/Rolling/Closed status reads.
        amount_field: Field used by ``amount_asc`` / ``amount_desc``.
        saved_date_field: Field used by ``saved_date_desc``.
    """

    name: str
    name_field: str
    text_fields: tuple[str, ...]
    multi_select_fields: dict[str, str] = field(default_factory=dict)
    scalar_fields: dict[str, str] = field(default_factory=dict)
    range_fields: dict[str, tuple[str, Bounds]] = field(default_factory=dict)
    due_date_field: Optional[str] = None
    amount_field: Optional[str] = None
    saved_date_field: Optional[str] = None

    def sort_criteria(self) -> list[str]:
        criteria = ["name_asc", "name_desc"]
        if self.due_date_field:
            criteria += ["due_date_asc", "due_date_desc"]
        if self.amount_field:
            criteria += ["amount_asc", "amount_desc"]
        if self.saved_date_field:
            criteria.append("saved_date_desc")
        return criteria


GRANT_PROFILE = EntityProfile(
    name="grant",
    name_field="title",
    text_fields=("title", "description", "foundation_name", "categories"),
    multi_select_fields={"category": "categories", "location": "locations"},
    scalar_fields={"grant_type": "grant_type"},
    range_fields={"funding": ("funding_amount", funding_bounds)},
    due_date_field="due_date",
    amount_field="funding_amount",
    saved_date_field="saved_date",
)

FUNDER_PROFILE = EntityProfile(
    name="funder",
    name_field="name",
    text_fields=("name", "description", "focus_areas", "grant_types"),
    multi_select_fields={"focus_area": "focus_areas", "location": "locations"},
    scalar_fields={"grant_type": "grant_types"},
    range_fields={"funding": ("total_funding_annually", funding_bounds)},
    amount_field="total_funding_annually",
)

NONPROFIT_PROFILE = EntityProfile(
    name="nonprofit",
    name_field="name",
    text_fields=("name", "description", "tagline", "focus_areas"),
    multi_select_fields={"focus_area": "focus_areas", "location": "locations"},
    range_fields={
        "budget": ("budget", parse_budget_range),
        "staff": ("staff_count", numeric_bounds),
    },
)

# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------


def _get(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _name_of(value: Any) -> str:
    if isinstance(value, Mapping):
        value = value.get("name")
    elif value is not None and not isinstance(value, str):
        value = getattr(value, "name", value)
    return "" if value is None else str(value)


def _names(value: Any) -> list[str]:
    """Tag names from a list, a list of ``{"name": ...}`` rows, or CSV text."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, Iterable):
        return [name for name in (_name_of(v).strip() for v in value) if name]
    return [_name_of(value).strip()]


def _normalized(values: Iterable[str]) -> set[str]:
    return {v.strip().lower() for v in values if v and v.strip()}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_filter_config(config: FilterConfig, profile: EntityProfile) -> None:
    """Reject filter keys the profile does not define.

    Raises:
        ValueError: If any selection, scalar, range or status filter is not
            supported for ``profile``.
    """
    problems = []
    unknown = set(config.selections) - set(profile.multi_select_fields)
    if unknown:
        problems.append(f"multi-select {sorted(unknown)}")
    unknown = set(config.scalars) - set(profile.scalar_fields)
    if unknown:
        problems.append(f"scalar {sorted(unknown)}")
    unknown = set(config.ranges) - set(profile.range_fields)
    if unknown:
        problems.append(f"range {sorted(unknown)}")
    if config.status and not profile.due_date_field:
        problems.append("status")
    if problems:
        raise ValueError(
            f"Unsupported {profile.name} filters: {', '.join(problems)}"
        )


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def matches_status(due: Any, status: str, today: date) -> bool:
    """Derived grant status against ``today`` (a date, so midnight-normalized).

    A grant with no due date is both "Open" and "Rolling".
    """
    due_date = coerce_date(due)
    if status == "Open":
        return due_date is None or due_date >= today
    if status == "Rolling":
        return due_date is None
    if status == "Closed":
        return due_date is not None and due_date < today
    raise ValueError(f"Unknown status filter: {status}")


def _matches_search(item: Any, term: str, fields: Sequence[str]) -> bool:
    for name in fields:
        value = _get(item, name)
        if value is None:
            continue
        if isinstance(value, str):
            if term in value.lower():
                return True
        elif any(term in n.lower() for n in _names(value)):
            return True
    return False


def _matches_scalar(value: Any, wanted: str) -> bool:
    if isinstance(value, (list, tuple, set)):
        return wanted in value
    return value == wanted


def _range_predicate(
    item_field: str, parser: Bounds, minimum: Optional[float], maximum: Optional[float]
) -> Callable[[Any], bool]:
    # Overlap test: the item's upper bound reaches the minimum and its
    # lower bound stays under the maximum.
    def predicate(item: Any) -> bool:
        low, high = parser(_get(item, item_field))
        if minimum is not None and high < minimum:
            return False
        if maximum is not None and low > maximum:
            return False
        return True

    return predicate


def _build_predicates(
    config: FilterConfig, profile: EntityProfile, today: date
) -> list[Callable[[Any], bool]]:
    predicates: list[Callable[[Any], bool]] = []

    term = config.search_term.strip().lower()
    if term:
        predicates.append(
            lambda item: _matches_search(item, term, profile.text_fields)
        )

    for key, selected in config.selections.items():
        wanted = _normalized(selected)
        if not wanted:
            continue
        item_field = profile.multi_select_fields[key]
        predicates.append(
            lambda item, f=item_field, w=wanted: bool(
                _normalized(_names(_get(item, f))) & w
            )
        )

    for key, value in config.scalars.items():
        if value in (None, ""):
            continue
        item_field = profile.scalar_fields[key]
        predicates.append(
            lambda item, f=item_field, v=value: _matches_scalar(_get(item, f), v)
        )

    for key, bounds in config.ranges.items():
        if bounds.min is None and bounds.max is None:
            continue
        item_field, parser = profile.range_fields[key]
        predicates.append(_range_predicate(item_field, parser, bounds.min, bounds.max))

    if config.status:
        due_field = profile.due_date_field
        predicates.append(
            lambda item, s=config.status: matches_status(_get(item, due_field), s, today)
        )

    return predicates


# ---------------------------------------------------------------------------
# Stage 1: filter
# ---------------------------------------------------------------------------


def filter_items(
    items: Iterable[T],
    config: Optional[FilterConfig],
    profile: EntityProfile = GRANT_PROFILE,
    today: Optional[date] = None,
) -> list[T]:
    """Return the items matching every active filter field (AND across fields).

    Args:
        items: The full collection.
        config: Filter values; ``None`` keeps everything.
        profile: Field map for the entity type.
        today: Reference date for status filters (defaults to today).

    Raises:
        ValueError: If ``config`` names fields ``profile`` does not support.
    """
    items = list(items)
    if config is None:
        return items
    validate_filter_config(config, profile)
    predicates = _build_predicates(config, profile, today or date.today())
    if not predicates:
        return items
    return [item for item in items if all(p(item) for p in predicates)]


# ---------------------------------------------------------------------------
# Stage 2: sort
# ---------------------------------------------------------------------------


def _due_key(profile: EntityProfile) -> Callable[[Any], date]:
    def key(item: Any) -> date:
        return coerce_date(_get(item, profile.due_date_field)) or date.max

    return key


def sort_items(
    items: Iterable[T],
    criterion: str,
    profile: EntityProfile = GRANT_PROFILE,
) -> list[T]:
    """Stable sort by a named criterion.

    Missing due dates sort as ``date.max``: last ascending, first descending.

    Raises:
        ValueError: If ``criterion`` is not offered by ``profile``.
    """
    items = list(items)
    allowed = profile.sort_criteria()
    if criterion not in allowed:
        raise ValueError(
            f"Invalid sort '{criterion}' for {profile.name}. "
            f"Must be one of: {', '.join(allowed)}"
        )

    if criterion.startswith("due_date"):
        return sorted(items, key=_due_key(profile), reverse=criterion.endswith("desc"))

    if criterion.startswith("amount"):
        return sorted(
            items,
            key=lambda item: parse_max_funding_amount(_get(item, profile.amount_field)),
            reverse=criterion.endswith("desc"),
        )

    if criterion.startswith("name"):
        return sorted(
            items,
            key=lambda item: _name_of(_get(item, profile.name_field)).lower(),
            reverse=criterion.endswith("desc"),
        )

    # saved_date_desc: newest first, undated rows last
    dated = [i for i in items if _get(i, profile.saved_date_field) is not None]
    undated = [i for i in items if _get(i, profile.saved_date_field) is None]
    dated.sort(key=lambda item: _get(item, profile.saved_date_field), reverse=True)
    return dated + undated


# ---------------------------------------------------------------------------
# Stage 3: paginate
# ---------------------------------------------------------------------------


def paginate(items: Sequence[T], page: int, page_size: int) -> PageResult:
    """Slice one 1-indexed page.

    ``page < 1`` is clamped to 1.  A page past the end returns no items but
    still reports correct totals.  ``page_size <= 0`` yields zero pages.
    """
    items = list(items)
    total = len(items)
    if page_size <= 0:
        return PageResult(items=[], page=1, page_size=0, total_count=total, total_pages=0)

    total_pages = math.ceil(total / page_size)
    page = max(page, 1)
    if page > total_pages:
        return PageResult(
            items=[],
            page=page,
            page_size=page_size,
            total_count=total,
            total_pages=total_pages,
        )

    start = (page - 1) * page_size
    return PageResult(
        items=items[start : start + page_size],
        page=page,
        page_size=page_size,
        total_count=total,
        total_pages=total_pages,
    )


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def get_filtered_page(
    items: Iterable[T],
    filter_config: Optional[FilterConfig],
    sort_criterion: Optional[str],
    page: int,
    page_size: int,
    profile: EntityProfile = GRANT_PROFILE,
    today: Optional[date] = None,
) -> PageResult:
    """Filter, then sort, then paginate."""
    filtered = filter_items(items, filter_config, profile, today)
    ordered = sort_items(filtered, sort_criterion, profile) if sort_criterion else filtered
    result = paginate(ordered, page, page_size)
    logger.debug(
        "%s list: %d matched, page %d of %d",
        profile.name,
        result.total_count,
        result.page,
        result.total_pages,
    )
    return result


def facet_values(items: Iterable[Any], profile: EntityProfile = GRANT_PROFILE) -> dict[str, list[str]]:
    """Sorted distinct option values for each multi-select and scalar filter."""
    items = list(items)
    facets: dict[str, list[str]] = {}
    for key, item_field in profile.multi_select_fields.items():
        values = {name for item in items for name in _names(_get(item, item_field))}
        facets[key] = sorted(values)
    for key, item_field in profile.scalar_fields.items():
        options: set[str] = set()
        for item in items:
            value = _get(item, item_field)
            if isinstance(value, (list, tuple, set)):
                options.update(v for v in value if v)
            elif value:
                options.add(value)
        facets[key] = sorted(options)
    return facets
