"""Record assembly: turn lightweight tracking rows into display-ready grants.

Given base records (saved / application / award / catalog rows), fetch the
canonical grants, their funders, category and location tags and live
bookmark counts, then merge everything into one :class:`GrantView` per base
record.

Two guarantees:

* A view is either fully populated or not emitted.  Base records whose
  grant or funder cannot be resolved are dropped (and logged).
* A failed fetch stage fails the whole batch with :class:`AssemblyError`.
  An empty list is therefore only ever returned for "nothing tracked".
"""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Sequence
from typing import Any, Optional, TypeVar

from pydantic import ValidationError

from fundspace.errors import AssemblyError, TrackingError
from fundspace.helpers.funding import display_funding_amount, format_funding_display
from fundspace.models.tracking_models import BaseRecord, GrantView, OrganizationSummary
from fundspace.services.bookmark_counter import BookmarkCounter
from fundspace.services.store_gateway import DataStoreGateway

logger = logging.getLogger(__name__)

R = TypeVar("R")


def _unique(values) -> list:
    return [v for v in dict.fromkeys(values) if v is not None]


def _to_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


class RecordAssemblyService:
    """Joins normalized rows into :class:`GrantView` objects."""

    def __init__(
        self,
        gateway: DataStoreGateway,
        counter: Optional[BookmarkCounter] = None,
    ):
        self.gateway = gateway
        self.counter = counter or BookmarkCounter(gateway)

    async def _stage(self, name: str, pending: Awaitable[R]) -> R:
        try:
            return await pending
        except TrackingError as e:
            logger.error("Record assembly stage '%s' failed: %s", name, e)
            raise AssemblyError(f"Record assembly failed while fetching {name}") from e

    async def assemble(self, base_records: Sequence[BaseRecord]) -> list[GrantView]:
        """Build one view per base record, in input order.

        Args:
            base_records: Rows identifying which grants to show and carrying
                their own tracking metadata.

        Returns:
            Fully populated views; records with unresolved grants or funders
            are omitted.

        Raises:
            AssemblyError: If any fetch stage fails or a stored row is malformed.
        """
        if not base_records:
            return []

        # Stages run one after another: a single AsyncSession cannot run
        # statements concurrently.
        grant_ids = _unique(r.grant_id for r in base_records)
        grant_rows = await self._stage(
            "grants", self.gateway.query_by_ids("grants", grant_ids)
        )
        grants = {row["id"]: row for row in grant_rows}

        org_ids = _unique(row.get("organization_id") for row in grant_rows)
        org_rows = await self._stage(
            "organizations", self.gateway.query_by_ids("organizations", org_ids)
        )
        organizations = {row["id"]: row for row in org_rows}

        categories = await self._tag_names(
            "grant_categories", "category_id", "categories", grant_ids
        )
        locations = await self._tag_names(
            "grant_locations", "location_id", "locations", grant_ids
        )

        counts = await self._stage("bookmark counts", self.counter.counts(grant_ids))

        views: list[GrantView] = []
        for record in base_records:
            grant = grants.get(record.grant_id)
            if grant is None:
                logger.warning(
                    "Dropping tracked grant %s: canonical grant not found", record.grant_id
                )
                continue
            org = organizations.get(grant.get("organization_id"))
            if org is None:
                logger.warning(
                    "Dropping tracked grant %s: funder %s not found",
                    record.grant_id,
                    grant.get("organization_id"),
                )
                continue
            try:
                view = self._merge(
                    grant,
                    org,
                    categories.get(record.grant_id, []),
                    locations.get(record.grant_id, []),
                    counts.get(record.grant_id, 0),
                    record,
                )
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                logger.error("Stored grant %s is malformed: %s", record.grant_id, e)
                raise AssemblyError(f"Stored grant {record.grant_id} is malformed") from e
            views.append(view)

        logger.debug("Assembled %d of %d base records", len(views), len(base_records))
        return views

    async def _tag_names(
        self, join_collection: str, tag_field: str, tag_collection: str, grant_ids: list
    ) -> dict[int, list[str]]:
        join_rows = await self._stage(
            join_collection,
            self.gateway.query_join(join_collection, "grant_id", grant_ids),
        )
        tag_rows = await self._stage(
            tag_collection,
            self.gateway.query_by_ids(
                tag_collection, _unique(row[tag_field] for row in join_rows)
            ),
        )
        names = {row["id"]: row["name"] for row in tag_rows}

        by_grant: dict[int, list[str]] = defaultdict(list)
        for row in join_rows:
            name = names.get(row[tag_field])
            if name and name not in by_grant[row["grant_id"]]:
                by_grant[row["grant_id"]].append(name)
        return by_grant

    @staticmethod
    def _merge(
        grant: dict,
        org: dict,
        categories: list[str],
        locations: list[str],
        save_count: int,
        record: BaseRecord,
    ) -> GrantView:
        max_amount = _to_float(grant.get("max_funding_amount"))
        funding_amount = display_funding_amount(max_amount, grant.get("funding_amount_text"))
        return GrantView(
            id=grant["id"],
            title=grant["title"],
            description=grant.get("description"),
            grant_type=grant.get("grant_type"),
            eligibility_criteria=grant.get("eligibility_criteria"),
            application_url=grant.get("application_url"),
            status=grant.get("status"),
            max_funding_amount=max_amount,
            funding_amount_text=grant.get("funding_amount_text"),
            funding_amount=funding_amount,
            funding_display=format_funding_display(funding_amount),
            due_date=grant.get("deadline"),
            created_at=grant.get("created_at"),
            organization_id=org["id"],
            foundation_name=org["name"],
            funder_logo_url=org.get("image_url"),
            organization=OrganizationSummary(
                id=org["id"],
                name=org["name"],
                image_url=org.get("image_url"),
                banner_image_url=org.get("banner_image_url"),
                slug=org.get("slug"),
            ),
            categories=list(categories),
            locations=list(locations),
            save_count=save_count,
            **record.view_metadata(),
        )
