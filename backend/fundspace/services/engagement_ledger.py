"""Business rules for the Saved / Applied / Received tracking collections.

State per (grant, scope)::

    Untracked -> Saved -> Applied
    Received: independent flag, settable from any state

The Saved view is a computed set difference: an actor's saved rows minus
the grants that have an application in the current scope.  Marking a grant
applied never deletes the save, so un-applying brings it back with its
original timestamp.

Existence checks before inserts only save a round trip.  The store's unique
constraints decide; losing a race surfaces as :class:`DuplicateError`.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fundspace.errors import DuplicateError, NotFoundError
from fundspace.models.tracking_models import (
    ApplicationRecord,
    AwardRecord,
    BaseRecord,
    SavedRecord,
    Scope,
    SectionCounts,
)
from fundspace.services.store_gateway import DataStoreGateway

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_STATUS = "submitted"
DEFAULT_APPLICATION_NOTES = "Marked as applied via portal"
DEFAULT_AWARD_STATUS = "active"
DEFAULT_AWARD_NOTES = "Marked as received via portal"


def _scope_fields(scope: Scope) -> dict[str, str]:
    return {"scope_kind": scope.kind, "scope_id": scope.id}


def _saved_record(row: dict) -> SavedRecord:
    return SavedRecord(
        grant_id=row["grant_id"],
        save_id=row.get("id"),
        actor_id=str(row["user_id"]),
        saved_date=row.get("created_at"),
    )


def _application_record(row: dict) -> ApplicationRecord:
    return ApplicationRecord(
        grant_id=row["grant_id"],
        application_id=row.get("id"),
        scope_id=str(row["scope_id"]),
        status=row.get("status"),
        applied_date=row.get("applied_date"),
        notes=row.get("notes"),
    )


def _award_record(row: dict) -> AwardRecord:
    amount = row.get("award_amount")
    return AwardRecord(
        grant_id=row["grant_id"],
        award_id=row.get("id"),
        scope_id=str(row["scope_id"]),
        amount=float(amount) if amount is not None else None,
        award_date=row.get("award_date"),
        status=row.get("status"),
        notes=row.get("notes"),
    )


class EngagementLedger:
    """Reads and mutations for the three tracking collections."""

    def __init__(self, gateway: DataStoreGateway):
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Saved
    # ------------------------------------------------------------------

    async def is_saved(self, grant_id: int, actor_id: str) -> bool:
        rows = await self.gateway.query_by_scope(
            "saved_grants", "user_id", actor_id, match={"grant_id": grant_id}
        )
        return bool(rows)

    async def save(self, grant_id: int, actor_id: str) -> bool:
        """Create the SavedRecord.  Returns ``False`` if it already existed."""
        if await self.is_saved(grant_id, actor_id):
            logger.info("Grant %s already saved by %s", grant_id, actor_id)
            return False
        try:
            await self.gateway.insert(
                "saved_grants", {"grant_id": grant_id, "user_id": actor_id}
            )
        except DuplicateError:
            logger.info("Grant %s saved concurrently by %s", grant_id, actor_id)
            return False
        return True

    async def unsave(self, grant_id: int, actor_id: str) -> bool:
        """Delete the SavedRecord.  Returns ``False`` if there was none."""
        try:
            await self.gateway.delete(
                "saved_grants", {"grant_id": grant_id, "user_id": actor_id}
            )
        except NotFoundError:
            logger.info("Grant %s was not saved by %s", grant_id, actor_id)
            return False
        return True

    # ------------------------------------------------------------------
    # Applied
    # ------------------------------------------------------------------

    async def _application_rows(self, scope: Scope, grant_id: Optional[int] = None) -> list[dict]:
        match = {"scope_kind": scope.kind}
        if grant_id is not None:
            match["grant_id"] = grant_id
        return await self.gateway.query_by_scope(
            "grant_applications",
            "scope_id",
            scope.id,
            match=match,
            order_by="applied_date",
            descending=True,
        )

    async def mark_applied(
        self, grant_id: int, scope: Scope, notes: Optional[str] = None
    ) -> ApplicationRecord:
        """Create the ApplicationRecord for (grant, scope).

        Raises:
            DuplicateError: If the scope already applied to this grant.
        """
        if await self._application_rows(scope, grant_id):
            raise DuplicateError(
                f"Grant {grant_id} already marked applied for {scope.kind} {scope.id}",
                collection="grant_applications",
            )
        row = await self.gateway.insert(
            "grant_applications",
            {
                "grant_id": grant_id,
                **_scope_fields(scope),
                "user_id": scope.actor_id,
                "status": DEFAULT_APPLICATION_STATUS,
                "applied_date": datetime.now(timezone.utc),
                "notes": notes or DEFAULT_APPLICATION_NOTES,
            },
        )
        logger.info("Grant %s marked applied for %s %s", grant_id, scope.kind, scope.id)
        return _application_record(row)

    async def remove_application(self, grant_id: int, scope: Scope) -> bool:
        """Delete the ApplicationRecord and keep the grant reachable from Saved.

        The save is written before the application is deleted.  Saved hides
        applied grants, so until the delete lands the new save is invisible
        and a failure at either step leaves the grant in Applications.

        Returns ``False`` (and writes nothing) if there was no application.
        """
        if not await self._application_rows(scope, grant_id):
            logger.info("No application for grant %s in %s %s", grant_id, scope.kind, scope.id)
            return False

        created = await self.save(grant_id, scope.actor_id)
        try:
            await self.gateway.delete(
                "grant_applications", {"grant_id": grant_id, **_scope_fields(scope)}
            )
        except NotFoundError:
            # removed concurrently; do not leave a save this call invented
            logger.info("Application for grant %s already removed", grant_id)
            if created:
                await self.unsave(grant_id, scope.actor_id)
            return False

        if created:
            logger.info("Re-created saved row for grant %s for un-apply", grant_id)
        return True

    # ------------------------------------------------------------------
    # Received
    # ------------------------------------------------------------------

    async def _award_rows(self, scope: Scope, grant_id: Optional[int] = None) -> list[dict]:
        match = {"scope_kind": scope.kind}
        if grant_id is not None:
            match["grant_id"] = grant_id
        return await self.gateway.query_by_scope(
            "grant_awards",
            "scope_id",
            scope.id,
            match=match,
            order_by="award_date",
            descending=True,
        )

    async def mark_received(
        self,
        grant_id: int,
        scope: Scope,
        amount: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> AwardRecord:
        """Create the AwardRecord for (grant, scope).  No prior state is required.

        Raises:
            DuplicateError: If the scope already recorded this award.
        """
        if await self._award_rows(scope, grant_id):
            raise DuplicateError(
                f"Grant {grant_id} already marked received for {scope.kind} {scope.id}",
                collection="grant_awards",
            )
        row = await self.gateway.insert(
            "grant_awards",
            {
                "grant_id": grant_id,
                **_scope_fields(scope),
                "user_id": scope.actor_id,
                "award_amount": amount,
                "award_date": datetime.now(timezone.utc),
                "status": DEFAULT_AWARD_STATUS,
                "notes": notes or DEFAULT_AWARD_NOTES,
            },
        )
        logger.info("Grant %s marked received for %s %s", grant_id, scope.kind, scope.id)
        return _award_record(row)

    async def remove_award(self, grant_id: int, scope: Scope) -> bool:
        try:
            await self.gateway.delete(
                "grant_awards", {"grant_id": grant_id, **_scope_fields(scope)}
            )
        except NotFoundError:
            logger.info("No award for grant %s in %s %s", grant_id, scope.kind, scope.id)
            return False
        return True

    # ------------------------------------------------------------------
    # Section reads
    # ------------------------------------------------------------------

    async def list_saved(self, scope: Scope) -> list[SavedRecord]:
        """The actor's saves minus grants already applied to in ``scope``, newest first."""
        saved_rows = await self.gateway.query_by_scope(
            "saved_grants",
            "user_id",
            scope.actor_id,
            order_by="created_at",
            descending=True,
        )
        applied = {row["grant_id"] for row in await self._application_rows(scope)}
        return [_saved_record(row) for row in saved_rows if row["grant_id"] not in applied]

    async def list_applications(self, scope: Scope) -> list[ApplicationRecord]:
        return [_application_record(row) for row in await self._application_rows(scope)]

    async def list_received(self, scope: Scope) -> list[AwardRecord]:
        return [_award_record(row) for row in await self._award_rows(scope)]

    async def list_section(self, section: str, scope: Scope) -> list[BaseRecord]:
        if section == "saved":
            return await self.list_saved(scope)
        if section == "applications":
            return await self.list_applications(scope)
        if section == "received":
            return await self.list_received(scope)
        raise ValueError(f"Unknown tracking section: {section}")

    async def section_counts(self, scope: Scope) -> SectionCounts:
        return SectionCounts(
            saved=len(await self.list_saved(scope)),
            applications=len(await self.list_applications(scope)),
            received=len(await self.list_received(scope)),
        )
