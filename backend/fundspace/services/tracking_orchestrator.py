"""Tracking actions with optimistic display state and rollback.

Each action:

1. snapshots the displayed sections,
2. applies an optimistic reducer keyed by the action type,
3. issues the ledger call,
4. on success re-derives every affected section through record assembly,
   on failure restores the snapshot and reports the error kind.

Displayed state is never patched field-by-field to mirror the store (no
in-place counter bumps): after a successful mutation it is always replaced
by a fresh read.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from fundspace.errors import IDEMPOTENT_ERRORS, USER_MESSAGES, TrackingError
from fundspace.models.tracking_models import (
    TRACKING_SECTIONS,
    ActionResult,
    GrantView,
    Scope,
)
from fundspace.services.engagement_ledger import EngagementLedger
from fundspace.services.record_assembly import RecordAssemblyService

logger = logging.getLogger(__name__)

PRIMARY_SECTION: dict[str, str] = {
    "save": "saved",
    "unsave": "saved",
    "mark_applied": "applications",
    "remove_application": "applications",
    "mark_received": "received",
    "remove_award": "received",
}

AFFECTED_SECTIONS: dict[str, tuple[str, ...]] = {
    "save": ("saved",),
    "unsave": ("saved",),
    "mark_applied": ("applications", "saved"),
    "remove_application": ("applications", "saved"),
    "mark_received": ("received",),
    "remove_award": ("received",),
}


@dataclass
class TrackedSections:
    """What the client currently displays for each section."""

    saved: list[GrantView] = field(default_factory=list)
    applications: list[GrantView] = field(default_factory=list)
    received: list[GrantView] = field(default_factory=list)
    stale: set[str] = field(default_factory=set)

    def get(self, section: str) -> list[GrantView]:
        if section not in TRACKING_SECTIONS:
            raise ValueError(f"Unknown tracking section: {section}")
        return getattr(self, section)

    def set(self, section: str, views: list[GrantView]) -> None:
        if section not in TRACKING_SECTIONS:
            raise ValueError(f"Unknown tracking section: {section}")
        setattr(self, section, list(views))
        self.stale.discard(section)

    def copy(self) -> "TrackedSections":
        return TrackedSections(
            saved=list(self.saved),
            applications=list(self.applications),
            received=list(self.received),
            stale=set(self.stale),
        )

    def find(self, grant_id: int) -> Optional[GrantView]:
        for section in TRACKING_SECTIONS:
            for view in self.get(section):
                if view.id == grant_id:
                    return view
        return None


def _without(views: list[GrantView], grant_id: int) -> list[GrantView]:
    return [v for v in views if v.id != grant_id]


def _with(views: list[GrantView], view: Optional[GrantView]) -> list[GrantView]:
    if view is None or any(v.id == view.id for v in views):
        return list(views)
    return [view, *views]


def apply_optimistic(state: TrackedSections, action: str, grant_id: int) -> TrackedSections:
    """Predicted display after ``action``, before the store confirms it.

    Grants only move between sections when a view for them is already on
    screen; anything else waits for the post-mutation read.
    """
    nxt = state.copy()
    known = state.find(grant_id)

    if action == "save":
        nxt.saved = _with(state.saved, known)
    elif action == "unsave":
        nxt.saved = _without(state.saved, grant_id)
    elif action == "mark_applied":
        nxt.saved = _without(state.saved, grant_id)
        nxt.applications = _with(state.applications, known)
    elif action == "remove_application":
        nxt.applications = _without(state.applications, grant_id)
        nxt.saved = _with(state.saved, known)
    elif action == "mark_received":
        nxt.received = _with(state.received, known)
    elif action == "remove_award":
        nxt.received = _without(state.received, grant_id)
    else:
        raise ValueError(f"Unknown tracking action: {action}")
    return nxt


class TrackingOrchestrator:
    """Runs tracking actions for one client session.

    Args:
        ledger: Store-backed tracking rules.
        assembler: Builds views for the re-derived sections.
        state: Initially displayed sections (empty by default).
        on_change: Called with the new state after every optimistic update,
            rollback and refresh.
    """

    def __init__(
        self,
        ledger: EngagementLedger,
        assembler: RecordAssemblyService,
        state: Optional[TrackedSections] = None,
        on_change: Optional[Callable[[TrackedSections], None]] = None,
    ):
        self.ledger = ledger
        self.assembler = assembler
        self.state = state or TrackedSections()
        self.on_change = on_change

    def _publish(self, state: TrackedSections) -> None:
        self.state = state
        if self.on_change is not None:
            self.on_change(state)

    async def get_tracked_section(self, section: str, scope: Scope) -> list[GrantView]:
        """Fetch and assemble one section for ``scope`` and display it.

        Raises:
            TrackingError: Store or assembly failure; displayed state is kept.
        """
        records = await self.ledger.list_section(section, scope)
        views = await self.assembler.assemble(records)
        state = self.state.copy()
        state.set(section, views)
        self._publish(state)
        return views

    async def _execute(self, action: str, grant_id: int, scope: Scope, extra: dict[str, Any]) -> None:
        if action == "save":
            await self.ledger.save(grant_id, scope.actor_id)
        elif action == "unsave":
            await self.ledger.unsave(grant_id, scope.actor_id)
        elif action == "mark_applied":
            await self.ledger.mark_applied(grant_id, scope, extra.get("notes"))
        elif action == "remove_application":
            await self.ledger.remove_application(grant_id, scope)
        elif action == "mark_received":
            await self.ledger.mark_received(
                grant_id, scope, extra.get("amount"), extra.get("notes")
            )
        elif action == "remove_award":
            await self.ledger.remove_award(grant_id, scope)

    async def perform_action(
        self,
        action: str,
        grant_id: int,
        scope: Scope,
        extra: Optional[dict[str, Any]] = None,
    ) -> ActionResult:
        """Apply ``action`` to ``grant_id`` within the already-resolved ``scope``.

        Returns:
            ActionResult whose ``section`` is the action's primary section as
            displayed afterwards.

        Raises:
            ValueError: For an unknown action.
        """
        if action not in PRIMARY_SECTION:
            raise ValueError(f"Unknown tracking action: {action}")
        primary = PRIMARY_SECTION[action]
        affected = AFFECTED_SECTIONS[action]

        snapshot = self.state.copy()
        self._publish(apply_optimistic(self.state, action, grant_id))

        try:
            await self._execute(action, grant_id, scope, extra or {})
        except IDEMPOTENT_ERRORS as e:
            logger.info("%s on grant %s already satisfied: %s", action, grant_id, e)
        except TrackingError as e:
            logger.warning("%s on grant %s failed, rolling back: %s", action, grant_id, e)
            restored = self.state.copy()
            for section in affected:
                restored.set(section, snapshot.get(section))
            self._publish(restored)
            return ActionResult(
                success=False,
                error=e.kind,
                message=USER_MESSAGES.get(e.kind, str(e)),
                section=self.state.get(primary),
            )

        try:
            for section in affected:
                await self.get_tracked_section(section, scope)
        except TrackingError as e:
            # The mutation is stored; only the re-read failed.
            logger.warning("Refresh after %s on grant %s failed: %s", action, grant_id, e)
            stale = self.state.copy()
            stale.stale.update(affected)
            self._publish(stale)
            return ActionResult(
                success=True,
                error=e.kind,
                message=USER_MESSAGES.get(e.kind, str(e)),
                section=self.state.get(primary),
            )

        return ActionResult(success=True, section=self.state.get(primary))
