"""
Unit Tests for TrackingOrchestrator

Covers optimistic updates, rollback on hard failures, absorption of
idempotence errors and the post-mutation refresh.

Usage:
    cd backend && pytest tests/test_tracking_orchestrator.py -v
"""

import pytest
import sys
import os

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fundspace.errors import DuplicateError, ErrorKind, PermissionDeniedError, TransientError  # noqa: E402
from fundspace.services.engagement_ledger import EngagementLedger  # noqa: E402
from fundspace.services.record_assembly import RecordAssemblyService  # noqa: E402
from fundspace.services.tracking_orchestrator import (  # noqa: E402
    TrackedSections,
    TrackingOrchestrator,
    apply_optimistic,
)


@pytest.fixture
def published():
    return []


@pytest.fixture
def orchestrator(gateway, published):
    return TrackingOrchestrator(
        EngagementLedger(gateway),
        RecordAssemblyService(gateway),
        on_change=published.append,
    )


def view_ids(views):
    return [v.id for v in views]


class TestSuccessfulActions:
    """Successful actions re-read the affected sections."""

    @pytest.mark.asyncio
    async def test_save_returns_fresh_section(self, orchestrator, individual_scope):
        result = await orchestrator.perform_action("save", 101, individual_scope)
        assert result.success is True
        assert result.error is None
        assert view_ids(result.section) == [101]
        assert result.section[0].save_count == 1

    @pytest.mark.asyncio
    async def test_mark_applied_moves_between_sections(self, orchestrator, individual_scope):
        await orchestrator.perform_action("save", 101, individual_scope)
        result = await orchestrator.perform_action("mark_applied", 101, individual_scope)

        assert result.success is True
        assert view_ids(result.section) == [101]
        assert orchestrator.state.saved == []
        assert view_ids(orchestrator.state.applications) == [101]

    @pytest.mark.asyncio
    async def test_remove_application_returns_grant_to_saved(self, orchestrator, individual_scope):
        await orchestrator.perform_action("save", 101, individual_scope)
        await orchestrator.perform_action("mark_applied", 101, individual_scope)
        await orchestrator.perform_action("remove_application", 101, individual_scope)

        assert orchestrator.state.applications == []
        assert view_ids(orchestrator.state.saved) == [101]

    @pytest.mark.asyncio
    async def test_mark_received_passes_amount(self, orchestrator, gateway, individual_scope):
        result = await orchestrator.perform_action(
            "mark_received", 103, individual_scope, {"amount": 5000, "notes": "Check arrived"}
        )
        assert result.success is True
        assert result.section[0].award_amount == 5000.0
        assert result.section[0].award_notes == "Check arrived"


class TestIdempotentOutcomes:
    """Duplicate and not-found outcomes are reported as success."""

    @pytest.mark.asyncio
    async def test_duplicate_apply_is_success(self, orchestrator, individual_scope):
        await orchestrator.perform_action("mark_applied", 101, individual_scope)
        result = await orchestrator.perform_action("mark_applied", 101, individual_scope)
        assert result.success is True
        assert result.error is None
        assert view_ids(result.section) == [101]

    @pytest.mark.asyncio
    async def test_unsave_of_unsaved_is_success(self, orchestrator, individual_scope):
        result = await orchestrator.perform_action("unsave", 101, individual_scope)
        assert result.success is True
        assert result.section == []

    @pytest.mark.asyncio
    async def test_lost_apply_race_is_success(self, orchestrator, gateway, individual_scope):
        gateway.fail_on("insert", "grant_applications", DuplicateError("race"))
        result = await orchestrator.perform_action("mark_applied", 101, individual_scope)
        assert result.success is True
        assert result.error is None
        assert result.section == []

    @pytest.mark.asyncio
    async def test_lost_award_race_is_success(self, orchestrator, gateway, individual_scope):
        gateway.fail_on("insert", "grant_awards", DuplicateError("race"))
        result = await orchestrator.perform_action(
            "mark_received", 101, individual_scope, {"amount": 2500}
        )
        assert result.success is True
        assert result.error is None


class TestRollback:
    """Hard failures restore the affected sections."""

    @pytest.mark.asyncio
    async def test_permission_denied_rolls_back(self, orchestrator, gateway, published, individual_scope):
        await orchestrator.perform_action("save", 101, individual_scope)
        await orchestrator.get_tracked_section("applications", individual_scope)
        before_saved = list(orchestrator.state.saved)
        published.clear()

        gateway.fail_on("insert", "grant_applications", PermissionDeniedError("rls"))
        result = await orchestrator.perform_action("mark_applied", 101, individual_scope)

        assert result.success is False
        assert result.error == ErrorKind.PERMISSION
        assert "permission" in result.message.lower()
        # optimistic display moved the grant, then the rollback restored it
        assert published[0].saved == []
        assert view_ids(published[0].applications) == [101]
        assert orchestrator.state.saved == before_saved
        assert orchestrator.state.applications == []
        assert result.section == []

    @pytest.mark.asyncio
    async def test_transient_failure_rolls_back_unsave(self, orchestrator, gateway, individual_scope):
        await orchestrator.perform_action("save", 101, individual_scope)
        gateway.fail_on("delete", "saved_grants", TransientError("offline"))

        result = await orchestrator.perform_action("unsave", 101, individual_scope)
        assert result.success is False
        assert result.error == ErrorKind.TRANSIENT
        assert view_ids(orchestrator.state.saved) == [101]

    @pytest.mark.asyncio
    async def test_failed_save_on_unapply_keeps_application(self, orchestrator, gateway, individual_scope):
        await orchestrator.perform_action("mark_applied", 103, individual_scope)
        gateway.fail_on("insert", "saved_grants", TransientError("offline"))

        result = await orchestrator.perform_action("remove_application", 103, individual_scope)
        assert result.success is False
        assert result.error == ErrorKind.TRANSIENT
        assert view_ids(orchestrator.state.applications) == [103]
        assert orchestrator.state.saved == []
        assert [r["grant_id"] for r in gateway.tables["grant_applications"]] == [103]

    @pytest.mark.asyncio
    async def test_rollback_leaves_unaffected_sections(self, orchestrator, gateway, individual_scope):
        await orchestrator.perform_action("mark_received", 104, individual_scope)
        gateway.fail_on("insert", "saved_grants", TransientError())

        await orchestrator.perform_action("save", 101, individual_scope)
        assert view_ids(orchestrator.state.received) == [104]


class TestRefreshFailure:
    """The mutation landed but the re-read failed."""

    @pytest.mark.asyncio
    async def test_refresh_failure_marks_sections_stale(self, orchestrator, gateway, individual_scope):
        gateway.fail_on("query_by_ids", "grants", TransientError())
        result = await orchestrator.perform_action("save", 101, individual_scope)

        assert result.success is True
        assert result.error == ErrorKind.ASSEMBLY
        assert "saved" in orchestrator.state.stale
        assert len(gateway.tables["saved_grants"]) == 1

    @pytest.mark.asyncio
    async def test_next_successful_read_clears_stale(self, orchestrator, gateway, individual_scope):
        gateway.fail_on("query_by_ids", "grants", TransientError())
        await orchestrator.perform_action("save", 101, individual_scope)
        gateway.failures.clear()

        await orchestrator.get_tracked_section("saved", individual_scope)
        assert orchestrator.state.stale == set()


class TestOptimisticReducer:
    def test_unknown_action(self):
        with pytest.raises(ValueError):
            apply_optimistic(TrackedSections(), "archive", 1)

    def test_reducer_does_not_mutate_input(self):
        state = TrackedSections()
        apply_optimistic(state, "unsave", 1)
        assert state.saved == []

    @pytest.mark.asyncio
    async def test_unknown_action_rejected_before_any_call(self, orchestrator, gateway, individual_scope):
        with pytest.raises(ValueError):
            await orchestrator.perform_action("archive", 101, individual_scope)
        assert gateway.calls == []
