# tests/integration/test_sync_orchestrator.py
"""
Integration tests for SyncOrchestrator against a real (SQLite) database.

Coverage:
- Successful runs and the committed metrics
- At most one run per tenant, pause / resume
- Failure path: error bookkeeping, no partial reconciliation
- Timeouts
- Clearing the sheet reference
- Scheduled all-tenant sync

Run with: pytest backend/tests/integration/test_sync_orchestrator.py -v
"""

import asyncio
import pytest
import pytest_asyncio
from uuid import uuid4

from sqlalchemy import select

from leadsync import events
from leadsync.exceptions import (
    ConflictError, FetchError, NotFoundError, SyncPausedError,
    SyncTimeoutError, ValidationError
)
from leadsync.models import LeadRecord, Tenant
from leadsync.services.reconciler import Reconciler
from leadsync.services.sheet_fetcher import FetchResult
from leadsync.services.sync_orchestrator import NO_SHEET_URL, SHEET_CHANGED, SyncOrchestrator

from conftest import SAMPLE_CSV, SHEET_URL, make_fetcher

NEW_SHEET_URL = "https://docs.google.com/spreadsheets/d/9ZyXwVuTsRqPoNmLkJiHgFeDcBa/edit"


pytestmark = pytest.mark.integration

UPDATED_CSV = (
    "Name,Company,Email,Phone,Date,Channel of Lead,Outcome,Company Size\n"
    "Alice Smith,Acme Ltd,Alice@Acme.com,07700 900123,03.03.25,Referral,Not Interested,1000+\n"
    "Dave Brown,Umbrella,dave@umbrella.com,,05.03.25,Website,,\n"
)


class BlockingFetcher:
    """Holds the run inside the fetch stage until released."""

    def __init__(self, text=SAMPLE_CSV):
        self.text = text
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, tenant):
        self.started.set()
        await self.release.wait()
        return FetchResult(text=self.text, gid_used="42")


class SlowFetcher:
    async def fetch(self, tenant):
        await asyncio.sleep(10)


class ExplodingReconciler(Reconciler):
    """Does all the reconcile work, then fails before the commit."""

    async def reconcile(self, *args, **kwargs):
        await super().reconcile(*args, **kwargs)
        raise RuntimeError("boom")


@pytest.fixture
def orchestrator(session_factory):
    return SyncOrchestrator(
        session_factory=session_factory,
        fetcher=make_fetcher({"42": (200, SAMPLE_CSV)}),
        timeout=5
    )


async def lead_names(session_factory, tenant_id):
    async with session_factory() as db:
        result = await db.execute(select(LeadRecord).where(LeadRecord.tenant_id == tenant_id))
        return sorted(lead.field_bag.get("Name") for lead in result.scalars().all())


@pytest_asyncio.fixture
async def paused_tenant(db):
    tenant = Tenant(id=uuid4(), name="Paused Co", sheet_url=SHEET_URL)
    db.add(tenant)
    await db.commit()
    return tenant


# ============================================================================
# TEST: Successful Runs
# ============================================================================

class TestSuccessfulSync:

    @pytest.mark.asyncio
    async def test_run_sync_commits_leads_and_metrics(self, orchestrator, session_factory, tenant):
        result = await orchestrator.run_sync(tenant.id)

        assert result.as_dict() == {"inserted": 3, "updated": 0, "deleted": 0, "total": 3}
        assert await lead_names(session_factory, tenant.id) == ["Alice Smith", "Bob Jones", "Carol White"]

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "success"
        assert status["is_running"] is False
        assert status["row_count"] == 3
        assert status["rows_processed"] == 5
        assert status["rows_inserted"] == 3
        assert status["last_error"] is None
        assert status["last_sync_at"] == status["last_success_at"]
        assert status["progress_percent"] == 100
        assert status["gid_used"] == "42"
        assert status["sync_duration"] is not None

    @pytest.mark.asyncio
    async def test_second_run_reconciles(self, orchestrator, session_factory, tenant):
        await orchestrator.run_sync(tenant.id)
        orchestrator.fetcher = make_fetcher({"42": (200, UPDATED_CSV)})

        result = await orchestrator.run_sync(tenant.id)

        assert (result.inserted, result.updated, result.deleted, result.total) == (1, 1, 2, 2)
        assert await lead_names(session_factory, tenant.id) == ["Alice Smith", "Dave Brown"]

    @pytest.mark.asyncio
    async def test_trigger_runs_in_background(self, orchestrator, tenant):
        ack = await orchestrator.trigger_sync(tenant.id)
        assert ack["status"] == "started"

        await orchestrator.wait_for_run(tenant.id)

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "success"
        assert status["row_count"] == 3

    @pytest.mark.asyncio
    async def test_success_publishes_leads_changed(self, orchestrator, tenant):
        received = []
        events.subscribe(received.append)

        await orchestrator.run_sync(tenant.id)

        assert received == [events.LeadsChanged(tenant_id=tenant.id, reason="sync")]

    @pytest.mark.asyncio
    async def test_never_synced_status(self, orchestrator, tenant):
        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "never_synced"
        assert status["last_sync_at"] is None

    @pytest.mark.asyncio
    async def test_rows_above_header_not_counted(self, session_factory, tenant):
        orchestrator = SyncOrchestrator(
            session_factory=session_factory,
            fetcher=make_fetcher({"42": (200, "Lead tracker,,,,,,,\n" + SAMPLE_CSV)}),
            timeout=5
        )

        await orchestrator.run_sync(tenant.id)

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["rows_processed"] == 5
        assert status["row_count"] == 3


# ============================================================================
# TEST: Mutual Exclusion & Pause
# ============================================================================

class TestRunControl:

    @pytest.mark.asyncio
    async def test_concurrent_triggers_exactly_one_runs(self, session_factory, tenant):
        fetcher = BlockingFetcher()
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=fetcher, timeout=5)

        outcomes = await asyncio.gather(
            orchestrator.trigger_sync(tenant.id),
            orchestrator.trigger_sync(tenant.id),
            return_exceptions=True
        )

        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        started = [o for o in outcomes if isinstance(o, dict)]
        assert len(conflicts) == 1
        assert len(started) == 1

        fetcher.release.set()
        await orchestrator.wait_for_run(tenant.id)
        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "success"
        assert status["error_count"] == 0

    @pytest.mark.asyncio
    async def test_trigger_while_running_conflicts(self, session_factory, tenant):
        fetcher = BlockingFetcher()
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=fetcher, timeout=5)

        await orchestrator.trigger_sync(tenant.id)
        await fetcher.started.wait()

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "running"

        with pytest.raises(ConflictError) as exc_info:
            await orchestrator.trigger_sync(tenant.id)
        assert not isinstance(exc_info.value, SyncPausedError)

        fetcher.release.set()
        await orchestrator.wait_for_run(tenant.id)

    @pytest.mark.asyncio
    async def test_paused_tenant_refuses_to_start(self, orchestrator, tenant):
        status = await orchestrator.pause_sync(tenant.id)
        assert status["is_paused"] is True
        assert status["status"] == "paused"

        with pytest.raises(SyncPausedError):
            await orchestrator.trigger_sync(tenant.id)

        await orchestrator.resume_sync(tenant.id)
        await orchestrator.run_sync(tenant.id)
        assert (await orchestrator.get_sync_status(tenant.id))["status"] == "success"

    @pytest.mark.asyncio
    async def test_pause_does_not_interrupt_running_sync(self, session_factory, tenant):
        fetcher = BlockingFetcher()
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=fetcher, timeout=5)

        await orchestrator.trigger_sync(tenant.id)
        await fetcher.started.wait()
        await orchestrator.pause_sync(tenant.id)
        fetcher.release.set()
        await orchestrator.wait_for_run(tenant.id)

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["is_paused"] is True
        assert status["is_running"] is False
        assert status["row_count"] == 3
        assert status["last_success_at"] is not None

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.trigger_sync(uuid4())


# ============================================================================
# TEST: Failure Path
# ============================================================================

class TestFailures:

    @pytest.mark.asyncio
    async def test_fetch_failure_recorded(self, session_factory, tenant):
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=make_fetcher({}), timeout=5)

        with pytest.raises(FetchError):
            await orchestrator.run_sync(tenant.id)

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "error"
        assert status["is_running"] is False
        assert status["error_count"] == 1
        assert "Failed to fetch sheet" in status["last_error"]
        assert status["last_sync_at"] is not None
        assert status["last_success_at"] is None

    @pytest.mark.asyncio
    async def test_background_failure_only_visible_in_status(self, session_factory, tenant):
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=make_fetcher({}), timeout=5)

        ack = await orchestrator.trigger_sync(tenant.id)
        await orchestrator.wait_for_run(tenant.id)

        assert ack["status"] == "started"
        assert (await orchestrator.get_sync_status(tenant.id))["status"] == "error"

    @pytest.mark.asyncio
    async def test_failed_reconcile_leaves_previous_leads(self, orchestrator, session_factory, tenant):
        await orchestrator.run_sync(tenant.id)
        before = await orchestrator.get_sync_status(tenant.id)

        orchestrator.fetcher = make_fetcher({"42": (200, UPDATED_CSV)})
        orchestrator.reconciler_class = ExplodingReconciler
        with pytest.raises(RuntimeError):
            await orchestrator.run_sync(tenant.id)

        assert await lead_names(session_factory, tenant.id) == ["Alice Smith", "Bob Jones", "Carol White"]
        after = await orchestrator.get_sync_status(tenant.id)
        assert after["status"] == "error"
        assert after["last_error"] == "RuntimeError: boom"
        assert after["error_count"] == 1
        assert after["last_success_at"] == before["last_success_at"]
        assert after["row_count"] == 3

    @pytest.mark.asyncio
    async def test_error_cleared_by_next_success(self, orchestrator, session_factory, tenant):
        failing = SyncOrchestrator(session_factory=session_factory, fetcher=make_fetcher({}), timeout=5)
        with pytest.raises(FetchError):
            await failing.run_sync(tenant.id)

        await orchestrator.run_sync(tenant.id)

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "success"
        assert status["last_error"] is None
        assert status["error_count"] == 1

    @pytest.mark.asyncio
    async def test_timeout(self, session_factory, tenant):
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=SlowFetcher(), timeout=0.05)

        with pytest.raises(SyncTimeoutError):
            await orchestrator.run_sync(tenant.id)

        status = await orchestrator.get_sync_status(tenant.id)
        assert status["is_running"] is False
        assert status["last_error"].startswith("Sync timed out")
        assert await lead_names(session_factory, tenant.id) == []

    @pytest.mark.asyncio
    async def test_missing_sheet_url(self, orchestrator, other_tenant):
        with pytest.raises(ValidationError):
            await orchestrator.run_sync(other_tenant.id)

        status = await orchestrator.get_sync_status(other_tenant.id)
        assert status["last_error"] == NO_SHEET_URL
        assert status["status"] == "error"


# ============================================================================
# TEST: Sheet Reference
# ============================================================================

class TestSheetReference:

    @pytest.mark.asyncio
    async def test_clear_deletes_leads_and_resets_state(self, orchestrator, session_factory, tenant):
        await orchestrator.run_sync(tenant.id)
        received = []
        events.subscribe(received.append)

        status = await orchestrator.set_sheet_url(tenant.id, "  ")

        assert await lead_names(session_factory, tenant.id) == []
        assert status["status"] == "success"
        assert status["sheet_url"] is None
        assert status["row_count"] == 0
        assert status["last_error"] is None
        assert status["last_sync_at"] == status["last_success_at"]
        assert status["weekly_lead_actual"] == 0
        assert received == [events.LeadsChanged(tenant_id=tenant.id, reason="cleared")]

    @pytest.mark.asyncio
    async def test_set_new_url(self, orchestrator, other_tenant):
        status = await orchestrator.set_sheet_url(other_tenant.id, SHEET_URL)
        assert status["sheet_url"] == SHEET_URL
        assert status["status"] == "never_synced"

    @pytest.mark.asyncio
    async def test_invalid_url_rejected(self, orchestrator, tenant):
        with pytest.raises(ValidationError):
            await orchestrator.set_sheet_url(tenant.id, "https://example.com/not-a-sheet")

    @pytest.mark.asyncio
    async def test_clear_refused_while_running(self, session_factory, tenant):
        fetcher = BlockingFetcher()
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=fetcher, timeout=5)
        await orchestrator.trigger_sync(tenant.id)
        await fetcher.started.wait()

        with pytest.raises(ConflictError):
            await orchestrator.clear_sheet_reference(tenant.id)

        fetcher.release.set()
        await orchestrator.wait_for_run(tenant.id)
        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "success"
        assert status["sheet_url"] == SHEET_URL
        assert len(await lead_names(session_factory, tenant.id)) == 3

    @pytest.mark.asyncio
    async def test_run_aborts_when_reference_changes_mid_run(self, session_factory, tenant):
        fetcher = BlockingFetcher()
        orchestrator = SyncOrchestrator(session_factory=session_factory, fetcher=fetcher, timeout=5)
        await orchestrator.trigger_sync(tenant.id)
        await fetcher.started.wait()

        await orchestrator.set_sheet_url(tenant.id, NEW_SHEET_URL)
        fetcher.release.set()
        await orchestrator.wait_for_run(tenant.id)

        assert await lead_names(session_factory, tenant.id) == []
        status = await orchestrator.get_sync_status(tenant.id)
        assert status["status"] == "error"
        assert status["last_error"] == SHEET_CHANGED
        assert status["sheet_url"] == NEW_SHEET_URL
        assert status["is_running"] is False


# ============================================================================
# TEST: Scheduled Sync
# ============================================================================

class TestSyncAllTenants:

    @pytest.mark.asyncio
    async def test_counts(self, orchestrator, tenant, other_tenant, paused_tenant):
        await orchestrator.pause_sync(paused_tenant.id)

        counts = await orchestrator.sync_all_tenants()

        assert counts == {"succeeded": 1, "failed": 0, "skipped": 1}

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_other_tenants(self, session_factory, tenant, paused_tenant):
        calls = []
        orchestrator = SyncOrchestrator(
            session_factory=session_factory,
            fetcher=make_fetcher({"42": (500, "down")}, calls, max_retries=0),
            timeout=5
        )

        counts = await orchestrator.sync_all_tenants()

        assert counts == {"succeeded": 0, "failed": 2, "skipped": 0}
        assert calls == ["42", "0", "42", "0"]

    @pytest.mark.asyncio
    async def test_all_statuses(self, orchestrator, tenant, other_tenant):
        await orchestrator.run_sync(tenant.id)

        statuses = {s["tenant_name"]: s["status"] for s in await orchestrator.get_all_sync_statuses()}

        assert statuses == {"Acme Sales": "success", "Other Co": "never_synced"}
