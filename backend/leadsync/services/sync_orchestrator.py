# backend/leadsync/services/sync_orchestrator.py
"""
Sync Orchestrator - per-tenant sheet synchronization.

Flow (one run):
1. Claim: atomically flip is_running on the tenant's sync state
   (refused when already running or paused)
2. Fetch the sheet (no lock held while waiting on the network)
3. Parse + normalize
4. Reconcile + persist state in a single commit, under the tenant lock
5. Publish LeadsChanged

Any failure in 2-4 rolls the run back and is recorded on the sync state from
a separate session: error_count + 1, last_error, is_running = False.
"""

from typing import Any, Callable, Dict, Optional
from datetime import datetime
from uuid import UUID
import asyncio
import logging
import time

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leadsync import events, repositories
from leadsync.config import settings
from leadsync.database import AsyncSessionLocal
from leadsync.events import LeadsChanged
from leadsync.exceptions import (
    ConflictError, LeadSyncError, NotFoundError, SyncPausedError,
    SyncTimeoutError, ValidationError
)
from leadsync.locks import tenant_lock
from leadsync.models import LeadSyncState, Tenant, utcnow
from leadsync.services import tabular_parser
from leadsync.services.reconciler import Reconciler, ReconcileResult
from leadsync.services.row_normalizer import row_normalizer
from leadsync.services.sheet_fetcher import SheetFetcher

logger = logging.getLogger(__name__)

NO_SHEET_URL = "No sheet URL configured"
SHEET_CHANGED = "Sheet reference changed during sync"


def serialize_state(tenant: Tenant, state: Optional[LeadSyncState]) -> Dict[str, Any]:
    """Status payload for one tenant; a missing state row reads as never synced."""
    payload = {
        "tenant_id": str(tenant.id),
        "tenant_name": tenant.name,
        "sheet_url": tenant.sheet_url,
        "status": "never_synced",
        "is_running": False,
        "is_paused": False,
        "last_sync_at": None,
        "last_success_at": None,
        "last_error": None,
        "row_count": 0,
        "rows_processed": 0,
        "rows_inserted": 0,
        "rows_updated": 0,
        "rows_deleted": 0,
        "error_count": 0,
        "retry_count": 0,
        "sync_duration": None,
        "progress_percent": 0,
        "progress_message": None,
        "gid_used": None,
        "weekly_lead_actual": tenant.weekly_lead_actual or 0,
        "monthly_lead_actual": tenant.monthly_lead_actual or 0,
    }
    if state is None:
        return payload

    payload.update({
        "status": state.logical_status,
        "is_running": state.is_running,
        "is_paused": state.is_paused,
        "last_sync_at": state.last_sync_at,
        "last_success_at": state.last_success_at,
        "last_error": state.last_error,
        "row_count": state.row_count,
        "rows_processed": state.rows_processed,
        "rows_inserted": state.rows_inserted,
        "rows_updated": state.rows_updated,
        "rows_deleted": state.rows_deleted,
        "error_count": state.error_count,
        "retry_count": state.retry_count,
        "sync_duration": state.sync_duration,
        "progress_percent": state.progress_percent,
        "progress_message": state.progress_message,
        "gid_used": state.gid_used,
    })
    return payload


class SyncOrchestrator:
    """
    Drives fetch -> parse -> normalize -> reconcile -> persist per tenant.

    Every run uses its own sessions from ``session_factory`` so it can be
    started from a request, the scheduler or a background task alike.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        fetcher: Optional[SheetFetcher] = None,
        timeout: Optional[float] = None,
        reconciler_class=Reconciler
    ):
        self.session_factory = session_factory
        self.fetcher = fetcher or SheetFetcher()
        self.timeout = timeout if timeout is not None else settings.SYNC_TIMEOUT_SECONDS
        self.reconciler_class = reconciler_class
        self._tasks: Dict[UUID, asyncio.Task] = {}

    # ========================================================================
    # STATE ROWS
    # ========================================================================

    @staticmethod
    async def _load_state(db: AsyncSession, tenant_id: UUID) -> Optional[LeadSyncState]:
        result = await db.execute(
            select(LeadSyncState).where(LeadSyncState.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def _ensure_state(self, db: AsyncSession, tenant_id: UUID) -> LeadSyncState:
        """
        Load the tenant's state row, creating it if missing. The insert runs
        in its own session so losing the creation race never rolls back (and
        expires) what ``db`` has already loaded.
        """
        state = await self._load_state(db, tenant_id)
        if state is not None:
            return state

        async with self.session_factory() as creator:
            creator.add(LeadSyncState(tenant_id=tenant_id))
            try:
                await creator.commit()
            except IntegrityError:
                # Another caller created it first
                await creator.rollback()
        return await self._load_state(db, tenant_id)

    async def _require_tenant(self, db: AsyncSession, tenant_id: UUID) -> Tenant:
        tenant = await repositories.get_tenant(db, tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return tenant

    # ========================================================================
    # RUN CONTROL
    # ========================================================================

    async def _claim(self, tenant_id: UUID) -> Tenant:
        """
        Flip is_running false -> true in one conditional UPDATE, so of two
        racing triggers exactly one sees a changed row.
        """
        async with self.session_factory() as db:
            tenant = await self._require_tenant(db, tenant_id)
            state = await self._ensure_state(db, tenant_id)

            outcome = await db.execute(
                update(LeadSyncState)
                .where(and_(
                    LeadSyncState.tenant_id == tenant_id,
                    LeadSyncState.is_running.is_(False),
                    LeadSyncState.is_paused.is_(False)
                ))
                .values(
                    is_running=True,
                    progress_percent=0,
                    progress_message="Starting sync",
                    updated_at=utcnow()
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

            if outcome.rowcount != 1:
                await db.refresh(state)
                if state.is_running:
                    raise ConflictError(f"Sync already running for tenant {tenant.name}")
                raise SyncPausedError(f"Sync is paused for tenant {tenant.name}")

            return tenant

    async def trigger_sync(self, tenant_id: UUID, scheduled: bool = False) -> Dict[str, Any]:
        """
        Start a run in the background and acknowledge immediately.

        Raises:
            NotFoundError: unknown tenant
            ConflictError: a run is already in flight
            SyncPausedError: the tenant is paused
        """
        tenant = await self._claim(tenant_id)
        logger.info(f"Sync started for tenant '{tenant.name}' ({'scheduled' if scheduled else 'manual'})")

        task = asyncio.create_task(self._run_claimed(tenant_id))
        self._tasks[tenant_id] = task
        task.add_done_callback(lambda t: self._forget(tenant_id, t))

        return {
            "tenant_id": str(tenant_id),
            "status": "started",
            "message": "Sync started; poll the status endpoint for the outcome"
        }

    def _forget(self, tenant_id: UUID, task: asyncio.Task) -> None:
        if self._tasks.get(tenant_id) is task:
            del self._tasks[tenant_id]
        if not task.cancelled() and task.exception() is not None:
            # Already recorded on the sync state
            logger.debug(f"Background sync for tenant {tenant_id} ended with {task.exception()!r}")

    async def wait_for_run(self, tenant_id: UUID) -> None:
        """Await the background run started by ``trigger_sync``, if any."""
        task = self._tasks.get(tenant_id)
        if task is None:
            return
        await asyncio.gather(task, return_exceptions=True)

    async def run_sync(self, tenant_id: UUID) -> ReconcileResult:
        """
        Claim and run in the foreground. Failures are recorded on the sync
        state and re-raised.
        """
        await self._claim(tenant_id)
        return await self._run_claimed(tenant_id)

    async def _run_claimed(self, tenant_id: UUID) -> ReconcileResult:
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._execute(tenant_id, started), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = SyncTimeoutError(f"Sync timed out after {self.timeout:g}s")
            await self._record_failure(tenant_id, error.message, started)
            raise error
        except asyncio.CancelledError:
            await self._record_failure(tenant_id, "Sync cancelled", started)
            raise
        except Exception as e:
            message = e.message if isinstance(e, LeadSyncError) else f"{e.__class__.__name__}: {e}"
            await self._record_failure(tenant_id, message, started)
            raise

        await events.publish(LeadsChanged(tenant_id=tenant_id, reason="sync"))
        return result

    async def _progress(self, db: AsyncSession, state: LeadSyncState, percent: int, message: str) -> None:
        state.progress_percent = percent
        state.progress_message = message
        await db.commit()
        logger.info(f"Sync {state.tenant_id}: {percent}% - {message}")

    async def _execute(self, tenant_id: UUID, started: float) -> ReconcileResult:
        async with self.session_factory() as db:
            tenant = await self._require_tenant(db, tenant_id)
            state = await self._load_state(db, tenant_id)

            sheet_url = (tenant.sheet_url or "").strip()
            if not sheet_url:
                raise ValidationError(NO_SHEET_URL)

            # Step 1: Fetch
            fetched = await self.fetcher.fetch(tenant)
            await self._progress(db, state, 10, f"Downloaded sheet (gid {fetched.gid_used})")

            # Step 2: Parse + normalize
            rows = tabular_parser.parse(fetched.text)
            normalized = row_normalizer.normalize_table(rows, tenant.name)
            await self._progress(
                db, state, 40,
                f"Parsed {len(rows)} rows, {len(normalized.leads)} leads "
                f"({normalized.filtered_total} filtered)"
            )

            # Step 3: Reconcile + persist, one transaction
            async with tenant_lock(tenant_id):
                await db.refresh(tenant)
                if (tenant.sheet_url or "").strip() != sheet_url:
                    raise ConflictError(SHEET_CHANGED)

                result = await self.reconciler_class(db).reconcile(
                    tenant,
                    normalized.leads,
                    source_url=sheet_url,
                    sheet_gid=fetched.gid_used
                )
                state.progress_percent = 90
                state.progress_message = "Reconciled leads"

                now = utcnow()
                duration_ms = int((time.monotonic() - started) * 1000)
                state.is_running = False
                state.last_sync_at = now
                state.last_success_at = now
                state.last_error = None
                state.last_checksum = result.checksum
                state.gid_used = fetched.gid_used
                state.row_count = result.total
                state.rows_processed = normalized.data_rows
                state.rows_inserted = result.inserted
                state.rows_updated = result.updated
                state.rows_deleted = result.deleted
                state.retry_count = fetched.retry_count
                state.sync_duration = duration_ms
                state.progress_percent = 100
                state.progress_message = "Sync complete"
                await db.commit()

        logger.info(
            f"Sync complete for tenant '{tenant.name}' in {duration_ms}ms: "
            f"{result.as_dict()}"
        )
        return result

    async def _record_failure(self, tenant_id: UUID, message: str, started: float) -> None:
        """Failure path; runs in a fresh session so the run's rollback is untouched."""
        logger.error(f"Sync failed for tenant {tenant_id}: {message}")
        async with self.session_factory() as db:
            state = await self._ensure_state(db, tenant_id)
            state.is_running = False
            state.error_count = (state.error_count or 0) + 1
            state.last_error = message
            state.last_sync_at = utcnow()
            state.sync_duration = int((time.monotonic() - started) * 1000)
            state.progress_message = "Sync failed"
            await db.commit()

    async def sync_all_tenants(self) -> Dict[str, int]:
        """Scheduled job: run every tenant with a sheet URL, one after another."""
        async with self.session_factory() as db:
            tenant_ids = [(t.id, t.name) for t in await repositories.list_tenants_with_sheets(db)]

        counts = {"succeeded": 0, "failed": 0, "skipped": 0}
        logger.info(f"Scheduled sync: {len(tenant_ids)} tenants with a sheet")

        for tenant_id, name in tenant_ids:
            try:
                await self.run_sync(tenant_id)
                counts["succeeded"] += 1
            except SyncPausedError:
                logger.warning(f"Skipping tenant '{name}': sync paused")
                counts["skipped"] += 1
            except ConflictError:
                logger.warning(f"Skipping tenant '{name}': sync already running")
                counts["skipped"] += 1
            except Exception as e:
                # Recorded on the tenant's sync state
                logger.error(f"Scheduled sync failed for tenant '{name}': {e}")
                counts["failed"] += 1

        logger.info(f"Scheduled sync finished: {counts}")
        return counts

    # ========================================================================
    # PAUSE / RESUME
    # ========================================================================

    async def _set_paused(self, tenant_id: UUID, paused: bool) -> Dict[str, Any]:
        async with self.session_factory() as db:
            tenant = await self._require_tenant(db, tenant_id)
            await self._ensure_state(db, tenant_id)
            await db.execute(
                update(LeadSyncState)
                .where(LeadSyncState.tenant_id == tenant_id)
                .values(is_paused=paused, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            state = await self._load_state(db, tenant_id)
            await db.refresh(state)
            logger.info(f"Sync {'paused' if paused else 'resumed'} for tenant '{tenant.name}'")
            return serialize_state(tenant, state)

    async def pause_sync(self, tenant_id: UUID) -> Dict[str, Any]:
        """Stop future runs from starting; an in-flight run is not interrupted."""
        return await self._set_paused(tenant_id, True)

    async def resume_sync(self, tenant_id: UUID) -> Dict[str, Any]:
        return await self._set_paused(tenant_id, False)

    # ========================================================================
    # STATUS
    # ========================================================================

    async def get_sync_status(self, tenant_id: UUID) -> Dict[str, Any]:
        async with self.session_factory() as db:
            tenant = await self._require_tenant(db, tenant_id)
            return serialize_state(tenant, await self._load_state(db, tenant_id))

    async def get_all_sync_statuses(self):
        async with self.session_factory() as db:
            tenants = (await db.execute(select(Tenant).order_by(Tenant.name))).scalars().all()
            states = (await db.execute(select(LeadSyncState))).scalars().all()
            by_tenant = {state.tenant_id: state for state in states}
            return [serialize_state(tenant, by_tenant.get(tenant.id)) for tenant in tenants]

    # ========================================================================
    # SHEET REFERENCE
    # ========================================================================

    async def set_sheet_url(self, tenant_id: UUID, sheet_url: Optional[str]) -> Dict[str, Any]:
        """Store a new sheet reference; an empty value clears the tenant."""
        sheet_url = (sheet_url or "").strip()
        if not sheet_url:
            return await self.clear_sheet_reference(tenant_id)

        if not SheetFetcher.extract_sheet_id(sheet_url):
            raise ValidationError("Invalid sheet URL format")

        async with self.session_factory() as db:
            tenant = await self._require_tenant(db, tenant_id)
            tenant.sheet_url = sheet_url
            await db.commit()
            logger.info(f"Sheet URL updated for tenant '{tenant.name}'")
            return serialize_state(tenant, await self._load_state(db, tenant_id))

    async def clear_sheet_reference(self, tenant_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Drop the sheet reference and every lead, leaving a zeroed success
        snapshot behind. This is a reset, not a failure.
        """
        now = now or utcnow()
        async with self.session_factory() as db:
            tenant = await self._require_tenant(db, tenant_id)
            async with tenant_lock(tenant_id):
                state = await self._ensure_state(db, tenant_id)
                if state.is_running:
                    raise ConflictError(f"Sync running for tenant {tenant.name}; retry once it finishes")
                removed = await self.reconciler_class(db).clear_tenant(tenant)

                tenant.sheet_url = None
                state.last_sync_at = now
                state.last_success_at = now
                state.last_error = None
                state.last_checksum = None
                state.gid_used = None
                state.row_count = 0
                state.rows_processed = 0
                state.rows_inserted = 0
                state.rows_updated = 0
                state.rows_deleted = 0
                state.retry_count = 0
                state.sync_duration = 0
                state.progress_percent = 100
                state.progress_message = "Sheet reference cleared"
                await db.commit()

            logger.info(f"Cleared sheet reference for tenant '{tenant.name}', removed {removed} leads")
            payload = serialize_state(tenant, state)

        await events.publish(LeadsChanged(tenant_id=tenant_id, reason="cleared"))
        return payload


# Singleton instance
sync_orchestrator = SyncOrchestrator()
