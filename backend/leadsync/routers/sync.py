"""
Sync Routes - trigger, pause/resume and inspect per-tenant sheet syncs.
"""
from fastapi import APIRouter, Depends
from typing import List
from uuid import UUID

from leadsync.dependencies import get_sync_orchestrator, get_tenant_id
from leadsync.schemas import SheetUrlUpdate, SyncStatusResponse, SyncTriggerResponse
from leadsync.services.sync_orchestrator import SyncOrchestrator

router = APIRouter(prefix="/api/v1/sync", tags=["Sync"])


@router.post("/trigger", response_model=SyncTriggerResponse, status_code=202)
async def trigger_sync(
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    """
    Start a sync in the background.

    Returns 409 if a sync is already running or the tenant is paused. The
    outcome of the run is read from ``GET /sync/status``.
    """
    return await orchestrator.trigger_sync(tenant_id)


@router.post("/pause", response_model=SyncStatusResponse)
async def pause_sync(
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    return await orchestrator.pause_sync(tenant_id)


@router.post("/resume", response_model=SyncStatusResponse)
async def resume_sync(
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    return await orchestrator.resume_sync(tenant_id)


@router.get("/status/all", response_model=List[SyncStatusResponse])
async def get_all_sync_statuses(
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    return await orchestrator.get_all_sync_statuses()


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    return await orchestrator.get_sync_status(tenant_id)


@router.put("/sheet-url", response_model=SyncStatusResponse)
async def set_sheet_url(
    request: SheetUrlUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)
):
    """Store a new sheet URL; an empty value deletes the tenant's leads."""
    return await orchestrator.set_sheet_url(tenant_id, request.sheet_url)
