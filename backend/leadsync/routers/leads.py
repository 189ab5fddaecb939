"""
Lead Routes - list, export, aggregate, score, convert and status changes.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
from datetime import datetime

from leadsync.database import get_db
from leadsync.dependencies import get_tenant_id
from leadsync.schemas import (
    LeadListResponse,
    LeadResponse,
    LeadStatusUpdate,
    LeadScoreResponse,
    AggregationsResponse,
    ConvertLeadRequest,
    ConvertLeadResponse,
    BulkConvertRequest,
    BulkConvertResponse,
)
from leadsync.services.lead_service import LeadService

router = APIRouter(prefix="/api/v1/leads", tags=["Leads"])


# ============================================================================
# READS
# ============================================================================

@router.get("", response_model=LeadListResponse)
async def list_leads(
    since: Optional[datetime] = Query(None, description="Only leads updated at or after this time"),
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """List the tenant's leads, most recently updated first."""
    return await LeadService(db).list_leads(tenant_id, since)


@router.get("/export")
async def export_leads(
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Download the tenant's leads as CSV."""
    text = await LeadService(db).export_leads_as_tabular_text(tenant_id)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Response(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=leads_export_{timestamp}.csv"}
    )


@router.get("/aggregations", response_model=AggregationsResponse)
async def get_aggregations(
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await LeadService(db).get_aggregations(tenant_id)


# ============================================================================
# ACTIONS
# ============================================================================

@router.post("/bulk-convert", response_model=BulkConvertResponse)
async def bulk_convert_leads(
    request: BulkConvertRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Convert many leads; per-lead failures are reported, not raised."""
    result = await LeadService(db).bulk_convert_leads(request.lead_ids, tenant_id, request.sequence_id)
    return BulkConvertResponse(**vars(result))


@router.post("/{lead_id}/score", response_model=LeadScoreResponse)
async def score_lead(
    lead_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await LeadService(db).score_lead(lead_id, tenant_id)


@router.post("/{lead_id}/convert", response_model=ConvertLeadResponse)
async def convert_lead(
    lead_id: UUID,
    request: Optional[ConvertLeadRequest] = None,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    sequence_id = request.sequence_id if request else None
    result = await LeadService(db).convert_lead(lead_id, tenant_id, sequence_id)
    return ConvertLeadResponse(
        lead_id=result.lead_id,
        contact_id=result.contact_id,
        is_new_contact=result.is_new_contact,
        enrollment_id=result.enrollment_id,
        enrollment_error=result.enrollment_error,
        message=result.message
    )


@router.patch("/{lead_id}/status", response_model=LeadResponse)
async def set_lead_status(
    lead_id: UUID,
    request: LeadStatusUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await LeadService(db).set_lead_status(lead_id, tenant_id, request.status)
