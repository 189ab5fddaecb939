# backend/leadsync/schemas/lead.py
"""Pydantic schemas for lead endpoints."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID


# ========================================
# LEADS
# ========================================

class LeadResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    account_label: str
    fields: Dict[str, str] = Field(default_factory=dict)
    status: str
    score: Optional[int] = None
    qualified_at: Optional[datetime] = None
    converted_contact_id: Optional[UUID] = None
    converted_at: Optional[datetime] = None
    enrolled_sequence_id: Optional[UUID] = None
    source_url: Optional[str] = None
    sheet_gid: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class LeadListResponse(BaseModel):
    leads: List[LeadResponse]
    total: int
    last_sync_at: Optional[datetime] = None


class LeadStatusUpdate(BaseModel):
    """Status is checked against the lead lifecycle by the service."""
    status: str = Field(..., min_length=1, max_length=20)


class LeadScoreResponse(BaseModel):
    lead_id: UUID
    score: int = Field(..., ge=0, le=100)
    status: str


class AggregationsResponse(BaseModel):
    tenant_id: Optional[UUID] = None
    total_leads: int
    weekly_actual: int
    monthly_actual: int
    by_status: Dict[str, int]
    totals_by_day: List[Dict[str, Any]]
    totals_by_week: List[Dict[str, Any]]
    totals_by_month: List[Dict[str, Any]]
    breakdown_by_team_member: List[Dict[str, Any]]
    breakdown_by_platform: List[Dict[str, Any]]


# ========================================
# CONVERSION
# ========================================

class ConvertLeadRequest(BaseModel):
    sequence_id: Optional[UUID] = Field(None, description="Enroll the contact into this sequence")


class ConvertLeadResponse(BaseModel):
    lead_id: UUID
    contact_id: UUID
    is_new_contact: bool
    enrollment_id: Optional[UUID] = None
    enrollment_error: Optional[str] = None
    message: str


class BulkConvertRequest(BaseModel):
    lead_ids: List[UUID] = Field(..., min_length=1)
    sequence_id: Optional[UUID] = None


class SuppressedLead(BaseModel):
    lead_id: UUID
    email: str
    reason: str


class BulkConvertResponse(BaseModel):
    converted: int
    skipped: int
    error_count: int
    contacts_created: int
    contacts_existing: int
    enrollments: int
    suppressed: List[SuppressedLead] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
