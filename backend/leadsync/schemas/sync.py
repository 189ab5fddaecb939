# backend/leadsync/schemas/sync.py
"""Pydantic schemas for sync endpoints."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class SyncStatusResponse(BaseModel):
    """
    ``status`` is derived: never_synced, running, paused, error or success.
    """
    tenant_id: UUID
    tenant_name: str
    sheet_url: Optional[str] = None
    status: str
    is_running: bool
    is_paused: bool
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    row_count: int = 0
    rows_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0
    error_count: int = 0
    retry_count: int = 0
    sync_duration: Optional[int] = Field(None, description="Milliseconds")
    progress_percent: int = 0
    progress_message: Optional[str] = None
    gid_used: Optional[str] = None
    weekly_lead_actual: int = 0
    monthly_lead_actual: int = 0


class SyncTriggerResponse(BaseModel):
    tenant_id: UUID
    status: str
    message: str


class SheetUrlUpdate(BaseModel):
    """An empty or missing URL clears the tenant's sheet and its leads."""
    sheet_url: Optional[str] = None
