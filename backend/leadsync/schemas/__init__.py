"""Pydantic schemas for request/response validation."""

from leadsync.schemas.lead import (
    LeadResponse,
    LeadListResponse,
    LeadStatusUpdate,
    LeadScoreResponse,
    AggregationsResponse,
    ConvertLeadRequest,
    ConvertLeadResponse,
    BulkConvertRequest,
    BulkConvertResponse,
    SuppressedLead,
)
from leadsync.schemas.sync import (
    SyncStatusResponse,
    SyncTriggerResponse,
    SheetUrlUpdate,
)
