"""FastAPI dependencies shared by the routers."""

from typing import Optional
from uuid import UUID

from fastapi import Header, Query

from leadsync.exceptions import ValidationError
from leadsync.services.sync_orchestrator import SyncOrchestrator, sync_orchestrator


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    tenant_id: Optional[str] = Query(None)
) -> UUID:
    """Tenant from the ``X-Tenant-Id`` header, falling back to ``?tenant_id=``."""
    raw = (x_tenant_id or tenant_id or "").strip()
    if not raw:
        raise ValidationError("Tenant id is required (X-Tenant-Id header or tenant_id query parameter)")
    try:
        return UUID(raw)
    except ValueError:
        raise ValidationError(f"Invalid tenant id '{raw}'")


def get_sync_orchestrator() -> SyncOrchestrator:
    return sync_orchestrator
