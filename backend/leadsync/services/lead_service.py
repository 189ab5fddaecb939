"""Lead read/write operations exposed to the API."""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from leadsync.exceptions import NotFoundError, ValidationError
from leadsync.locks import tenant_lock
from leadsync.models import LEAD_STATUSES, LeadRecord, LeadSyncState, utcnow
from leadsync.services import tabular_parser
from leadsync.services.lead_aggregations import calculate_actuals
from leadsync.services.lead_converter import LeadConverter
from leadsync.services.lead_scorer import scoring_service

logger = logging.getLogger(__name__)

EXPORT_BASE_COLUMNS = ["id", "accountLabel", "status", "score"]


def serialize_lead(lead: LeadRecord) -> Dict[str, Any]:
    return {
        "id": str(lead.id),
        "tenant_id": str(lead.tenant_id),
        "account_label": lead.account_label,
        "fields": lead.field_bag.to_dict(),
        "status": lead.status,
        "score": lead.score,
        "qualified_at": lead.qualified_at,
        "converted_contact_id": str(lead.converted_contact_id) if lead.converted_contact_id else None,
        "converted_at": lead.converted_at,
        "enrolled_sequence_id": str(lead.enrolled_sequence_id) if lead.enrolled_sequence_id else None,
        "source_url": lead.source_url,
        "sheet_gid": lead.sheet_gid,
        "created_at": lead.created_at,
        "updated_at": lead.updated_at,
    }


class LeadService:
    """Tenant-scoped lead queries and per-lead actions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _query_leads(self, tenant_id: Optional[UUID] = None, since: Optional[datetime] = None) -> List[LeadRecord]:
        query = select(LeadRecord)
        conditions = []
        if tenant_id is not None:
            conditions.append(LeadRecord.tenant_id == tenant_id)
        if since is not None:
            conditions.append(LeadRecord.updated_at >= since)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(LeadRecord.updated_at.desc(), LeadRecord.row_key)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_lead(self, lead_id: UUID, tenant_id: UUID) -> LeadRecord:
        result = await self.db.execute(
            select(LeadRecord).where(
                and_(LeadRecord.id == lead_id, LeadRecord.tenant_id == tenant_id)
            )
        )
        lead = result.scalar_one_or_none()
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found")
        return lead

    async def _last_sync_at(self, tenant_id: Optional[UUID]) -> Optional[datetime]:
        if tenant_id is None:
            result = await self.db.execute(
                select(func.max(func.coalesce(LeadSyncState.last_success_at, LeadSyncState.last_sync_at)))
            )
            return result.scalar()

        result = await self.db.execute(
            select(LeadSyncState).where(LeadSyncState.tenant_id == tenant_id)
        )
        state = result.scalar_one_or_none()
        if state is None:
            return None
        return state.last_success_at or state.last_sync_at

    # ========================================================================
    # READS
    # ========================================================================

    async def list_leads(self, tenant_id: Optional[UUID] = None, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Leads newest first, optionally only those updated at or after ``since``."""
        leads = await self._query_leads(tenant_id, since)
        return {
            "leads": [serialize_lead(lead) for lead in leads],
            "total": len(leads),
            "last_sync_at": await self._last_sync_at(tenant_id),
        }

    async def export_leads_as_tabular_text(self, tenant_id: Optional[UUID] = None) -> str:
        """
        One row per lead: id, accountLabel, status, score, then every field
        header in first-seen order. Cells are re-quoted by the serializer.
        """
        leads = await self._query_leads(tenant_id)

        field_headers: List[str] = []
        seen = set()
        for lead in leads:
            for header in lead.field_bag.headers():
                if header not in seen:
                    seen.add(header)
                    field_headers.append(header)

        rows: List[List[str]] = [EXPORT_BASE_COLUMNS + field_headers]
        for lead in leads:
            bag = lead.field_bag
            rows.append(
                [str(lead.id), lead.account_label, lead.status, "" if lead.score is None else str(lead.score)]
                + [bag.get(header) for header in field_headers]
            )

        logger.info(f"Exported {len(leads)} leads with {len(field_headers)} field columns")
        return tabular_parser.serialize(rows)

    async def get_aggregations(self, tenant_id: Optional[UUID] = None, today=None) -> Dict[str, Any]:
        """Weekly/monthly actuals and breakdowns, recomputed from stored leads."""
        leads = await self._query_leads(tenant_id)
        actuals = calculate_actuals([lead.field_bag for lead in leads], today=today)
        statuses = Counter(lead.status for lead in leads)
        return {
            "tenant_id": str(tenant_id) if tenant_id else None,
            "total_leads": len(leads),
            "weekly_actual": actuals.weekly_actual,
            "monthly_actual": actuals.monthly_actual,
            "by_status": {status: statuses.get(status, 0) for status in LEAD_STATUSES},
            **actuals.aggregations,
        }

    # ========================================================================
    # ACTIONS
    # ========================================================================

    async def score_lead(self, lead_id: UUID, tenant_id: UUID) -> Dict[str, Any]:
        async with tenant_lock(tenant_id):
            lead = await self._get_lead(lead_id, tenant_id)
            value = scoring_service.apply(lead)
            await self.db.commit()
        return {"lead_id": str(lead.id), "score": value, "status": lead.status}

    async def set_lead_status(self, lead_id: UUID, tenant_id: UUID, status: str) -> Dict[str, Any]:
        status = (status or "").strip().lower()
        if status not in LEAD_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {', '.join(LEAD_STATUSES)}"
            )

        async with tenant_lock(tenant_id):
            lead = await self._get_lead(lead_id, tenant_id)
            if status == "converted" and not lead.is_converted:
                raise ValidationError("Use the convert operation to mark a lead converted")

            if status == "qualified":
                lead.mark_qualified(utcnow())
            else:
                lead.status = status
            await self.db.commit()

        logger.info(f"Lead {lead.id} status set to {status}")
        return serialize_lead(lead)

    async def convert_lead(self, lead_id: UUID, tenant_id: UUID, sequence_id: Optional[UUID] = None):
        return await LeadConverter(self.db, tenant_id).convert(lead_id, sequence_id)

    async def bulk_convert_leads(
        self, lead_ids: Sequence[UUID], tenant_id: UUID, sequence_id: Optional[UUID] = None
    ):
        if not lead_ids:
            raise ValidationError("lead_ids must not be empty")
        return await LeadConverter(self.db, tenant_id).bulk_convert(lead_ids, sequence_id)
