"""
Reconciler - diff freshly normalized sheet rows against stored leads.

Rows are matched by a content-derived key because sheet rows carry no
stable id and can be reordered. Nothing is committed here: the caller
owns the transaction so a failed run leaves stored leads untouched.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from leadsync.fields import FieldBag
from leadsync.models import LeadRecord, Tenant, utcnow
from leadsync.services.lead_aggregations import calculate_actuals
from leadsync.services.row_normalizer import NormalizedLead

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    total: int = 0
    weekly_actual: int = 0
    monthly_actual: int = 0
    checksum: Optional[str] = None

    def as_dict(self) -> Dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "total": self.total,
        }


def stable_key(bag: FieldBag, tenant_id) -> str:
    """Deterministic key from the identifying fields of a row."""
    email = bag.get("Email", "email").strip().lower()
    phone = bag.get("Phone", "phone", "Mobile", "mobile").strip()
    name = bag.get("Name", "name").strip().lower()
    company = bag.get("Company", "company").strip().lower()
    created = bag.get("Created At", "createdAt", "Date", "date").strip()

    identifier = "|".join([
        str(tenant_id),
        email or "no-email",
        phone or "no-phone",
        name or "no-name",
        company or "no-company",
        created or "no-date",
    ])
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()
    return f"lead_{digest[:16]}"


def assign_row_keys(leads: Sequence[NormalizedLead], tenant_id) -> List[Tuple[str, NormalizedLead]]:
    """Key every lead; repeated keys get ``#2``, ``#3``... in encounter order."""
    seen: Dict[str, int] = {}
    keyed = []
    for lead in leads:
        key = stable_key(lead.fields, tenant_id)
        seen[key] = seen.get(key, 0) + 1
        if seen[key] > 1:
            key = f"{key}#{seen[key]}"
        keyed.append((key, lead))
    return keyed


def leads_checksum(keyed: Sequence[Tuple[str, NormalizedLead]]) -> str:
    payload = json.dumps(
        [[key, lead.fields.to_pairs()] for key, lead in sorted(keyed, key=lambda item: item[0])],
        separators=(",", ":")
    )
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class Reconciler:
    """Apply insert/update/delete sets for one tenant inside the caller's session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reconcile(
        self,
        tenant: Tenant,
        fresh_leads: Sequence[NormalizedLead],
        source_url: Optional[str] = None,
        sheet_gid: Optional[str] = None,
        now: Optional[datetime] = None,
        today: Optional[date] = None
    ) -> ReconcileResult:
        now = now or utcnow()
        result = ReconcileResult()

        existing_rows = (await self.db.execute(
            select(LeadRecord).where(LeadRecord.tenant_id == tenant.id)
        )).scalars().all()
        existing: Dict[str, LeadRecord] = {row.row_key: row for row in existing_rows}

        keyed = assign_row_keys(fresh_leads, tenant.id)
        fresh_keys = set()

        for key, lead in keyed:
            fresh_keys.add(key)
            pairs = lead.fields.to_pairs()
            record = existing.get(key)

            if record is None:
                self.db.add(LeadRecord(
                    tenant_id=tenant.id,
                    row_key=key,
                    account_label=lead.account_label,
                    fields=pairs,
                    status="new",
                    source_url=source_url,
                    sheet_gid=sheet_gid,
                    created_at=now,
                    updated_at=now
                ))
                result.inserted += 1
            elif record.fields != pairs or record.account_label != lead.account_label:
                # Only the raw row changes; status/score/conversion survive
                record.fields = pairs
                record.account_label = lead.account_label
                record.source_url = source_url
                record.sheet_gid = sheet_gid
                record.updated_at = now
                result.updated += 1
            else:
                result.unchanged += 1

        stale = [record for key, record in existing.items() if key not in fresh_keys]
        for record in stale:
            await self.db.delete(record)
        result.deleted = len(stale)

        await self.db.flush()

        actuals = calculate_actuals([lead.fields for lead in fresh_leads], today=today)
        tenant.weekly_lead_actual = actuals.weekly_actual
        tenant.monthly_lead_actual = actuals.monthly_actual

        result.total = len(keyed)
        result.weekly_actual = actuals.weekly_actual
        result.monthly_actual = actuals.monthly_actual
        result.checksum = leads_checksum(keyed)

        logger.info(
            f"Reconciled tenant {tenant.id}: {result.inserted} inserted, {result.updated} updated, "
            f"{result.deleted} deleted, {result.unchanged} unchanged "
            f"(weekly={result.weekly_actual}, monthly={result.monthly_actual})"
        )
        return result

    async def clear_tenant(self, tenant: Tenant) -> int:
        """Delete every lead of ``tenant`` and zero its actuals. Returns rows removed."""
        outcome = await self.db.execute(
            delete(LeadRecord).where(LeadRecord.tenant_id == tenant.id)
        )
        tenant.weekly_lead_actual = 0
        tenant.monthly_lead_actual = 0
        await self.db.flush()
        return outcome.rowcount or 0
