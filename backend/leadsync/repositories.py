"""
Narrow data-access functions for the collaborators the pipeline consumes:
tenants, contacts, suppression entries and sequences.
"""

from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from leadsync.services.contact_normalization import normalization_service
from leadsync.models import (
    Tenant, Contact, SuppressionEntry, EmailSequence, SequenceEnrollment
)


# ============================================================================
# TENANTS
# ============================================================================

async def get_tenant(db: AsyncSession, tenant_id: UUID) -> Optional[Tenant]:
    return await db.get(Tenant, tenant_id)


async def list_tenants_with_sheets(db: AsyncSession) -> List[Tenant]:
    result = await db.execute(
        select(Tenant)
        .where(and_(Tenant.sheet_url.is_not(None), Tenant.sheet_url != ""))
        .order_by(Tenant.name)
    )
    return list(result.scalars().all())


# ============================================================================
# CONTACTS
# ============================================================================

async def find_contact(db: AsyncSession, tenant_id: UUID, email: str) -> Optional[Contact]:
    result = await db.execute(
        select(Contact).where(
            and_(Contact.tenant_id == tenant_id, Contact.email == normalization_service.normalize_email(email))
        )
    )
    return result.scalar_one_or_none()


async def create_contact(db: AsyncSession, tenant_id: UUID, attrs: Dict[str, Optional[str]]) -> Contact:
    contact = Contact(
        tenant_id=tenant_id,
        email=normalization_service.normalize_email(attrs.get("email")),
        first_name=attrs.get("first_name"),
        last_name=attrs.get("last_name"),
        company_name=attrs.get("company_name"),
        job_title=attrs.get("job_title"),
        phone=attrs.get("phone"),
        source=attrs.get("source") or "manual"
    )
    db.add(contact)
    await db.flush()
    return contact


# ============================================================================
# SUPPRESSION
# ============================================================================

async def find_suppressions(
    db: AsyncSession,
    tenant_id: UUID,
    emails: Iterable[str],
    domains: Iterable[str]
) -> List[SuppressionEntry]:
    emails = sorted({normalization_service.normalize_email(e) for e in emails if e})
    domains = sorted({(d or "").strip().lower() for d in domains if d})
    if not emails and not domains:
        return []

    clauses = []
    if emails:
        clauses.append(and_(SuppressionEntry.type == "email", SuppressionEntry.value.in_(emails)))
    if domains:
        clauses.append(and_(SuppressionEntry.type == "domain", SuppressionEntry.value.in_(domains)))

    result = await db.execute(
        select(SuppressionEntry).where(
            and_(SuppressionEntry.tenant_id == tenant_id, or_(*clauses))
        )
    )
    return list(result.scalars().all())


# ============================================================================
# SEQUENCES
# ============================================================================

async def find_sequence(db: AsyncSession, tenant_id: UUID, sequence_id: UUID) -> Optional[EmailSequence]:
    result = await db.execute(
        select(EmailSequence).where(
            and_(EmailSequence.id == sequence_id, EmailSequence.tenant_id == tenant_id)
        )
    )
    return result.scalar_one_or_none()


async def find_enrollment(db: AsyncSession, sequence_id: UUID, contact_id: UUID) -> Optional[SequenceEnrollment]:
    result = await db.execute(
        select(SequenceEnrollment).where(
            and_(
                SequenceEnrollment.sequence_id == sequence_id,
                SequenceEnrollment.contact_id == contact_id
            )
        )
    )
    return result.scalar_one_or_none()


async def create_enrollment(db: AsyncSession, **values) -> SequenceEnrollment:
    enrollment = SequenceEnrollment(**values)
    db.add(enrollment)
    await db.flush()
    return enrollment
