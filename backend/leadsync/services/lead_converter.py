# backend/leadsync/services/lead_converter.py
"""
Lead Converter - turns qualified leads into outreach contacts.

Flow per lead:
1. Extract contact attributes from the sheet fields
2. Guard: email present, not already converted
3. Reuse the tenant's contact with that email, or create one
4. Mark the lead converted (committed on its own)
5. Optionally enroll the contact into a sequence (committed separately,
   so an enrollment failure never undoes the conversion)
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadsync import repositories
from leadsync.config import settings
from leadsync.exceptions import (
    AlreadyConverted, LeadSyncError, MissingEmail, NotFoundError
)
from leadsync.locks import tenant_lock
from leadsync.models import Contact, EmailSequence, LeadRecord, utcnow
from leadsync.services.contact_normalization import normalization_service

logger = logging.getLogger(__name__)

CONTACT_SOURCE = "lead_conversion"


@dataclass
class ConversionResult:
    lead_id: UUID
    contact_id: UUID
    is_new_contact: bool
    enrollment_id: Optional[UUID] = None
    enrollment_error: Optional[str] = None

    @property
    def message(self) -> str:
        text = "Lead converted to new contact" if self.is_new_contact else "Lead linked to existing contact"
        if self.enrollment_id:
            text += " and enrolled in sequence"
        return text


@dataclass
class BulkConversionResult:
    converted: int = 0
    skipped: int = 0
    error_count: int = 0
    contacts_created: int = 0
    contacts_existing: int = 0
    enrollments: int = 0
    suppressed: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class _Enrollment:
    """What enrolling one contact needs, as plain values (safe across rollbacks)."""
    sequence_id: UUID
    first_step_delay: timedelta


def first_step_delay(sequence: EmailSequence) -> timedelta:
    """Delay before the first step; zero (immediate) for a sequence without steps."""
    steps = sorted(sequence.steps or [], key=lambda step: step.step_order)
    if not steps:
        return timedelta(0)
    return timedelta(days=steps[0].delay_days_from_previous or 0)


class LeadConverter:
    """Convert leads for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def _load_lead(self, lead_id: UUID) -> LeadRecord:
        result = await self.db.execute(
            select(LeadRecord).where(
                and_(LeadRecord.id == lead_id, LeadRecord.tenant_id == self.tenant_id)
            )
        )
        lead = result.scalar_one_or_none()
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found")
        return lead

    async def _load_enrollment_plan(self, sequence_id: Optional[UUID]) -> Optional[_Enrollment]:
        if sequence_id is None:
            return None
        sequence = await repositories.find_sequence(self.db, self.tenant_id, sequence_id)
        if sequence is None:
            raise NotFoundError(f"Sequence {sequence_id} not found for this tenant")
        return _Enrollment(sequence_id=sequence.id, first_step_delay=first_step_delay(sequence))

    async def _get_or_create_contact(self, attrs: Dict[str, Optional[str]]) -> Tuple[Contact, bool]:
        existing = await repositories.find_contact(self.db, self.tenant_id, attrs["email"])
        if existing:
            return existing, False

        try:
            async with self.db.begin_nested():
                contact = await repositories.create_contact(
                    self.db, self.tenant_id, {**attrs, "source": CONTACT_SOURCE}
                )
            return contact, True
        except IntegrityError:
            # Created concurrently for the same (tenant, email)
            existing = await repositories.find_contact(self.db, self.tenant_id, attrs["email"])
            if existing is None:
                raise
            return existing, False

    # ========================================================================
    # CONVERSION
    # ========================================================================

    async def _convert_loaded(self, lead: LeadRecord) -> Tuple[Contact, bool]:
        """Steps 1-4 on an already loaded lead; commits the conversion."""
        attrs = normalization_service.extract_contact(lead.field_bag)
        if not attrs["email"]:
            raise MissingEmail(f"Lead {lead.id} has no email address")
        if lead.is_converted:
            raise AlreadyConverted(f"Lead {lead.id} is already converted")

        contact, is_new = await self._get_or_create_contact(attrs)
        lead.mark_converted(contact.id, utcnow())
        await self.db.commit()

        logger.info(
            f"Converted lead {lead.id} -> contact {contact.id} "
            f"({'new' if is_new else 'existing'}) for tenant {self.tenant_id}"
        )
        return contact, is_new

    async def _enroll(self, lead_id: UUID, contact_id: UUID, plan: _Enrollment) -> Optional[UUID]:
        """Enroll the contact; returns the new enrollment id, or None if already enrolled."""
        existing = await repositories.find_enrollment(self.db, plan.sequence_id, contact_id)
        if existing:
            logger.info(f"Contact {contact_id} already enrolled in sequence {plan.sequence_id}, skipping")
            return None

        now = utcnow()
        enrollment = await repositories.create_enrollment(
            self.db,
            sequence_id=plan.sequence_id,
            contact_id=contact_id,
            tenant_id=self.tenant_id,
            status="active",
            next_step_scheduled_at=now + plan.first_step_delay
        )
        enrollment_id = enrollment.id

        lead = await self.db.get(LeadRecord, lead_id)
        lead.enrolled_sequence_id = plan.sequence_id
        lead.status = "nurturing"
        lead.updated_at = now
        await self.db.commit()
        return enrollment_id

    async def _try_enroll(
        self, lead_id: UUID, contact_id: UUID, plan: _Enrollment
    ) -> Tuple[Optional[UUID], Optional[str]]:
        try:
            return await self._enroll(lead_id, contact_id, plan), None
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Enrollment of contact {contact_id} in sequence {plan.sequence_id} failed: {e}")
            return None, f"Enrollment failed: {e.__class__.__name__}"

    async def convert(self, lead_id: UUID, sequence_id: Optional[UUID] = None) -> ConversionResult:
        """
        Convert one lead.

        Raises:
            NotFoundError: lead or sequence not found for the tenant
            MissingEmail: no email in the lead's fields
            AlreadyConverted: lead already has a contact
        """
        async with tenant_lock(self.tenant_id):
            lead = await self._load_lead(lead_id)
            plan = await self._load_enrollment_plan(sequence_id)
            contact, is_new = await self._convert_loaded(lead)

            result = ConversionResult(lead_id=lead.id, contact_id=contact.id, is_new_contact=is_new)
            if plan is not None:
                result.enrollment_id, result.enrollment_error = await self._try_enroll(
                    result.lead_id, result.contact_id, plan
                )
            return result

    async def bulk_convert(
        self, lead_ids: Sequence[UUID], sequence_id: Optional[UUID] = None
    ) -> BulkConversionResult:
        """
        Convert many leads, isolating failures per item. Contacts whose email
        or domain is suppressed for the tenant are converted but not enrolled.
        """
        result = BulkConversionResult()
        error_limit = settings.BULK_CONVERT_ERROR_LIMIT

        def record_error(lead_id, message: str) -> None:
            result.error_count += 1
            if len(result.errors) < error_limit:
                result.errors.append(f"{lead_id}: {message}")

        async with tenant_lock(self.tenant_id):
            plan = await self._load_enrollment_plan(sequence_id)
            converted: List[Tuple[UUID, UUID, str]] = []

            for lead_id in lead_ids:
                try:
                    lead = await self._load_lead(lead_id)
                    contact, is_new = await self._convert_loaded(lead)
                except AlreadyConverted:
                    result.skipped += 1
                    continue
                except LeadSyncError as e:
                    record_error(lead_id, e.message)
                    continue
                except SQLAlchemyError as e:
                    await self.db.rollback()
                    logger.error(f"Bulk conversion of lead {lead_id} failed: {e}")
                    record_error(lead_id, f"Database error: {e.__class__.__name__}")
                    continue

                result.converted += 1
                if is_new:
                    result.contacts_created += 1
                else:
                    result.contacts_existing += 1
                converted.append((lead.id, contact.id, contact.email))

            if plan is None or not converted:
                return result

            emails = [email for _, _, email in converted]
            domains = [normalization_service.extract_domain(email) for email in emails]
            entries = await repositories.find_suppressions(self.db, self.tenant_id, emails, domains)
            suppressed_emails = {e.value: e.reason for e in entries if e.type == "email"}
            suppressed_domains = {e.value: e.reason for e in entries if e.type == "domain"}

            for lead_id, contact_id, email in converted:
                domain = normalization_service.extract_domain(email)
                if email in suppressed_emails:
                    reason = suppressed_emails[email] or "Email suppressed"
                elif domain in suppressed_domains:
                    reason = suppressed_domains[domain] or "Domain suppressed"
                else:
                    enrollment_id, error = await self._try_enroll(lead_id, contact_id, plan)
                    if enrollment_id:
                        result.enrollments += 1
                    elif error:
                        record_error(lead_id, error)
                    continue

                result.suppressed.append({
                    "lead_id": str(lead_id),
                    "email": email,
                    "reason": reason,
                })

        logger.info(
            f"Bulk conversion for tenant {self.tenant_id}: {result.converted} converted, "
            f"{result.skipped} skipped, {result.error_count} errors, "
            f"{result.enrollments} enrolled, {len(result.suppressed)} suppressed"
        )
        return result
