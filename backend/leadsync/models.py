# backend/leadsync/models.py
"""
SQLAlchemy ORM models.

Column types are kept portable (Uuid, JSON) so the same metadata runs on
PostgreSQL in production and SQLite in tests. Timestamps are naive UTC.
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Text, DateTime, JSON, Index, Uuid,
    ForeignKey, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from leadsync.database import Base
from leadsync.fields import FieldBag
from datetime import datetime, timezone
import uuid


LEAD_STATUSES = ("new", "qualified", "nurturing", "converted", "closed")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# TENANT
# ============================================================================

class Tenant(Base):
    """Customer account whose leads come from one external sheet."""
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    sheet_url = Column(Text, nullable=True)

    # Recomputed after every sync / clear
    weekly_lead_actual = Column(Integer, nullable=False, default=0)
    monthly_lead_actual = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}')>"


# ============================================================================
# LEADS
# ============================================================================

class LeadRecord(Base):
    """
    One sheet row attributed to a tenant.

    ``fields`` holds the raw row as ordered ``[header, value]`` pairs; the
    business attributes (status, score, conversion refs) live in columns.
    """
    __tablename__ = "lead_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    row_key = Column(String(80), nullable=False)
    account_label = Column(String(255), nullable=False)
    fields = Column(JSON, nullable=False, default=list)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================
    status = Column(String(20), nullable=False, default="new")
    score = Column(Integer, nullable=True)
    qualified_at = Column(DateTime, nullable=True)

    converted_contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=True)
    converted_at = Column(DateTime, nullable=True)
    enrolled_sequence_id = Column(Uuid, ForeignKey("email_sequences.id"), nullable=True)

    # ========================================================================
    # SOURCE TRACKING
    # ========================================================================
    source_url = Column(Text, nullable=True)
    sheet_gid = Column(String(50), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "row_key", name="uq_lead_tenant_row_key"),
        CheckConstraint(
            "status IN ('new', 'qualified', 'nurturing', 'converted', 'closed')",
            name="chk_lead_status"
        ),
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 100)", name="chk_lead_score"),
        Index("idx_lead_tenant_updated", "tenant_id", "updated_at"),
    )

    @property
    def field_bag(self) -> FieldBag:
        return FieldBag(self.fields or [])

    @property
    def is_converted(self) -> bool:
        return self.converted_contact_id is not None

    def mark_qualified(self, when: datetime) -> None:
        """Move to ``qualified``; the first qualification timestamp is kept."""
        self.status = "qualified"
        if self.qualified_at is None:
            self.qualified_at = when

    def mark_converted(self, contact_id: uuid.UUID, when: datetime) -> None:
        if self.converted_contact_id is not None:
            raise ValueError(f"Lead {self.id} already converted")
        self.converted_contact_id = contact_id
        self.converted_at = when
        self.status = "converted"

    def __repr__(self):
        return f"<LeadRecord(id={self.id}, tenant={self.tenant_id}, status='{self.status}')>"


class LeadSyncState(Base):
    """Per-tenant sync bookkeeping. Exactly one row per tenant."""
    __tablename__ = "lead_sync_states"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)

    is_running = Column(Boolean, nullable=False, default=False)
    is_paused = Column(Boolean, nullable=False, default=False)

    last_sync_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    last_checksum = Column(String(64), nullable=True)
    gid_used = Column(String(50), nullable=True)

    # ========================================================================
    # METRICS
    # ========================================================================
    row_count = Column(Integer, nullable=False, default=0)
    rows_processed = Column(Integer, nullable=False, default=0)
    rows_inserted = Column(Integer, nullable=False, default=0)
    rows_updated = Column(Integer, nullable=False, default=0)
    rows_deleted = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    retry_count = Column(Integer, nullable=False, default=0)
    sync_duration = Column(Integer, nullable=True)  # milliseconds

    progress_percent = Column(Integer, nullable=False, default=0)
    progress_message = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def logical_status(self) -> str:
        """never_synced | running | paused | error | success"""
        if self.is_running:
            return "running"
        if self.is_paused:
            return "paused"
        if self.last_sync_at is None and self.last_success_at is None:
            return "never_synced"
        if self.last_error:
            return "error"
        return "success"


# ============================================================================
# OUTREACH
# ============================================================================

class Contact(Base):
    """Deduplicated outreach identity, unique per tenant and email."""
    __tablename__ = "contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    company_name = Column(String(255))
    job_title = Column(String(255))
    phone = Column(String(50))
    source = Column(String(50), nullable=False, default="manual")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_contact_tenant_email"),
    )


class SuppressionEntry(Base):
    """Tenant-scoped do-not-contact entry for an email or a whole domain."""
    __tablename__ = "suppression_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    value = Column(String(255), nullable=False)
    reason = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "type", "value", name="uq_suppression_entry"),
        CheckConstraint("type IN ('email', 'domain')", name="chk_suppression_type"),
    )


class EmailSequence(Base):
    __tablename__ = "email_sequences"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    steps = relationship(
        "SequenceStep",
        order_by="SequenceStep.step_order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )


class SequenceStep(Base):
    __tablename__ = "sequence_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sequence_id = Column(Uuid, ForeignKey("email_sequences.id", ondelete="CASCADE"), nullable=False, index=True)
    step_order = Column(Integer, nullable=False)
    delay_days_from_previous = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("sequence_id", "step_order", name="uq_sequence_step_order"),
    )


class SequenceEnrollment(Base):
    __tablename__ = "sequence_enrollments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sequence_id = Column(Uuid, ForeignKey("email_sequences.id", ondelete="CASCADE"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active")
    current_step = Column(Integer, nullable=False, default=0)
    next_step_scheduled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("sequence_id", "contact_id", name="uq_enrollment_sequence_contact"),
    )
