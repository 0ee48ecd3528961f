"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA engine.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config import ContractType, Priority, TicketStatus
from infrastructure.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlaTemplateModel(Base):
    """
    Database model for SlaTemplate.

    Maps to the 'sla_templates' table.
    """
    __tablename__ = "sla_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contract_type: Mapped[ContractType] = mapped_column(String(50), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Business calendar overriding the configured one (same shape as business_hours in sla_config.yaml)
    business_hours: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    rules: Mapped[List["SlaRuleModel"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SlaRuleModel(Base):
    """
    Database model for SlaRule.

    One row per priority per template. response <= solution is checked
    when the rule is resolved, not here.
    """
    __tablename__ = "sla_rules"
    __table_args__ = (
        UniqueConstraint("template_id", "priority", name="uq_sla_rules_template_priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("sla_templates.id", ondelete="CASCADE"), nullable=False)
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False)
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    solution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    template: Mapped[SlaTemplateModel] = relationship(back_populates="rules")


class ContractModel(Base):
    """
    Database model for a customer contract.

    Binds tickets to an SLA template.
    """
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contract_type: Mapped[ContractType] = mapped_column(String(50), nullable=False, default=ContractType.SUPPORT)
    sla_template_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sla_templates.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table. The CRUD layer owns most columns; the
    engine writes the deadline and sla_* columns.
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    subject: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)
    category: Mapped[Optional[ContractType]] = mapped_column(String(50), nullable=True)
    contract_id: Mapped[Optional[str]] = mapped_column(ForeignKey("contracts.id"), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    reopened_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Progress markers
    has_first_response: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # SLA tracking
    response_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    solution_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_classification: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sla_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sla_checked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class EscalationRecordModel(Base):
    """
    Database model for EscalationRecord.

    Maps to the 'sla_escalations' table. Insert-only audit trail.
    """
    __tablename__ = "sla_escalations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Ticket reference
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    scan_run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Transition
    from_classification: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_classification: Mapped[str] = mapped_column(String(50), nullable=False)
    due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Actions and delivery
    actions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    delivery_status: Mapped[str] = mapped_column(String(50), nullable=False)
    delivery_error: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class SlaCalculationModel(Base):
    """
    Database model for SlaCalculation.

    Maps to the 'sla_calculations' table. One row per stored deadline
    computation; at most one row per ticket has is_current set.
    """
    __tablename__ = "sla_calculations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)

    # Inputs
    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    calendar: Mapped[str] = mapped_column(String(100), nullable=False)

    # Result
    response_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    solution_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
