"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from config import (
    ContractType, DeliveryStatus, EscalationAction, FINISHED_STATUSES,
    OPEN_STATUSES, PAUSED_STATUSES, Priority, SLAClassification,
    ScanTrigger, TicketStatus,
)
from core import ValidationException
from sla.domain.calendar import ServiceCalendar

if TYPE_CHECKING:
    from sla.domain.stats import SLAStats


@dataclass
class Ticket:
    """
    Ticket as seen by the SLA engine.

    Only the fields the engine reads or writes; everything else about a
    ticket belongs to the CRUD layer.
    """

    id: str
    priority: Priority
    status: TicketStatus
    created_at: datetime

    subject: str = ""
    category: Optional[ContractType] = None
    contract_id: Optional[str] = None
    reopened_at: Optional[datetime] = None

    # Progress markers
    has_first_response: bool = False
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    # Computed by the engine
    response_due_at: Optional[datetime] = None
    solution_due_at: Optional[datetime] = None
    sla_classification: Optional[SLAClassification] = None
    sla_flagged: bool = False

    @property
    def sla_started_at(self) -> datetime:
        """Base clock for deadlines: reopen time if reopened, else creation."""
        return self.reopened_at or self.created_at

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_stopped(self) -> bool:
        """Paused, or finished without a recorded resolution."""
        if self.status in PAUSED_STATUSES:
            return True
        return self.status in FINISHED_STATUSES and self.resolved_at is None

    @property
    def has_deadlines(self) -> bool:
        return self.response_due_at is not None or self.solution_due_at is not None

    def validate(self) -> None:
        """Reject timestamps the engine cannot reason about."""
        for name in ("created_at", "reopened_at", "first_response_at", "resolved_at",
                     "response_due_at", "solution_due_at"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise ValidationException(
                    f"{name} must be timezone-aware",
                    {"ticket_id": self.id, "field": name}
                )

        if self.first_response_at and self.first_response_at < self.created_at:
            raise ValidationException(
                "first_response_at cannot be before created_at", {"ticket_id": self.id}
            )

        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValidationException(
                "resolved_at cannot be before created_at", {"ticket_id": self.id}
            )


@dataclass(frozen=True)
class SlaRule:
    """Response/solution budget for one priority inside a template."""
    priority: Priority
    response_time_minutes: int
    solution_time_minutes: int


@dataclass
class SlaTemplate:
    """Named bundle of SLA rules for a contract type."""

    id: int
    name: str
    contract_type: ContractType
    is_active: bool = True
    is_default: bool = False
    rules: List[SlaRule] = field(default_factory=list)
    # Overrides the configured business calendar for tickets on this template
    calendar: Optional[ServiceCalendar] = None

    def rule_for(self, priority: Priority) -> Optional[SlaRule]:
        """Exact-priority lookup; no cross-priority fallback."""
        for rule in self.rules:
            if rule.priority == priority:
                return rule
        return None


@dataclass
class SlaCalculation:
    """
    One stored (re)computation of a ticket's deadlines.

    Rows are appended, never edited; only ``is_current`` is cleared when a
    newer calculation supersedes the row.
    """

    ticket_id: str
    priority: Priority
    started_at: datetime
    response_due_at: Optional[datetime]
    solution_due_at: Optional[datetime]
    reason: str
    source: str
    calendar: str
    template_id: Optional[int] = None
    is_current: bool = True
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class EscalationRecord:
    """
    Audit entry proving a transition already triggered its actions.

    Created by the dispatcher, never mutated.
    """

    ticket_id: str
    from_classification: Optional[SLAClassification]
    to_classification: SLAClassification
    created_at: datetime
    due_at: Optional[datetime] = None
    scan_run_id: Optional[str] = None
    actions: List[EscalationAction] = field(default_factory=list)
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_REQUESTED
    delivery_error: Optional[str] = None
    id: Optional[str] = None

    @property
    def delivery_failed(self) -> bool:
        return self.delivery_status == DeliveryStatus.FAILED


@dataclass
class TicketEvaluation:
    """Outcome of evaluating one ticket during a scan or a stats refresh."""
    ticket_id: str
    classification: SLAClassification
    previous_classification: Optional[SLAClassification] = None
    has_sla: bool = False
    escalation: Optional[EscalationRecord] = None
    invalid_rule: bool = False

    @property
    def changed(self) -> bool:
        return self.classification != self.previous_classification


@dataclass
class ScanRun:
    """
    One execution of the scan job.

    Lives only for the duration of the run; the orchestrator keeps the
    finished instance as "last run" for the dashboard.
    """

    run_id: str
    trigger: ScanTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluations: List[TicketEvaluation] = field(default_factory=list)
    errors: int = 0
    stats: Optional["SLAStats"] = None
    failed: bool = False

    @staticmethod
    def new_run_id(now: Optional[datetime] = None) -> str:
        """SLA-<timestamp>-<4 random chars>, unique enough to grep logs by."""
        now = now or datetime.now(timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3]
        return f"SLA-{stamp}-{secrets.token_hex(2)}"

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    @property
    def escalations(self) -> List[EscalationRecord]:
        return [e.escalation for e in self.evaluations if e.escalation is not None]

