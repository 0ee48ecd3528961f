"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from sla.domain import EscalationRecord, ScanRun, SlaCalculation, SLAStats, Ticket


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "high", "medium", "low"]
TicketStatusStr = Literal["open", "in_progress", "pending", "paused", "resolved", "closed"]
SLAClassificationStr = Literal["on_track", "at_risk", "breached", "met", "stopped", "unclassified"]
DeliveryStatusStr = Literal["sent", "failed", "not_requested"]
ScanTriggerStr = Literal["scheduled", "initial", "manual"]


# ========== Request DTOs ==========

class PriorityChangeRequest(BaseModel):
    """Request model for a priority change."""
    priority: PriorityStr = Field(..., description="New ticket priority")


class ContractChangeRequest(BaseModel):
    """Request model for binding a ticket to a contract."""
    contract_id: Optional[str] = Field(
        None,
        min_length=1,
        description="Contract ID, or null to unbind"
    )


# ========== Response DTOs ==========

class EscalationResponse(BaseModel):
    """Response model for an escalation record."""
    id: Optional[str] = None
    ticket_id: str
    scan_run_id: Optional[str] = None
    from_classification: Optional[SLAClassificationStr] = None
    to_classification: SLAClassificationStr
    due_at: Optional[datetime] = None
    actions: List[str] = Field(default_factory=list)
    delivery_status: DeliveryStatusStr
    delivery_error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, record: EscalationRecord) -> "EscalationResponse":
        return cls(
            id=record.id,
            ticket_id=record.ticket_id,
            scan_run_id=record.scan_run_id,
            from_classification=record.from_classification.value if record.from_classification else None,
            to_classification=record.to_classification.value,
            due_at=record.due_at,
            actions=[action.value for action in record.actions],
            delivery_status=record.delivery_status.value,
            delivery_error=record.delivery_error,
            created_at=record.created_at,
        )


class CalculationResponse(BaseModel):
    """One stored deadline calculation."""
    id: Optional[int] = None
    priority: PriorityStr
    started_at: datetime
    response_due_at: Optional[datetime] = None
    solution_due_at: Optional[datetime] = None
    reason: str = Field(..., description="What triggered the calculation")
    source: str = Field(..., description="template or default")
    template_id: Optional[int] = None
    calendar: str = Field(..., description="Calendar the budgets were counted on")
    is_current: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, calculation: SlaCalculation) -> "CalculationResponse":
        return cls(
            id=calculation.id,
            priority=calculation.priority.value,
            started_at=calculation.started_at,
            response_due_at=calculation.response_due_at,
            solution_due_at=calculation.solution_due_at,
            reason=calculation.reason,
            source=calculation.source,
            template_id=calculation.template_id,
            calendar=calculation.calendar,
            is_current=calculation.is_current,
            created_at=calculation.created_at,
        )


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA information."""
    ticket_id: str = Field(..., description="Ticket ID")
    priority: PriorityStr
    status: TicketStatusStr
    contract_id: Optional[str] = None
    created_at: datetime
    sla_started_at: datetime = Field(..., description="Base clock of the deadlines")

    # Deadlines
    response_due_at: Optional[datetime] = None
    solution_due_at: Optional[datetime] = None
    has_first_response: bool = False
    resolved_at: Optional[datetime] = None

    # Classification
    classification: Optional[SLAClassificationStr] = Field(
        None,
        description="Classification derived at request time"
    )
    last_classification: Optional[SLAClassificationStr] = Field(
        None,
        description="Classification persisted by the last scan"
    )
    sla_flagged: bool = False

    escalations: List[EscalationResponse] = Field(
        default_factory=list,
        description="Escalation history, oldest first"
    )
    calculations: List[CalculationResponse] = Field(
        default_factory=list,
        description="Deadline calculation history, oldest first"
    )

    @classmethod
    def from_domain(
        cls,
        ticket: Ticket,
        classification: Optional[str] = None,
        escalations: Optional[List[EscalationRecord]] = None,
        calculations: Optional[List[SlaCalculation]] = None
    ) -> "TicketSLAResponse":
        return cls(
            ticket_id=ticket.id,
            priority=ticket.priority.value,
            status=ticket.status.value,
            contract_id=ticket.contract_id,
            created_at=ticket.created_at,
            sla_started_at=ticket.sla_started_at,
            response_due_at=ticket.response_due_at,
            solution_due_at=ticket.solution_due_at,
            has_first_response=ticket.has_first_response,
            resolved_at=ticket.resolved_at,
            classification=classification,
            last_classification=ticket.sla_classification.value if ticket.sla_classification else None,
            sla_flagged=ticket.sla_flagged,
            escalations=[EscalationResponse.from_domain(r) for r in escalations or []],
            calculations=[CalculationResponse.from_domain(c) for c in calculations or []],
        )


class StatsResponse(BaseModel):
    """Counts by classification."""
    total: int
    with_sla: int
    on_track: int
    at_risk: int
    breached: int
    met: int
    stopped: int
    unclassified: int
    errors: int
    risk_rate: float = Field(..., description="Percentage of SLA tickets at risk")
    breach_rate: float = Field(..., description="Percentage of SLA tickets breached")
    generated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, stats: SLAStats, generated_at: Optional[datetime] = None) -> "StatsResponse":
        return cls(**stats.to_dict(), generated_at=generated_at)


class ScanRunResponse(BaseModel):
    """Summary of one scan run."""
    run_id: str
    trigger: ScanTriggerStr
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    failed: bool = False
    escalations: int = 0
    stats: Optional[StatsResponse] = None

    @classmethod
    def from_domain(cls, run: ScanRun) -> "ScanRunResponse":
        return cls(
            run_id=run.run_id,
            trigger=run.trigger.value,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_ms=run.duration_ms,
            failed=run.failed,
            escalations=len(run.escalations),
            stats=StatsResponse.from_domain(run.stats, run.finished_at) if run.stats else None,
        )


class JobInfoResponse(BaseModel):
    """Scan job status."""
    scheduled: bool = Field(..., description="Whether the periodic job is registered")
    running: bool = Field(..., description="Whether a scan is executing right now")
    interval_minutes: int
    timezone: str
    next_run_time: Optional[datetime] = None
    last_run: Optional[ScanRunResponse] = None
