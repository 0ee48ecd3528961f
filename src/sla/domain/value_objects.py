"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config import (
    ESCALATING_CLASSIFICATIONS, EscalationAction, Priority,
    SLAClassification, VALID_PRIORITIES,
)
from sla.domain.calendar import (
    BusinessHoursCalendar, ServiceCalendar, WallClockCalendar, WorkingWindow,
)
from sla.domain.entities import Ticket


# Default ladder used when no template is bound (minutes: response / solution)
DEFAULT_LADDER: Dict[str, Dict[str, int]] = {
    Priority.CRITICAL.value: {"response": 30, "solution": 4 * 60},
    Priority.HIGH.value: {"response": 2 * 60, "solution": 8 * 60},
    Priority.MEDIUM.value: {"response": 4 * 60, "solution": 24 * 60},
    Priority.LOW.value: {"response": 8 * 60, "solution": 72 * 60},
}


@dataclass(frozen=True)
class SLABudget:
    """Response and resolution budgets resolved for one ticket."""
    response: timedelta
    solution: timedelta
    source: str                      # "template" or "default"
    template_id: Optional[int] = None

    @classmethod
    def from_minutes(
        cls,
        response_minutes: int,
        solution_minutes: int,
        source: str,
        template_id: Optional[int] = None
    ) -> "SLABudget":
        return cls(
            response=timedelta(minutes=response_minutes),
            solution=timedelta(minutes=solution_minutes),
            source=source,
            template_id=template_id,
        )

    @property
    def is_consistent(self) -> bool:
        """Response budget must not exceed the solution budget."""
        return self.response <= self.solution

    @property
    def is_default(self) -> bool:
        return self.source == "default"


@dataclass(frozen=True)
class SLADeadlines:
    """Absolute due instants computed for a ticket."""
    response_due_at: datetime
    solution_due_at: datetime
    started_at: datetime
    budget: SLABudget
    calendar: str = "wall_clock"


@dataclass(frozen=True)
class WarningWindow:
    """
    How close to a deadline a ticket becomes at risk.

    A ticket is at risk when the time left is at most the larger of
    ``percent`` of its budget span and ``minutes``.
    """
    percent: float = 20.0
    minutes: Optional[int] = None

    def threshold(self, span: timedelta) -> timedelta:
        by_percent = span * (self.percent / 100) if span > timedelta(0) else timedelta(0)
        by_minutes = timedelta(minutes=self.minutes) if self.minutes else timedelta(0)
        return max(by_percent, by_minutes)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - deadline arithmetic, classification and
    escalation decisions in one place. Nothing here reads the clock.
    """

    @staticmethod
    def calculate_deadlines(
        started_at: datetime,
        budget: SLABudget,
        calendar: ServiceCalendar
    ) -> SLADeadlines:
        """
        Compute absolute deadlines from the base clock.

        Args:
            started_at: Ticket creation (or reopen) instant
            budget: Resolved response/solution budgets
            calendar: Wall-clock or business-hours calculator

        Returns:
            SLADeadlines with both due instants
        """
        return SLADeadlines(
            response_due_at=calendar.add_business_duration(started_at, budget.response),
            solution_due_at=calendar.add_business_duration(started_at, budget.solution),
            started_at=started_at,
            budget=budget,
            calendar=calendar.label,
        )

    @staticmethod
    def classify(
        ticket: Ticket,
        now: datetime,
        warning_window: Optional[WarningWindow] = None
    ) -> SLAClassification:
        """
        Classify a ticket at ``now``.

        Order: stopped, unclassified, met (resolved tickets), breached,
        at_risk, on_track. Resolved tickets are judged at their resolution
        time, so the outcome no longer moves with ``now``.
        """
        window = warning_window or WarningWindow()
        response_due = ticket.response_due_at
        solution_due = ticket.solution_due_at

        if ticket.is_stopped:
            return SLAClassification.STOPPED

        if response_due is None and solution_due is None:
            return SLAClassification.UNCLASSIFIED

        if ticket.resolved_at is not None:
            if SLACalculator._resolution_met(ticket) and SLACalculator._response_met(ticket):
                return SLAClassification.MET
            return SLAClassification.BREACHED

        if solution_due is not None and now > solution_due:
            return SLAClassification.BREACHED
        if not ticket.has_first_response and response_due is not None and now > response_due:
            return SLAClassification.BREACHED

        started_at = ticket.sla_started_at
        if not ticket.has_first_response and response_due is not None:
            if response_due - now <= window.threshold(response_due - started_at):
                return SLAClassification.AT_RISK
        if solution_due is not None:
            if solution_due - now <= window.threshold(solution_due - started_at):
                return SLAClassification.AT_RISK

        return SLAClassification.ON_TRACK

    @staticmethod
    def _resolution_met(ticket: Ticket) -> bool:
        if ticket.solution_due_at is None:
            return True
        return ticket.resolved_at <= ticket.solution_due_at

    @staticmethod
    def _response_met(ticket: Ticket) -> bool:
        if ticket.response_due_at is None:
            return True
        if ticket.first_response_at is not None:
            return ticket.first_response_at <= ticket.response_due_at
        # Flag without a timestamp: trust it
        return ticket.has_first_response

    @staticmethod
    def next_deadline(ticket: Ticket) -> Optional[datetime]:
        """The deadline the ticket is currently racing against."""
        if not ticket.has_first_response and ticket.response_due_at is not None:
            return ticket.response_due_at
        return ticket.solution_due_at

    @staticmethod
    def should_escalate(
        current: SLAClassification,
        previous: Optional[SLAClassification]
    ) -> bool:
        """
        True only on a transition into at_risk or breached.

        Staying in the same state never escalates again.
        """
        return current in ESCALATING_CLASSIFICATIONS and current != previous


# ========== Configuration value objects (loaded from YAML) ==========

class WarningWindowConfig(BaseModel):
    """Warning window settings."""
    percent: float = Field(default=20.0, ge=0, le=100, description="Share of the budget span")
    minutes: Optional[int] = Field(default=None, ge=1, description="Absolute threshold")

    def to_value(self) -> WarningWindow:
        return WarningWindow(percent=self.percent, minutes=self.minutes)


class EscalationConfig(BaseModel):
    """Which side effects a transition triggers."""
    actions: List[EscalationAction] = Field(
        default_factory=lambda: [
            EscalationAction.FLAG,
            EscalationAction.NOTIFY,
            EscalationAction.ESCALATE_PRIORITY,
        ]
    )
    escalate_to: Priority = Field(default=Priority.CRITICAL)
    notify_channels: List[str] = Field(default_factory=lambda: ["#sla-escalations"])


class WorkingHoursConfig(BaseModel):
    """One weekday's working hours in HH:MM."""
    start: time
    end: time


class BusinessHoursConfig(BaseModel):
    """Business-hours calendar; disabled means wall-clock budgets."""
    enabled: bool = False
    timezone: str = "America/Sao_Paulo"
    working_hours: Dict[str, WorkingHoursConfig] = Field(
        default_factory=lambda: {
            day: WorkingHoursConfig(start=time(8, 0), end=time(18, 0))
            for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
        }
    )
    holidays: List[date] = Field(default_factory=list)

    @field_validator("working_hours")
    @classmethod
    def lowercase_days(cls, v: Dict[str, WorkingHoursConfig]) -> Dict[str, WorkingHoursConfig]:
        return {day.lower(): hours for day, hours in v.items()}

    def to_calendar(self) -> ServiceCalendar:
        if not self.enabled:
            return WallClockCalendar()
        return BusinessHoursCalendar(
            timezone_name=self.timezone,
            windows={
                day: WorkingWindow(start=hours.start, end=hours.end)
                for day, hours in self.working_hours.items()
            },
            holidays=frozenset(self.holidays),
        )


class SLAConfig(BaseModel):
    """
    SLA Configuration loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    default_ladder: Dict[str, Dict[str, int]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_LADDER.items()},
        description="Fallback budgets in minutes by priority when no template is bound"
    )
    warning_window: WarningWindowConfig = Field(default_factory=WarningWindowConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)

    @field_validator("default_ladder")
    @classmethod
    def validate_default_ladder(cls, v: Dict[str, Dict[str, int]]) -> Dict[str, Dict[str, int]]:
        """Fill priorities missing from the file with the built-in ladder."""
        for priority in VALID_PRIORITIES:
            builtin = DEFAULT_LADDER[priority.value]
            entry = v.setdefault(priority.value, {})
            for kind in ("response", "solution"):
                minutes = entry.setdefault(kind, builtin[kind])
                if minutes <= 0:
                    raise ValueError(f"default_ladder.{priority.value}.{kind} must be > 0")
        return v

    @model_validator(mode="after")
    def check_calendar(self) -> "SLAConfig":
        # Builds the calendar once so a bad window fails at load time
        self.business_hours.to_calendar()
        return self

    def get_default_budget(self, priority: Priority) -> SLABudget:
        entry = self.default_ladder[Priority(priority).value]
        return SLABudget.from_minutes(entry["response"], entry["solution"], source="default")

    def get_warning_window(self) -> WarningWindow:
        return self.warning_window.to_value()

    def get_calendar(self) -> ServiceCalendar:
        return self.business_hours.to_calendar()
