"""
SLA Domain Layer
================

Domain layer for the SLA engine.

Contains:
- Entities: Ticket, SlaTemplate, SlaCalculation, EscalationRecord, ScanRun
- Value Objects: SLABudget, SLADeadlines, WarningWindow, SLAConfig
- Domain Services: SLACalculator, RuleResolver, service calendars, stats aggregation

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from sla.domain.calendar import (
    BusinessHoursCalendar,
    ServiceCalendar,
    WallClockCalendar,
    WorkingWindow,
    add_business_duration,
)
from sla.domain.entities import (
    EscalationRecord,
    ScanRun,
    SlaCalculation,
    SlaRule,
    SlaTemplate,
    Ticket,
    TicketEvaluation,
)
from sla.domain.rules import RuleResolver
from sla.domain.stats import SLAStats, aggregate
from sla.domain.value_objects import (
    DEFAULT_LADDER,
    SLABudget,
    SLACalculator,
    SLAConfig,
    SLADeadlines,
    WarningWindow,
)

__all__ = [
    # Entities
    "Ticket",
    "SlaRule",
    "SlaTemplate",
    "SlaCalculation",
    "EscalationRecord",
    "TicketEvaluation",
    "ScanRun",
    # Value Objects
    "DEFAULT_LADDER",
    "SLABudget",
    "SLADeadlines",
    "WarningWindow",
    "SLAConfig",
    "SLAStats",
    # Domain Services
    "SLACalculator",
    "RuleResolver",
    "ServiceCalendar",
    "WallClockCalendar",
    "BusinessHoursCalendar",
    "WorkingWindow",
    "add_business_duration",
    "aggregate",
]
