"""
SLA Application Layer
======================

Application layer for the SLA engine.

Contains:
- Services: deadline computation, escalation dispatch, scan and query services
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from sla.application.dto import (
    CalculationResponse,
    ContractChangeRequest,
    EscalationResponse,
    JobInfoResponse,
    PriorityChangeRequest,
    ScanRunResponse,
    StatsResponse,
    TicketSLAResponse,
)
from sla.application.services import (
    EscalationDispatcher,
    IEscalationRepository,
    INotifier,
    ISLACalculationRepository,
    ISLAConfigProvider,
    ISLATemplateRepository,
    ITicketRepository,
    IUnitOfWork,
    SLADeadlineService,
    SLAQueryService,
    SLAScanService,
)

__all__ = [
    # DTOs
    "PriorityChangeRequest",
    "ContractChangeRequest",
    "EscalationResponse",
    "CalculationResponse",
    "TicketSLAResponse",
    "StatsResponse",
    "ScanRunResponse",
    "JobInfoResponse",
    # Services
    "SLADeadlineService",
    "EscalationDispatcher",
    "SLAScanService",
    "SLAQueryService",
    # Repository Interfaces
    "ITicketRepository",
    "ISLATemplateRepository",
    "IEscalationRepository",
    "ISLACalculationRepository",
    "ISLAConfigProvider",
    "INotifier",
    "IUnitOfWork",
]
