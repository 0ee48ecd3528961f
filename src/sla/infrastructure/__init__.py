"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: External service integrations (Slack, config watcher, scheduler)
"""

from sla.infrastructure.models import (
    ContractModel,
    EscalationRecordModel,
    SlaCalculationModel,
    SlaRuleModel,
    SlaTemplateModel,
    TicketModel,
)
from sla.infrastructure.repositories import (
    SQLAlchemyEscalationRepository,
    SQLAlchemySLACalculationRepository,
    SQLAlchemySLATemplateRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
)

__all__ = [
    "TicketModel",
    "ContractModel",
    "SlaTemplateModel",
    "SlaRuleModel",
    "EscalationRecordModel",
    "SlaCalculationModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemySLATemplateRepository",
    "SQLAlchemyEscalationRepository",
    "SQLAlchemySLACalculationRepository",
    "SQLAlchemyUnitOfWork",
]
