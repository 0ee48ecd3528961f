"""
SLA Rule Resolution
===================

Maps a ticket's priority and bound template to response/solution budgets.
"""

from typing import Dict, Optional

from config import Priority
from core import InvalidRuleDataException, RuleNotFoundException
from shared.infrastructure.logging import get_logger
from sla.domain.entities import SlaTemplate, Ticket
from sla.domain.value_objects import DEFAULT_LADDER, SLABudget

logger = get_logger(__name__)


class RuleResolver:
    """
    Resolves the SLA budget that applies to a ticket.

    Pure apart from logging: the template is looked up by the caller and
    passed in. With no template the default ladder applies.
    """

    def __init__(self, default_ladder: Optional[Dict[str, Dict[str, int]]] = None):
        self._ladder = default_ladder or DEFAULT_LADDER

    def resolve(self, ticket: Ticket, template: Optional[SlaTemplate]) -> SLABudget:
        """
        Resolve budgets for ``ticket``.

        Raises:
            RuleNotFoundException: Template bound but no rule for the priority
        """
        if template is None:
            return self._default_budget(ticket)

        rule = template.rule_for(ticket.priority)
        if rule is None:
            raise RuleNotFoundException(ticket.id, template.id, Priority(ticket.priority).value)

        budget = SLABudget.from_minutes(
            rule.response_time_minutes,
            rule.solution_time_minutes,
            source="template",
            template_id=template.id,
        )

        if not budget.is_consistent:
            warning = InvalidRuleDataException(
                template.id,
                Priority(ticket.priority).value,
                rule.response_time_minutes,
                rule.solution_time_minutes,
            )
            logger.warning(
                warning.message,
                extra={"ticket_id": ticket.id, **warning.details}
            )

        return budget

    def _default_budget(self, ticket: Ticket) -> SLABudget:
        entry = self._ladder[Priority(ticket.priority).value]
        logger.info(
            "No SLA template bound, using default ladder",
            extra={
                "ticket_id": ticket.id,
                "priority": Priority(ticket.priority).value,
                "response_minutes": entry["response"],
                "solution_minutes": entry["solution"],
            }
        )
        return SLABudget.from_minutes(entry["response"], entry["solution"], source="default")
