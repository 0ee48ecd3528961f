"""
Rule Resolver Tests.
"""

import logging
from datetime import timedelta

import pytest

from config import ContractType, Priority
from core import RuleNotFoundException
from sla.domain import RuleResolver, SlaRule, SlaTemplate, SLACalculator, WallClockCalendar

from conftest import T0, make_ticket


def _template(*rules: SlaRule) -> SlaTemplate:
    return SlaTemplate(id=7, name="Gold", contract_type=ContractType.SUPPORT, rules=list(rules))


class TestDefaultLadder:
    def setup_method(self):
        self.resolver = RuleResolver()

    @pytest.mark.parametrize("priority,response,solution", [
        (Priority.CRITICAL, timedelta(minutes=30), timedelta(hours=4)),
        (Priority.HIGH, timedelta(hours=2), timedelta(hours=8)),
        (Priority.MEDIUM, timedelta(hours=4), timedelta(hours=24)),
        (Priority.LOW, timedelta(hours=8), timedelta(hours=72)),
    ])
    def test_ladder_budgets(self, priority, response, solution):
        budget = self.resolver.resolve(make_ticket(priority=priority), None)
        assert budget.response == response
        assert budget.solution == solution
        assert budget.is_default

    def test_critical_without_template_gets_exact_deadlines(self):
        """No template, critical → created + 30min / created + 4h."""
        ticket = make_ticket(priority=Priority.CRITICAL)
        budget = self.resolver.resolve(ticket, None)
        deadlines = SLACalculator.calculate_deadlines(ticket.sla_started_at, budget, WallClockCalendar())

        assert deadlines.response_due_at == T0 + timedelta(minutes=30)
        assert deadlines.solution_due_at == T0 + timedelta(hours=4)

    def test_fallback_is_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="sla.domain.rules"):
            self.resolver.resolve(make_ticket(id="TCK-42"), None)
        assert any(getattr(r, "ticket_id", None) == "TCK-42" for r in caplog.records)

    def test_custom_ladder(self):
        ladder = {p.value: {"response": 10, "solution": 20} for p in Priority}
        budget = RuleResolver(ladder).resolve(make_ticket(), None)
        assert budget.response == timedelta(minutes=10)


class TestTemplateRules:
    def setup_method(self):
        self.resolver = RuleResolver()

    def test_exact_priority_rule(self):
        template = _template(
            SlaRule(Priority.MEDIUM, 60, 600),
            SlaRule(Priority.HIGH, 30, 300),
        )
        budget = self.resolver.resolve(make_ticket(priority=Priority.HIGH), template)

        assert budget.response == timedelta(minutes=30)
        assert budget.solution == timedelta(minutes=300)
        assert budget.source == "template"
        assert budget.template_id == 7

    def test_missing_priority_raises(self):
        """Bound template without the ticket's priority → RuleNotFound, no fallback."""
        template = _template(SlaRule(Priority.HIGH, 30, 300))

        with pytest.raises(RuleNotFoundException) as exc:
            self.resolver.resolve(make_ticket(priority=Priority.LOW), template)

        assert exc.value.priority == "low"
        assert exc.value.template_id == 7

    def test_response_above_solution_is_flagged_not_fatal(self, caplog):
        """response > solution is reported and the data used as-is."""
        template = _template(SlaRule(Priority.MEDIUM, 600, 60))

        with caplog.at_level(logging.WARNING, logger="sla.domain.rules"):
            budget = self.resolver.resolve(make_ticket(), template)

        assert not budget.is_consistent
        assert budget.response == timedelta(minutes=600)
        assert budget.solution == timedelta(minutes=60)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings and getattr(warnings[0], "response_minutes", None) == 600

    def test_resolution_is_deterministic(self):
        template = _template(SlaRule(Priority.MEDIUM, 60, 600))
        ticket = make_ticket()
        assert self.resolver.resolve(ticket, template) == self.resolver.resolve(ticket, template)
