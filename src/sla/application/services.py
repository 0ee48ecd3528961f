"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from config import (
    ESCALATING_CLASSIFICATIONS, DeliveryStatus, EscalationAction, Priority,
    SLAClassification,
)
from core import (
    ApplicationException,
    ResourceNotFoundException,
    RuleNotFoundException,
)
from shared.infrastructure.logging import get_context_logger, get_logger
from sla.domain import (
    EscalationRecord, RuleResolver, ScanRun, SLACalculator, SLAConfig,
    SLADeadlines, SLAStats, SlaCalculation, SlaTemplate, Ticket,
    TicketEvaluation, aggregate,
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def list_active(self) -> List[Ticket]:
        """Tickets the scan evaluates: open statuses plus paused ones."""

    @abstractmethod
    async def save_deadlines(
        self,
        ticket_id: str,
        response_due_at: Optional[datetime],
        solution_due_at: Optional[datetime]
    ) -> None:
        """Overwrite the stored deadlines."""

    @abstractmethod
    async def update_priority(self, ticket_id: str, priority: Priority) -> None:
        """Change the ticket priority."""

    @abstractmethod
    async def update_contract(self, ticket_id: str, contract_id: Optional[str]) -> None:
        """Bind the ticket to another contract (or none)."""

    @abstractmethod
    async def save_sla_state(self, ticket: Ticket, checked_at: datetime) -> None:
        """Persist deadlines, classification, flag and priority in one UPDATE."""


class ISLATemplateRepository(ABC):
    """Interface for SLA template lookups."""

    @abstractmethod
    async def get_for_ticket(self, ticket: Ticket) -> Optional[SlaTemplate]:
        """Template bound through the contract, else the category default."""

    @abstractmethod
    async def contract_exists(self, contract_id: str) -> bool:
        """Check if a contract exists."""


class IEscalationRepository(ABC):
    """Interface for escalation audit records."""

    @abstractmethod
    async def create(self, record: EscalationRecord) -> EscalationRecord:
        """Insert a record; records are never updated."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[EscalationRecord]:
        """Escalation history of a ticket, oldest first."""


class ISLACalculationRepository(ABC):
    """Interface for the deadline calculation history."""

    @abstractmethod
    async def record(self, calculation: SlaCalculation) -> SlaCalculation:
        """Insert a calculation and mark the ticket's earlier ones as not current."""

    @abstractmethod
    async def retire(self, ticket_id: str) -> None:
        """Mark every calculation of the ticket as not current."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[SlaCalculation]:
        """Calculation history of a ticket, oldest first."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


class INotifier(ABC):
    """Escalation notification transport."""

    @abstractmethod
    async def notify(
        self,
        ticket: Ticket,
        classification: SLAClassification,
        due_at: Optional[datetime]
    ) -> None:
        """
        Deliver one escalation notice.

        Raises:
            NotificationDeliveryException: If delivery failed
        """


class IUnitOfWork(ABC):
    """Transaction boundary for one ticket's writes."""

    @abstractmethod
    async def commit(self) -> None:
        """Make the pending writes visible."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard the pending writes."""


# ========== Application Services ==========

class SLADeadlineService:
    """
    Computes and stores ticket deadlines.

    Deadlines are recomputed on creation, priority change and contract
    change. Status changes never go through here. Every stored result is
    also appended to the calculation history with the reason it was made.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        template_repository: ISLATemplateRepository,
        calculation_repository: ISLACalculationRepository,
        config_provider: ISLAConfigProvider,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._ticket_repo = ticket_repository
        self._template_repo = template_repository
        self._calculation_repo = calculation_repository
        self._config_provider = config_provider
        self._clock = clock

    async def compute(self, ticket: Ticket) -> SLADeadlines:
        """
        Resolve the budget and compute deadlines without writing anything.

        A template with its own business calendar uses it; otherwise the
        calendar from the SLA configuration applies.

        Raises:
            RuleNotFoundException: Bound template lacks a rule for the priority
        """
        config = self._config_provider.get_config()
        template = await self._template_repo.get_for_ticket(ticket)
        budget = RuleResolver(config.default_ladder).resolve(ticket, template)

        calendar = config.get_calendar()
        if template is not None and template.calendar is not None:
            calendar = template.calendar

        return SLACalculator.calculate_deadlines(ticket.sla_started_at, budget, calendar)

    async def record(
        self,
        ticket: Ticket,
        deadlines: SLADeadlines,
        reason: str,
        at: Optional[datetime] = None
    ) -> SlaCalculation:
        """Append ``deadlines`` to the ticket's calculation history as the current row."""
        return await self._calculation_repo.record(SlaCalculation(
            ticket_id=ticket.id,
            priority=Priority(ticket.priority),
            started_at=deadlines.started_at,
            response_due_at=deadlines.response_due_at,
            solution_due_at=deadlines.solution_due_at,
            reason=reason,
            source=deadlines.budget.source,
            calendar=deadlines.calendar,
            template_id=deadlines.budget.template_id,
            created_at=at or self._clock(),
        ))

    async def history(self, ticket_id: str) -> List[SlaCalculation]:
        """Stored calculations of a ticket, oldest first."""
        return await self._calculation_repo.list_for_ticket(ticket_id)

    async def apply(self, ticket_id: str) -> Ticket:
        """
        Compute and store deadlines for a ticket (creation hook).

        A missing rule clears the deadlines so the ticket shows up as
        unclassified instead of keeping stale ones.
        """
        ticket = await self._load(ticket_id)
        return await self._recompute(ticket, reason="created")

    async def change_priority(self, ticket_id: str, priority: Priority) -> Ticket:
        """Change priority and recompute deadlines."""
        ticket = await self._load(ticket_id)
        if ticket.priority == priority:
            return ticket

        await self._ticket_repo.update_priority(ticket_id, priority)
        ticket.priority = priority
        return await self._recompute(ticket, reason="priority_changed")

    async def change_contract(self, ticket_id: str, contract_id: Optional[str]) -> Ticket:
        """Bind a ticket to a contract and recompute deadlines."""
        ticket = await self._load(ticket_id)

        if contract_id is not None and not await self._template_repo.contract_exists(contract_id):
            raise ResourceNotFoundException("Contract", contract_id)

        await self._ticket_repo.update_contract(ticket_id, contract_id)
        ticket.contract_id = contract_id
        return await self._recompute(ticket, reason="contract_changed")

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        ticket.validate()
        return ticket

    async def _recompute(self, ticket: Ticket, reason: str) -> Ticket:
        try:
            deadlines = await self.compute(ticket)
        except RuleNotFoundException as e:
            logger.warning(e.message, extra=e.details)
            deadlines = None

        ticket.response_due_at = deadlines.response_due_at if deadlines else None
        ticket.solution_due_at = deadlines.solution_due_at if deadlines else None
        await self._ticket_repo.save_deadlines(
            ticket.id, ticket.response_due_at, ticket.solution_due_at
        )

        if deadlines is None:
            await self._calculation_repo.retire(ticket.id)
        else:
            await self.record(ticket, deadlines, reason)

        logger.info(
            "SLA deadlines computed",
            extra={
                "ticket_id": ticket.id,
                "reason": reason,
                "priority": Priority(ticket.priority).value,
                "response_due_at": ticket.response_due_at.isoformat() if ticket.response_due_at else None,
                "solution_due_at": ticket.solution_due_at.isoformat() if ticket.solution_due_at else None,
            }
        )
        return ticket


class EscalationDispatcher:
    """
    Fires escalation actions exactly once per transition.

    Only a transition into at_risk or breached escalates. The ticket is
    mutated in memory (flag, priority); the caller persists it together
    with the record so both land in the same transaction.
    """

    def __init__(
        self,
        escalation_repository: IEscalationRepository,
        notifier: INotifier,
        config_provider: ISLAConfigProvider
    ):
        self._escalation_repo = escalation_repository
        self._notifier = notifier
        self._config_provider = config_provider

    async def dispatch(
        self,
        ticket: Ticket,
        previous: Optional[SLAClassification],
        current: SLAClassification,
        now: datetime,
        run_id: Optional[str] = None
    ) -> Optional[EscalationRecord]:
        """
        Escalate ``ticket`` if ``previous -> current`` is an escalating transition.

        Returns:
            The persisted EscalationRecord, or None when nothing fired
        """
        log = get_context_logger(__name__, run_id)

        if not SLACalculator.should_escalate(current, previous):
            if previous in ESCALATING_CLASSIFICATIONS and current != previous:
                log.info(
                    "SLA state improved, no escalation",
                    extra={
                        "ticket_id": ticket.id,
                        "from_classification": previous.value,
                        "to_classification": SLAClassification(current).value,
                    }
                )
            return None

        escalation = self._config_provider.get_config().escalation
        due_at = SLACalculator.next_deadline(ticket)
        record = EscalationRecord(
            ticket_id=ticket.id,
            from_classification=previous,
            to_classification=current,
            created_at=now,
            due_at=due_at,
            scan_run_id=run_id,
            actions=list(escalation.actions),
        )

        if EscalationAction.FLAG in escalation.actions:
            ticket.sla_flagged = True

        if (
            EscalationAction.ESCALATE_PRIORITY in escalation.actions
            and current == SLAClassification.BREACHED
            and ticket.priority != escalation.escalate_to
        ):
            log.info(
                "Escalating ticket priority",
                extra={
                    "ticket_id": ticket.id,
                    "from_priority": Priority(ticket.priority).value,
                    "to_priority": escalation.escalate_to.value,
                }
            )
            ticket.priority = escalation.escalate_to

        if EscalationAction.NOTIFY in escalation.actions:
            try:
                await self._notifier.notify(ticket, current, due_at)
                record.delivery_status = DeliveryStatus.SENT
            except Exception as e:
                error = e.message if isinstance(e, ApplicationException) else str(e) or type(e).__name__
                details = e.details if isinstance(e, ApplicationException) else {}
                record.delivery_status = DeliveryStatus.FAILED
                record.delivery_error = error
                log.error(
                    "Escalation notification failed",
                    extra={"ticket_id": ticket.id, "error": error, **details},
                    exc_info=True,
                )

        record = await self._escalation_repo.create(record)

        log.warning(
            "SLA escalation fired",
            extra={
                "ticket_id": ticket.id,
                "from_classification": previous.value if previous else None,
                "to_classification": SLAClassification(current).value,
                "delivery_status": record.delivery_status.value,
            }
        )
        return record


class SLAScanService:
    """
    Runs one scan over the active ticket set.

    Each ticket is evaluated and written in its own transaction; a ticket
    that fails is rolled back and counted, and the loop moves on. Failing
    to load the ticket set aborts the run.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        deadline_service: SLADeadlineService,
        dispatcher: EscalationDispatcher,
        config_provider: ISLAConfigProvider,
        unit_of_work: IUnitOfWork
    ):
        self._ticket_repo = ticket_repository
        self._deadline_service = deadline_service
        self._dispatcher = dispatcher
        self._config_provider = config_provider
        self._uow = unit_of_work

    async def run(self, run: ScanRun, now: datetime) -> ScanRun:
        """
        Evaluate every active ticket at ``now``.

        Args:
            run: The run being executed; evaluations and counters are added to it
            now: Evaluation instant shared by every ticket in the run

        Returns:
            The same ScanRun with evaluations, errors and stats filled in
        """
        log = get_context_logger(__name__, run.run_id)
        tickets = await self._ticket_repo.list_active()
        log.info("SLA scan loaded tickets", extra={"ticket_count": len(tickets)})

        for ticket in tickets:
            try:
                evaluation = await self._process(ticket, now, run.run_id)
                await self._uow.commit()
            except Exception as e:
                await self._uow.rollback()
                run.errors += 1
                log.error(
                    "SLA evaluation failed for ticket",
                    extra={"ticket_id": ticket.id, "error": str(e)},
                    exc_info=True,
                )
                continue
            run.evaluations.append(evaluation)

        run.stats = aggregate(run.evaluations, errors=run.errors)
        return run

    async def _process(self, ticket: Ticket, now: datetime, run_id: str) -> TicketEvaluation:
        ticket.validate()
        config = self._config_provider.get_config()
        previous = ticket.sla_classification

        invalid_rule = False
        if not ticket.has_deadlines and not ticket.is_stopped:
            invalid_rule = await self._fill_deadlines(ticket, previous, now, run_id)

        classification = SLACalculator.classify(ticket, now, config.get_warning_window())
        escalation = await self._dispatcher.dispatch(ticket, previous, classification, now, run_id)

        ticket.sla_classification = classification
        await self._ticket_repo.save_sla_state(ticket, now)

        return TicketEvaluation(
            ticket_id=ticket.id,
            classification=classification,
            previous_classification=previous,
            has_sla=ticket.has_deadlines,
            escalation=escalation,
            invalid_rule=invalid_rule,
        )

    async def _fill_deadlines(
        self,
        ticket: Ticket,
        previous: Optional[SLAClassification],
        now: datetime,
        run_id: str
    ) -> bool:
        log = get_context_logger(__name__, run_id)
        try:
            deadlines = await self._deadline_service.compute(ticket)
        except RuleNotFoundException as e:
            # Already unclassified: the warning went out on the transition
            if previous == SLAClassification.UNCLASSIFIED:
                log.debug(e.message, extra=e.details)
            else:
                log.warning(e.message, extra=e.details)
            return True

        ticket.response_due_at = deadlines.response_due_at
        ticket.solution_due_at = deadlines.solution_due_at
        await self._deadline_service.record(ticket, deadlines, "scan_backfill", now)
        return False


class SLAQueryService:
    """
    Read-only SLA views for the dashboard and the ticket endpoint.

    Classifications are re-derived from current ticket state, never read
    back from the stored column, so the numbers match what a scan at the
    same instant would produce.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        escalation_repository: IEscalationRepository,
        deadline_service: SLADeadlineService,
        config_provider: ISLAConfigProvider
    ):
        self._ticket_repo = ticket_repository
        self._escalation_repo = escalation_repository
        self._deadline_service = deadline_service
        self._config_provider = config_provider

    async def current_stats(self, now: datetime) -> SLAStats:
        """Stats over the active ticket set as of ``now``."""
        evaluations: List[TicketEvaluation] = []
        errors = 0

        for ticket in await self._ticket_repo.list_active():
            try:
                _, evaluation = await self._evaluate(ticket, now)
                evaluations.append(evaluation)
            except Exception as e:
                errors += 1
                logger.warning(
                    "Ticket skipped in SLA stats",
                    extra={"ticket_id": ticket.id, "error": str(e)},
                    exc_info=True,
                )

        return aggregate(evaluations, errors=errors)

    async def get_ticket_status(
        self,
        ticket_id: str,
        now: datetime
    ) -> Tuple[Ticket, SLAClassification, List[EscalationRecord], List[SlaCalculation]]:
        """
        Live classification, escalation history and calculation history of one ticket.

        Raises:
            ResourceNotFoundException: If ticket doesn't exist
        """
        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        view, evaluation = await self._evaluate(ticket, now)
        history = await self._escalation_repo.list_for_ticket(ticket_id)
        calculations = await self._deadline_service.history(ticket_id)
        return view, evaluation.classification, history, calculations

    async def _evaluate(self, ticket: Ticket, now: datetime) -> Tuple[Ticket, TicketEvaluation]:
        ticket.validate()
        config = self._config_provider.get_config()
        view = ticket

        if not ticket.has_deadlines and not ticket.is_stopped:
            try:
                deadlines = await self._deadline_service.compute(ticket)
                view = replace(
                    ticket,
                    response_due_at=deadlines.response_due_at,
                    solution_due_at=deadlines.solution_due_at,
                )
            except RuleNotFoundException as e:
                logger.debug(e.message, extra=e.details)

        classification = SLACalculator.classify(view, now, config.get_warning_window())
        return view, TicketEvaluation(
            ticket_id=ticket.id,
            classification=classification,
            previous_classification=ticket.sla_classification,
            has_sla=view.has_deadlines,
        )
