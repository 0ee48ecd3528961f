"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Repositories hand out domain dataclasses,
never ORM instances, and write through UPDATE statements keyed by id.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import (
    ContractType, DeliveryStatus, EscalationAction, OPEN_STATUSES,
    PAUSED_STATUSES, Priority, SLAClassification, TicketStatus,
)
from core import ConfigurationException, RepositoryException
from sla.application import (
    IEscalationRepository, ISLACalculationRepository, ISLATemplateRepository,
    ITicketRepository, IUnitOfWork,
)
from sla.domain import (
    EscalationRecord, ServiceCalendar, SlaCalculation, SlaRule, SlaTemplate, Ticket,
)
from sla.domain.value_objects import BusinessHoursConfig
from sla.infrastructure.models import (
    ContractModel, EscalationRecordModel, SlaCalculationModel, SlaTemplateModel,
    TicketModel,
)


def _ticket_to_domain(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        priority=Priority(model.priority),
        status=TicketStatus(model.status),
        created_at=model.created_at,
        subject=model.subject,
        category=ContractType(model.category) if model.category else None,
        contract_id=model.contract_id,
        reopened_at=model.reopened_at,
        has_first_response=model.has_first_response,
        first_response_at=model.first_response_at,
        resolved_at=model.resolved_at,
        response_due_at=model.response_due_at,
        solution_due_at=model.solution_due_at,
        sla_classification=SLAClassification(model.sla_classification) if model.sla_classification else None,
        sla_flagged=model.sla_flagged,
    )


def _template_to_domain(model: SlaTemplateModel) -> SlaTemplate:
    return SlaTemplate(
        id=model.id,
        name=model.name,
        contract_type=ContractType(model.contract_type),
        is_active=model.is_active,
        is_default=model.is_default,
        rules=[
            SlaRule(
                priority=Priority(rule.priority),
                response_time_minutes=rule.response_time_minutes,
                solution_time_minutes=rule.solution_time_minutes,
            )
            for rule in model.rules
        ],
        calendar=_template_calendar(model),
    )


def _template_calendar(model: SlaTemplateModel) -> Optional[ServiceCalendar]:
    """
    Calendar stored on the template, if any.

    The column holds the business_hours block of sla_config.yaml; a stored
    block counts as enabled unless it says otherwise, so ``{"enabled": false}``
    pins a template to wall-clock time.
    """
    if model.business_hours is None:
        return None
    try:
        config = BusinessHoursConfig.model_validate({"enabled": True, **model.business_hours})
    except ValidationError as e:
        raise ConfigurationException(
            f"Invalid business calendar on SLA template {model.id}",
            {"template_id": model.id, "error": str(e)}
        ) from e
    return config.to_calendar()


def _calculation_to_domain(model: SlaCalculationModel) -> SlaCalculation:
    return SlaCalculation(
        id=model.id,
        ticket_id=model.ticket_id,
        priority=Priority(model.priority),
        started_at=model.started_at,
        response_due_at=model.response_due_at,
        solution_due_at=model.solution_due_at,
        reason=model.reason,
        source=model.source,
        calendar=model.calendar,
        template_id=model.template_id,
        is_current=model.is_current,
        created_at=model.created_at,
    )


def _record_to_domain(model: EscalationRecordModel) -> EscalationRecord:
    return EscalationRecord(
        id=model.id,
        ticket_id=model.ticket_id,
        scan_run_id=model.scan_run_id,
        from_classification=SLAClassification(model.from_classification) if model.from_classification else None,
        to_classification=SLAClassification(model.to_classification),
        due_at=model.due_at,
        actions=[EscalationAction(a) for a in model.actions or []],
        delivery_status=DeliveryStatus(model.delivery_status),
        delivery_error=model.delivery_error,
        created_at=model.created_at,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles reads and SLA-column writes of tickets using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""
        try:
            result = await self._session.execute(
                select(TicketModel).where(TicketModel.id == ticket_id)
            )
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load ticket {ticket_id}", {"error": str(e)}) from e

        model = result.scalar_one_or_none()
        return _ticket_to_domain(model) if model else None

    async def list_active(self) -> List[Ticket]:
        """Tickets in an open status plus paused ones, oldest first."""
        statuses = [s.value for s in OPEN_STATUSES + PAUSED_STATUSES]
        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(statuses))
            .order_by(TicketModel.created_at.asc())
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to load active tickets", {"error": str(e)}) from e

        return [_ticket_to_domain(m) for m in result.scalars().all()]

    async def save_deadlines(
        self,
        ticket_id: str,
        response_due_at: Optional[datetime],
        solution_due_at: Optional[datetime]
    ) -> None:
        await self._update(
            ticket_id,
            response_due_at=response_due_at,
            solution_due_at=solution_due_at,
        )

    async def update_priority(self, ticket_id: str, priority: Priority) -> None:
        await self._update(ticket_id, priority=Priority(priority).value)

    async def update_contract(self, ticket_id: str, contract_id: Optional[str]) -> None:
        await self._update(ticket_id, contract_id=contract_id)

    async def save_sla_state(self, ticket: Ticket, checked_at: datetime) -> None:
        await self._update(
            ticket.id,
            priority=Priority(ticket.priority).value,
            response_due_at=ticket.response_due_at,
            solution_due_at=ticket.solution_due_at,
            sla_classification=ticket.sla_classification.value if ticket.sla_classification else None,
            sla_flagged=ticket.sla_flagged,
            sla_checked_at=checked_at,
        )

    async def _update(self, ticket_id: str, **values) -> None:
        stmt = update(TicketModel).where(TicketModel.id == ticket_id).values(**values)
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update ticket {ticket_id}", {"error": str(e)}) from e

        if result.rowcount == 0:
            raise RepositoryException(f"Ticket {ticket_id} not found")


class SQLAlchemySLATemplateRepository(ISLATemplateRepository):
    """SQLAlchemy implementation of SLA template lookups."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_for_ticket(self, ticket: Ticket) -> Optional[SlaTemplate]:
        """
        Template bound to the ticket's contract, in any active state;
        otherwise the active default template of the ticket's category.
        """
        category = ticket.category

        if ticket.contract_id:
            contract = await self._session.get(ContractModel, ticket.contract_id, populate_existing=True)
            if contract is not None:
                if contract.sla_template_id is not None:
                    template = await self._load_template(contract.sla_template_id)
                    if template is not None:
                        return template
                category = category or ContractType(contract.contract_type)

        if category is None:
            return None

        stmt = (
            select(SlaTemplateModel)
            .where(
                SlaTemplateModel.contract_type == ContractType(category).value,
                SlaTemplateModel.is_active.is_(True),
                SlaTemplateModel.is_default.is_(True),
            )
            .options(selectinload(SlaTemplateModel.rules))
            .order_by(SlaTemplateModel.id.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        template = result.scalar_one_or_none()
        return _template_to_domain(template) if template else None

    async def _load_template(self, template_id: int) -> Optional[SlaTemplate]:
        stmt = (
            select(SlaTemplateModel)
            .options(selectinload(SlaTemplateModel.rules))
            .where(SlaTemplateModel.id == template_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _template_to_domain(model) if model else None

    async def contract_exists(self, contract_id: str) -> bool:
        result = await self._session.execute(
            select(ContractModel.id).where(ContractModel.id == contract_id)
        )
        return result.scalar_one_or_none() is not None


class SQLAlchemyEscalationRepository(IEscalationRepository):
    """
    SQLAlchemy implementation of escalation repository.

    Insert-only; records are never updated.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, record: EscalationRecord) -> EscalationRecord:
        """Create new escalation record."""
        model = EscalationRecordModel(
            ticket_id=record.ticket_id,
            scan_run_id=record.scan_run_id,
            from_classification=record.from_classification.value if record.from_classification else None,
            to_classification=SLAClassification(record.to_classification).value,
            due_at=record.due_at,
            actions=[EscalationAction(a).value for a in record.actions],
            delivery_status=DeliveryStatus(record.delivery_status).value,
            delivery_error=record.delivery_error,
            created_at=record.created_at,
        )

        self._session.add(model)
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to store escalation for ticket {record.ticket_id}", {"error": str(e)}
            ) from e

        # Update record with generated ID
        record.id = model.id
        return record

    async def list_for_ticket(self, ticket_id: str) -> List[EscalationRecord]:
        stmt = (
            select(EscalationRecordModel)
            .where(EscalationRecordModel.ticket_id == ticket_id)
            .order_by(EscalationRecordModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_record_to_domain(m) for m in result.scalars().all()]


class SQLAlchemySLACalculationRepository(ISLACalculationRepository):
    """
    SQLAlchemy implementation of the calculation history.

    Rows are inserted and never deleted; the only update clears
    ``is_current`` on rows a newer calculation supersedes.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record(self, calculation: SlaCalculation) -> SlaCalculation:
        """Retire the current row and insert ``calculation`` as the new one."""
        await self.retire(calculation.ticket_id)

        model = SlaCalculationModel(
            ticket_id=calculation.ticket_id,
            priority=Priority(calculation.priority).value,
            started_at=calculation.started_at,
            source=calculation.source,
            template_id=calculation.template_id,
            calendar=calculation.calendar,
            response_due_at=calculation.response_due_at,
            solution_due_at=calculation.solution_due_at,
            reason=calculation.reason,
            is_current=True,
        )
        if calculation.created_at is not None:
            model.created_at = calculation.created_at

        self._session.add(model)
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to store SLA calculation for ticket {calculation.ticket_id}", {"error": str(e)}
            ) from e

        calculation.id = model.id
        calculation.is_current = True
        calculation.created_at = model.created_at
        return calculation

    async def retire(self, ticket_id: str) -> None:
        stmt = (
            update(SlaCalculationModel)
            .where(
                SlaCalculationModel.ticket_id == ticket_id,
                SlaCalculationModel.is_current.is_(True),
            )
            .values(is_current=False)
        )
        try:
            await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(
                f"Failed to retire SLA calculations of ticket {ticket_id}", {"error": str(e)}
            ) from e

    async def list_for_ticket(self, ticket_id: str) -> List[SlaCalculation]:
        stmt = (
            select(SlaCalculationModel)
            .where(SlaCalculationModel.ticket_id == ticket_id)
            .order_by(SlaCalculationModel.created_at.asc(), SlaCalculationModel.id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_calculation_to_domain(m) for m in result.scalars().all()]


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """Commits or rolls back the session shared by the repositories."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
