"""
Test fixtures for the SLA engine.

Provides:
- Async DB session fixture (SQLite in-memory for speed)
- Static SLA config provider and recording notifier
- Ticket / template / contract factories
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import ContractType, Priority, SLAClassification, TicketStatus
from core import NotificationDeliveryException
from infrastructure.database import Base
from sla.application import INotifier, ISLAConfigProvider
from sla.domain import SLAConfig, Ticket
from sla.infrastructure.models import (  # noqa: F401  register all models
    ContractModel,
    EscalationRecordModel,
    SlaCalculationModel,
    SlaRuleModel,
    SlaTemplateModel,
    TicketModel,
)

# In-memory SQLite shared by every connection of one engine
TEST_DB_URL = "sqlite+aiosqlite://"

# Monday, 10:00 UTC
T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class StaticConfigProvider(ISLAConfigProvider):
    """Config provider returning a fixed SLAConfig."""

    def __init__(self, config: Optional[SLAConfig] = None):
        self.config = config or SLAConfig()

    def get_config(self) -> SLAConfig:
        return self.config


class RecordingNotifier(INotifier):
    """Notifier that records calls and can be told to fail, or to raise ``error``."""

    def __init__(self, fail: bool = False, error: Optional[Exception] = None):
        self.fail = fail
        self.error = error
        self.calls: List[Tuple[str, SLAClassification, Optional[datetime]]] = []

    async def notify(self, ticket: Ticket, classification: SLAClassification, due_at: Optional[datetime]) -> None:
        self.calls.append((ticket.id, classification, due_at))
        if self.error is not None:
            raise self.error
        if self.fail:
            raise NotificationDeliveryException("test", "webhook unreachable", {"ticket_id": ticket.id})

    async def close(self) -> None:
        return None


def make_ticket(**overrides) -> Ticket:
    """Domain ticket created at T0, medium priority, open, no deadlines."""
    data = dict(
        id="TCK-1",
        priority=Priority.MEDIUM,
        status=TicketStatus.OPEN,
        created_at=T0,
    )
    data.update(overrides)
    return Ticket(**data)


def with_default_deadlines(ticket: Ticket, response_hours: float = 4, solution_hours: float = 24) -> Ticket:
    ticket.response_due_at = ticket.sla_started_at + timedelta(hours=response_hours)
    ticket.solution_due_at = ticket.sla_started_at + timedelta(hours=solution_hours)
    return ticket


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with all tables."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean DB session per test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def config_provider() -> StaticConfigProvider:
    return StaticConfigProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


async def add_ticket(session: AsyncSession, **overrides) -> TicketModel:
    """Insert a ticket row created at T0, medium, open, no deadlines."""
    data = dict(
        id="TCK-1",
        subject="Printer on fire",
        priority=Priority.MEDIUM.value,
        status=TicketStatus.OPEN.value,
        created_at=T0,
        updated_at=T0,
    )
    data.update(overrides)
    model = TicketModel(**data)
    session.add(model)
    await session.commit()
    return model


async def add_template(
    session: AsyncSession,
    rules: dict,
    contract_type: ContractType = ContractType.SUPPORT,
    is_active: bool = True,
    is_default: bool = False,
    name: str = "Support Gold",
    business_hours: Optional[dict] = None,
) -> SlaTemplateModel:
    """Insert a template; ``rules`` maps priority -> (response_minutes, solution_minutes)."""
    template = SlaTemplateModel(
        name=name,
        contract_type=contract_type.value,
        is_active=is_active,
        is_default=is_default,
        business_hours=business_hours,
        rules=[
            SlaRuleModel(
                priority=Priority(priority).value,
                response_time_minutes=response,
                solution_time_minutes=solution,
            )
            for priority, (response, solution) in rules.items()
        ],
    )
    session.add(template)
    await session.commit()
    return template


async def add_contract(
    session: AsyncSession,
    contract_id: str = "CTR-1",
    template_id: Optional[int] = None,
    contract_type: ContractType = ContractType.SUPPORT,
) -> ContractModel:
    contract = ContractModel(
        id=contract_id,
        name="ACME support",
        contract_type=contract_type.value,
        sla_template_id=template_id,
    )
    session.add(contract)
    await session.commit()
    return contract
