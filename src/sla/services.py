"""
SLA Services
============

Composition of the SLA engine: builds the per-session services and runs
the periodic scan.

The orchestrator is constructed once during application startup and
stored on ``app.state``; tests build fresh instances.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncContextManager, AsyncIterator, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import ScanTrigger, settings
from core import ScanExecutionException
from infrastructure.database import get_session_context
from shared.infrastructure.logging import get_context_logger, get_logger, log_latency
from sla.application import (
    EscalationDispatcher,
    INotifier,
    ISLAConfigProvider,
    SLADeadlineService,
    SLAQueryService,
    SLAScanService,
)
from sla.domain import ScanRun
from sla.infrastructure.external import SLAScheduler
from sla.infrastructure.repositories import (
    SQLAlchemyEscalationRepository,
    SQLAlchemySLACalculationRepository,
    SQLAlchemySLATemplateRepository,
    SQLAlchemyTicketRepository,
    SQLAlchemyUnitOfWork,
)

logger = get_logger(__name__)

ScanServiceFactory = Callable[[], AsyncContextManager[SLAScanService]]


def create_deadline_service(session: AsyncSession, config_provider: ISLAConfigProvider) -> SLADeadlineService:
    return SLADeadlineService(
        ticket_repository=SQLAlchemyTicketRepository(session),
        template_repository=SQLAlchemySLATemplateRepository(session),
        calculation_repository=SQLAlchemySLACalculationRepository(session),
        config_provider=config_provider,
    )


def create_query_service(session: AsyncSession, config_provider: ISLAConfigProvider) -> SLAQueryService:
    return SLAQueryService(
        ticket_repository=SQLAlchemyTicketRepository(session),
        escalation_repository=SQLAlchemyEscalationRepository(session),
        deadline_service=create_deadline_service(session, config_provider),
        config_provider=config_provider,
    )


def create_scan_service(
    session: AsyncSession,
    config_provider: ISLAConfigProvider,
    notifier: INotifier
) -> SLAScanService:
    """Wire a scan service whose repositories share ``session``."""
    return SLAScanService(
        ticket_repository=SQLAlchemyTicketRepository(session),
        deadline_service=create_deadline_service(session, config_provider),
        dispatcher=EscalationDispatcher(
            escalation_repository=SQLAlchemyEscalationRepository(session),
            notifier=notifier,
            config_provider=config_provider,
        ),
        config_provider=config_provider,
        unit_of_work=SQLAlchemyUnitOfWork(session),
    )


def session_scan_factory(config_provider: ISLAConfigProvider, notifier: INotifier) -> ScanServiceFactory:
    """Factory opening a fresh database session per scan run."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[SLAScanService]:
        async with get_session_context() as session:
            yield create_scan_service(session, config_provider, notifier)

    return factory


class SLAScanOrchestrator:
    """
    Periodic driver of the SLA scan.

    Two states: idle and running. The running flag is checked and set
    with no await in between, so on a single event loop two triggers can
    never both pass the guard. It is cleared in ``finally``.
    """

    def __init__(
        self,
        service_factory: ScanServiceFactory,
        scheduler: Optional[SLAScheduler] = None,
        restart_delay_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._service_factory = service_factory
        self._scheduler = scheduler or SLAScheduler(
            interval_minutes=settings.sla_scan_interval_minutes,
            timezone=settings.sla_scan_timezone,
            initial_delay_seconds=settings.sla_initial_scan_delay_seconds,
        )
        self._restart_delay = (
            settings.sla_restart_delay_seconds if restart_delay_seconds is None else restart_delay_seconds
        )
        self._clock = clock
        self._running = False
        self._last_run: Optional[ScanRun] = None

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Register the recurring job and the initial run."""
        await self._scheduler.start(self._execute_job)

    async def stop(self) -> None:
        """Remove the scheduled jobs; an in-flight scan finishes on its own."""
        await self._scheduler.stop()

    async def restart(self) -> None:
        """Stop, wait briefly, start again."""
        logger.info("Restarting SLA scan job", extra={"delay_seconds": self._restart_delay})
        await self.stop()
        await asyncio.sleep(self._restart_delay)
        await self.start()

    async def run_manual(self) -> Optional[ScanRun]:
        """
        Operator-initiated scan.

        Returns:
            The finished ScanRun, or None if a scan was already running
        """
        return await self._execute_job(ScanTrigger.MANUAL)

    # ========== State ==========

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_scheduled(self) -> bool:
        return self._scheduler.is_running

    @property
    def last_run(self) -> Optional[ScanRun]:
        return self._last_run

    def get_job_info(self) -> Dict:
        return {
            "scheduled": self._scheduler.is_running,
            "running": self._running,
            "interval_minutes": self._scheduler.interval_minutes,
            "timezone": self._scheduler.timezone,
            "next_run_time": self._scheduler.next_run_time,
            "last_run": self._last_run,
        }

    # ========== Execution ==========

    async def _execute_job(self, trigger: ScanTrigger = ScanTrigger.SCHEDULED) -> Optional[ScanRun]:
        if self._running:
            logger.warning(
                "SLA scan already running, skipping trigger",
                extra={"trigger": trigger.value}
            )
            return None

        self._running = True
        try:
            return await self._run_scan(trigger)
        finally:
            self._running = False

    async def _run_scan(self, trigger: ScanTrigger) -> ScanRun:
        started_at = self._clock()
        run = ScanRun(run_id=ScanRun.new_run_id(started_at), trigger=trigger, started_at=started_at)
        log = get_context_logger(__name__, run.run_id)
        log.info("SLA scan started", extra={"run_id": run.run_id, "trigger": trigger.value})

        try:
            with log_latency(log, "sla_scan", run_id=run.run_id):
                async with self._service_factory() as service:
                    await service.run(run, started_at)
        except Exception as e:
            run.failed = True
            error = ScanExecutionException(run.run_id, str(e) or type(e).__name__)
            log.error(error.message, extra=error.details, exc_info=True)
        finally:
            run.finished_at = self._clock()

        if run.stats is not None:
            log.info(
                "SLA scan finished",
                extra={
                    "run_id": run.run_id,
                    "duration_ms": run.duration_ms,
                    "escalations": len(run.escalations),
                    **run.stats.to_dict(),
                }
            )

        self._last_run = run
        return run
