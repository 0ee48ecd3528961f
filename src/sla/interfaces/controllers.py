"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA engine.

Controllers are thin - they delegate to application services and the
scan orchestrator stored on ``app.state``.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import Priority
from infrastructure.database import get_session
from shared.infrastructure.logging import get_logger
from sla.application import (
    ContractChangeRequest,
    ISLAConfigProvider,
    JobInfoResponse,
    PriorityChangeRequest,
    ScanRunResponse,
    SLADeadlineService,
    SLAQueryService,
    StatsResponse,
    TicketSLAResponse,
)
from sla.services import SLAScanOrchestrator, create_deadline_service, create_query_service

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Engine"])


# ========== Example payloads for Swagger ==========

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "5a0c2a4e-8f0b-4d55-9d7e-2f0c1d7a9b11",
    "priority": "medium",
    "status": "open",
    "contract_id": None,
    "created_at": "2024-01-15T10:00:00Z",
    "sla_started_at": "2024-01-15T10:00:00Z",
    "response_due_at": "2024-01-15T14:00:00Z",
    "solution_due_at": "2024-01-16T10:00:00Z",
    "has_first_response": False,
    "resolved_at": None,
    "classification": "at_risk",
    "last_classification": "on_track",
    "sla_flagged": False,
    "escalations": [],
    "calculations": [
        {
            "id": 1,
            "priority": "medium",
            "started_at": "2024-01-15T10:00:00Z",
            "response_due_at": "2024-01-15T14:00:00Z",
            "solution_due_at": "2024-01-16T10:00:00Z",
            "reason": "created",
            "source": "default",
            "template_id": None,
            "calendar": "wall_clock",
            "is_current": True,
            "created_at": "2024-01-15T10:00:01Z"
        }
    ]
}

STATS_RESPONSE_EXAMPLE = {
    "total": 42,
    "with_sla": 40,
    "on_track": 31,
    "at_risk": 5,
    "breached": 2,
    "met": 0,
    "stopped": 2,
    "unclassified": 2,
    "errors": 0,
    "risk_rate": 12.5,
    "breach_rate": 5.0,
    "generated_at": "2024-01-15T13:50:00Z"
}


# ========== Dependencies ==========

def get_config_provider(request: Request) -> ISLAConfigProvider:
    """SLA config manager created at startup."""
    return request.app.state.sla_config_manager


def get_orchestrator(request: Request) -> SLAScanOrchestrator:
    """Scan orchestrator created at startup."""
    orchestrator = getattr(request.app.state, "sla_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA scan orchestrator not initialized"
        )
    return orchestrator


async def get_deadline_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLADeadlineService:
    """Get deadline service instance."""
    return create_deadline_service(session, config_provider)


async def get_query_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLAQueryService:
    """Get query service instance."""
    return create_query_service(session, config_provider)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Ticket Routes ==========

@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get ticket SLA status",
    description="""
    Get SLA information for a single ticket.

    Returns:
        - Response and solution deadlines
        - Classification derived now, and the one persisted by the last scan
        - Escalation history
        - Deadline calculation history, with the current row flagged
    """,
    responses={
        200: {
            "description": "Ticket SLA information",
            "content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Ticket not found"}
    }
)
async def get_ticket_sla(
    ticket_id: str,
    query_service: SLAQueryService = Depends(get_query_service)
):
    ticket, classification, history, calculations = await query_service.get_ticket_status(ticket_id, _now())
    return TicketSLAResponse.from_domain(ticket, classification.value, history, calculations)


@router.post(
    "/tickets/{ticket_id}/deadlines",
    response_model=TicketSLAResponse,
    summary="Compute ticket deadlines",
    description="""
    Compute and store response/solution deadlines for a ticket.

    Called by the ticket CRUD layer right after a ticket is created.
    Tickets without a bound template get the default ladder.
    """
)
async def compute_deadlines(
    ticket_id: str,
    session: AsyncSession = Depends(get_session),
    deadline_service: SLADeadlineService = Depends(get_deadline_service)
):
    ticket = await deadline_service.apply(ticket_id)
    await session.commit()
    return TicketSLAResponse.from_domain(ticket)


@router.put(
    "/tickets/{ticket_id}/priority",
    response_model=TicketSLAResponse,
    summary="Change ticket priority",
    description="Change priority and recompute deadlines from the ticket's base clock."
)
async def change_priority(
    ticket_id: str,
    body: PriorityChangeRequest,
    session: AsyncSession = Depends(get_session),
    deadline_service: SLADeadlineService = Depends(get_deadline_service)
):
    ticket = await deadline_service.change_priority(ticket_id, Priority(body.priority))
    await session.commit()
    return TicketSLAResponse.from_domain(ticket)


@router.put(
    "/tickets/{ticket_id}/contract",
    response_model=TicketSLAResponse,
    summary="Change ticket contract",
    description="Bind the ticket to another contract (or none) and recompute deadlines."
)
async def change_contract(
    ticket_id: str,
    body: ContractChangeRequest,
    session: AsyncSession = Depends(get_session),
    deadline_service: SLADeadlineService = Depends(get_deadline_service)
):
    ticket = await deadline_service.change_contract(ticket_id, body.contract_id)
    await session.commit()
    return TicketSLAResponse.from_domain(ticket)


# ========== Dashboard & Scan Routes ==========

@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Get SLA stats",
    description="""
    Counts by classification over the active tickets, derived now.

    Classifications are recomputed from ticket timestamps rather than read
    from the last scan, so the numbers match what a scan would produce.
    """,
    responses={
        200: {
            "description": "SLA stats",
            "content": {"application/json": {"example": STATS_RESPONSE_EXAMPLE}}
        }
    }
)
async def get_stats(query_service: SLAQueryService = Depends(get_query_service)):
    now = _now()
    stats = await query_service.current_stats(now)
    return StatsResponse.from_domain(stats, generated_at=now)


@router.get(
    "/scan",
    response_model=JobInfoResponse,
    summary="Get scan job status"
)
async def get_scan_status(orchestrator: SLAScanOrchestrator = Depends(get_orchestrator)):
    info = orchestrator.get_job_info()
    last_run = info.pop("last_run")
    return JobInfoResponse(
        **info,
        last_run=ScanRunResponse.from_domain(last_run) if last_run else None,
    )


@router.post(
    "/scan",
    response_model=ScanRunResponse,
    summary="Run a scan now",
    description="Operator-initiated scan. Answers 409 if a scan is already running.",
    responses={409: {"description": "A scan is already running"}}
)
async def run_scan(orchestrator: SLAScanOrchestrator = Depends(get_orchestrator)):
    run = await orchestrator.run_manual()
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="SLA scan already running"
        )
    return ScanRunResponse.from_domain(run)


@router.post(
    "/scan/restart",
    response_model=JobInfoResponse,
    summary="Restart the scan job",
    description="Stop the scheduler, wait briefly and start it again."
)
async def restart_scan(orchestrator: SLAScanOrchestrator = Depends(get_orchestrator)):
    await orchestrator.restart()
    info = orchestrator.get_job_info()
    last_run = info.pop("last_run")
    return JobInfoResponse(
        **info,
        last_run=ScanRunResponse.from_domain(last_run) if last_run else None,
    )


# Export router for inclusion in main app
sla_router = router
