"""
Helpdesk SLA Engine - Main Application
======================================

SLA timer and escalation engine of the helpdesk.

Modules:
- SLA Engine: deadline computation, periodic compliance scan, escalations

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, calculators
- Infrastructure: Database, scheduler, Slack, config watcher
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from config import settings
from core import ApplicationException

# Infrastructure
from infrastructure.database import close_database, create_tables, init_database

# SLA Module
from sla.infrastructure.external import LogNotifier, SLAConfigManager, SlackNotifier
from sla.interfaces import sla_router
from sla.services import SLAScanOrchestrator, session_scan_factory

# Shared
from shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA configuration and watch it
    4. Choose the notifier (Slack webhook or log)
    5. Build the scan orchestrator and start its schedule

    SHUTDOWN:
    1. Stop the scan schedule
    2. Stop config watcher
    3. Close notifier and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    # If the database is not available the server still starts; scans
    # will fail and be logged until it comes back
    logger.info("Creating database tables")
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading SLA configuration")
    sla_config_manager = SLAConfigManager()
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    if settings.slack_webhook_url:
        notifier = SlackNotifier(settings.slack_webhook_url)
    else:
        logger.info("Slack webhook not configured, escalations go to the log")
        notifier = LogNotifier()

    orchestrator = SLAScanOrchestrator(session_scan_factory(sla_config_manager, notifier))
    if settings.sla_scan_enabled:
        await orchestrator.start()
    else:
        logger.info("Periodic SLA scan disabled")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.sla_config_manager = sla_config_manager
    app.state.sla_orchestrator = orchestrator
    app.state.notifier = notifier

    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    await orchestrator.stop()
    sla_config_manager.stop_watching()
    await notifier.close()
    await close_database()

    logger.info("SLA engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA Engine API",
    description="""
    ## Helpdesk SLA Timer & Escalation Engine

    Computes response/solution deadlines per ticket, re-evaluates every open
    ticket on a schedule and escalates exactly once per transition into
    `at_risk` or `breached`.

    ---

    ### Endpoints

    - `GET /sla/tickets/{id}` - Deadlines, live classification, escalation history
    - `POST /sla/tickets/{id}/deadlines` - Compute deadlines (creation hook)
    - `PUT /sla/tickets/{id}/priority` - Change priority and recompute
    - `PUT /sla/tickets/{id}/contract` - Change contract and recompute
    - `GET /sla/stats` - Counts by classification, derived now
    - `GET /sla/scan` - Scan job status and last run
    - `POST /sla/scan` - Run a scan now (409 while one is running)
    - `POST /sla/scan/restart` - Restart the scan schedule

    ---

    ### Default ladder (no template bound)

    | Priority | Response | Solution |
    |----------|----------|----------|
    | Critical | 30 min   | 4 h      |
    | High     | 2 h      | 8 h      |
    | Medium   | 4 h      | 24 h     |
    | Low      | 8 h      | 72 h     |

    ---
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Added last runs first: correlation id must exist before logging reads it
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "sla_config": "loaded",
                        "sla_scheduler": "running",
                        "sla_scan": "idle",
                        "notifier": "slack"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - SLA configuration status
    - Scheduler state
    - Whether a scan is executing
    - Notifier in use
    """
    state = request.app.state
    orchestrator = getattr(state, "sla_orchestrator", None)
    notifier = getattr(state, "notifier", None)

    checks = {
        "sla_config": "loaded" if getattr(state, "sla_config_manager", None) else "not_loaded",
        "sla_scheduler": "running" if orchestrator and orchestrator.is_scheduled else "stopped",
        "sla_scan": "running" if orchestrator and orchestrator.is_running else "idle",
        "notifier": "slack" if isinstance(notifier, SlackNotifier) else "log",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "GET /sla/tickets/{id} - Get ticket SLA status",
                    "POST /sla/tickets/{id}/deadlines - Compute deadlines",
                    "PUT /sla/tickets/{id}/priority - Change priority",
                    "PUT /sla/tickets/{id}/contract - Change contract",
                    "GET /sla/stats - Get SLA stats",
                    "GET /sla/scan - Get scan job status",
                    "POST /sla/scan - Run scan now",
                    "POST /sla/scan/restart - Restart scan job"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
