"""
SLA API Tests.

Drives the FastAPI app over ASGITransport (lifespan not run) with the
database session and app.state services replaced by test doubles.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from config import ScanTrigger
from infrastructure.database import get_session
from main import app
from sla.domain import ScanRun, aggregate

from conftest import T0, StaticConfigProvider, add_contract, add_template, add_ticket


class FakeOrchestrator:
    is_scheduled = True

    def __init__(self):
        self.is_running = False
        self.restarts = 0
        self.last_run = None

    async def run_manual(self):
        if self.is_running:
            return None
        self.last_run = ScanRun(
            run_id="SLA-2024-01-15T10-00-00-000-abcd",
            trigger=ScanTrigger.MANUAL,
            started_at=T0,
            finished_at=T0 + timedelta(seconds=2),
            stats=aggregate([]),
        )
        return self.last_run

    async def restart(self):
        self.restarts += 1

    def get_job_info(self):
        return {
            "scheduled": True,
            "running": self.is_running,
            "interval_minutes": 5,
            "timezone": "UTC",
            "next_run_time": None,
            "last_run": self.last_run,
        }


@pytest.fixture
def orchestrator():
    return FakeOrchestrator()


@pytest_asyncio.fixture
async def client(session_factory, orchestrator):
    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.state.sla_config_manager = StaticConfigProvider()
    app.state.sla_orchestrator = orchestrator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.sla_config_manager
    del app.state.sla_orchestrator


def _instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


class TestTicketRoutes:
    async def test_unknown_ticket_is_404(self, client):
        response = await client.get("/sla/tickets/nope")

        assert response.status_code == 404
        assert response.json()["error_type"] == "ResourceNotFoundException"
        assert "X-Correlation-ID" in response.headers

    async def test_compute_deadlines(self, client, db):
        await add_ticket(db)

        response = await client.post("/sla/tickets/TCK-1/deadlines")

        assert response.status_code == 200
        body = response.json()
        assert _instant(body["response_due_at"]) == T0 + timedelta(hours=4)
        assert _instant(body["solution_due_at"]) == T0 + timedelta(hours=24)
        assert _instant(body["sla_started_at"]) == T0

    async def test_ticket_status_shows_live_classification(self, client, db):
        await add_ticket(db)
        await client.post("/sla/tickets/TCK-1/deadlines")

        response = await client.get("/sla/tickets/TCK-1")

        body = response.json()
        assert response.status_code == 200
        # Created in 2024, long past every deadline
        assert body["classification"] == "breached"
        assert body["last_classification"] is None
        assert body["escalations"] == []

    async def test_ticket_status_lists_calculations(self, client, db):
        await add_ticket(db)
        await client.post("/sla/tickets/TCK-1/deadlines")
        await client.put("/sla/tickets/TCK-1/priority", json={"priority": "high"})

        response = await client.get("/sla/tickets/TCK-1")

        calculations = response.json()["calculations"]
        assert [c["reason"] for c in calculations] == ["created", "priority_changed"]
        assert [c["is_current"] for c in calculations] == [False, True]
        assert calculations[1]["priority"] == "high"
        assert calculations[1]["calendar"] == "wall_clock"
        assert _instant(calculations[1]["response_due_at"]) == T0 + timedelta(hours=2)

    async def test_priority_change_recomputes(self, client, db):
        await add_ticket(db)
        await client.post("/sla/tickets/TCK-1/deadlines")

        response = await client.put("/sla/tickets/TCK-1/priority", json={"priority": "critical"})

        body = response.json()
        assert response.status_code == 200
        assert body["priority"] == "critical"
        assert _instant(body["response_due_at"]) == T0 + timedelta(minutes=30)
        assert _instant(body["solution_due_at"]) == T0 + timedelta(hours=4)

    async def test_invalid_priority_is_422(self, client, db):
        await add_ticket(db)

        response = await client.put("/sla/tickets/TCK-1/priority", json={"priority": "urgent"})

        assert response.status_code == 422

    async def test_contract_change(self, client, db):
        template = await add_template(db, rules={"medium": (60, 480)})
        await add_contract(db, template_id=template.id)
        await add_ticket(db)

        response = await client.put("/sla/tickets/TCK-1/contract", json={"contract_id": "CTR-1"})

        body = response.json()
        assert response.status_code == 200
        assert body["contract_id"] == "CTR-1"
        assert _instant(body["response_due_at"]) == T0 + timedelta(hours=1)

    async def test_unknown_contract_is_404(self, client, db):
        await add_ticket(db)

        response = await client.put("/sla/tickets/TCK-1/contract", json={"contract_id": "CTR-404"})

        assert response.status_code == 404


class TestDashboardRoutes:
    async def test_stats(self, client, db):
        await add_ticket(db, id="TCK-1")
        await add_ticket(db, id="TCK-2", status="paused")

        response = await client.get("/sla/stats")

        body = response.json()
        assert response.status_code == 200
        assert body["total"] == 2
        assert body["with_sla"] == 1
        assert body["breached"] == 1
        assert body["stopped"] == 1
        assert body["breach_rate"] == 100.0
        assert body["generated_at"] is not None

    async def test_manual_scan(self, client):
        response = await client.post("/sla/scan")

        body = response.json()
        assert response.status_code == 200
        assert body["trigger"] == "manual"
        assert body["duration_ms"] == 2000
        assert body["stats"]["total"] == 0

    async def test_scan_conflict(self, client, orchestrator):
        orchestrator.is_running = True

        response = await client.post("/sla/scan")

        assert response.status_code == 409

    async def test_scan_status(self, client):
        await client.post("/sla/scan")

        response = await client.get("/sla/scan")

        body = response.json()
        assert body["scheduled"] is True
        assert body["running"] is False
        assert body["last_run"]["run_id"] == "SLA-2024-01-15T10-00-00-000-abcd"

    async def test_restart(self, client, orchestrator):
        response = await client.post("/sla/scan/restart")

        assert response.status_code == 200
        assert orchestrator.restarts == 1


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["sla_config"] == "loaded"
        assert body["checks"]["sla_scheduler"] == "running"
        assert body["checks"]["notifier"] == "log"
