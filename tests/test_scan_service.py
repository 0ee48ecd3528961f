"""
SLA Scan Service Tests.

Runs the scan against SQLite with the real repositories.
"""

import logging
from datetime import timedelta

from config import (
    ContractType, DeliveryStatus, Priority, ScanTrigger, SLAClassification, TicketStatus,
)
from sla.application import ISLAConfigProvider
from sla.domain import ScanRun, SLAConfig
from sla.infrastructure import (
    SQLAlchemyEscalationRepository, SQLAlchemySLACalculationRepository, TicketModel,
)
from sla.services import create_query_service, create_scan_service

from conftest import T0, RecordingNotifier, add_contract, add_template, add_ticket


async def _scan(session_factory, config_provider, notifier, now):
    run = ScanRun(run_id=ScanRun.new_run_id(now), trigger=ScanTrigger.MANUAL, started_at=now)
    async with session_factory() as session:
        await create_scan_service(session, config_provider, notifier).run(run, now)
    return run


async def _reload(session_factory, ticket_id) -> TicketModel:
    async with session_factory() as session:
        return await session.get(TicketModel, ticket_id)


async def _history(session_factory, ticket_id):
    async with session_factory() as session:
        return await SQLAlchemyEscalationRepository(session).list_for_ticket(ticket_id)


async def _calculations(session_factory, ticket_id):
    async with session_factory() as session:
        return await SQLAlchemySLACalculationRepository(session).list_for_ticket(ticket_id)


class UnavailableConfigProvider(ISLAConfigProvider):
    def get_config(self) -> SLAConfig:
        raise RuntimeError("config store offline")


class TestEscalateOnce:
    async def test_breach_escalates_once_across_scans(self, db, session_factory, config_provider, notifier):
        await add_ticket(db)

        first = await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=5))
        second = await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=5, minutes=10))

        assert len(first.escalations) == 1
        assert first.escalations[0].to_classification == SLAClassification.BREACHED
        assert second.escalations == []
        assert len(await _history(session_factory, "TCK-1")) == 1
        assert len(notifier.calls) == 1

    async def test_scan_persists_state(self, db, session_factory, config_provider, notifier):
        await add_ticket(db)
        now = T0 + timedelta(hours=5)

        await _scan(session_factory, config_provider, notifier, now)
        stored = await _reload(session_factory, "TCK-1")

        assert stored.sla_classification == SLAClassification.BREACHED.value
        assert stored.sla_flagged is True
        assert stored.priority == Priority.CRITICAL.value
        assert stored.sla_checked_at == now
        # Deadlines computed for the original medium priority, not recomputed after escalation
        assert stored.response_due_at == T0 + timedelta(hours=4)
        assert stored.solution_due_at == T0 + timedelta(hours=24)

    async def test_risk_then_breach_fires_twice(self, db, session_factory, config_provider, notifier):
        await add_ticket(db)

        await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=3, minutes=30))
        await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=4, minutes=30))

        history = await _history(session_factory, "TCK-1")
        assert [r.to_classification for r in history] == [
            SLAClassification.AT_RISK, SLAClassification.BREACHED
        ]
        assert history[1].from_classification == SLAClassification.AT_RISK

    async def test_failed_notification_recorded_once(self, db, session_factory, config_provider):
        notifier = RecordingNotifier(fail=True)
        await add_ticket(db)

        await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=5))
        await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=6))

        history = await _history(session_factory, "TCK-1")
        assert len(history) == 1
        assert history[0].delivery_status == DeliveryStatus.FAILED
        assert len(notifier.calls) == 1

    async def test_notifier_timeout_recorded_once(self, db, session_factory, config_provider):
        notifier = RecordingNotifier(error=TimeoutError())
        await add_ticket(db)

        runs = [
            await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=5, minutes=m))
            for m in (0, 5, 10)
        ]

        history = await _history(session_factory, "TCK-1")
        assert len(notifier.calls) == 1
        assert len(history) == 1
        assert history[0].delivery_status == DeliveryStatus.FAILED
        assert history[0].delivery_error == "TimeoutError"
        assert [run.errors for run in runs] == [0, 0, 0]
        stored = await _reload(session_factory, "TCK-1")
        assert stored.sla_classification == SLAClassification.BREACHED.value


class TestIsolationAndRules:
    async def test_bad_ticket_does_not_abort_run(self, db, session_factory, config_provider, notifier):
        await add_ticket(
            db,
            id="TCK-BAD",
            has_first_response=True,
            first_response_at=T0 - timedelta(hours=1),
        )
        await add_ticket(db, id="TCK-OK", created_at=T0 + timedelta(minutes=1))

        run = await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=1))

        assert run.errors == 1
        assert [e.ticket_id for e in run.evaluations] == ["TCK-OK"]
        assert run.stats.errors == 1
        assert run.stats.total == 2
        assert (await _reload(session_factory, "TCK-BAD")).sla_checked_at is None
        assert (await _reload(session_factory, "TCK-OK")).sla_classification == SLAClassification.ON_TRACK.value

    async def test_missing_rule_is_unclassified(self, db, session_factory, config_provider, notifier):
        template = await add_template(db, rules={Priority.HIGH: (30, 300)})
        await add_contract(db, template_id=template.id)
        await add_ticket(db, contract_id="CTR-1")

        run = await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=30))

        evaluation = run.evaluations[0]
        assert evaluation.classification == SLAClassification.UNCLASSIFIED
        assert evaluation.invalid_rule
        assert not evaluation.has_sla
        assert run.escalations == []
        stored = await _reload(session_factory, "TCK-1")
        assert stored.response_due_at is None

    async def test_missing_rule_warns_on_transition_only(self, db, session_factory, config_provider, notifier, caplog):
        template = await add_template(db, rules={Priority.HIGH: (30, 300)})
        await add_contract(db, template_id=template.id)
        await add_ticket(db, contract_id="CTR-1")

        with caplog.at_level(logging.DEBUG, logger="sla.application.services"):
            await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=1))
            await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=2))

        rule_records = [r for r in caplog.records if r.getMessage().startswith("No SLA rule")]
        assert [r.levelno for r in rule_records] == [logging.WARNING, logging.DEBUG]

    async def test_backfilled_deadlines_are_recorded(self, db, session_factory, config_provider, notifier):
        await add_ticket(db)
        now = T0 + timedelta(hours=1)

        await _scan(session_factory, config_provider, notifier, now)
        await _scan(session_factory, config_provider, notifier, now + timedelta(minutes=5))

        calculations = await _calculations(session_factory, "TCK-1")
        assert len(calculations) == 1
        assert calculations[0].reason == "scan_backfill"
        assert calculations[0].created_at == now
        assert calculations[0].is_current
        assert calculations[0].source == "default"
        assert calculations[0].calendar == "wall_clock"
        assert calculations[0].solution_due_at == T0 + timedelta(hours=24)

    async def test_inactive_bound_template_still_applies(self, db, session_factory, config_provider, notifier):
        template = await add_template(db, rules={Priority.MEDIUM: (60, 600)}, is_active=False)
        await add_contract(db, template_id=template.id)
        await add_ticket(db, contract_id="CTR-1")

        await _scan(session_factory, config_provider, notifier, T0 + timedelta(minutes=5))

        stored = await _reload(session_factory, "TCK-1")
        assert stored.response_due_at == T0 + timedelta(minutes=60)
        assert stored.solution_due_at == T0 + timedelta(minutes=600)

    async def test_category_default_template(self, db, session_factory, config_provider, notifier):
        await add_template(
            db,
            rules={Priority.MEDIUM: (120, 1200)},
            contract_type=ContractType.MAINTENANCE,
            is_default=True,
            name="Maintenance default",
        )
        await add_ticket(db, category=ContractType.MAINTENANCE.value)

        await _scan(session_factory, config_provider, notifier, T0 + timedelta(minutes=5))

        stored = await _reload(session_factory, "TCK-1")
        assert stored.response_due_at == T0 + timedelta(hours=2)
        assert stored.solution_due_at == T0 + timedelta(hours=20)

    async def test_paused_ticket_is_stopped_and_not_escalated(self, db, session_factory, config_provider, notifier):
        await add_ticket(
            db,
            status=TicketStatus.PAUSED.value,
            response_due_at=T0 + timedelta(hours=4),
            solution_due_at=T0 + timedelta(hours=24),
        )

        run = await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=30))

        assert run.evaluations[0].classification == SLAClassification.STOPPED
        assert run.escalations == []

    async def test_finished_tickets_are_not_scanned(self, db, session_factory, config_provider, notifier):
        await add_ticket(db, status=TicketStatus.RESOLVED.value, resolved_at=T0 + timedelta(hours=1))

        run = await _scan(session_factory, config_provider, notifier, T0 + timedelta(hours=30))

        assert run.evaluations == []
        assert run.stats.total == 0


class TestStatsConsistency:
    async def test_query_stats_match_scan_stats(self, db, session_factory, config_provider, notifier):
        await add_ticket(db, id="TCK-1")
        await add_ticket(db, id="TCK-2", created_at=T0 + timedelta(hours=4))
        await add_ticket(db, id="TCK-3", status=TicketStatus.PAUSED.value)
        await add_ticket(db, id="TCK-4", status=TicketStatus.RESOLVED.value, resolved_at=T0 + timedelta(hours=1))
        now = T0 + timedelta(hours=5)

        async with session_factory() as session:
            before = await create_query_service(session, config_provider).current_stats(now)
        run = await _scan(session_factory, config_provider, notifier, now)

        assert before == run.stats
        assert run.stats.total == 3
        assert run.stats.with_sla == 2
        assert run.stats.breached == 1
        assert run.stats.on_track == 1
        assert run.stats.stopped == 1
        assert run.stats.breach_rate == 50.0

    async def test_query_does_not_write(self, db, session_factory, config_provider):
        await add_ticket(db)

        async with session_factory() as session:
            await create_query_service(session, config_provider).current_stats(T0 + timedelta(hours=5))
            await session.commit()

        stored = await _reload(session_factory, "TCK-1")
        assert stored.response_due_at is None
        assert stored.sla_classification is None

    async def test_unexpected_errors_counted_in_both(self, db, session_factory, notifier):
        provider = UnavailableConfigProvider()
        await add_ticket(db, id="TCK-1")
        await add_ticket(db, id="TCK-2", created_at=T0 + timedelta(hours=1))
        now = T0 + timedelta(hours=2)

        async with session_factory() as session:
            before = await create_query_service(session, provider).current_stats(now)
        run = await _scan(session_factory, provider, notifier, now)

        assert before == run.stats
        assert before.errors == 2
        assert before.total == 2
