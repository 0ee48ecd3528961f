"""
SLA External Service Integrations
==================================

External services for the SLA engine:
- YAML config file watcher
- Slack webhook notifications (and a log-only fallback)
- APScheduler for the periodic scan
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from config import ScanTrigger, SLAClassification, settings
from core import ConfigurationException, NotificationDeliveryException
from shared.infrastructure.logging import get_logger
from sla.application import INotifier, ISLAConfigProvider
from sla.domain import Ticket
from sla.domain.value_objects import SLAConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()

    def on_created(self, event):
        # Editors that save by rename produce a create event, not a modify
        self.on_modified(event)


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration manager with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A reload that fails validation keeps
    the previous configuration.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = path
        config = self._load_from_file(path)
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLAConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file {path}", {"error": str(e)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload SLA config, keeping previous",
                extra={"error": e.details.get("error", e.message)}
            )
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if:
        - File doesn't exist (production environments often use env vars)
        - Running in a containerized environment where inotify doesn't work
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Config file doesn't exist, skipping file watch. Using default SLA configuration.",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching config file", extra={"path": str(self._path)})
        except OSError as e:
            # File watching not supported (e.g., in Docker containers)
            logger.warning(
                "File watching not available, using static config",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> SLAConfig:
        """Get current configuration."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    def get_config(self) -> SLAConfig:
        return self.config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class SlackMessage:
    """Slack notification message."""
    ticket_id: str
    subject: str
    priority: str
    status: str
    classification: str
    due_at: Optional[str]
    sla_started_at: str


class SlackNotifier(INotifier):
    """
    Slack webhook notifier with circuit breaker.

    One POST per escalation. A failed delivery is not retried here; the
    next scan cycle is the retry boundary. The circuit breaker stops
    hitting a dead webhook after repeated failures.

    Every failure surfaces as NotificationDeliveryException so the
    dispatcher can record it.
    """

    def __init__(
        self,
        webhook_url: str,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._webhook_url = webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, data: SlackMessage) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        if data.classification == SLAClassification.BREACHED.value:
            emoji = ":rotating_light:"
            header_text = "SLA Breached"
            status_text = ":red_circle: BREACHED"
        else:
            emoji = ":warning:"
            header_text = "SLA At Risk"
            status_text = ":large_yellow_circle: AT RISK"

        ticket_url = f"{settings.helpdesk_base_url.rstrip('/')}/{data.ticket_id}"

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{emoji} {header_text}",
                    "emoji": True
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Ticket:*\n<{ticket_url}|{data.subject or data.ticket_id}>"},
                    {"type": "mrkdwn", "text": f"*Priority:*\n{data.priority.title()}"},
                    {"type": "mrkdwn", "text": f"*Ticket Status:*\n{data.status}"},
                    {"type": "mrkdwn", "text": f"*SLA:*\n{status_text}"},
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Started: {data.sla_started_at} | Due: {data.due_at or 'n/a'}"
                    }
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": f"{header_text}: {data.ticket_id}",
            "blocks": blocks
        }

    async def notify(
        self,
        ticket: Ticket,
        classification: SLAClassification,
        due_at: Optional[datetime]
    ) -> None:
        """
        Send escalation to the Slack webhook.

        Raises:
            NotificationDeliveryException: Circuit open, transport error or non-200 reply
        """
        if not self._circuit_breaker.allow_request():
            raise NotificationDeliveryException(
                "slack", "circuit breaker open", {"ticket_id": ticket.id}
            )

        message = self._build_message(SlackMessage(
            ticket_id=ticket.id,
            subject=ticket.subject,
            priority=ticket.priority.value,
            status=ticket.status.value,
            classification=SLAClassification(classification).value,
            due_at=due_at.isoformat() if due_at else None,
            sla_started_at=ticket.sla_started_at.isoformat(),
        ))

        try:
            client = await self._get_client()
            response = await client.post(self._webhook_url, json=message)
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
            logger.error(
                "Slack notification failed",
                extra={"error": error, "ticket_id": ticket.id}
            )
            self._circuit_breaker.record_failure()
            raise NotificationDeliveryException("slack", error, {"ticket_id": ticket.id})

        if response.status_code != 200:
            logger.warning(
                "Slack webhook returned non-200",
                extra={"status_code": response.status_code, "ticket_id": ticket.id}
            )
            self._circuit_breaker.record_failure()
            raise NotificationDeliveryException(
                "slack",
                f"webhook returned {response.status_code}",
                {"ticket_id": ticket.id, "status_code": response.status_code}
            )

        self._circuit_breaker.record_success()
        logger.info(
            "Slack notification sent",
            extra={
                "ticket_id": ticket.id,
                "classification": SLAClassification(classification).value,
            }
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LogNotifier(INotifier):
    """Writes escalations to the log; used when no webhook is configured."""

    async def notify(
        self,
        ticket: Ticket,
        classification: SLAClassification,
        due_at: Optional[datetime]
    ) -> None:
        logger.warning(
            "SLA escalation notice",
            extra={
                "ticket_id": ticket.id,
                "priority": ticket.priority.value,
                "classification": SLAClassification(classification).value,
                "due_at": due_at.isoformat() if due_at else None,
            }
        )

    async def close(self) -> None:
        return None


class SLAScheduler:
    """
    Wrapper for APScheduler for the periodic SLA scan.

    Registers one recurring job (cron-aligned when the interval divides
    an hour, plain interval otherwise) and an optional one-shot initial
    run. The job callable receives the ScanTrigger that fired it.
    """

    JOB_ID = "sla_scan"
    INITIAL_JOB_ID = "sla_scan_initial"

    def __init__(
        self,
        interval_minutes: int = 5,
        timezone: str = "America/Sao_Paulo",
        initial_delay_seconds: Optional[float] = 5.0
    ):
        self.interval_minutes = interval_minutes
        self.timezone = timezone
        self.initial_delay_seconds = initial_delay_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def _build_trigger(self):
        if 60 % self.interval_minutes == 0:
            return CronTrigger(minute=f"*/{self.interval_minutes}", timezone=self.timezone)
        return IntervalTrigger(minutes=self.interval_minutes, timezone=self.timezone)

    async def start(self, job_func: Callable[[ScanTrigger], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)

        self._scheduler.add_job(
            job_func,
            self._build_trigger(),
            args=[ScanTrigger.SCHEDULED],
            id=self.JOB_ID,
            name="SLA Scan Job",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )

        if self.initial_delay_seconds is not None:
            run_date = datetime.now(timezone.utc) + timedelta(seconds=self.initial_delay_seconds)
            self._scheduler.add_job(
                job_func,
                DateTrigger(run_date=run_date),
                args=[ScanTrigger.INITIAL],
                id=self.INITIAL_JOB_ID,
                name="SLA Initial Scan",
                misfire_grace_time=60,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={
                "interval_minutes": self.interval_minutes,
                "timezone": self.timezone,
                "initial_delay_seconds": self.initial_delay_seconds,
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler; an in-flight job keeps running to completion."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def next_run_time(self) -> Optional[datetime]:
        """Next fire time of the recurring job."""
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None
