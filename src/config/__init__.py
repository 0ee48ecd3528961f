"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA configuration YAML file"
    )
    sla_scan_enabled: bool = Field(
        default=True,
        description="Start the periodic SLA scan on startup"
    )
    sla_scan_interval_minutes: int = Field(
        default=5,
        description="Minutes between SLA scans",
        ge=1
    )
    sla_scan_timezone: str = Field(
        default="America/Sao_Paulo",
        description="Timezone the scan schedule is aligned to"
    )
    sla_initial_scan_delay_seconds: float = Field(
        default=5.0,
        description="Delay before the best-effort scan after startup",
        ge=0
    )
    sla_restart_delay_seconds: float = Field(
        default=1.0,
        description="Pause between stop and start when restarting the scan job",
        ge=0
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for escalation notifications"
    )
    slack_channel: str = Field(
        default="#sla-escalations",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    helpdesk_base_url: str = Field(
        default="https://helpdesk.example.com/tickets",
        description="Base URL used to link tickets in notifications"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    PAUSED = "paused"          # Blocked by a task, timers frozen
    RESOLVED = "resolved"
    CLOSED = "closed"


class ContractType(str, Enum):
    """Contract categories an SLA template applies to."""
    SUPPORT = "support"
    MAINTENANCE = "maintenance"
    DEVELOPMENT = "development"
    CONSULTING = "consulting"
    OTHER = "other"


class SLAClassification(str, Enum):
    """Compliance states a ticket is classified into on every scan."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    MET = "met"
    STOPPED = "stopped"
    UNCLASSIFIED = "unclassified"


class EscalationAction(str, Enum):
    """Side effects the dispatcher can take on a transition."""
    FLAG = "flag"
    NOTIFY = "notify"
    ESCALATE_PRIORITY = "escalate_priority"


class DeliveryStatus(str, Enum):
    """Outcome of the notify call recorded on an escalation."""
    SENT = "sent"
    FAILED = "failed"
    NOT_REQUESTED = "not_requested"


class ScanTrigger(str, Enum):
    """What started a scan run."""
    SCHEDULED = "scheduled"
    INITIAL = "initial"
    MANUAL = "manual"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.CRITICAL, Priority.HIGH,
    Priority.MEDIUM, Priority.LOW
]
OPEN_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.PENDING
]
PAUSED_STATUSES = [TicketStatus.PAUSED]
FINISHED_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
ESCALATING_CLASSIFICATIONS = [SLAClassification.AT_RISK, SLAClassification.BREACHED]
