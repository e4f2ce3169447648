"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticket-notifier", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")
    service_role: str = Field(
        default="all",
        description="'all' owns the tracking store and runs evaluation, 'dashboard' only reads it"
    )

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Storage ==========
    storage_backend: str = Field(
        default="file",
        description="Where tracking tables live: 'file' (JSON) or 'database' (SQLAlchemy)"
    )
    sla_state_file: Path = Field(
        default=Path("sla-state.json"),
        description="JSON file backing the SLA tracking table"
    )
    assignment_state_file: Path = Field(
        default=Path("assignment-tracking.json"),
        description="JSON file backing the assignment tracking table"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ticket_notifier.db",
        description="SQLAlchemy async URL used when storage_backend is 'database'"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    state_reload_interval_seconds: int = Field(
        default=10,
        description="Seconds between tracking store reloads in dashboard role",
        ge=1
    )

    # ========== Business Hours ==========
    business_hours_enabled: bool = Field(default=True, description="Restrict polling to business hours")
    business_hours_start: str = Field(default="09:00", description="Start of business hours (HH:MM)")
    business_hours_end: str = Field(default="17:00", description="End of business hours (HH:MM)")
    business_hours_timezone: str = Field(
        default="America/New_York",
        description="IANA timezone the business hours are expressed in"
    )
    business_hours_days: str = Field(
        default="1,2,3,4,5",
        description="Business days, comma separated (0=Sunday ... 6=Saturday)"
    )

    # ========== SLA Policy ==========
    sla_durations: Optional[str] = Field(
        default=None,
        description="Duration overrides, e.g. 'FRT:300,NRT:300,TTC:86400' (seconds)"
    )
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Optional YAML file with duration overrides (hot-reloaded)"
    )
    unwarranted_sla_tag: str = Field(
        default="unwarranted sla",
        description="Tag marking an SLA as not counting towards compliance"
    )
    critical_threshold_seconds: int = Field(
        default=300,
        description="Active SLAs with less remaining time than this are 'critical'",
        ge=0
    )

    # ========== Evaluation Loop ==========
    check_interval_seconds: int = Field(
        default=30,
        description="Seconds between evaluation passes",
        ge=1
    )

    # ========== Slack Integration ==========
    slack_bot_token: Optional[str] = Field(default=None, description="Slack bot token")
    sla_alert_channel: Optional[str] = Field(
        default=None,
        description="Slack channel for SLA violation alerts (alerting disabled when unset)"
    )
    slack_api_base_url: str = Field(default="https://slack.com/api", description="Slack Web API base URL")
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    ticket_link_base_url: str = Field(
        default="https://app.intercom.com/a/inbox/tickets",
        description="Base URL used to link tickets from alerts"
    )

    # ========== Ingestion ==========
    dedupe_ttl_seconds: int = Field(
        default=600,
        description="How long a notification id is remembered to drop redeliveries",
        ge=0
    )
    dedupe_max_entries: int = Field(
        default=10000,
        description="Upper bound on remembered notification ids",
        ge=1
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:3002"],
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("service_role")
    @classmethod
    def validate_service_role(cls, v: str) -> str:
        if v not in VALID_SERVICE_ROLES:
            raise ValueError(f"service_role must be one of {VALID_SERVICE_ROLES}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in VALID_STORAGE_BACKENDS:
            raise ValueError(f"storage_backend must be one of {VALID_STORAGE_BACKENDS}")
        return v

    @property
    def alerting_enabled(self) -> bool:
        """SLA alerts are only sent when both a token and a channel are configured."""
        return bool(self.slack_bot_token and self.sla_alert_channel)


# ========== Constants ==========

class SLAStatus(str):
    """SLA status as reported by the ticketing provider."""
    ACTIVE = "active"
    MISSED = "missed"
    HIT = "hit"


class AlertKind(str):
    """Kinds of SLA violation alerts."""
    STATUS_MISSED = "status_missed"
    DEADLINE_VIOLATION = "deadline_violation"


class AssignmentSource(str):
    """Where a ticket's assignment timestamp was taken from."""
    FIRST_ASSIGNMENT = "first_assignment"
    LAST_ASSIGNMENT = "last_assignment"
    UPDATED_AT = "updated_at"           # last resort, less reliable


class StateCategory(str):
    """Ticket state categories relevant to SLA pausing."""
    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    WAITING_ON_CUSTOMER = "waiting_on_customer"
    RESOLVED = "resolved"


class ServiceRole(str):
    """Process roles sharing the tracking store."""
    ALL = "all"
    DASHBOARD = "dashboard"


class StorageBackend(str):
    """Durable backends for the tracking tables."""
    FILE = "file"
    DATABASE = "database"


class DateField(str):
    """Record date used by date range filters."""
    ASSIGNED = "assigned"
    CREATED = "created"


class TicketSort(str):
    """Sort orders for tracked ticket listings."""
    DEADLINE = "deadline"
    REMAINING = "remaining"
    ASSIGNEE = "assignee"
    SLA_NAME = "sla_name"


class SLABucket(str):
    """Duration policy buckets."""
    FRT = "FRT"     # First response time
    NRT = "NRT"     # Next response time
    TTC = "TTC"     # Time to close


# ========== Lists for validation ==========

VALID_SERVICE_ROLES = [ServiceRole.ALL, ServiceRole.DASHBOARD]
VALID_STORAGE_BACKENDS = [StorageBackend.FILE, StorageBackend.DATABASE]
SLA_BUCKETS = [SLABucket.FRT, SLABucket.NRT, SLABucket.TTC]
PAUSED_STATE_CATEGORIES = [StateCategory.WAITING_ON_CUSTOMER]
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
