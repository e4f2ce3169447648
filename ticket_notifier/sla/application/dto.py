"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Ticket payloads follow the shape the
ticketing provider sends (unix-second timestamps, nested linked objects,
tags as strings or objects).
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ticket_notifier.sla.domain import (
    Assignee,
    SLAApplied,
    SLARecord,
    StatsSummary,
    TicketSnapshot,
)


# ========== Type Aliases for Literals ==========
SLAStatusStr = Literal["active", "missed", "hit"]
AlertKindStr = Literal["status_missed", "deadline_violation"]
DateFieldStr = Literal["assigned", "created"]
TicketSortStr = Literal["deadline", "remaining", "assignee", "sla_name"]


def extract_tags(raw: Any) -> List[str]:
    """
    Flatten provider tags into a list of names.

    Accepts a list of strings or {name} objects, optionally wrapped in a
    {"tags": [...]} or {"data": [...]} envelope.
    """
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("tags") or raw.get("data") or []
    if not isinstance(raw, list):
        return []

    names = []
    for tag in raw:
        if isinstance(tag, str):
            name = tag
        elif isinstance(tag, dict):
            name = tag.get("name") or ""
        else:
            continue
        if name:
            names.append(name)
    return names


# ========== Ticket payload DTOs ==========

class SLAAppliedDTO(BaseModel):
    """SLA applied to a ticket or conversation."""
    model_config = ConfigDict(extra="ignore")

    sla_name: Optional[str] = None
    sla_status: Optional[str] = None

    def to_domain(self) -> SLAApplied:
        return SLAApplied(name=self.sla_name or "Unknown SLA", status=self.sla_status)


class TicketStatisticsDTO(BaseModel):
    """Assignment statistics of a ticket."""
    model_config = ConfigDict(extra="ignore")

    first_assignment_at: Optional[datetime] = None
    last_assignment_at: Optional[datetime] = None


class TicketStateDTO(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: Optional[str] = None
    internal_label: Optional[str] = None


class AssigneeDTO(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)


class TicketSnapshotDTO(BaseModel):
    """
    A ticket as sent by the ticketing provider.

    Unknown fields are ignored. Timestamps may be unix seconds or ISO
    strings; naive values are taken to be UTC.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Ticket ID")
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    sla_applied: Optional[SLAAppliedDTO] = None
    linked_objects: Optional[Dict[str, Any]] = None
    statistics: Optional[TicketStatisticsDTO] = None
    ticket_state: Optional[TicketStateDTO] = None
    state: Optional[str] = None
    tags: Any = None
    admin_assignee: Optional[AssigneeDTO] = None
    admin_assignee_id: Optional[str] = None
    subject: Optional[str] = None
    ticket_attributes: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("id") and data.get("ticket_id"):
            data["id"] = data["ticket_id"]
        if isinstance(data.get("ticket_state"), str):
            data["ticket_state"] = {"category": data["ticket_state"]}
        return data

    @field_validator("id", "admin_assignee_id", mode="before")
    @classmethod
    def coerce_str(cls, v: Any) -> Optional[str]:
        return None if v is None else str(v)

    @field_validator("updated_at", "created_at", "snoozed_until")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def linked_sla_applied(self) -> Optional[SLAAppliedDTO]:
        """SLA of the first linked conversation that carries one."""
        for linked in (self.linked_objects or {}).get("data") or []:
            if isinstance(linked, dict) and linked.get("type") == "conversation" and linked.get("sla_applied"):
                return SLAAppliedDTO.model_validate(linked["sla_applied"])
        return None

    @property
    def resolved_subject(self) -> Optional[str]:
        title = (self.ticket_attributes or {}).get("_default_title_")
        return title or self.subject

    def to_domain(self) -> TicketSnapshot:
        """Convert to domain snapshot."""
        stats = self.statistics or TicketStatisticsDTO()
        state = self.ticket_state or TicketStateDTO()
        linked = self.linked_sla_applied()

        return TicketSnapshot(
            id=self.id,
            updated_at=self.updated_at,
            sla_applied=self.sla_applied.to_domain() if self.sla_applied else None,
            linked_sla_applied=linked.to_domain() if linked else None,
            first_assignment_at=_as_utc(stats.first_assignment_at),
            last_assignment_at=_as_utc(stats.last_assignment_at),
            snoozed_until=self.snoozed_until,
            state_category=state.category or self.state,
            state_label=state.internal_label,
            tags=extract_tags(self.tags),
            assignee=Assignee(
                id=self.admin_assignee.id,
                name=self.admin_assignee.name,
                email=self.admin_assignee.email,
            ) if self.admin_assignee else None,
            assignee_id=self.admin_assignee_id,
            subject=self.resolved_subject,
            created_at=self.created_at,
        )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ========== Request DTOs ==========

class TicketIngestRequest(BaseModel):
    """Request model for ticket ingestion."""
    id: Optional[str] = Field(
        default=None,
        description="Notification id; a redelivery of a processed id is dropped"
    )
    tickets: List[Dict[str, Any]] = Field(
        ...,
        description="Ticket snapshots as sent by the ticketing provider"
    )


class TrackedTicketsQuery(BaseModel):
    """Filters for tracked ticket listings and stats."""
    status: Optional[SLAStatusStr] = None
    sla_name: Optional[str] = Field(None, description="Case-insensitive substring")
    unwarranted: Optional[bool] = None
    assignee: Optional[str] = Field(None, description="Exact assignee name")
    ticket_state: Optional[str] = Field(None, description="Case-insensitive state match")
    date_from: Optional[date] = None
    date_to: Optional[date] = Field(None, description="Inclusive of the whole day")
    date_type: DateFieldStr = "assigned"
    sort: TicketSortStr = "deadline"

    @model_validator(mode="after")
    def validate_range(self) -> "TrackedTicketsQuery":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


# ========== Response DTOs ==========

class ProcessResultResponse(BaseModel):
    """Outcome of processing one ticket snapshot."""
    ticket_id: str
    violation_occurred: bool = False
    kind: Optional[AlertKindStr] = None
    deadline: Optional[datetime] = None
    alert_sent: bool = False
    tracked: bool = False


class IngestResponse(BaseModel):
    """Response model for ticket ingestion."""
    processed: int = Field(..., description="Number of snapshots processed")
    tracked: int = Field(default=0, description="Snapshots that carry an SLA")
    violations: int = Field(default=0, description="New violations detected")
    alerts_sent: int = Field(default=0, description="Alerts delivered")
    failed: int = Field(default=0, description="Number of failed snapshots")
    results: List[ProcessResultResponse] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list, description="Error messages")
    duplicate: bool = Field(default=False, description="Notification was already processed")


class AlertEntryResponse(BaseModel):
    kind: AlertKindStr
    emitted_at: datetime
    deadline_at_emission: Optional[datetime] = None
    status_at_emission: Optional[str] = None


class TrackedTicketResponse(BaseModel):
    """A tracked SLA record with time-dependent views."""
    ticket_id: str
    ticket_link: str
    sla_name: str
    sla_status: str
    sla_bucket: Optional[str] = None
    sla_duration: int
    assigned_at: Optional[datetime] = None
    assigned_at_source: Optional[str] = None
    deadline: Optional[datetime] = None
    remaining_seconds: Optional[int] = None
    remaining_minutes: Optional[int] = None
    is_overdue: bool = False
    is_paused: bool = False
    hit_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    has_unwarranted_tag: bool = False
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None
    subject: Optional[str] = None
    ticket_state: Optional[str] = None
    ticket_created_at: Optional[datetime] = None
    updated_at: datetime
    alert_count: int = 0
    alert_history: List[AlertEntryResponse] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: SLARecord, now: datetime, link_base_url: str) -> "TrackedTicketResponse":
        remaining = record.remaining_seconds(now)
        return cls(
            ticket_id=record.ticket_id,
            ticket_link=f"{link_base_url.rstrip('/')}/{record.ticket_id}",
            sla_name=record.sla_name,
            sla_status=record.sla_status,
            sla_bucket=record.sla_bucket,
            sla_duration=record.sla_duration,
            assigned_at=record.assigned_at,
            assigned_at_source=record.assigned_at_source,
            deadline=record.deadline,
            remaining_seconds=remaining,
            remaining_minutes=remaining // 60 if remaining is not None else None,
            is_overdue=record.is_overdue(now),
            is_paused=record.is_paused,
            hit_at=record.hit_at,
            tags=record.tags,
            has_unwarranted_tag=record.has_unwarranted_tag,
            assignee_name=record.assignee_name,
            assignee_email=record.assignee_email,
            subject=record.subject,
            ticket_state=record.ticket_state,
            ticket_created_at=record.ticket_created_at,
            updated_at=record.updated_at,
            alert_count=record.alert_count,
            alert_history=[
                AlertEntryResponse(
                    kind=entry.kind,
                    emitted_at=entry.emitted_at,
                    deadline_at_emission=entry.deadline_at_emission,
                    status_at_emission=entry.status_at_emission,
                )
                for entry in record.alert_history
            ],
        )


class TrackedTicketsResponse(BaseModel):
    count: int
    tickets: List[TrackedTicketResponse]


class BreakdownResponse(BaseModel):
    key: str
    total_tracked: int
    active: int
    missed: int
    hit: int
    unwarranted: int
    hit_rate: Optional[float] = None
    total_assigned: Optional[int] = None


class SLAStatsResponse(BaseModel):
    """Response model for SLA stats."""
    total_tracked: int
    active: int
    missed: int
    hit: int
    paused: int
    critical: int
    overdue: int
    unwarranted: int
    hit_rate: Optional[float] = Field(None, description="hit / (hit+missed+active), unwarranted excluded")
    average_time_to_hit_seconds: Optional[float] = None
    by_agent: List[BreakdownResponse] = Field(default_factory=list)
    by_sla_type: List[BreakdownResponse] = Field(default_factory=list)
    alerting_enabled: bool = False
    alert_channel: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: StatsSummary) -> "SLAStatsResponse":
        return cls.model_validate(summary.to_dict())


class BusinessHoursResponse(BaseModel):
    """Business calendar and current gate state."""
    calendar: Dict[str, Any]
    now: datetime
    is_business_hours: bool
    next_business_hours_start: datetime


class ReloadResponse(BaseModel):
    sla_records: int
    assignment_records: int
