"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Persisted
entities know how to turn themselves into plain JSON-compatible dicts;
where those dicts end up is the repository's business.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from ticket_notifier.config import (
    AlertKind,
    AssignmentSource,
    PAUSED_STATE_CATEGORIES,
    SLAStatus,
    StateCategory,
)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value) -> Optional[datetime]:
    """Parse an ISO string (or unix seconds) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class SLAApplied:
    """SLA attached to a ticket (or to its linked conversation)."""
    name: str
    status: Optional[str] = None


@dataclass
class Assignee:
    """Agent a ticket is assigned to."""
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class TicketSnapshot:
    """
    A ticket as last observed at the ticketing provider.

    Only the fields the SLA engine reads are kept; the provider payload is
    mapped onto this by the application layer.
    """
    id: str
    updated_at: Optional[datetime] = None
    sla_applied: Optional[SLAApplied] = None
    linked_sla_applied: Optional[SLAApplied] = None
    first_assignment_at: Optional[datetime] = None
    last_assignment_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    state_category: Optional[str] = None
    state_label: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    assignee: Optional[Assignee] = None
    assignee_id: Optional[str] = None
    subject: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def effective_sla(self) -> Optional[SLAApplied]:
        """SLA on the ticket itself, falling back to the linked record."""
        if self.sla_applied and self.sla_applied.status:
            return self.sla_applied
        if self.linked_sla_applied and self.linked_sla_applied.status:
            return self.linked_sla_applied
        return None

    @property
    def has_assignee(self) -> bool:
        return bool(self.assignee_id or (self.assignee and (self.assignee.id or self.assignee.email)))

    def is_paused(self, now: datetime) -> bool:
        """Snoozed until a future instant, or waiting on the customer."""
        if self.snoozed_until and self.snoozed_until > now:
            return True
        return self.state_category in PAUSED_STATE_CATEGORIES

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive containment match against every tag."""
        needle = tag.lower()
        return any(needle in t.lower() for t in self.tags)


@dataclass(frozen=True)
class AlertEntry:
    """
    A violation alert that was actually delivered.

    The pair (kind, deadline_at_emission) for deadline violations, and
    (kind, status_at_emission) for missed statuses, identify an alert;
    a record never holds two entries with the same identity.
    """
    kind: str
    emitted_at: datetime
    deadline_at_emission: Optional[datetime] = None
    status_at_emission: Optional[str] = None

    @property
    def dedup_key(self) -> tuple:
        if self.kind == AlertKind.DEADLINE_VIOLATION:
            deadline = self.deadline_at_emission
            return (self.kind, to_iso(deadline.astimezone(timezone.utc)) if deadline else None)
        return (self.kind, self.status_at_emission)

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "timestamp": to_iso(self.emitted_at),
            "deadline": to_iso(self.deadline_at_emission),
            "status": self.status_at_emission,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlertEntry":
        return cls(
            kind=data["type"],
            emitted_at=from_iso(data.get("timestamp")),
            deadline_at_emission=from_iso(data.get("deadline")),
            status_at_emission=data.get("status"),
        )


@dataclass
class SLARecord:
    """
    Tracking state of the SLA currently applied to one ticket.

    A record exists exactly as long as the most recent snapshot of the
    ticket carries an SLA status.
    """
    ticket_id: str
    sla_status: str
    sla_name: str
    sla_duration: int
    updated_at: datetime
    assigned_at: Optional[datetime] = None
    assigned_at_source: Optional[str] = None
    deadline: Optional[datetime] = None
    is_paused: bool = False
    alert_history: List[AlertEntry] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    has_unwarranted_tag: bool = False
    sla_bucket: Optional[str] = None
    hit_at: Optional[datetime] = None

    # Denormalized ticket metadata
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None
    subject: Optional[str] = None
    ticket_state: Optional[str] = None
    ticket_created_at: Optional[datetime] = None

    def has_alert(self, candidate: AlertEntry) -> bool:
        return any(entry.dedup_key == candidate.dedup_key for entry in self.alert_history)

    def has_status_missed_alert(self) -> bool:
        return self.has_alert(AlertEntry(
            kind=AlertKind.STATUS_MISSED,
            emitted_at=self.updated_at,
            status_at_emission=SLAStatus.MISSED,
        ))

    @property
    def needs_evaluation(self) -> bool:
        """Active, or missed without a delivered missed alert."""
        if self.sla_status == SLAStatus.ACTIVE:
            return True
        return self.sla_status == SLAStatus.MISSED and not self.has_status_missed_alert()

    def to_snapshot(self) -> TicketSnapshot:
        """
        Rebuild a snapshot from the stored record.

        Used after a restart, before the ticket is observed again, so that
        re-processing yields the same assignment time, pause state and tags.
        A snooze is restored as a plain pause until the next observation.
        """
        assignee = None
        if self.assignee_name or self.assignee_email:
            assignee = Assignee(name=self.assignee_name, email=self.assignee_email)

        snapshot = TicketSnapshot(
            id=self.ticket_id,
            updated_at=self.updated_at,
            sla_applied=SLAApplied(name=self.sla_name, status=self.sla_status),
            state_category=StateCategory.WAITING_ON_CUSTOMER if self.is_paused else None,
            state_label=self.ticket_state,
            tags=list(self.tags),
            assignee=assignee,
            subject=self.subject,
            created_at=self.ticket_created_at,
        )
        if self.assigned_at_source == AssignmentSource.FIRST_ASSIGNMENT:
            snapshot.first_assignment_at = self.assigned_at
        elif self.assigned_at_source == AssignmentSource.LAST_ASSIGNMENT:
            snapshot.last_assignment_at = self.assigned_at
        elif self.assigned_at is not None:
            snapshot.updated_at = self.assigned_at
            snapshot.assignee_id = self.assignee_email or self.assignee_name or self.ticket_id
        return snapshot

    def append_alert(self, entry: AlertEntry) -> bool:
        """Append an alert unless one with the same identity exists."""
        if self.has_alert(entry):
            return False
        self.alert_history.append(entry)
        return True

    @property
    def alert_count(self) -> int:
        return len(self.alert_history)

    def remaining_seconds(self, now: datetime) -> Optional[int]:
        """Seconds until the deadline, floored at zero; None without deadline."""
        if self.deadline is None:
            return None
        return max(0, int((self.deadline - now).total_seconds()))

    def is_overdue(self, now: datetime) -> bool:
        return self.deadline is not None and now > self.deadline

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "sla_status": self.sla_status,
            "sla_name": self.sla_name,
            "sla_duration": self.sla_duration,
            "sla_bucket": self.sla_bucket,
            "assigned_at": to_iso(self.assigned_at),
            "assigned_at_source": self.assigned_at_source,
            "deadline": to_iso(self.deadline),
            "is_paused": self.is_paused,
            "hit_at": to_iso(self.hit_at),
            "alert_history": [entry.to_dict() for entry in self.alert_history],
            "tags": list(self.tags),
            "has_unwarranted_tag": self.has_unwarranted_tag,
            "assignee_name": self.assignee_name,
            "assignee_email": self.assignee_email,
            "subject": self.subject,
            "ticket_state": self.ticket_state,
            "ticket_created_at": to_iso(self.ticket_created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, ticket_id: str, data: dict) -> "SLARecord":
        return cls(
            ticket_id=data.get("ticket_id") or ticket_id,
            sla_status=data["sla_status"],
            sla_name=data.get("sla_name") or "Unknown SLA",
            sla_duration=int(data.get("sla_duration") or 0),
            sla_bucket=data.get("sla_bucket"),
            assigned_at=from_iso(data.get("assigned_at")),
            assigned_at_source=data.get("assigned_at_source"),
            deadline=from_iso(data.get("deadline")),
            is_paused=bool(data.get("is_paused", False)),
            hit_at=from_iso(data.get("hit_at")),
            alert_history=[AlertEntry.from_dict(a) for a in data.get("alert_history") or []],
            tags=list(data.get("tags") or []),
            has_unwarranted_tag=bool(data.get("has_unwarranted_tag", False)),
            assignee_name=data.get("assignee_name"),
            assignee_email=data.get("assignee_email"),
            subject=data.get("subject"),
            ticket_state=data.get("ticket_state"),
            ticket_created_at=from_iso(data.get("ticket_created_at")),
            updated_at=from_iso(data.get("updated_at")) or datetime.now(timezone.utc),
        )


@dataclass
class AssignmentTrackingRecord:
    """
    Every observed assignment, regardless of SLA presence.

    Only used as a denominator for per-agent reporting.
    """
    ticket_id: str
    assigned_at: datetime
    tracked_at: datetime
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None
    ticket_created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "assignee_name": self.assignee_name,
            "assignee_email": self.assignee_email,
            "assigned_at": to_iso(self.assigned_at),
            "ticket_created_at": to_iso(self.ticket_created_at),
            "tracked_at": to_iso(self.tracked_at),
        }

    @classmethod
    def from_dict(cls, ticket_id: str, data: dict) -> "AssignmentTrackingRecord":
        return cls(
            ticket_id=data.get("ticket_id") or ticket_id,
            assignee_name=data.get("assignee_name"),
            assignee_email=data.get("assignee_email"),
            assigned_at=from_iso(data["assigned_at"]),
            ticket_created_at=from_iso(data.get("ticket_created_at")),
            tracked_at=from_iso(data.get("tracked_at")) or datetime.now(timezone.utc),
        )
