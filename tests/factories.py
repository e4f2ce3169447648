"""Test doubles and builders shared across test modules."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ticket_notifier.core import RepositoryException, SlackException
from ticket_notifier.sla.application import ISLAAlertNotifier
from ticket_notifier.sla.domain import Assignee, SLAApplied, SLARecord, TicketSnapshot
from ticket_notifier.sla.infrastructure import KeyValueTable

T0 = datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)  # Monday


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class InMemoryTable(KeyValueTable):
    """Table kept in a dict; can be told to fail writes."""

    def __init__(self, rows: Optional[Dict[str, dict]] = None):
        self.rows: Dict[str, dict] = dict(rows or {})
        self.fail_writes = False
        self.writes = 0

    async def load_all(self) -> Dict[str, dict]:
        return dict(self.rows)

    async def put(self, key: str, value: dict) -> None:
        if self.fail_writes:
            raise RepositoryException("write failed", {"key": key})
        self.writes += 1
        self.rows[key] = value

    async def delete(self, key: str) -> None:
        if self.fail_writes:
            raise RepositoryException("delete failed", {"key": key})
        self.rows.pop(key, None)


class RecordingNotifier(ISLAAlertNotifier):
    """Notifier that records every alert; can be told to fail."""

    def __init__(self, succeed: bool = True, raise_error: bool = False):
        self.succeed = succeed
        self.raise_error = raise_error
        self.sent: List[dict] = []

    async def send_sla_alert(self, record, snapshot, kind, deadline) -> bool:
        if self.raise_error:
            raise SlackException("slack is down")
        if self.succeed:
            self.sent.append({"ticket_id": record.ticket_id, "kind": kind, "deadline": deadline})
        return self.succeed


def make_snapshot(
    ticket_id: str = "1001",
    sla_name: Optional[str] = "First Response Time",
    sla_status: Optional[str] = "active",
    first_assignment_at: Optional[datetime] = T0,
    **kwargs
) -> TicketSnapshot:
    sla = SLAApplied(name=sla_name, status=sla_status) if sla_status else None
    kwargs.setdefault("updated_at", first_assignment_at or T0)
    kwargs.setdefault("assignee", Assignee(id="42", name="Jane Doe", email="jane@example.com"))
    return TicketSnapshot(
        id=ticket_id,
        sla_applied=sla,
        first_assignment_at=first_assignment_at,
        **kwargs
    )


def make_record(
    ticket_id: str = "1001",
    sla_status: str = "active",
    deadline: Optional[datetime] = None,
    **kwargs
) -> SLARecord:
    kwargs.setdefault("sla_name", "First Response Time")
    kwargs.setdefault("sla_duration", 300)
    kwargs.setdefault("updated_at", T0)
    return SLARecord(ticket_id=ticket_id, sla_status=sla_status, deadline=deadline, **kwargs)


