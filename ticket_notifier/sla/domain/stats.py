"""
SLA Stats
=========

Read-side compliance metrics over the tracking store.

Everything here tolerates incomplete records: a record without a
deadline is never critical or overdue, a record without an assignee is
reported under "Unattributed".
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ticket_notifier.config import SLAStatus
from ticket_notifier.sla.domain.entities import AssignmentTrackingRecord, SLARecord

UNATTRIBUTED = "Unattributed"
OTHER_SLA_TYPE = "Other"


def agent_key(name: Optional[str], email: Optional[str]) -> str:
    return name or email or UNATTRIBUTED


def hit_rate(records: List[SLARecord]) -> Optional[float]:
    """hit / (hit + missed + active), unwarranted records excluded."""
    counted = [r for r in records if not r.has_unwarranted_tag]
    hits = sum(1 for r in counted if r.sla_status == SLAStatus.HIT)
    denominator = sum(
        1 for r in counted
        if r.sla_status in (SLAStatus.HIT, SLAStatus.MISSED, SLAStatus.ACTIVE)
    )
    if denominator == 0:
        return None
    return round(hits / denominator, 4)


@dataclass
class BreakdownRow:
    """Counts for one agent or one SLA type."""
    key: str
    total_tracked: int = 0
    active: int = 0
    missed: int = 0
    hit: int = 0
    unwarranted: int = 0
    hit_rate: Optional[float] = None
    total_assigned: Optional[int] = None

    def add(self, record: SLARecord) -> None:
        self.total_tracked += 1
        if record.sla_status == SLAStatus.ACTIVE:
            self.active += 1
        elif record.sla_status == SLAStatus.MISSED:
            self.missed += 1
        elif record.sla_status == SLAStatus.HIT:
            self.hit += 1
        if record.has_unwarranted_tag:
            self.unwarranted += 1

    def to_dict(self) -> dict:
        data = {
            "key": self.key,
            "total_tracked": self.total_tracked,
            "active": self.active,
            "missed": self.missed,
            "hit": self.hit,
            "unwarranted": self.unwarranted,
            "hit_rate": self.hit_rate,
        }
        if self.total_assigned is not None:
            data["total_assigned"] = self.total_assigned
        return data


@dataclass
class StatsSummary:
    """Fleet-wide SLA compliance summary."""
    total_tracked: int = 0
    active: int = 0
    missed: int = 0
    hit: int = 0
    paused: int = 0
    critical: int = 0
    overdue: int = 0
    unwarranted: int = 0
    hit_rate: Optional[float] = None
    average_time_to_hit_seconds: Optional[float] = None
    by_agent: List[BreakdownRow] = field(default_factory=list)
    by_sla_type: List[BreakdownRow] = field(default_factory=list)
    alerting_enabled: bool = False
    alert_channel: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "total_tracked": self.total_tracked,
            "active": self.active,
            "missed": self.missed,
            "hit": self.hit,
            "paused": self.paused,
            "critical": self.critical,
            "overdue": self.overdue,
            "unwarranted": self.unwarranted,
            "hit_rate": self.hit_rate,
            "average_time_to_hit_seconds": self.average_time_to_hit_seconds,
            "by_agent": [row.to_dict() for row in self.by_agent],
            "by_sla_type": [row.to_dict() for row in self.by_sla_type],
            "alerting_enabled": self.alerting_enabled,
            "alert_channel": self.alert_channel,
        }


class StatsAggregator:
    """
    Derives compliance metrics from SLA records.

    Args:
        critical_threshold_seconds: Active SLAs with less remaining time are critical
    """

    def __init__(self, critical_threshold_seconds: int = 300):
        self.critical_threshold_seconds = critical_threshold_seconds

    def summarize(
        self,
        records: Iterable[SLARecord],
        now: datetime,
        assignments: Optional[Iterable[AssignmentTrackingRecord]] = None,
        alert_channel: Optional[str] = None
    ) -> StatsSummary:
        """
        Summarize a (possibly pre-filtered) set of SLA records.

        Args:
            records: SLA records to summarize
            now: Evaluation instant for critical/overdue
            assignments: Assignment records, used as per-agent denominators
            alert_channel: Configured alert channel, echoed back

        Returns:
            StatsSummary
        """
        records = list(records)
        summary = StatsSummary(
            total_tracked=len(records),
            alerting_enabled=bool(alert_channel),
            alert_channel=alert_channel,
        )

        hit_durations = []
        for record in records:
            if record.sla_status == SLAStatus.ACTIVE:
                summary.active += 1
                if record.is_overdue(now):
                    summary.overdue += 1
                elif self._is_critical(record, now):
                    summary.critical += 1
            elif record.sla_status == SLAStatus.MISSED:
                summary.missed += 1
            elif record.sla_status == SLAStatus.HIT:
                summary.hit += 1
                if record.hit_at and record.assigned_at:
                    hit_durations.append((record.hit_at - record.assigned_at).total_seconds())

            if record.is_paused:
                summary.paused += 1
            if record.has_unwarranted_tag:
                summary.unwarranted += 1

        summary.hit_rate = hit_rate(records)
        if hit_durations:
            summary.average_time_to_hit_seconds = round(sum(hit_durations) / len(hit_durations), 1)

        summary.by_agent = self._by_agent(records, assignments)
        summary.by_sla_type = self._by_sla_type(records)
        return summary

    def _is_critical(self, record: SLARecord, now: datetime) -> bool:
        remaining = record.remaining_seconds(now)
        return remaining is not None and remaining < self.critical_threshold_seconds

    def _by_agent(
        self,
        records: List[SLARecord],
        assignments: Optional[Iterable[AssignmentTrackingRecord]]
    ) -> List[BreakdownRow]:
        rows: Dict[str, BreakdownRow] = {}
        grouped: Dict[str, List[SLARecord]] = {}

        for record in records:
            key = agent_key(record.assignee_name, record.assignee_email)
            rows.setdefault(key, BreakdownRow(key=key)).add(record)
            grouped.setdefault(key, []).append(record)

        if assignments is not None:
            for row in rows.values():
                row.total_assigned = 0
            for assignment in assignments:
                key = agent_key(assignment.assignee_name, assignment.assignee_email)
                row = rows.setdefault(key, BreakdownRow(key=key, total_assigned=0))
                row.total_assigned = (row.total_assigned or 0) + 1

        for key, row in rows.items():
            row.hit_rate = hit_rate(grouped.get(key, []))

        return sorted(rows.values(), key=lambda r: (-r.total_tracked, r.key.lower()))

    def _by_sla_type(self, records: List[SLARecord]) -> List[BreakdownRow]:
        rows: Dict[str, BreakdownRow] = {}
        grouped: Dict[str, List[SLARecord]] = {}

        for record in records:
            key = record.sla_bucket or OTHER_SLA_TYPE
            rows.setdefault(key, BreakdownRow(key=key)).add(record)
            grouped.setdefault(key, []).append(record)

        for key, row in rows.items():
            row.hit_rate = hit_rate(grouped[key])

        return sorted(rows.values(), key=lambda r: r.key)
