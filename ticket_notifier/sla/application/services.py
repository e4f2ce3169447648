"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from ticket_notifier.config import AssignmentSource, DateField, SLAStatus, TicketSort
from ticket_notifier.core.exceptions import ExternalServiceException, ResourceNotFoundException
from ticket_notifier.sla.application.dto import TrackedTicketsQuery
from ticket_notifier.sla.domain import (
    AssignmentTrackingRecord,
    BusinessCalendar,
    BusinessHoursResolver,
    Clock,
    DeadlineCalculator,
    DurationPolicy,
    SLARecord,
    StatsAggregator,
    StatsSummary,
    TicketSnapshot,
    ViolationDetector,
    utc_now,
)
from ticket_notifier.shared.infrastructure.logging import get_context_logger, get_logger, log_latency

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLATrackingRepository(ABC):
    """Interface for SLA tracking records."""

    @abstractmethod
    async def load(self) -> int:
        """Load all records from durable storage, returning the count."""

    @abstractmethod
    async def reload(self) -> int:
        """Discard the in-memory index and load again."""

    @abstractmethod
    def get(self, ticket_id: str) -> Optional[SLARecord]:
        """Get the record for a ticket."""

    @abstractmethod
    def all(self) -> List[SLARecord]:
        """All tracked records."""

    @abstractmethod
    async def save(self, record: SLARecord) -> bool:
        """Store a record; False when the durable write failed."""

    @abstractmethod
    async def delete(self, ticket_id: str) -> bool:
        """Delete a record; False when there was none."""


class IAssignmentTrackingRepository(ABC):
    """Interface for assignment tracking records."""

    @abstractmethod
    async def load(self) -> int:
        """Load all records from durable storage, returning the count."""

    @abstractmethod
    async def reload(self) -> int:
        """Discard the in-memory index and load again."""

    @abstractmethod
    def get(self, ticket_id: str) -> Optional[AssignmentTrackingRecord]:
        """Get the record for a ticket."""

    @abstractmethod
    def all(self) -> List[AssignmentTrackingRecord]:
        """All assignment records."""

    @abstractmethod
    async def save(self, record: AssignmentTrackingRecord) -> bool:
        """Store a record; False when the durable write failed."""


class IDurationPolicyProvider(ABC):
    """Interface for SLA duration policy access."""

    @abstractmethod
    def get_policy(self) -> DurationPolicy:
        """Get current duration policy."""


class ISLAAlertNotifier(ABC):
    """Interface for delivering SLA violation alerts."""

    @abstractmethod
    async def send_sla_alert(
        self,
        record: SLARecord,
        snapshot: TicketSnapshot,
        kind: str,
        deadline: Optional[datetime]
    ) -> bool:
        """Deliver an alert; True only when it was actually delivered."""


class StaticDurationPolicyProvider(IDurationPolicyProvider):
    """Policy provider for a fixed policy (scripts and tests)."""

    def __init__(self, policy: Optional[DurationPolicy] = None):
        self._policy = policy or DurationPolicy()

    def get_policy(self) -> DurationPolicy:
        return self._policy


# ========== Results ==========

@dataclass
class ProcessResult:
    """Outcome of processing one snapshot."""
    ticket_id: str
    violation_occurred: bool = False
    kind: Optional[str] = None
    deadline: Optional[datetime] = None
    alert_sent: bool = False
    tracked: bool = False

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "violation_occurred": self.violation_occurred,
            "kind": self.kind,
            "deadline": self.deadline,
            "alert_sent": self.alert_sent,
            "tracked": self.tracked,
        }


@dataclass
class BatchSummary:
    """Outcome of processing a batch of snapshots."""
    processed: int = 0
    tracked: int = 0
    violations: int = 0
    alerts_sent: int = 0
    failed: int = 0
    skipped: bool = False
    next_business_hours_start: Optional[datetime] = None
    results: List[ProcessResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add(self, result: ProcessResult) -> None:
        self.processed += 1
        self.results.append(result)
        if result.tracked:
            self.tracked += 1
        if result.violation_occurred:
            self.violations += 1
        if result.alert_sent:
            self.alerts_sent += 1


class SnapshotRegistry:
    """
    Latest snapshot of every ticket that still needs evaluation.

    Lets the evaluation pass catch deadline overruns on tickets that have
    gone quiet upstream.
    """

    def __init__(self):
        self._snapshots: Dict[str, TicketSnapshot] = {}

    def remember(self, snapshot: TicketSnapshot) -> None:
        self._snapshots[snapshot.id] = snapshot

    def forget(self, ticket_id: str) -> None:
        self._snapshots.pop(ticket_id, None)

    def all(self) -> List[TicketSnapshot]:
        return list(self._snapshots.values())

    def __len__(self) -> int:
        return len(self._snapshots)

    def __contains__(self, ticket_id: str) -> bool:
        return ticket_id in self._snapshots


class NotificationDeduper:
    """
    Notification ids processed within the last ttl_seconds.

    The provider redelivers a webhook when it misses the acknowledgement;
    a redelivery seen inside the window is dropped. Once max_entries ids
    are held the oldest is evicted first. A ttl of zero disables dedup.
    """

    def __init__(self, ttl_seconds: int = 600, max_entries: int = 10000, clock: Optional[Clock] = None):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock or utc_now
        self._seen: "OrderedDict[str, datetime]" = OrderedDict()

    def is_processed(self, notification_id: Optional[str]) -> bool:
        if not notification_id or not self.ttl:
            return False
        self._expire(self._clock())
        return notification_id in self._seen

    def mark_processed(self, notification_id: Optional[str]) -> None:
        if not notification_id or not self.ttl:
            return
        self._seen.pop(notification_id, None)
        self._seen[notification_id] = self._clock()
        while len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)

    def _expire(self, now: datetime) -> None:
        # Insertion order is also age order.
        while self._seen:
            oldest_id, seen_at = next(iter(self._seen.items()))
            if now - seen_at <= self.ttl:
                break
            del self._seen[oldest_id]

    def __len__(self) -> int:
        return len(self._seen)


# ========== Application Services ==========

class SLATrackingService:
    """
    Service for SLA deadline and violation tracking.

    Reconciles each observed ticket snapshot against the tracking store,
    and dispatches at most one alert per distinct violation.
    """

    def __init__(
        self,
        store: ISLATrackingRepository,
        policy_provider: IDurationPolicyProvider,
        calendar: BusinessCalendar,
        notifier: Optional[ISLAAlertNotifier] = None,
        clock: Optional[Clock] = None,
        unwarranted_tag: str = "unwarranted sla",
        registry: Optional[SnapshotRegistry] = None,
        critical_threshold_seconds: int = 300,
        alert_channel: Optional[str] = None,
        assignment_store: Optional[IAssignmentTrackingRepository] = None,
        reload_before_read: bool = False
    ):
        self._store = store
        self._policy_provider = policy_provider
        self._calendar = calendar
        self._notifier = notifier
        self._clock = clock or utc_now
        self._unwarranted_tag = unwarranted_tag
        self._registry = registry if registry is not None else SnapshotRegistry()
        self._aggregator = StatsAggregator(critical_threshold_seconds)
        self._alert_channel = alert_channel
        self._assignment_store = assignment_store
        self._reload_before_read = reload_before_read

    @property
    def registry(self) -> SnapshotRegistry:
        return self._registry

    def now(self) -> datetime:
        return self._clock()

    def restore_registry(self) -> int:
        """
        Remember a rebuilt snapshot for every stored record that still
        needs evaluation and has not been observed since startup.

        Returns:
            Number of snapshots restored
        """
        restored = 0
        for record in self._store.all():
            if record.needs_evaluation and record.ticket_id not in self._registry:
                self._registry.remember(record.to_snapshot())
                restored += 1
        if restored:
            logger.info("Evaluation registry restored from tracking store", extra={"tickets": restored})
        return restored

    async def process_ticket(self, snapshot: TicketSnapshot) -> ProcessResult:
        """
        Reconcile one ticket snapshot with its tracking record.

        Args:
            snapshot: Freshly observed ticket

        Returns:
            ProcessResult describing any new violation
        """
        now = self.now()
        sla = snapshot.effective_sla

        if sla is None:
            if await self._store.delete(snapshot.id):
                logger.info("SLA no longer applies, tracking removed", extra={"ticket_id": snapshot.id})
            self._registry.forget(snapshot.id)
            return ProcessResult(ticket_id=snapshot.id)

        policy = self._policy_provider.get_policy()
        assigned_at, source = DeadlineCalculator.resolve_assignment(snapshot)
        duration = policy.resolve_duration(sla.name)

        deadline = None
        if assigned_at is not None:
            deadline = DeadlineCalculator.compute_deadline(assigned_at, duration, self._calendar)
            if source == AssignmentSource.UPDATED_AT:
                logger.warning(
                    "Using updated_at as assignment time, deadline may be late",
                    extra={"ticket_id": snapshot.id}
                )
        else:
            logger.info(
                "No assignment timestamp, skipping deadline evaluation",
                extra={"ticket_id": snapshot.id, "sla_name": sla.name}
            )

        prior = self._store.get(snapshot.id)
        record = self._build_record(snapshot, sla.name, sla.status, policy, duration,
                                    assigned_at, source, deadline, prior, now)

        alert = ViolationDetector.detect(
            status=record.sla_status,
            is_paused=record.is_paused,
            deadline=deadline,
            now=now,
            alert_history=record.alert_history,
        )

        alert_sent = False
        if alert is not None:
            logger.warning(
                "SLA violation detected",
                extra={
                    "ticket_id": snapshot.id,
                    "kind": alert.kind,
                    "sla_name": record.sla_name,
                    "deadline": deadline.isoformat() if deadline else None,
                }
            )
            alert_sent = await self._dispatch(record, snapshot, alert.kind, deadline)
            if alert_sent:
                record.append_alert(alert)

        await self._store.save(record)

        if record.needs_evaluation:
            self._registry.remember(snapshot)
        else:
            self._registry.forget(snapshot.id)

        return ProcessResult(
            ticket_id=snapshot.id,
            violation_occurred=alert is not None,
            kind=alert.kind if alert else None,
            deadline=deadline,
            alert_sent=alert_sent,
            tracked=True,
        )

    def _build_record(
        self,
        snapshot: TicketSnapshot,
        sla_name: str,
        sla_status: str,
        policy: DurationPolicy,
        duration: int,
        assigned_at: Optional[datetime],
        source: Optional[str],
        deadline: Optional[datetime],
        prior: Optional[SLARecord],
        now: datetime
    ) -> SLARecord:
        hit_at = None
        if sla_status == SLAStatus.HIT:
            hit_at = prior.hit_at if prior and prior.sla_status == SLAStatus.HIT and prior.hit_at else now

        assignee = snapshot.assignee
        return SLARecord(
            ticket_id=snapshot.id,
            sla_status=sla_status,
            sla_name=sla_name,
            sla_duration=duration,
            sla_bucket=policy.classify(sla_name),
            assigned_at=assigned_at,
            assigned_at_source=source,
            deadline=deadline,
            is_paused=snapshot.is_paused(now),
            hit_at=hit_at,
            alert_history=list(prior.alert_history) if prior else [],
            tags=list(snapshot.tags),
            has_unwarranted_tag=snapshot.has_tag(self._unwarranted_tag),
            assignee_name=assignee.name if assignee else None,
            assignee_email=assignee.email if assignee else None,
            subject=snapshot.subject,
            ticket_state=snapshot.state_label or snapshot.state_category,
            ticket_created_at=snapshot.created_at,
            updated_at=now,
        )

    async def _dispatch(
        self,
        record: SLARecord,
        snapshot: TicketSnapshot,
        kind: str,
        deadline: Optional[datetime]
    ) -> bool:
        """Send the alert; only a confirmed delivery counts."""
        if self._notifier is None:
            logger.info(
                "No alert channel configured, violation recorded without alert",
                extra={"ticket_id": record.ticket_id, "kind": kind}
            )
            return False

        try:
            sent = await self._notifier.send_sla_alert(record, snapshot, kind, deadline)
        except ExternalServiceException as e:
            logger.error(
                "SLA alert delivery failed",
                extra={"ticket_id": record.ticket_id, "kind": kind, "error": e.message}
            )
            return False

        if sent:
            logger.info("SLA alert sent", extra={"ticket_id": record.ticket_id, "kind": kind})
        else:
            logger.warning("SLA alert not delivered", extra={"ticket_id": record.ticket_id, "kind": kind})
        return sent

    async def _refresh(self) -> None:
        if self._reload_before_read:
            await self._store.reload()
            if self._assignment_store is not None:
                await self._assignment_store.reload()

    async def get_record(self, ticket_id: str) -> SLARecord:
        """
        Get the tracking record of one ticket.

        Raises:
            ResourceNotFoundException: If the ticket is not tracked
        """
        await self._refresh()
        record = self._store.get(ticket_id)
        if record is None:
            raise ResourceNotFoundException("SLA record", ticket_id)
        return record

    async def get_all_tracked_tickets(self, query: Optional[TrackedTicketsQuery] = None) -> List[SLARecord]:
        """
        Tracked records, filtered and sorted.

        Args:
            query: Filters and sort order (defaults: everything, by deadline)

        Returns:
            List of SLA records
        """
        await self._refresh()
        query = query or TrackedTicketsQuery()
        records = filter_records(self._store.all(), query)
        return sort_records(records, query.sort, self.now())

    async def get_stats(self, query: Optional[TrackedTicketsQuery] = None) -> StatsSummary:
        """
        Compliance summary over (optionally filtered) records.

        Assignment records are filtered by the same date range and used as
        per-agent denominators.
        """
        await self._refresh()
        query = query or TrackedTicketsQuery()
        records = filter_records(self._store.all(), query)

        assignments = None
        if self._assignment_store is not None:
            assignments = [
                a for a in self._assignment_store.all()
                if in_date_range(
                    a.ticket_created_at if query.date_type == DateField.CREATED else a.assigned_at,
                    query
                )
            ]

        return self._aggregator.summarize(
            records,
            now=self.now(),
            assignments=assignments,
            alert_channel=self._alert_channel if self._notifier else None,
        )


def _day_start(day) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def in_date_range(value: Optional[datetime], query: TrackedTicketsQuery) -> bool:
    """Date range check; the end date includes its whole day."""
    if query.date_from is None and query.date_to is None:
        return True
    if value is None:
        return False
    if query.date_from and value < _day_start(query.date_from):
        return False
    if query.date_to and value > _day_start(query.date_to) + timedelta(days=1):
        return False
    return True


def filter_records(records: Iterable[SLARecord], query: TrackedTicketsQuery) -> List[SLARecord]:
    result = []
    for record in records:
        if query.status and record.sla_status != query.status:
            continue
        if query.sla_name and query.sla_name.lower() not in (record.sla_name or "").lower():
            continue
        if query.unwarranted is not None and record.has_unwarranted_tag != query.unwarranted:
            continue
        if query.assignee and record.assignee_name != query.assignee:
            continue
        if query.ticket_state and (record.ticket_state or "").lower() != query.ticket_state.lower():
            continue
        date_value = record.ticket_created_at if query.date_type == DateField.CREATED else record.assigned_at
        if not in_date_range(date_value, query):
            continue
        result.append(record)
    return result


def sort_records(records: List[SLARecord], sort: str, now: datetime) -> List[SLARecord]:
    """Sort records; records missing the sort key go last."""
    if sort == TicketSort.REMAINING:
        return sorted(records, key=lambda r: (
            r.remaining_seconds(now) is None,
            r.remaining_seconds(now) or 0,
        ))
    if sort == TicketSort.ASSIGNEE:
        return sorted(records, key=lambda r: (r.assignee_name is None, (r.assignee_name or "").lower()))
    if sort == TicketSort.SLA_NAME:
        return sorted(records, key=lambda r: (r.sla_name or "").lower())
    return sorted(records, key=lambda r: (
        r.deadline is None,
        r.deadline or now,
    ))


class AssignmentTrackingService:
    """
    Records every observed assignment, independent of SLA presence.

    Owns the only write path to the assignment table.
    """

    def __init__(self, store: IAssignmentTrackingRepository, clock: Optional[Clock] = None):
        self._store = store
        self._clock = clock or utc_now

    async def track(self, snapshot: TicketSnapshot) -> bool:
        """
        Track a ticket's assignment.

        Returns:
            True when a record was written (new or reassigned ticket)
        """
        assigned_at, _ = DeadlineCalculator.resolve_assignment(snapshot)
        if assigned_at is None:
            return False

        existing = self._store.get(snapshot.id)
        if existing is not None and existing.assigned_at == assigned_at:
            return False

        assignee = snapshot.assignee
        record = AssignmentTrackingRecord(
            ticket_id=snapshot.id,
            assignee_name=assignee.name if assignee else None,
            assignee_email=assignee.email if assignee else None,
            assigned_at=assigned_at,
            ticket_created_at=snapshot.created_at,
            tracked_at=self._clock(),
        )
        await self._store.save(record)
        logger.info(
            "Assignment tracked",
            extra={
                "ticket_id": snapshot.id,
                "assignee": record.assignee_name,
                "reassigned": existing is not None,
            }
        )
        return True


class SLAEvaluationService:
    """
    Service for running SLA evaluation over ticket snapshots.

    Used both for pushed snapshots (ingestion) and for the periodic pass
    that re-evaluates every ticket still being tracked.
    """

    def __init__(
        self,
        tracking_service: SLATrackingService,
        resolver: BusinessHoursResolver,
        assignment_service: Optional[AssignmentTrackingService] = None
    ):
        self._tracking = tracking_service
        self._resolver = resolver
        self._assignments = assignment_service

    async def ingest(self, snapshots: Iterable[TicketSnapshot]) -> BatchSummary:
        """
        Process a batch of snapshots, one at a time.

        A failing snapshot is logged and counted; it never aborts the batch.
        """
        summary = BatchSummary()
        for snapshot in snapshots:
            await self._process_one(snapshot, summary)
        return summary

    async def run_pass(self) -> BatchSummary:
        """
        Re-evaluate every remembered snapshot, plus stored records not
        observed since startup.

        Skipped entirely outside business hours.

        Returns:
            Summary of the pass
        """
        log = get_context_logger(__name__, correlation_id=f"pass-{uuid4().hex[:12]}")

        if not self._resolver.is_business_hours():
            next_start = self._resolver.next_business_hours_start()
            log.info(
                "Outside business hours, skipping SLA evaluation",
                extra={
                    "calendar": self._resolver.describe(),
                    "next_business_hours_start": next_start.isoformat(),
                }
            )
            return BatchSummary(skipped=True, next_business_hours_start=next_start)

        self._tracking.restore_registry()
        snapshots = self._tracking.registry.all()
        summary = BatchSummary()
        with log_latency(log, "sla_evaluation_pass", tickets=len(snapshots)):
            for snapshot in snapshots:
                await self._process_one(snapshot, summary, track_assignment=False)

        if summary.violations or summary.failed:
            log.info(
                "SLA evaluation pass finished",
                extra={
                    "processed": summary.processed,
                    "violations": summary.violations,
                    "alerts_sent": summary.alerts_sent,
                    "failed": summary.failed,
                }
            )
        return summary

    async def _process_one(
        self,
        snapshot: TicketSnapshot,
        summary: BatchSummary,
        track_assignment: bool = True
    ) -> None:
        try:
            if track_assignment and self._assignments is not None:
                await self._assignments.track(snapshot)
            summary.add(await self._tracking.process_ticket(snapshot))
        except Exception as e:
            summary.failed += 1
            summary.errors.append(f"Ticket {snapshot.id}: {e}")
            logger.exception("Failed to process ticket", extra={"ticket_id": snapshot.id})
