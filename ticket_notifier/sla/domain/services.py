"""
SLA Domain Services
===================

Stateless business logic for deadlines and violations.

Both classes are pure: they read their inputs, never touch storage and
never look at the wall clock themselves.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple

from ticket_notifier.config import AlertKind, AssignmentSource, SLAStatus
from ticket_notifier.sla.domain.entities import AlertEntry, TicketSnapshot
from ticket_notifier.sla.domain.value_objects import BusinessCalendar

SECONDS_PER_DAY = 24 * 60 * 60


class DeadlineCalculator:
    """
    Pure functions for SLA deadline calculations.
    """

    @staticmethod
    def compute_deadline(
        assigned_at: datetime,
        duration_seconds: int,
        calendar: Optional[BusinessCalendar] = None
    ) -> datetime:
        """
        Calculate the SLA deadline for an assignment.

        The deadline is plain wall-clock arithmetic. The calendar is
        accepted so callers do not have to care, but business hours never
        stretch a deadline.

        Args:
            assigned_at: When the ticket was assigned
            duration_seconds: Commitment duration
            calendar: Business calendar (not used for the deadline)

        Returns:
            The SLA deadline
        """
        return assigned_at + timedelta(seconds=duration_seconds)

    @staticmethod
    def resolve_assignment(snapshot: TicketSnapshot) -> Tuple[Optional[datetime], Optional[str]]:
        """
        Resolve when a ticket was assigned.

        Priority: first assignment statistic, last assignment statistic,
        then the ticket's updated_at (only when someone is assigned).

        Returns:
            Tuple of (assigned_at, AssignmentSource), both None when unknown
        """
        if snapshot.first_assignment_at:
            return snapshot.first_assignment_at, AssignmentSource.FIRST_ASSIGNMENT
        if snapshot.last_assignment_at:
            return snapshot.last_assignment_at, AssignmentSource.LAST_ASSIGNMENT
        if snapshot.updated_at and snapshot.has_assignee:
            return snapshot.updated_at, AssignmentSource.UPDATED_AT
        return None, None

    @staticmethod
    def business_seconds_elapsed(
        start: datetime,
        end: datetime,
        calendar: BusinessCalendar
    ) -> int:
        """
        Rough business time between two instants.

        Counts one business window per whole elapsed day; partial days
        count as nothing. With the calendar disabled this is simply the
        elapsed time. Reporting only, never used to move a deadline.
        """
        elapsed = int((end - start).total_seconds())
        if not calendar.enabled:
            return max(0, elapsed)

        window = calendar.end_seconds - calendar.start_seconds
        return max(0, (elapsed // SECONDS_PER_DAY) * window)


class ViolationDetector:
    """
    Decides whether a ticket has a new, not yet alerted violation.
    """

    @staticmethod
    def detect(
        status: str,
        is_paused: bool,
        deadline: Optional[datetime],
        now: datetime,
        alert_history: Iterable[AlertEntry] = ()
    ) -> Optional[AlertEntry]:
        """
        Evaluate both violation rules against prior alerts.

        Rule A: upstream reports the SLA as missed.
        Rule B: still active, not paused, and past its deadline.

        Args:
            status: Observed SLA status
            is_paused: Whether the ticket is snoozed or waiting on the customer
            deadline: Computed deadline, None when the assignment is unknown
            now: Evaluation instant
            alert_history: Alerts already delivered for this ticket

        Returns:
            The alert to deliver, or None when nothing new happened
        """
        seen = {entry.dedup_key for entry in alert_history}

        if status == SLAStatus.MISSED:
            candidate = AlertEntry(
                kind=AlertKind.STATUS_MISSED,
                emitted_at=now,
                deadline_at_emission=deadline,
                status_at_emission=SLAStatus.MISSED,
            )
            return None if candidate.dedup_key in seen else candidate

        if status == SLAStatus.ACTIVE and not is_paused and deadline is not None and now > deadline:
            candidate = AlertEntry(
                kind=AlertKind.DEADLINE_VIOLATION,
                emitted_at=now,
                deadline_at_emission=deadline,
                status_at_emission=SLAStatus.ACTIVE,
            )
            return None if candidate.dedup_key in seen else candidate

        return None
