"""
SLA Domain Layer
================

Domain layer for SLA deadline and violation tracking.

Contains:
- Entities: TicketSnapshot, SLARecord, AlertEntry, AssignmentTrackingRecord
- Value Objects: BusinessCalendar, DurationPolicy, CivilDateTime
- Domain Services: BusinessHoursResolver, DeadlineCalculator,
  ViolationDetector, StatsAggregator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from ticket_notifier.sla.domain.entities import (
    SLAApplied,
    Assignee,
    TicketSnapshot,
    AlertEntry,
    SLARecord,
    AssignmentTrackingRecord,
)
from ticket_notifier.sla.domain.value_objects import (
    CivilDateTime,
    BusinessCalendar,
    DurationPolicy,
    DEFAULT_SLA_DURATIONS,
    DEFAULT_SLA_KEYWORDS,
)
from ticket_notifier.sla.domain.business_hours import (
    CivilTimeRenderer,
    ZoneInfoRenderer,
    BusinessHoursResolver,
    Clock,
    utc_now,
)
from ticket_notifier.sla.domain.services import DeadlineCalculator, ViolationDetector
from ticket_notifier.sla.domain.stats import StatsAggregator, StatsSummary

__all__ = [
    # Entities
    "SLAApplied",
    "Assignee",
    "TicketSnapshot",
    "AlertEntry",
    "SLARecord",
    "AssignmentTrackingRecord",
    # Value Objects
    "CivilDateTime",
    "BusinessCalendar",
    "DurationPolicy",
    "DEFAULT_SLA_DURATIONS",
    "DEFAULT_SLA_KEYWORDS",
    # Services
    "CivilTimeRenderer",
    "ZoneInfoRenderer",
    "BusinessHoursResolver",
    "Clock",
    "utc_now",
    "DeadlineCalculator",
    "ViolationDetector",
    "StatsAggregator",
    "StatsSummary",
]
