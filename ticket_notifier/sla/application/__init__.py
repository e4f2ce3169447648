"""
SLA Application Layer
======================

Application layer for SLA tracking.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from ticket_notifier.sla.application.dto import (
    TicketSnapshotDTO,
    TicketIngestRequest,
    TrackedTicketsQuery,
    ProcessResultResponse,
    IngestResponse,
    TrackedTicketResponse,
    TrackedTicketsResponse,
    SLAStatsResponse,
    BusinessHoursResponse,
    ReloadResponse,
    extract_tags,
)
from ticket_notifier.sla.application.services import (
    SLATrackingService,
    AssignmentTrackingService,
    SLAEvaluationService,
    SnapshotRegistry,
    NotificationDeduper,
    ProcessResult,
    BatchSummary,
    StaticDurationPolicyProvider,
    ISLATrackingRepository,
    IAssignmentTrackingRepository,
    IDurationPolicyProvider,
    ISLAAlertNotifier,
)

__all__ = [
    # DTOs
    "TicketSnapshotDTO",
    "TicketIngestRequest",
    "TrackedTicketsQuery",
    "ProcessResultResponse",
    "IngestResponse",
    "TrackedTicketResponse",
    "TrackedTicketsResponse",
    "SLAStatsResponse",
    "BusinessHoursResponse",
    "ReloadResponse",
    "extract_tags",
    # Services
    "SLATrackingService",
    "AssignmentTrackingService",
    "SLAEvaluationService",
    "SnapshotRegistry",
    "NotificationDeduper",
    "ProcessResult",
    "BatchSummary",
    "StaticDurationPolicyProvider",
    # Interfaces
    "ISLATrackingRepository",
    "IAssignmentTrackingRepository",
    "IDurationPolicyProvider",
    "ISLAAlertNotifier",
]
