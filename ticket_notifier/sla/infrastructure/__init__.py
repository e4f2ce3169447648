"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Tracking tables and stores (JSON file or database)
- External: External service integrations (Slack, policy watcher, scheduler)
"""

from ticket_notifier.sla.infrastructure.models import SLATrackingModel, AssignmentTrackingModel
from ticket_notifier.sla.infrastructure.repositories import (
    KeyValueTable,
    JSONFileTable,
    SQLAlchemyKeyValueTable,
    SLATrackingStore,
    AssignmentTrackingStore,
)
from ticket_notifier.sla.infrastructure.external import (
    DurationPolicyManager,
    CircuitBreaker,
    SlackClient,
    SlackSLANotifier,
    SLAScheduler,
)

__all__ = [
    "SLATrackingModel",
    "AssignmentTrackingModel",
    "KeyValueTable",
    "JSONFileTable",
    "SQLAlchemyKeyValueTable",
    "SLATrackingStore",
    "AssignmentTrackingStore",
    "DurationPolicyManager",
    "CircuitBreaker",
    "SlackClient",
    "SlackSLANotifier",
    "SLAScheduler",
]
