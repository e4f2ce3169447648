"""
SLA Services
============

Wiring of the SLA tracking components.

Builds stores, policy, resolver, notifier and application services from
settings, for the API process and for scripts alike.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from pydantic import ValidationError

from ticket_notifier.config import Settings, StorageBackend
from ticket_notifier.core import ConfigurationException
from ticket_notifier.infrastructure.database import close_database, create_tables, init_database
from ticket_notifier.sla.application import (
    AssignmentTrackingService,
    NotificationDeduper,
    SLAEvaluationService,
    SLATrackingService,
    TicketSnapshotDTO,
)
from ticket_notifier.sla.domain import (
    BusinessCalendar,
    BusinessHoursResolver,
    Clock,
    DurationPolicy,
    utc_now,
)
from ticket_notifier.sla.infrastructure import (
    AssignmentTrackingModel,
    AssignmentTrackingStore,
    DurationPolicyManager,
    JSONFileTable,
    KeyValueTable,
    SlackClient,
    SlackSLANotifier,
    SLATrackingModel,
    SLATrackingStore,
    SQLAlchemyKeyValueTable,
)
from ticket_notifier.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SLAComponents:
    """Everything the SLA module needs at runtime."""
    settings: Settings
    calendar: BusinessCalendar
    resolver: BusinessHoursResolver
    policy_manager: DurationPolicyManager
    sla_store: SLATrackingStore
    assignment_store: AssignmentTrackingStore
    tracking_service: SLATrackingService
    assignment_service: AssignmentTrackingService
    evaluation_service: SLAEvaluationService
    notifier: Optional[SlackSLANotifier] = None
    deduper: NotificationDeduper = field(default_factory=NotificationDeduper)

    async def reload_stores(self) -> Tuple[int, int]:
        """Reload both stores from durable storage."""
        return await self.sla_store.reload(), await self.assignment_store.reload()

    async def close(self) -> None:
        """Release external resources."""
        self.policy_manager.stop_watching()
        if self.notifier is not None:
            await self.notifier.close()
        if self.settings.storage_backend == StorageBackend.DATABASE:
            await close_database()


async def build_tables(settings: Settings) -> Tuple[KeyValueTable, KeyValueTable]:
    """Create the SLA and assignment tables for the configured backend."""
    if settings.storage_backend == StorageBackend.DATABASE:
        init_database(settings.database_url)
        await create_tables()
        return SQLAlchemyKeyValueTable(SLATrackingModel), SQLAlchemyKeyValueTable(AssignmentTrackingModel)

    return JSONFileTable(settings.sla_state_file), JSONFileTable(settings.assignment_state_file)


def build_notifier(settings: Settings) -> Optional[SlackSLANotifier]:
    """Slack notifier, or None when alerting is not configured."""
    if not settings.alerting_enabled:
        logger.info("SLA alerting disabled: no Slack token or alert channel configured")
        return None

    client = SlackClient(
        token=settings.slack_bot_token,
        base_url=settings.slack_api_base_url,
        timeout=settings.slack_timeout_seconds,
    )
    return SlackSLANotifier(client, settings.sla_alert_channel, settings.ticket_link_base_url)


async def build_components(
    settings: Settings,
    enable_alerts: bool = True,
    watch_policy: bool = True,
    reload_before_read: bool = False,
    clock: Optional[Clock] = None,
    notifier: Optional[SlackSLANotifier] = None
) -> SLAComponents:
    """
    Build and load all SLA components.

    Args:
        settings: Application settings
        enable_alerts: Wire the Slack notifier when configured
        watch_policy: Hot-reload the YAML policy file
        reload_before_read: Reload stores before every read (dashboard role)
        clock: Current-instant source
        notifier: Explicit notifier, overrides the one built from settings

    Returns:
        SLAComponents with stores loaded
    """
    clock = clock or utc_now
    calendar = BusinessCalendar.from_settings(settings)
    resolver = BusinessHoursResolver(calendar, clock=clock)
    resolver.check_timezone()

    policy_manager = DurationPolicyManager(DurationPolicy.from_overrides(settings.sla_durations))
    policy_manager.load(settings.sla_config_path)
    if watch_policy:
        policy_manager.start_watching()

    sla_table, assignment_table = await build_tables(settings)
    sla_store = SLATrackingStore(sla_table)
    assignment_store = AssignmentTrackingStore(assignment_table)
    sla_count = await sla_store.load()
    assignment_count = await assignment_store.load()
    logger.info(
        "Tracking stores loaded",
        extra={
            "backend": settings.storage_backend,
            "sla_records": sla_count,
            "assignment_records": assignment_count,
        }
    )

    if notifier is None and enable_alerts:
        notifier = build_notifier(settings)

    tracking_service = SLATrackingService(
        store=sla_store,
        policy_provider=policy_manager,
        calendar=calendar,
        notifier=notifier,
        clock=clock,
        unwarranted_tag=settings.unwarranted_sla_tag,
        critical_threshold_seconds=settings.critical_threshold_seconds,
        alert_channel=settings.sla_alert_channel,
        assignment_store=assignment_store,
        reload_before_read=reload_before_read,
    )
    assignment_service = AssignmentTrackingService(assignment_store, clock=clock)
    evaluation_service = SLAEvaluationService(tracking_service, resolver, assignment_service)
    deduper = NotificationDeduper(
        ttl_seconds=settings.dedupe_ttl_seconds,
        max_entries=settings.dedupe_max_entries,
        clock=clock,
    )

    return SLAComponents(
        settings=settings,
        calendar=calendar,
        resolver=resolver,
        policy_manager=policy_manager,
        sla_store=sla_store,
        assignment_store=assignment_store,
        tracking_service=tracking_service,
        assignment_service=assignment_service,
        evaluation_service=evaluation_service,
        notifier=notifier,
        deduper=deduper,
    )


@dataclass
class BackfillSummary:
    """Outcome of a backfill run."""
    received: int = 0
    with_sla: int = 0
    tracked: int = 0
    invalid: int = 0
    failed: int = 0
    dry_run: bool = False


async def backfill(
    components: SLAComponents,
    payloads: Iterable[Dict[str, Any]],
    dry_run: bool = False
) -> BackfillSummary:
    """
    Seed the tracking stores from historical ticket snapshots.

    Alerts are never sent; the components must be built without a notifier.

    Args:
        components: Components built with enable_alerts=False
        payloads: Raw ticket snapshots
        dry_run: Only count what would be tracked
    """
    if components.notifier is not None:
        raise ConfigurationException("Backfill must run without an alert notifier")

    summary = BackfillSummary(dry_run=dry_run)
    snapshots = []
    for payload in payloads:
        summary.received += 1
        try:
            snapshot = TicketSnapshotDTO.model_validate(payload).to_domain()
        except ValidationError as e:
            summary.invalid += 1
            logger.warning("Skipping invalid snapshot", extra={"error_count": e.error_count()})
            continue
        if snapshot.effective_sla is not None:
            summary.with_sla += 1
        snapshots.append(snapshot)

    if dry_run:
        summary.tracked = summary.with_sla
        return summary

    batch = await components.evaluation_service.ingest(snapshots)
    summary.tracked = batch.tracked
    summary.failed = batch.failed
    logger.info(
        "Backfill finished",
        extra={"received": summary.received, "tracked": summary.tracked, "failed": summary.failed}
    )
    return summary
