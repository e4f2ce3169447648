"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA tracking endpoints.

Controllers are thin - they delegate to application services.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import ValidationError

from ticket_notifier.config import ServiceRole
from ticket_notifier.sla.application import (
    BusinessHoursResponse,
    IngestResponse,
    ProcessResultResponse,
    ReloadResponse,
    SLAStatsResponse,
    SLATrackingService,
    TicketIngestRequest,
    TicketSnapshotDTO,
    TrackedTicketResponse,
    TrackedTicketsQuery,
    TrackedTicketsResponse,
)
from ticket_notifier.sla.services import SLAComponents
from ticket_notifier.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Tracking"])


# ========== Example payloads for Swagger ==========

TICKET_SNAPSHOT_EXAMPLE = {
    "id": "215470211",
    "updated_at": "2024-01-15T14:05:00Z",
    "created_at": "2024-01-15T13:50:00Z",
    "sla_applied": {"sla_name": "FRT Enterprise", "sla_status": "active"},
    "statistics": {"first_assignment_at": "2024-01-15T14:00:00Z"},
    "ticket_state": {"category": "in_progress", "internal_label": "In progress"},
    "tags": {"tags": [{"name": "vip"}]},
    "admin_assignee": {"id": "42", "name": "Jane Doe", "email": "jane@example.com"},
    "ticket_attributes": {"_default_title_": "Sync not working"}
}

INGEST_RESPONSE_EXAMPLE = {
    "processed": 1,
    "tracked": 1,
    "violations": 0,
    "alerts_sent": 0,
    "failed": 0,
    "results": [
        {
            "ticket_id": "215470211",
            "violation_occurred": False,
            "kind": None,
            "deadline": "2024-01-15T14:05:00Z",
            "alert_sent": False,
            "tracked": True
        }
    ],
    "errors": []
}


# ========== Dependencies ==========

def get_components(request: Request) -> SLAComponents:
    """SLA components built at startup."""
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA tracking is not initialized"
        )
    return components


def get_tracking_service(components: SLAComponents = Depends(get_components)) -> SLATrackingService:
    return components.tracking_service


def get_ticket_link_base_url(components: SLAComponents = Depends(get_components)) -> str:
    return components.settings.ticket_link_base_url


def get_tickets_query(
    status_filter: Optional[str] = Query(None, alias="status", description="active, missed or hit"),
    sla_name: Optional[str] = Query(None, description="Case-insensitive substring of the SLA name"),
    unwarranted: Optional[bool] = Query(None, description="Filter on the unwarranted SLA tag"),
    assignee: Optional[str] = Query(None, description="Exact assignee name"),
    ticket_state: Optional[str] = Query(None, description="Ticket state, case-insensitive"),
    date_from: Optional[date] = Query(None, description="Start date (YYYY-MM-DD)"),
    date_to: Optional[date] = Query(None, description="End date (YYYY-MM-DD), inclusive"),
    date_type: str = Query("assigned", description="Date filtered on: assigned or created"),
    sort: str = Query("deadline", description="deadline, remaining, assignee or sla_name")
) -> TrackedTicketsQuery:
    """Build the listing query, rejecting invalid combinations with 422."""
    try:
        return TrackedTicketsQuery(
            status=status_filter,
            sla_name=sla_name,
            unwarranted=unwarranted,
            assignee=assignee,
            ticket_state=ticket_state,
            date_from=date_from,
            date_to=date_to,
            date_type=date_type,
            sort=sort,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()]
        )


# ========== Route Handlers ==========

@router.post(
    "/tickets",
    response_model=IngestResponse,
    summary="Ingest ticket snapshots",
    description="""
    Push a batch of ticket snapshots for SLA tracking.

    Each snapshot is reconciled with its tracking record: the deadline is
    recomputed, violations are detected and at most one alert is sent per
    distinct violation. Invalid snapshots are counted as failed and never
    abort the batch.

    A notification id (`X-Notification-Id` header or body `id`) already
    processed within the dedup window is acknowledged with
    `duplicate: true` and not processed again.

    Refused with 409 when this process runs in the `dashboard` role.
    """,
    responses={
        200: {
            "description": "Snapshots processed",
            "content": {"application/json": {"example": INGEST_RESPONSE_EXAMPLE}}
        },
        409: {"description": "Process does not own the tracking store"}
    },
    openapi_extra={
        "requestBody": {
            "content": {"application/json": {"example": {"tickets": [TICKET_SNAPSHOT_EXAMPLE]}}}
        }
    }
)
async def ingest_tickets(
    request: TicketIngestRequest,
    components: SLAComponents = Depends(get_components),
    notification_id: Optional[str] = Header(None, alias="X-Notification-Id")
):
    if components.settings.service_role == ServiceRole.DASHBOARD:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Ingestion is handled by the 'all' role process"
        )

    notification_id = notification_id or request.id
    if components.deduper.is_processed(notification_id):
        logger.info("Duplicate notification dropped", extra={"notification_id": notification_id})
        return IngestResponse(processed=0, duplicate=True)

    snapshots = []
    errors = []
    for index, payload in enumerate(request.tickets):
        try:
            snapshots.append(TicketSnapshotDTO.model_validate(payload).to_domain())
        except ValidationError as e:
            ticket_id = payload.get("id") or payload.get("ticket_id") or f"#{index}"
            errors.append(f"Ticket {ticket_id}: invalid snapshot ({e.error_count()} errors)")

    summary = await components.evaluation_service.ingest(snapshots)
    components.deduper.mark_processed(notification_id)

    logger.info(
        "Ticket snapshots ingested",
        extra={
            "received": len(request.tickets),
            "processed": summary.processed,
            "violations": summary.violations,
            "failed": summary.failed + len(errors),
        }
    )

    return IngestResponse(
        processed=summary.processed,
        tracked=summary.tracked,
        violations=summary.violations,
        alerts_sent=summary.alerts_sent,
        failed=summary.failed + len(errors),
        results=[ProcessResultResponse(**r.to_dict()) for r in summary.results],
        errors=errors + summary.errors,
    )


@router.get(
    "/tickets",
    response_model=TrackedTicketsResponse,
    summary="List tracked tickets",
    description="""
    All tickets with a tracked SLA, filtered and sorted.

    **Filters**: `status`, `sla_name` (substring), `unwarranted`, `assignee`,
    `ticket_state`, `date_from`/`date_to` over `date_type` (`assigned` or `created`).

    **Sort**: `deadline` (default), `remaining`, `assignee`, `sla_name`.
    """
)
async def list_tracked_tickets(
    query: TrackedTicketsQuery = Depends(get_tickets_query),
    service: SLATrackingService = Depends(get_tracking_service),
    link_base_url: str = Depends(get_ticket_link_base_url)
):
    records = await service.get_all_tracked_tickets(query)
    now = service.now()
    return TrackedTicketsResponse(
        count=len(records),
        tickets=[TrackedTicketResponse.from_record(r, now, link_base_url) for r in records]
    )


@router.get(
    "/tickets/{ticket_id}",
    response_model=TrackedTicketResponse,
    summary="Get a tracked ticket",
    responses={404: {"description": "Ticket is not tracked"}}
)
async def get_tracked_ticket(
    ticket_id: str,
    service: SLATrackingService = Depends(get_tracking_service),
    link_base_url: str = Depends(get_ticket_link_base_url)
):
    """Tracking record of one ticket, including its alert history."""
    record = await service.get_record(ticket_id)
    return TrackedTicketResponse.from_record(record, service.now(), link_base_url)


@router.get(
    "/stats",
    response_model=SLAStatsResponse,
    summary="SLA compliance statistics",
    description="""
    Counts, hit rate and breakdowns by agent and SLA type.

    Accepts the same filters as `GET /sla/tickets`. Tickets tagged as
    unwarranted are excluded from hit rates.
    """
)
async def get_stats(
    query: TrackedTicketsQuery = Depends(get_tickets_query),
    service: SLATrackingService = Depends(get_tracking_service)
):
    summary = await service.get_stats(query)
    return SLAStatsResponse.from_summary(summary)


@router.get(
    "/business-hours",
    response_model=BusinessHoursResponse,
    summary="Business hours state"
)
async def get_business_hours(components: SLAComponents = Depends(get_components)):
    """Configured calendar, whether it is business hours now, and when they next start."""
    resolver = components.resolver
    now = resolver.now()
    return BusinessHoursResponse(
        calendar=resolver.describe(),
        now=now,
        is_business_hours=resolver.is_business_hours(now),
        next_business_hours_start=resolver.next_business_hours_start(now),
    )


@router.post(
    "/reload",
    response_model=ReloadResponse,
    summary="Reload tracking stores",
    description="Re-read both tracking tables from durable storage."
)
async def reload_stores(components: SLAComponents = Depends(get_components)):
    sla_count, assignment_count = await components.reload_stores()
    logger.info(
        "Tracking stores reloaded",
        extra={"sla_records": sla_count, "assignment_records": assignment_count}
    )
    return ReloadResponse(sla_records=sla_count, assignment_records=assignment_count)


# Export router
sla_router = router
