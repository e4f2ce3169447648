"""
Ticket Notifier - Main Application
===================================

SLA tracking and alerting for support tickets.

Modules:
- SLA Tracking: Deadlines, violation alerts and compliance statistics

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and business hours
- Infrastructure: Tracking tables, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from ticket_notifier.config import ServiceRole, Settings, get_settings
from ticket_notifier.core import ApplicationException

# SLA Module
from ticket_notifier.sla.infrastructure import SLAScheduler
from ticket_notifier.sla.interfaces import sla_router
from ticket_notifier.sla.services import build_components

# Shared
from ticket_notifier.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from ticket_notifier.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_scheduler(app: FastAPI) -> SLAScheduler:
    """
    Background jobs for the configured role.

    - all: periodic SLA evaluation pass
    - dashboard: periodic reload of the tracking stores
    """
    app_settings: Settings = app.state.settings
    components = app.state.components
    scheduler = SLAScheduler()

    if app_settings.service_role == ServiceRole.ALL:
        async def sla_evaluation_job():
            """Background SLA evaluation job."""
            await components.evaluation_service.run_pass()

        scheduler.add_job(
            sla_evaluation_job,
            interval_seconds=app_settings.check_interval_seconds,
            job_id="sla_evaluation",
            name="SLA Evaluation",
        )
    else:
        async def store_reload_job():
            """Pick up records written by the 'all' role process."""
            await components.reload_stores()

        scheduler.add_job(
            store_reload_job,
            interval_seconds=app_settings.state_reload_interval_seconds,
            job_id="store_reload",
            name="Tracking Store Reload",
        )

    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Build SLA components (policy, stores, notifier)
    3. Start the scheduler for the configured role

    SHUTDOWN:
    1. Stop the scheduler
    2. Stop the policy watcher, close Slack and database connections
    """
    app_settings: Settings = app.state.settings

    # === STARTUP ===
    setup_logging(app_settings.log_level, app_settings.environment, app_settings.app_name)
    logger.info("Starting Ticket Notifier", extra={
        "version": app_settings.app_version,
        "environment": app_settings.environment,
        "service_role": app_settings.service_role,
        "storage_backend": app_settings.storage_backend,
    })

    is_dashboard = app_settings.service_role == ServiceRole.DASHBOARD
    components = await build_components(
        app_settings,
        enable_alerts=not is_dashboard,
        watch_policy=not is_dashboard,
        reload_before_read=is_dashboard,
    )
    app.state.components = components

    logger.info("Business hours configured", extra={"calendar": components.resolver.describe()})

    scheduler = create_scheduler(app)
    await scheduler.start()
    app.state.scheduler = scheduler

    logger.info("Ticket Notifier started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Ticket Notifier")
    await scheduler.stop()
    await components.close()
    logger.info("Ticket Notifier shutdown complete")


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to environment settings)
    """
    app_settings = app_settings or get_settings()

    app = FastAPI(
        title="Ticket Notifier API",
        description="""
    ## SLA Tracking and Alerting for Support Tickets

    Tracks the SLA applied to each ticket, computes its deadline from the
    assignment time and alerts Slack once per distinct violation.

    **Endpoints:**
    - `POST /sla/tickets` - Ingest ticket snapshots
    - `GET /sla/tickets` - List tracked tickets (filters and sort)
    - `GET /sla/tickets/{id}` - Tracking record of one ticket
    - `GET /sla/stats` - Compliance statistics
    - `GET /sla/business-hours` - Business hours gate state
    - `POST /sla/reload` - Reload tracking stores
    """,
        version=app_settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = app_settings
    app.state.components = None

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(sla_router)

    # === Health Check Endpoint ===

    @app.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "service_role": "all",
                        "checks": {
                            "tracking_store": "loaded (12 records)",
                            "sla_scheduler": "running",
                            "alerting": "enabled",
                            "business_hours": "open"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Returns service health status including:
        - Tracking store size
        - Scheduler state
        - Whether alerts are wired
        - Business hours gate
        """
        components = request.app.state.components
        scheduler = getattr(request.app.state, "scheduler", None)

        checks = {
            "tracking_store": "not_initialized",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "alerting": "disabled",
            "business_hours": "unknown",
        }
        if components is not None:
            checks["tracking_store"] = f"loaded ({len(components.sla_store)} records)"
            checks["alerting"] = "enabled" if components.notifier else "disabled"
            checks["business_hours"] = "open" if components.resolver.is_business_hours() else "closed"

        return {
            "status": "healthy" if components is not None else "starting",
            "version": app_settings.app_version,
            "environment": app_settings.environment,
            "service_role": app_settings.service_role,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Ticket Notifier",
            "version": app_settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "sla": {
                    "prefix": "/sla",
                    "endpoints": [
                        "POST /sla/tickets - Ingest ticket snapshots",
                        "GET /sla/tickets - List tracked tickets",
                        "GET /sla/tickets/{id} - Get ticket SLA record",
                        "GET /sla/stats - Get compliance statistics",
                        "GET /sla/business-hours - Get business hours state",
                        "POST /sla/reload - Reload tracking stores"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ticket_notifier.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
