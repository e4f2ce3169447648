"""
Structured Logging
==================

JSON-structured logging with correlation ID tracking.

Provides:
- Structured JSON logs (parseable by log aggregators)
- Correlation ID for request and evaluation-pass tracing
- Redaction of Slack tokens and other secrets
- Performance timing utilities

Usage:
    from ticket_notifier.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("SLA record saved", extra={"ticket_id": "215469"})
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger

_SENSITIVE_KEY_MARKERS = ("password", "secret", "api_key", "webhook_url", "authorization")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if any(marker in lowered for marker in _SENSITIVE_KEY_MARKERS):
        return True
    # slack_bot_token, access_token ... but not counters such as "tokens_used"
    return "token" in lowered and not lowered.startswith("tokens_")


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter stamping every record with service context.

    Adds:
    - timestamp in ISO format (UTC)
    - service name and environment
    - correlation_id when available
    """

    def __init__(self, *args: Any, service: str = "ticket-notifier",
                 environment: str = "development", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._service = service
        self._environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not isinstance(log_record, dict):
            return

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["service"] = self._service
        log_record["environment"] = getattr(record, "environment", self._environment)

        correlation_id = getattr(record, "correlation_id", None) or message_dict.get("correlation_id")
        if correlation_id:
            log_record["correlation_id"] = correlation_id

        for key, value in list(log_record.items()):
            if isinstance(value, str) and _is_sensitive(key):
                log_record[key] = "***REDACTED***"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
    service: str = "ticket-notifier",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
        service: Service name stamped on every record
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(ServiceJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        service=service,
        environment=environment,
    ))
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adapter merging the correlation ID into each call's own extra fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_context_logger(name: str, correlation_id: Optional[str] = None):
    """
    Get a logger carrying a correlation ID.

    Used for HTTP requests and for evaluation passes, so that every line
    written while handling one of them can be grouped together.
    """
    logger = get_logger(name)
    if correlation_id:
        return CorrelationLoggerAdapter(logger, {"correlation_id": correlation_id})
    return logger


@contextmanager
def log_latency(logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "sla_evaluation_pass", tickets=12):
            await service.run_pass()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round(latency_ms, 2),
                **extra_context,
            },
        )
