"""
Shared API Middleware
======================

Request tracing, request logging and exception handlers for the API.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ticket_notifier.core.exceptions import (
    ApplicationException,
    ExternalServiceException,
    ResourceNotFoundException,
    ValidationException,
)
from ticket_notifier.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    An incoming X-Correlation-ID header is reused, otherwise one is generated.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with its outcome and latency.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        log = get_context_logger(__name__, getattr(request.state, "correlation_id", None))
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            log.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        log.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int(response_time * 1000)
            }
        )
        return response


def _error_body(request: Request, detail: str, **extra) -> dict:
    return {
        "detail": detail,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
    }


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Maps application exceptions onto HTTP responses.

    - ResourceNotFoundException -> 404
    - ValidationException -> 422
    - ExternalServiceException -> 502
    - anything else -> 500
    """
    if isinstance(exc, ResourceNotFoundException):
        status_code = 404
    elif isinstance(exc, ValidationException):
        status_code = 422
    elif isinstance(exc, ExternalServiceException):
        status_code = 502
    else:
        status_code = 500

    logger.warning(
        "Application exception",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "status_code": status_code,
        }
    )
    return JSONResponse(status_code=status_code, content=_error_body(request, exc.message, details=exc.details))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details outside development
    app_settings = getattr(request.app.state, "settings", None)
    is_dev = getattr(app_settings, "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content=_error_body(request, "Internal server error", debug_info=str(exc) if is_dev else None)
    )
