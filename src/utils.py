"""
Video Analytics Utilities
Shared utilities for logging, identifiers, request tracking, and error handling.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import httpx
import orjson
import structlog
from fastapi.responses import JSONResponse

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer(serializer=orjson.dumps)
    ],
    context_class=dict,
    logger_factory=structlog.BytesLoggerFactory(),
    cache_logger_on_first_use=False,
)

logger = structlog.get_logger()


def generate_uuid() -> str:
    """Generate a random v4 identifier (xxxxxxxx-xxxx-4xxx-yxxx-xxxxxxxxxxxx)."""
    return str(uuid.uuid4())


def iso_now() -> str:
    """UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sdk_logger(debug: bool = False, **initial_values):
    """
    Logger for SDK components.

    Everything below ERROR is dropped unless debug is enabled, so the host
    only ever sees configuration errors by default.
    """
    level = logging.DEBUG if debug else logging.ERROR
    return structlog.wrap_logger(
        None,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        sdk="VideoAnalytics",
        **initial_values
    )


class RequestContextMiddleware:
    """Middleware to inject request_id into all logs."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            request_id = generate_uuid()
            scope["request_id"] = request_id
            structlog.contextvars.clear_contextvars()
            structlog.contextvars.bind_contextvars(request_id=request_id)

        await self.app(scope, receive, send)


def error_response(
    status_code: int,
    error_type: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    """Build standardized error response."""
    content = {
        "error": {
            "type": error_type,
            "message": message,
        }
    }
    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers
    )


class LatencyTracker:
    """Track request latency."""

    def __init__(self):
        self.start_time = None

    def start(self):
        """Start timing."""
        self.start_time = time.perf_counter()

    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.start_time is None:
            return 0.0
        return (time.perf_counter() - self.start_time) * 1000


def classify_transport_error(exception: Exception) -> str:
    """
    Classify a send failure into a short reason for structured logging.

    Args:
        exception: The exception raised by the HTTP client

    Returns:
        Reason string such as "timeout", "network_error" or "http_error_503"
    """
    if isinstance(exception, (httpx.TimeoutException, TimeoutError)):
        return "timeout"
    elif isinstance(exception, (httpx.ConnectError, ConnectionError)):
        return "unreachable"
    elif isinstance(exception, httpx.HTTPStatusError):
        return f"http_error_{exception.response.status_code}"
    elif isinstance(exception, httpx.HTTPError):
        return "network_error"
    elif isinstance(exception, (orjson.JSONDecodeError, ValueError)):
        return "invalid_ack"

    return f"unknown_error_{type(exception).__name__}"


def log_ingest(
    kind: str,
    client_id: Optional[str],
    session_id: Optional[str],
    event_count: int,
    latency_ms: float,
    status: str = "success",
    failure_reason: Optional[str] = None
):
    """
    Log structured ingestion information.

    Args:
        kind: Endpoint kind (batch/beacon)
        client_id: Client identifier from the batch, if decoded
        session_id: Session identifier from the batch, if decoded
        event_count: Number of events persisted
        latency_ms: Request latency in milliseconds
        status: Request status (success/failed)
        failure_reason: Specific failure reason if status != success
    """
    log_data = {
        "kind": kind,
        "client_id": client_id,
        "session_id": session_id,
        "event_count": event_count,
        "latency_ms": round(latency_ms, 2),
        "status": status
    }

    if failure_reason:
        log_data["failure_reason"] = failure_reason

    if status == "success":
        logger.info("batch_ingested", **log_data)
    else:
        logger.error("batch_rejected", **log_data)
