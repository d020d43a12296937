"""
Video Analytics Collector - FastAPI Application
Receives event batches from the SDK and persists them to an append-only log.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional, Tuple

import orjson
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pydantic_settings import BaseSettings

from errors import DecodeError
from event_log import EventLog
from models import ReceivedBatch
from utils import RequestContextMiddleware, error_response, LatencyTracker, log_ingest

logger = structlog.get_logger()

EVENTS_PATH = "/api/v1/events"
BEACON_PATH = "/api/v1/events/beacon"


class Settings(BaseSettings):
    """Application settings from environment."""
    collector_host: str = "127.0.0.1"
    collector_port: int = 8080
    collector_log_level: str = "INFO"

    event_log_dir: str = "logs"
    static_dir: Optional[str] = None
    cors_allow_origins: List[str] = ["*"]

    class Config:
        env_file = "config/.env"
        env_file_encoding = "utf-8"


# Global state
settings = Settings()
event_log: Optional[EventLog] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    global event_log

    # Startup
    logger.info("collector_startup", version="1.0.0")
    event_log = EventLog(settings.event_log_dir)
    logger.info("collector_ready", log_path=str(event_log.path))

    yield

    # Shutdown
    logger.info("collector_shutdown")


def decode_batch(raw: bytes) -> ReceivedBatch:
    """
    Parse a request body into a ReceivedBatch.

    Missing identifiers are accepted; events are kept as sent.

    Raises:
        DecodeError: body is not JSON, not an object, or a field has the wrong type.
    """
    try:
        return ReceivedBatch.model_validate(orjson.loads(raw))
    except orjson.JSONDecodeError as e:
        raise DecodeError(f"Malformed JSON: {e}") from e
    except ValidationError as e:
        raise DecodeError(f"Invalid event batch: {e.error_count()} validation errors") from e


# Initialize FastAPI app
app = FastAPI(
    title="Video Analytics Collector",
    description="Ingestion sink for video playback telemetry",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["*"],
)

# Add request context middleware
app.add_middleware(RequestContextMiddleware)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy" if event_log else "starting",
        "event_log": str(event_log.path) if event_log else None
    }


async def persist_body(raw_request: Request, source: str) -> Tuple[int, Optional[JSONResponse]]:
    """
    Decode a request body and append its events to the log.

    Returns:
        (events written, None) on success, or (0, error response) when the
        body is rejected or the log cannot be written.
    """
    tracker = LatencyTracker()
    tracker.start()

    try:
        batch = decode_batch(await raw_request.body())
    except DecodeError as e:
        log_ingest(source, None, None, 0, tracker.elapsed_ms(), "failed", str(e))
        return 0, error_response(400, "invalid_request", "Invalid request body", {"error": str(e)})

    try:
        written = event_log.log_batch(batch, source=source)
    except OSError as e:
        logger.error("event_log_write_failed", error=str(e), batch_id=batch.batch_id)
        log_ingest(source, batch.client_id, batch.session_id, 0, tracker.elapsed_ms(), "failed", "storage_error")
        return 0, error_response(500, "internal_error", "Internal server error")

    log_ingest(source, batch.client_id, batch.session_id, written, tracker.elapsed_ms())
    return written, None


@app.post(EVENTS_PATH)
async def ingest_events(raw_request: Request):
    """Persist a batch and acknowledge it."""
    written, error = await persist_body(raw_request, "batch")
    if error is not None:
        return error
    return {
        "status": "success",
        "message": f"Processed {written} events"
    }


@app.post(BEACON_PATH)
async def ingest_beacon(raw_request: Request):
    """Persist a teardown batch. Beacon senders never read the response."""
    _, error = await persist_body(raw_request, "beacon")
    if error is not None:
        return error
    return Response(status_code=204)


@app.api_route(EVENTS_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
@app.api_route(BEACON_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def method_not_allowed():
    return error_response(405, "method_not_allowed", "Method not allowed", headers={"Allow": "POST"})


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Video Analytics Collector",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "events": EVENTS_PATH,
            "beacon": BEACON_PATH
        }
    }


# Static files last so the API routes win
if settings.static_dir and Path(settings.static_dir).is_dir():
    app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ingest_server:app",
        host=settings.collector_host,
        port=settings.collector_port,
        log_level=settings.collector_log_level.lower(),
        reload=False
    )
