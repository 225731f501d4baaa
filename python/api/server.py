"""
FastAPI ANPR Event API Server

Receives plate recognition events from cameras (JSON or Hikvision ISAPI
multipart/XML), stores them, and reports whitelist/blacklist hits. Also
exposes plate/event search, a camera reachability probe, and health and
Prometheus endpoints.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import time
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

import psutil
from fastapi import FastAPI, HTTPException, Depends, Query, Request, Security
from fastapi.responses import RedirectResponse, Response
from fastapi.security import APIKeyHeader
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from api.camera import check_camera_status
from api.hikvision import HikvisionEvent, XMLPartNotFoundError, extract_xml_payload
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from api.models import (
    CameraStatus,
    CameraStatusResponse,
    DatabaseHealth,
    ErrorResponse,
    EventCreatedResponse,
    EventInfoResponse,
    EventListResponse,
    EventPayload,
    HealthResponse,
    HikvisionEventResponse,
    PlateInfoResponse,
    PlateListResponse,
    SyncVehicleRequest,
    SyncVehicleResponse,
)
from config_manager import get_config, setup_logging, ConfigManager, ConfigurationError
from database.anpr_service import (
    ANPRService,
    DEFAULT_EVENTS_LIMIT,
    EventInput,
    IngestionSettings,
    InvalidInputError,
)
from database.connection import DatabaseSettings, close_db, get_db, get_db_provider, init_db
from database.monitoring import get_slow_operations, record_ingestion
from xml_utils import XMLPayloadError, sanitize_for_logging

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH")
API_KEY = os.getenv("API_KEY", "")  # Required for authenticated endpoints

# Global state
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None
_executor = ThreadPoolExecutor(max_workers=4)  # For blocking database work in async routes

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """Verify API key for protected endpoints.

    If API_KEY environment variable is not set, authentication is disabled.
    """
    if not API_KEY:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    if not api_key:
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def get_anpr_service(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
) -> ANPRService:
    """Dependency to get a request-scoped ingestion service."""
    return ANPRService(db, IngestionSettings(default_camera_model=config.camera.model))


def _parse_int(value: Optional[str], default: int) -> int:
    """Query parameter as int, falling back to the default when not numeric."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Create FastAPI application
app = FastAPI(
    title="ANPR Event API",
    description="Ingests license plate recognition events and checks them against plate lists",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, connect to the database and bootstrap the schema."""
    global _config, _startup_time

    logger.info("Starting ANPR Event API...")
    start_time = time.time()

    try:
        _config = get_config(CONFIG_PATH)
        setup_logging(_config.logging)
        logger.info("Configuration loaded from %s", _config.config_path)

        provider = init_db(DatabaseSettings.from_env(_config.database))

        # Schema bootstrap is blocking I/O
        loop = asyncio.get_event_loop()
        created = await loop.run_in_executor(_executor, provider.create_tables)

        _startup_time = datetime.now(timezone.utc)
        logger.info(
            "API ready: camera_model=%s default_lists_created=%d in %.2f seconds",
            _config.camera.model, created, time.time() - start_time
        )

    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise
    except Exception as e:
        logger.error("Startup error: %s", e)
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down ANPR Event API...")
    close_db()


@app.post(
    "/api/v1/anpr/events",
    status_code=201,
    response_model=EventCreatedResponse,
    responses={
        201: {"model": EventCreatedResponse, "description": "Event stored"},
        400: {"model": ErrorResponse, "description": "Invalid event"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Ingest a camera event",
    description="Store a JSON plate recognition event and return list hits",
)
def create_event(
    payload: EventPayload,
    service: ANPRService = Depends(get_anpr_service),
):
    """Store one JSON camera event.

    A missing event_time is replaced with the time of receipt.
    """
    vehicle = payload.vehicle
    event_input = EventInput(
        camera_id=payload.camera_id,
        camera_model=payload.camera_model,
        plate=payload.plate,
        confidence=payload.confidence,
        direction=payload.direction,
        lane=payload.lane,
        event_time=payload.event_time or datetime.now(timezone.utc),
        vehicle_color=vehicle.color if vehicle else None,
        vehicle_type=vehicle.type if vehicle else None,
        snapshot_url=payload.snapshot_url,
        raw_payload=payload.raw_payload,
    )

    result = service.process_incoming_event(event_input)
    record_ingestion("json")
    return EventCreatedResponse(**result.to_dict())


@app.post(
    "/api/v1/anpr/hikvision",
    status_code=201,
    response_model=HikvisionEventResponse,
    responses={
        201: {"model": HikvisionEventResponse, "description": "Alert stored"},
        400: {"model": ErrorResponse, "description": "Missing or invalid XML"},
        413: {"model": ErrorResponse, "description": "Payload too large"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
    summary="Ingest a Hikvision ANPR alert",
    description="Accepts the ISAPI EventNotificationAlert as multipart/form-data or a raw XML body",
)
async def hikvision_event(
    request: Request,
    camera_id: Optional[str] = Query(default=None, description="Camera id when the alert has none"),
    service: ANPRService = Depends(get_anpr_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Store one Hikvision ANPR alert.

    The camera id falls back to the query parameter and then to the
    configured camera host when the alert carries neither channelID nor
    deviceID.
    """
    max_size_bytes = config.api.max_upload_size_mb * 1024 * 1024

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > max_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Payload too large. Maximum size is {config.api.max_upload_size_mb}MB",
        )

    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        try:
            xml_bytes = await extract_xml_payload(form)
        except XMLPartNotFoundError as e:
            raise InvalidInputError(str(e), field="xml", code="MISSING_XML")
        finally:
            await form.close()
    elif "xml" in content_type:
        xml_bytes = await request.body()
    else:
        raise InvalidInputError(
            "expected multipart/form-data or an XML body",
            field="content-type",
            code="UNSUPPORTED_CONTENT_TYPE",
        )

    if len(xml_bytes) > max_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Payload too large. Maximum size is {config.api.max_upload_size_mb}MB",
        )

    try:
        alert = HikvisionEvent.from_xml(xml_bytes)
    except XMLPayloadError as e:
        logger.warning("Rejected Hikvision payload: %s", sanitize_for_logging(str(e)))
        raise InvalidInputError(str(e), field="xml", code="INVALID_XML")

    event_input = alert.to_event_input(
        fallback_camera_id=camera_id or config.camera.http_host,
        default_camera_model=config.camera.model,
        raw_xml=xml_bytes.decode("utf-8", errors="replace"),
        received_at=datetime.now(timezone.utc),
    )

    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(_executor, service.process_incoming_event, event_input)
    record_ingestion("hikvision")
    return HikvisionEventResponse(**result.to_dict())


@app.get(
    "/api/v1/plates",
    response_model=PlateListResponse,
    responses={400: {"model": ErrorResponse, "description": "Missing plate parameter"}},
    summary="Search plates",
    description="Find a plate by its normalized value, with its last sighting",
)
def search_plates(
    plate: Optional[str] = Query(default=None, description="Plate text (any formatting)"),
    service: ANPRService = Depends(get_anpr_service),
):
    if not plate or not plate.strip():
        raise InvalidInputError("plate query parameter is required", field="plate", code="MISSING_FIELD")

    plates = service.find_plates(plate)
    return PlateListResponse(data=[PlateInfoResponse(**asdict(p)) for p in plates])


@app.get(
    "/api/v1/events",
    response_model=EventListResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid time range"}},
    summary="Search events",
    description="List events, newest first, filtered by plate and time range",
)
def search_events(
    plate: Optional[str] = Query(default=None, description="Plate text (any formatting)"),
    start: Optional[str] = Query(default=None, alias="from", description="RFC 3339 lower bound"),
    end: Optional[str] = Query(default=None, alias="to", description="RFC 3339 upper bound"),
    limit: Optional[str] = Query(default=None, description="Page size (1-100, default 50)"),
    offset: Optional[str] = Query(default=None, description="Page offset"),
    service: ANPRService = Depends(get_anpr_service),
):
    """List events. Non-numeric limit/offset fall back to their defaults."""
    events = service.find_events(
        plate_query=plate,
        start=start,
        end=end,
        limit=_parse_int(limit, DEFAULT_EVENTS_LIMIT),
        offset=_parse_int(offset, 0),
    )
    return EventListResponse(data=[EventInfoResponse(**asdict(e)) for e in events])


@app.get(
    "/api/v1/camera/status",
    response_model=CameraStatusResponse,
    summary="Camera status",
    description="Report camera configuration and whether its HTTP interface responds",
)
def camera_status(config: ConfigManager = Depends(get_config_instance)):
    """Always returns HTTP 200; probe failures are reported in the body."""
    return CameraStatusResponse(status=CameraStatus(**check_camera_status(config.camera)))


@app.post(
    "/api/v1/anpr/sync-vehicle",
    response_model=SyncVehicleResponse,
    responses={
        200: {"model": SyncVehicleResponse, "description": "Plate is on the whitelist"},
        400: {"model": ErrorResponse, "description": "Invalid plate number"},
        401: {"model": ErrorResponse, "description": "Missing API key"},
        403: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Default whitelist missing"},
    },
    summary="Whitelist a vehicle",
    description="Add a plate to the default whitelist, creating the plate if needed",
)
def sync_vehicle(
    request: SyncVehicleRequest,
    service: ANPRService = Depends(get_anpr_service),
    api_key: str = Depends(verify_api_key),
):
    """Requires API key authentication via X-API-Key header when API_KEY is set."""
    plate = service.sync_vehicle_to_whitelist(request.plate_number, note=request.note)
    return SyncVehicleResponse(
        plate_id=plate.id,
        plate_number=plate.normalized,
        message=f"Plate {plate.normalized} is on the default whitelist",
    )


@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database health",
)
def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Return health status including database latency. Always returns HTTP 200."""
    try:
        db_status = get_db_provider().health_status().to_dict()
        database = DatabaseHealth(
            healthy=db_status["healthy"],
            latency_ms=db_status["latency_ms"],
            pool=db_status["pool"],
            error=db_status["error"],
        )

        process = psutil.Process()
        memory_usage_mb = round(process.memory_info().rss / (1024 * 1024), 2)

        uptime_seconds = None
        if _startup_time:
            uptime = datetime.now(timezone.utc) - _startup_time
            uptime_seconds = int(uptime.total_seconds())

        return HealthResponse(
            status="healthy" if database.healthy else "degraded",
            database=database,
            camera_model=config.camera.model,
            memory_usage_mb=memory_usage_mb,
            uptime_seconds=uptime_seconds,
            slow_operations=get_slow_operations(),
        )
    except Exception as e:
        # Always return HTTP 200, but report error in JSON
        logger.error("Health check failed: %s", sanitize_for_logging(str(e)))
        return HealthResponse(status="error", error_message=str(e))


@app.get("/metrics", include_in_schema=False)
def metrics():
    """Prometheus exposition of ingestion and repository metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
