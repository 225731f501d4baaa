"""
Pydantic request/response schemas for the ANPR Event API

Mirrors the service-layer dataclasses in database/anpr_service.py for API
validation and OpenAPI documentation.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


class VehicleInfo(BaseModel):
    """Vehicle attributes reported by the camera."""
    color: Optional[str] = Field(default=None, description="Vehicle color")
    type: Optional[str] = Field(default=None, description="Vehicle type")


class EventPayload(BaseModel):
    """Request schema for a JSON camera event.

    camera_id and plate default to empty so the service can report which
    field is missing.
    """
    camera_id: str = Field(default="", description="Camera identifier")
    camera_model: Optional[str] = Field(
        default=None,
        description="Camera model (configured default when omitted)"
    )
    plate: str = Field(default="", description="Plate text as read by the camera")
    confidence: Optional[float] = Field(
        default=None,
        description="Recognition confidence as reported by the camera"
    )
    direction: Optional[str] = Field(default=None, description="Travel direction")
    lane: Optional[int] = Field(default=None, description="Lane number")
    event_time: Optional[datetime] = Field(
        default=None,
        description="Detection time (RFC 3339); defaults to the time of receipt"
    )
    vehicle: Optional[VehicleInfo] = Field(default=None, description="Vehicle attributes")
    snapshot_url: Optional[str] = Field(default=None, description="Snapshot image URL")
    raw_payload: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Original camera payload, stored as-is"
    )

    @field_validator('camera_id', 'plate')
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class ListHitResponse(BaseModel):
    """A list the plate belongs to."""
    list_id: int
    list_name: str
    list_type: str = Field(..., description="WHITELIST or BLACKLIST")


class EventCreatedResponse(BaseModel):
    """Response schema for an ingested event."""
    status: str = Field(default="ok")
    event_id: int = Field(..., description="Stored event id")
    plate_id: int = Field(..., description="Plate id")
    plate: str = Field(..., description="Normalized plate")
    hits: List[ListHitResponse] = Field(
        default_factory=list,
        description="Lists the plate is on"
    )


class HikvisionEventResponse(EventCreatedResponse):
    """Response schema for an ingested Hikvision alert."""
    processed: bool = Field(default=True)


class PlateInfoResponse(BaseModel):
    """Plate with its last sighting."""
    id: int
    number: str = Field(..., description="Plate text as first seen")
    normalized: str = Field(..., description="Normalized plate")
    last_event_time: Optional[datetime] = Field(default=None, description="Most recent event time")


class PlateListResponse(BaseModel):
    """Response schema for plate search."""
    data: List[PlateInfoResponse] = Field(default_factory=list)


class EventInfoResponse(BaseModel):
    """Stored event."""
    id: int
    plate_id: Optional[int] = None
    camera_id: str
    camera_model: Optional[str] = None
    direction: Optional[str] = None
    lane: Optional[int] = None
    raw_plate: str
    normalized_plate: str
    confidence: Optional[float] = None
    vehicle_color: Optional[str] = None
    vehicle_type: Optional[str] = None
    snapshot_url: Optional[str] = None
    event_time: datetime


class EventListResponse(BaseModel):
    """Response schema for event search."""
    data: List[EventInfoResponse] = Field(default_factory=list)


class CameraStatus(BaseModel):
    """Camera configuration and reachability."""
    camera_model: str
    http_host: str = ""
    rtsp_url: str = Field(default="", description="RTSP URL with the password masked")
    configured: bool = Field(..., description="Both HTTP host and RTSP URL are set")
    http_accessible: bool = False
    http_status: Optional[int] = None
    http_error: Optional[str] = None
    rtsp_configured: bool = False


class CameraStatusResponse(BaseModel):
    """Response schema for the camera status endpoint."""
    status: CameraStatus


class SyncVehicleRequest(BaseModel):
    """Request schema for adding a plate to the default whitelist."""
    plate_number: str = Field(..., min_length=1, description="Plate number")
    note: Optional[str] = Field(default=None, description="Membership note")


class SyncVehicleResponse(BaseModel):
    """Response schema for vehicle sync."""
    status: str = Field(default="ok")
    plate_id: int
    plate_number: str = Field(..., description="Normalized plate")
    message: str


class DatabaseHealth(BaseModel):
    """Database connectivity details."""
    healthy: bool
    latency_ms: float
    pool: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: Optional[DatabaseHealth] = Field(default=None, description="Database status")
    camera_model: Optional[str] = Field(default=None, description="Configured camera model")
    memory_usage_mb: Optional[float] = Field(
        default=None,
        description="Current memory usage in MB"
    )
    uptime_seconds: Optional[int] = Field(
        default=None,
        description="Server uptime in seconds"
    )
    slow_operations: List[str] = Field(
        default_factory=list,
        description="Repository operations that exceeded the slow threshold"
    )
    error_message: Optional[str] = Field(default=None, description="Error detail when unhealthy")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
