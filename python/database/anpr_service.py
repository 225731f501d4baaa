"""
Database-backed ANPR Ingestion Service

Orchestrates the ingestion pipeline for camera events and the read-side
queries used by the API:

    validate -> normalize plate -> get-or-create plate -> append event
             -> look up list hits -> commit

Each public write operation is one transaction: any storage error rolls the
session back and propagates to the caller.

Usage:
    # With FastAPI
    @app.post("/api/v1/anpr/events")
    def create_event(service: ANPRService = Depends(get_anpr_service)):
        ...

    # Standalone
    with db_provider.get_unit_of_work() as uow:
        service = ANPRService(uow.session, IngestionSettings("DS-TCG406-E"))
        result = service.process_incoming_event(EventInput(...))
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database.models import ANPREvent, DEFAULT_WHITELIST_NAME, Plate, normalize_plate
from database.monitoring import record_list_hits, record_purge
from database.repositories import (
    EventRepository,
    ListHit,
    ListRepository,
    PlateRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_EVENTS_LIMIT = 50
MAX_EVENTS_LIMIT = 100


class ANPRServiceError(Exception):
    """Base exception for service errors."""
    pass


class InvalidInputError(ANPRServiceError, ValueError):
    """Raised when caller-supplied input is missing or malformed

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "INVALID_INPUT"):
        self.field = field
        self.code = code
        super().__init__(message)


class NotFoundError(ANPRServiceError):
    """Raised when a referenced record does not exist"""
    pass


@dataclass
class IngestionSettings:
    """Settings the ingestion pipeline needs from the service configuration"""
    default_camera_model: Optional[str] = None


@dataclass
class EventInput:
    """Camera event as received by a webhook"""
    camera_id: str
    plate: str
    event_time: Optional[datetime]
    camera_model: Optional[str] = None
    confidence: Optional[float] = None
    direction: Optional[str] = None
    lane: Optional[int] = None
    vehicle_color: Optional[str] = None
    vehicle_type: Optional[str] = None
    snapshot_url: Optional[str] = None
    raw_payload: Optional[Dict[str, Any]] = None


@dataclass
class ProcessResult:
    """Outcome of ingesting one event"""
    event_id: int
    plate_id: int
    plate: str
    hits: List[ListHit] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "plate_id": self.plate_id,
            "plate": self.plate,
            "hits": [hit.to_dict() for hit in self.hits],
        }


@dataclass
class PlateInfo:
    """Plate with the time it was last seen"""
    id: int
    number: str
    normalized: str
    last_event_time: Optional[datetime] = None


@dataclass
class EventInfo:
    """Read model for a stored event"""
    id: int
    plate_id: Optional[int]
    camera_id: str
    camera_model: Optional[str]
    direction: Optional[str]
    lane: Optional[int]
    raw_plate: str
    normalized_plate: str
    confidence: Optional[float]
    vehicle_color: Optional[str]
    vehicle_type: Optional[str]
    snapshot_url: Optional[str]
    event_time: datetime

    @classmethod
    def from_model(cls, event: ANPREvent) -> 'EventInfo':
        return cls(
            id=event.id,
            plate_id=event.plate_id,
            camera_id=event.camera_id,
            camera_model=event.camera_model,
            direction=event.direction,
            lane=event.lane,
            raw_plate=event.raw_plate,
            normalized_plate=event.normalized_plate,
            confidence=event.confidence,
            vehicle_color=event.vehicle_color,
            vehicle_type=event.vehicle_type,
            snapshot_url=event.snapshot_url,
            event_time=to_utc(event.event_time),
        )


def to_utc(value: datetime) -> datetime:
    """Convert to UTC; naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_rfc3339(value: str, field_name: str) -> datetime:
    """
    Parse an RFC 3339 timestamp such as ``2024-01-01T00:00:00Z``.

    Raises:
        InvalidInputError: If the value is not a valid timestamp
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidInputError(
            f"invalid {field_name} time format", field=field_name, code="INVALID_TIME_FORMAT"
        )
    if parsed.tzinfo is None:
        raise InvalidInputError(
            f"invalid {field_name} time format: timezone offset required",
            field=field_name,
            code="INVALID_TIME_FORMAT"
        )
    return parsed


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_EVENTS_LIMIT
    return min(limit, MAX_EVENTS_LIMIT)


class ANPRService:
    """
    Ingestion and query service for ANPR events.

    Wraps the plate, event and list repositories around a single session.
    The camera model default is injected through IngestionSettings rather
    than read from global configuration.
    """

    def __init__(self, session: Session, settings: Optional[IngestionSettings] = None):
        """
        Args:
            session: SQLAlchemy database session
            settings: Ingestion settings (camera model default)
        """
        self.session = session
        self.settings = settings or IngestionSettings()
        self._plates = PlateRepository(session)
        self._events = EventRepository(session)
        self._lists = ListRepository(session)

    # ----------------------------------------
    # Ingestion
    # ----------------------------------------

    def _validate(self, payload: EventInput) -> None:
        if not payload.plate or not payload.plate.strip():
            raise InvalidInputError("plate is required", field="plate", code="MISSING_FIELD")
        if not payload.camera_id or not payload.camera_id.strip():
            raise InvalidInputError("camera_id is required", field="camera_id", code="MISSING_FIELD")
        if payload.event_time is None:
            raise InvalidInputError("event_time is required", field="event_time", code="MISSING_FIELD")

    def process_incoming_event(self, payload: EventInput) -> ProcessResult:
        """
        Persist one camera event and report the lists its plate is on.

        Args:
            payload: Event received from a camera webhook

        Returns:
            ProcessResult with event id, plate id, normalized plate and list hits

        Raises:
            InvalidInputError: If required fields are missing or the plate
                normalizes to an empty string
        """
        self._validate(payload)

        normalized = normalize_plate(payload.plate)
        if not normalized:
            raise InvalidInputError(
                "plate cannot be empty after normalization",
                field="plate",
                code="EMPTY_PLATE"
            )

        camera_model = payload.camera_model or self.settings.default_camera_model

        try:
            plate = self._plates.get_or_create(normalized, payload.plate)

            event = self._events.create({
                "plate_id": plate.id,
                "camera_id": payload.camera_id.strip(),
                "camera_model": camera_model,
                "direction": payload.direction,
                "lane": payload.lane,
                "raw_plate": payload.plate,
                "normalized_plate": normalized,
                "confidence": payload.confidence,
                "vehicle_color": payload.vehicle_color,
                "vehicle_type": payload.vehicle_type,
                "snapshot_url": payload.snapshot_url,
                "event_time": to_utc(payload.event_time),
                "raw_payload": payload.raw_payload,
            })

            logger.info(
                "Saved ANPR event: event_id=%s plate_id=%s plate=%s raw_plate=%s camera_id=%s event_time=%s",
                event.id, plate.id, normalized, payload.plate, payload.camera_id,
                payload.event_time.isoformat()
            )

            hits = self._lists.find_hits(plate.id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error(
                "Failed to process ANPR event: plate=%s camera_id=%s",
                normalized, payload.camera_id
            )
            raise

        record_list_hits(hit.list_type for hit in hits)
        if hits:
            logger.info(
                "Plate found in lists: plate_id=%s plate=%s hits_count=%d",
                plate.id, normalized, len(hits)
            )
            for hit in hits:
                logger.debug(
                    "List hit: list_id=%s list_name=%s list_type=%s",
                    hit.list_id, hit.list_name, hit.list_type
                )
        else:
            logger.debug("Plate not found in any lists: plate_id=%s plate=%s", plate.id, normalized)

        return ProcessResult(
            event_id=event.id,
            plate_id=plate.id,
            plate=normalized,
            hits=hits,
        )

    def sync_vehicle_to_whitelist(self, plate_number: str, note: Optional[str] = None) -> Plate:
        """
        Make sure a plate exists and is on the default whitelist.

        Args:
            plate_number: Plate as entered by an operator
            note: Optional note stored on the list membership

        Returns:
            The plate row

        Raises:
            InvalidInputError: If the plate normalizes to an empty string
            NotFoundError: If the default whitelist does not exist
        """
        normalized = normalize_plate(plate_number)
        if not normalized:
            raise InvalidInputError(
                "plate_number cannot be empty after normalization",
                field="plate_number",
                code="EMPTY_PLATE"
            )

        try:
            plate = self._plates.get_or_create(normalized, plate_number)
            whitelist = self._lists.get_by_name(DEFAULT_WHITELIST_NAME)
            if whitelist is None:
                raise NotFoundError(f"list not found: {DEFAULT_WHITELIST_NAME}")

            _, created = self._lists.add_plate(whitelist.id, plate.id, note=note)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        if created:
            logger.info("Plate added to whitelist: plate_id=%s plate=%s", plate.id, normalized)
        else:
            logger.debug("Plate already on whitelist: plate_id=%s plate=%s", plate.id, normalized)
        return plate

    def cleanup_old_events(self, days: int) -> int:
        """
        Purge events older than ``days`` days.

        Returns:
            Number of events deleted
        """
        if days <= 0:
            raise InvalidInputError("days must be positive", field="days")

        try:
            deleted = self._events.delete_older_than(days)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error("Failed to cleanup old events: days=%d", days)
            raise

        record_purge(deleted)
        if deleted > 0:
            logger.info("Cleaned up old events: deleted_count=%d days=%d", deleted, days)
        return deleted

    # ----------------------------------------
    # Queries
    # ----------------------------------------

    def find_plates(self, plate_query: str) -> List[PlateInfo]:
        """
        Find plates matching a (raw) plate query, with their last sighting.
        """
        normalized = normalize_plate(plate_query)
        if not normalized:
            raise InvalidInputError("plate query cannot be empty", field="plate")

        result = []
        for plate in self._plates.find_by_normalized(normalized):
            last_seen = self._events.last_event_time_for_plate(plate.id)
            result.append(PlateInfo(
                id=plate.id,
                number=plate.number,
                normalized=plate.normalized,
                last_event_time=to_utc(last_seen) if last_seen else None,
            ))
        return result

    def find_events(
        self,
        plate_query: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = DEFAULT_EVENTS_LIMIT,
        offset: Optional[int] = 0
    ) -> List[EventInfo]:
        """
        List events with optional plate and time-range filters.

        Args:
            plate_query: Raw plate text; ignored if it normalizes to empty
            start: RFC 3339 lower bound (inclusive)
            end: RFC 3339 upper bound (inclusive)
            limit: Page size, clamped to 1..100 (default 50)
            offset: Page offset, negative values become 0

        Raises:
            InvalidInputError: If a time bound cannot be parsed
        """
        normalized_plate = None
        if plate_query:
            normalized_plate = normalize_plate(plate_query) or None

        start_time = parse_rfc3339(start, "from") if start else None
        end_time = parse_rfc3339(end, "to") if end else None

        events = self._events.find(
            normalized_plate=normalized_plate,
            start=to_utc(start_time) if start_time else None,
            end=to_utc(end_time) if end_time else None,
            limit=clamp_limit(limit),
            offset=max(offset or 0, 0),
        )
        return [EventInfo.from_model(event) for event in events]
