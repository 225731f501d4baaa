"""
Hikvision ISAPI webhook support

Hikvision ANPR cameras push an ``EventNotificationAlert`` XML document,
usually as one part of a multipart/form-data request next to the plate and
scene pictures. This module finds the XML part and maps the alert onto the
service's EventInput.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from starlette.datastructures import FormData, UploadFile

from database.anpr_service import EventInput
from xml_utils import XMLPayloadError, get_text_from_element, local_name, secure_parse_bytes

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "EventNotificationAlert"

_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)


class XMLPartNotFoundError(ValueError):
    """Raised when a multipart request carries no XML part"""
    pass


def is_xml_file(upload: UploadFile) -> bool:
    """True if the uploaded part looks like an XML document"""
    filename = (upload.filename or "").lower()
    if filename.endswith(".xml"):
        return True
    content_type = (upload.content_type or "").lower()
    return "xml" in content_type


async def extract_xml_payload(form: FormData) -> bytes:
    """
    Pull the XML document out of a multipart form.

    Files are checked first (``.xml`` filename or XML content type); if none
    match, the first text field whose name contains "xml" is used.

    Raises:
        XMLPartNotFoundError: If no part qualifies
    """
    for _, value in form.multi_items():
        if isinstance(value, UploadFile) and is_xml_file(value):
            return await value.read()

    for key, value in form.multi_items():
        if isinstance(value, str) and "xml" in key.lower() and value:
            return value.encode("utf-8")

    raise XMLPartNotFoundError("xml file not found")


def parse_hikvision_time(value: Optional[str]) -> Optional[datetime]:
    """Parse the alert dateTime; returns None when absent or unparseable"""
    if not value:
        return None

    text = value.strip()
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(iso_text)
    except ValueError:
        pass

    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    logger.debug("Unparseable Hikvision dateTime: %s", text)
    return None


def parse_lane(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_confidence(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return ""


@dataclass
class HikvisionEvent:
    """Fields of EventNotificationAlert used for ingestion"""
    event_type: Optional[str] = None
    date_time: Optional[str] = None
    channel_id: Optional[str] = None
    device_id: Optional[str] = None
    license_plate: Optional[str] = None
    confidence_level: Optional[str] = None
    vehicle_type: Optional[str] = None
    color: Optional[str] = None
    direction: Optional[str] = None
    lane_no: Optional[str] = None
    ftp_path: Optional[str] = None

    @classmethod
    def from_xml(cls, xml_bytes: bytes) -> 'HikvisionEvent':
        """
        Parse an EventNotificationAlert document.

        Raises:
            XMLPayloadError: If the document is malformed or has another root
        """
        root = secure_parse_bytes(xml_bytes)
        if local_name(root) != ROOT_ELEMENT:
            raise XMLPayloadError(
                f"unexpected root element {local_name(root)!r}, expected {ROOT_ELEMENT}"
            )

        return cls(
            event_type=get_text_from_element(root, "eventType"),
            date_time=get_text_from_element(root, "dateTime"),
            channel_id=get_text_from_element(root, "channelID"),
            device_id=get_text_from_element(root, "deviceID"),
            license_plate=get_text_from_element(root, "ANPR/licensePlate"),
            confidence_level=get_text_from_element(root, "ANPR/confidenceLevel"),
            vehicle_type=get_text_from_element(root, "ANPR/vehicleType"),
            color=get_text_from_element(root, "ANPR/color"),
            direction=get_text_from_element(root, "ANPR/direction"),
            lane_no=get_text_from_element(root, "ANPR/laneNo"),
            ftp_path=get_text_from_element(root, "picInfo/ftpPath"),
        )

    def to_event_input(
        self,
        fallback_camera_id: str = "",
        default_camera_model: Optional[str] = None,
        raw_xml: Optional[str] = None,
        received_at: Optional[datetime] = None
    ) -> EventInput:
        """
        Map the alert onto an EventInput.

        Args:
            fallback_camera_id: Used when the alert has neither channelID nor deviceID
            default_camera_model: Camera model to record
            raw_xml: Original document, kept in raw_payload
            received_at: Event time used when dateTime is missing or unparseable
        """
        raw_payload: Dict[str, Any] = {"event_type": self.event_type}
        if raw_xml is not None:
            raw_payload["xml"] = raw_xml

        return EventInput(
            camera_id=first_non_empty(self.channel_id, self.device_id, fallback_camera_id),
            camera_model=default_camera_model,
            plate=(self.license_plate or "").strip(),
            confidence=parse_confidence(self.confidence_level),
            direction=self.direction,
            lane=parse_lane(self.lane_no),
            event_time=parse_hikvision_time(self.date_time) or received_at,
            vehicle_color=self.color,
            vehicle_type=self.vehicle_type,
            snapshot_url=self.ftp_path,
            raw_payload=raw_payload,
        )
