"""
Tests for Hikvision EventNotificationAlert parsing and multipart extraction.
"""

import io
import asyncio
import pytest
from datetime import datetime, timezone

from starlette.datastructures import FormData, Headers, UploadFile

from api.hikvision import (
    HikvisionEvent,
    XMLPartNotFoundError,
    extract_xml_payload,
    first_non_empty,
    parse_hikvision_time,
    parse_lane,
)
from xml_utils import XMLPayloadError


ALERT_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<EventNotificationAlert version="2.0" xmlns="http://www.hikvision.com/ver20/XMLSchema">
    <ipAddress>192.168.1.64</ipAddress>
    <channelID>1</channelID>
    <dateTime>2024-05-01T10:15:30+03:00</dateTime>
    <eventType>ANPR</eventType>
    <eventState>active</eventState>
    <ANPR>
        <licensePlate>AB 123 CD</licensePlate>
        <confidenceLevel>92</confidenceLevel>
        <direction>forward</direction>
        <laneNo>2</laneNo>
        <vehicleType>vehicle</vehicleType>
        <color>white</color>
    </ANPR>
    <picInfo>
        <ftpPath>/pics/20240501/plate.jpg</ftpPath>
    </picInfo>
</EventNotificationAlert>
"""

MINIMAL_XML = b"""<EventNotificationAlert>
    <eventType>ANPR</eventType>
    <ANPR><licensePlate>XY987</licensePlate></ANPR>
</EventNotificationAlert>"""


def make_upload(content: bytes, filename: str, content_type: str) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


class TestParseAlert:

    def test_namespaced_alert(self):
        alert = HikvisionEvent.from_xml(ALERT_XML)

        assert alert.event_type == "ANPR"
        assert alert.channel_id == "1"
        assert alert.license_plate == "AB 123 CD"
        assert alert.confidence_level == "92"
        assert alert.lane_no == "2"
        assert alert.ftp_path == "/pics/20240501/plate.jpg"

    def test_to_event_input(self):
        event = HikvisionEvent.from_xml(ALERT_XML).to_event_input(
            fallback_camera_id="http://192.168.1.64",
            default_camera_model="DS-TCG406-E",
            raw_xml=ALERT_XML.decode("utf-8"),
        )

        assert event.camera_id == "1"
        assert event.camera_model == "DS-TCG406-E"
        assert event.plate == "AB 123 CD"
        assert event.confidence == 92.0
        assert event.direction == "forward"
        assert event.lane == 2
        assert event.vehicle_type == "vehicle"
        assert event.vehicle_color == "white"
        assert event.snapshot_url == "/pics/20240501/plate.jpg"
        assert event.event_time == datetime(2024, 5, 1, 7, 15, 30, tzinfo=timezone.utc)
        assert event.raw_payload["event_type"] == "ANPR"
        assert "licensePlate" in event.raw_payload["xml"]

    def test_camera_id_fallbacks(self):
        received = datetime(2024, 1, 1, tzinfo=timezone.utc)
        event = HikvisionEvent.from_xml(MINIMAL_XML).to_event_input(
            fallback_camera_id="gate-1",
            received_at=received,
        )

        assert event.camera_id == "gate-1"
        assert event.event_time == received
        assert event.confidence is None
        assert event.lane is None

    def test_device_id_used_without_channel(self):
        xml = b"<EventNotificationAlert><deviceID>dev-7</deviceID></EventNotificationAlert>"
        event = HikvisionEvent.from_xml(xml).to_event_input(fallback_camera_id="ignored")
        assert event.camera_id == "dev-7"
        assert event.plate == ""

    def test_wrong_root_rejected(self):
        with pytest.raises(XMLPayloadError):
            HikvisionEvent.from_xml(b"<Other><ANPR/></Other>")

    def test_malformed_xml_rejected(self):
        with pytest.raises(XMLPayloadError):
            HikvisionEvent.from_xml(b"<EventNotificationAlert><ANPR>")

    def test_empty_document_rejected(self):
        with pytest.raises(XMLPayloadError):
            HikvisionEvent.from_xml(b"   ")

    def test_external_entities_rejected(self):
        xml = b"""<?xml version="1.0"?>
<!DOCTYPE foo [<!ENTITY xxe SYSTEM "file:///etc/passwd">]>
<EventNotificationAlert><ANPR><licensePlate>&xxe;</licensePlate></ANPR></EventNotificationAlert>"""
        with pytest.raises(XMLPayloadError):
            HikvisionEvent.from_xml(xml)

    def test_internal_entity_rejected(self):
        xml = b"""<?xml version="1.0"?>
<!DOCTYPE foo [<!ENTITY plate "AB123CD">]>
<EventNotificationAlert><ANPR><licensePlate>&plate;</licensePlate></ANPR></EventNotificationAlert>"""
        with pytest.raises(XMLPayloadError, match="DTD"):
            HikvisionEvent.from_xml(xml)

    def test_doctype_without_subset_rejected(self):
        with pytest.raises(XMLPayloadError):
            HikvisionEvent.from_xml(b"<!DOCTYPE EventNotificationAlert><EventNotificationAlert/>")


class TestFieldParsing:

    @pytest.mark.parametrize("value,expected", [
        ("2024-05-01T10:15:30Z", datetime(2024, 5, 1, 10, 15, 30, tzinfo=timezone.utc)),
        ("2024-05-01T10:15:30.250Z", datetime(2024, 5, 1, 10, 15, 30, 250000, tzinfo=timezone.utc)),
        ("2024-05-01 10:15:30", datetime(2024, 5, 1, 10, 15, 30)),
    ])
    def test_parse_hikvision_time(self, value, expected):
        assert parse_hikvision_time(value) == expected

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_parse_hikvision_time_invalid(self, value):
        assert parse_hikvision_time(value) is None

    def test_parse_lane(self):
        assert parse_lane("3") == 3
        assert parse_lane("x") is None
        assert parse_lane(None) is None

    def test_first_non_empty(self):
        assert first_non_empty(None, "  ", "cam", "other") == "cam"
        assert first_non_empty(None, "") == ""


class TestExtractXmlPayload:

    def test_xml_file_by_filename(self):
        form = FormData([
            ("picture", make_upload(b"\xff\xd8jpeg", "plate.jpg", "image/jpeg")),
            ("anpr", make_upload(ALERT_XML, "anpr.xml", "application/octet-stream")),
        ])
        assert asyncio.run(extract_xml_payload(form)) == ALERT_XML

    def test_xml_file_by_content_type(self):
        form = FormData([("event", make_upload(MINIMAL_XML, "event", "text/xml"))])
        assert asyncio.run(extract_xml_payload(form)) == MINIMAL_XML

    def test_xml_text_field(self):
        form = FormData([("other", "value"), ("anpr_xml", MINIMAL_XML.decode("utf-8"))])
        assert asyncio.run(extract_xml_payload(form)) == MINIMAL_XML

    def test_no_xml_part(self):
        form = FormData([("picture", make_upload(b"jpeg", "plate.jpg", "image/jpeg"))])
        with pytest.raises(XMLPartNotFoundError):
            asyncio.run(extract_xml_payload(form))
