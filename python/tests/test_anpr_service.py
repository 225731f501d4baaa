"""
Tests for the ANPR ingestion service.

Runs the full pipeline (normalize, upsert plate, append event, list lookup)
against an in-memory SQLite database.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from database.anpr_service import (
    ANPRService,
    EventInput,
    IngestionSettings,
    InvalidInputError,
    MAX_EVENTS_LIMIT,
    NotFoundError,
    clamp_limit,
    parse_rfc3339,
    to_utc,
)
from database.models import ANPREvent, ListType
from database.repositories import EventRepository, ListRepository, PlateRepository


@pytest.fixture
def service(session):
    return ANPRService(session, IngestionSettings(default_camera_model="DS-TCG406-E"))


def event_input(**overrides) -> EventInput:
    data = dict(
        camera_id="cam1",
        plate="AB 123 CD",
        event_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return EventInput(**data)


# ============================================
# INGESTION
# ============================================

class TestProcessIncomingEvent:

    def test_new_plate_no_hits(self, service, session):
        result = service.process_incoming_event(event_input())

        assert result.plate == "AB123CD"
        assert result.plate_id is not None
        assert result.event_id is not None
        assert result.hits == []

        plate = PlateRepository(session).get_by_normalized("AB123CD")
        assert plate.id == result.plate_id
        assert plate.number == "AB 123 CD"
        assert EventRepository(session).count() == 1

    def test_repeat_sighting_reuses_plate(self, service, session):
        first = service.process_incoming_event(event_input())
        second = service.process_incoming_event(event_input(plate="ab-123-cd"))

        assert first.plate_id == second.plate_id
        assert first.event_id != second.event_id
        assert len(PlateRepository(session).find_by_normalized("AB123CD")) == 1

    def test_event_fields_stored(self, service, session):
        result = service.process_incoming_event(event_input(
            confidence=91.25,
            direction="forward",
            lane=2,
            vehicle_color="white",
            vehicle_type="car",
            snapshot_url="http://cam/1.jpg",
            raw_payload={"source": "test"},
        ))

        event = session.get(ANPREvent, result.event_id)
        assert event.raw_plate == "AB 123 CD"
        assert event.normalized_plate == "AB123CD"
        assert event.camera_id == "cam1"
        assert event.confidence == 91.25
        assert event.lane == 2
        assert event.vehicle_color == "white"
        assert event.raw_payload == {"source": "test"}

    def test_camera_model_defaults_from_settings(self, service, session):
        result = service.process_incoming_event(event_input())
        assert session.get(ANPREvent, result.event_id).camera_model == "DS-TCG406-E"

    def test_explicit_camera_model_kept(self, service, session):
        result = service.process_incoming_event(event_input(camera_model="iDS-2CD7A46G0"))
        assert session.get(ANPREvent, result.event_id).camera_model == "iDS-2CD7A46G0"

    def test_event_time_stored_in_utc(self, service, session):
        local = datetime(2024, 1, 1, 3, 0, tzinfo=timezone(timedelta(hours=3)))
        result = service.process_incoming_event(event_input(event_time=local))

        stored = session.get(ANPREvent, result.event_id).event_time
        assert to_utc(stored) == datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

    def test_hits_reported(self, service, session):
        plate = PlateRepository(session).get_or_create("AB123CD", "AB 123 CD")
        lists = ListRepository(session)
        blacklist = lists.get_by_name("default_blacklist")
        lists.add_plate(blacklist.id, plate.id)
        session.commit()

        result = service.process_incoming_event(event_input())

        assert len(result.hits) == 1
        assert result.hits[0].list_name == "default_blacklist"
        assert result.hits[0].list_type == ListType.BLACKLIST.value
        assert result.to_dict()["hits"][0]["list_id"] == blacklist.id

    @pytest.mark.parametrize("field,overrides", [
        ("plate", {"plate": ""}),
        ("plate", {"plate": "   "}),
        ("camera_id", {"camera_id": ""}),
        ("event_time", {"event_time": None}),
    ])
    def test_missing_required_field(self, service, session, field, overrides):
        with pytest.raises(InvalidInputError) as exc_info:
            service.process_incoming_event(event_input(**overrides))

        assert exc_info.value.field == field
        assert exc_info.value.code == "MISSING_FIELD"
        assert EventRepository(session).count() == 0

    def test_plate_empty_after_normalization(self, service, session):
        with pytest.raises(InvalidInputError) as exc_info:
            service.process_incoming_event(event_input(plate="-- --"))

        assert exc_info.value.code == "EMPTY_PLATE"
        assert PlateRepository(session).find_by_normalized("") == []

    def test_storage_error_rolls_back(self, service, session):
        with patch.object(
            EventRepository, "create",
            side_effect=OperationalError("INSERT", {}, Exception("disk full"))
        ):
            with pytest.raises(OperationalError):
                service.process_incoming_event(event_input())

        assert PlateRepository(session).get_by_normalized("AB123CD") is None


# ============================================
# WHITELIST SYNC
# ============================================

class TestSyncVehicle:

    def test_adds_plate_to_whitelist(self, service, session):
        plate = service.sync_vehicle_to_whitelist("xy 987 zt", note="staff")

        assert plate.normalized == "XY987ZT"
        hits = ListRepository(session).find_hits(plate.id)
        assert [h.list_name for h in hits] == ["default_whitelist"]

    def test_is_idempotent(self, service, session):
        first = service.sync_vehicle_to_whitelist("XY987ZT")
        second = service.sync_vehicle_to_whitelist("xy-987-zt")

        assert first.id == second.id
        assert len(ListRepository(session).find_hits(first.id)) == 1

    def test_whitelisted_plate_reported_on_ingest(self, service):
        service.sync_vehicle_to_whitelist("AB123CD")
        result = service.process_incoming_event(event_input())

        assert [h.list_type for h in result.hits] == ["WHITELIST"]

    def test_empty_plate_rejected(self, service):
        with pytest.raises(InvalidInputError):
            service.sync_vehicle_to_whitelist("  ")

    def test_missing_whitelist(self, service):
        with patch.object(ListRepository, "get_by_name", return_value=None):
            with pytest.raises(NotFoundError):
                service.sync_vehicle_to_whitelist("AB123CD")


# ============================================
# RETENTION
# ============================================

class TestCleanupOldEvents:

    def test_deletes_old_events(self, service, session):
        now = datetime.now(timezone.utc)
        service.process_incoming_event(event_input(event_time=now - timedelta(days=120)))
        service.process_incoming_event(event_input(event_time=now - timedelta(days=5)))

        assert service.cleanup_old_events(90) == 1
        assert EventRepository(session).count() == 1

    @pytest.mark.parametrize("days", [0, -1])
    def test_rejects_non_positive_days(self, service, days):
        with pytest.raises(InvalidInputError):
            service.cleanup_old_events(days)


# ============================================
# QUERIES
# ============================================

class TestQueries:

    def test_find_plates_with_last_event_time(self, service):
        service.process_incoming_event(event_input(event_time=datetime(2024, 1, 1, tzinfo=timezone.utc)))
        service.process_incoming_event(event_input(event_time=datetime(2024, 2, 1, tzinfo=timezone.utc)))

        plates = service.find_plates("ab 123 cd")

        assert len(plates) == 1
        assert plates[0].normalized == "AB123CD"
        assert plates[0].last_event_time == datetime(2024, 2, 1, tzinfo=timezone.utc)

    def test_find_plates_unknown(self, service):
        assert service.find_plates("ZZ999") == []

    def test_find_plates_empty_query(self, service):
        with pytest.raises(InvalidInputError):
            service.find_plates(" - ")

    def test_find_events_by_plate_and_range(self, service):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for day in range(3):
            service.process_incoming_event(event_input(event_time=base + timedelta(days=day)))
        service.process_incoming_event(event_input(plate="XY 987", event_time=base))

        events = service.find_events(
            plate_query="ab123cd",
            start="2024-01-02T00:00:00Z",
            end="2024-01-03T00:00:00+00:00",
        )

        assert [e.event_time for e in events] == [
            base + timedelta(days=2),
            base + timedelta(days=1),
        ]
        assert all(e.normalized_plate == "AB123CD" for e in events)

    def test_find_events_limit_clamped(self, service, session):
        plate = PlateRepository(session).get_or_create("AB123CD", "AB 123 CD")
        events = EventRepository(session)
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(MAX_EVENTS_LIMIT + 5):
            events.create({
                "plate_id": plate.id,
                "camera_id": "cam1",
                "raw_plate": "AB 123 CD",
                "normalized_plate": "AB123CD",
                "event_time": base + timedelta(minutes=i),
            })
        session.commit()

        assert len(service.find_events(limit=500)) == MAX_EVENTS_LIMIT
        assert len(service.find_events(limit=0)) == 50
        assert len(service.find_events(limit=10, offset=-5)) == 10

    def test_find_events_plate_filter_ignored_when_empty(self, service):
        service.process_incoming_event(event_input())
        assert len(service.find_events(plate_query="---")) == 1

    def test_find_events_invalid_time(self, service):
        with pytest.raises(InvalidInputError) as exc_info:
            service.find_events(start="yesterday")
        assert exc_info.value.field == "from"


# ============================================
# HELPERS
# ============================================

class TestHelpers:

    def test_parse_rfc3339_zulu(self):
        assert parse_rfc3339("2024-01-01T00:00:00Z", "from") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_parse_rfc3339_requires_offset(self):
        with pytest.raises(InvalidInputError):
            parse_rfc3339("2024-01-01T00:00:00", "to")

    def test_to_utc_naive_is_utc(self):
        assert to_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("limit,expected", [(None, 50), (0, 50), (-3, 50), (20, 20), (100, 100), (500, 100)])
    def test_clamp_limit(self, limit, expected):
        assert clamp_limit(limit) == expected
