"""
Tests for the event retention purge command.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import purge_events
from database.repositories import EventRepository, PlateRepository


def seed(db_provider, ages_in_days):
    now = datetime.now(timezone.utc)
    with db_provider.session_scope() as session:
        plate = PlateRepository(session).get_or_create("AB123CD", "AB 123 CD")
        events = EventRepository(session)
        for age in ages_in_days:
            events.create({
                "plate_id": plate.id,
                "camera_id": "cam1",
                "raw_plate": "AB 123 CD",
                "normalized_plate": "AB123CD",
                "event_time": now - timedelta(days=age),
            })


def remaining(db_provider):
    with db_provider.session_scope() as session:
        return EventRepository(session).count()


def test_purge_removes_old_events(db_provider):
    seed(db_provider, [200, 95, 30, 1])

    assert purge_events.purge(db_provider, 90) == 2
    assert remaining(db_provider) == 2


def test_main_uses_retention_from_config(db_provider, config, capsys):
    seed(db_provider, [40, 10])
    config.retention.event_retention_days = 30

    with patch.object(purge_events, "get_config", return_value=config), \
            patch.object(purge_events, "init_db", return_value=db_provider), \
            patch.object(purge_events, "close_db"):
        exit_code = purge_events.main([])

    assert exit_code == 0
    assert "Deleted 1 events older than 30 days" in capsys.readouterr().out
    assert remaining(db_provider) == 1


def test_main_days_argument(db_provider, config):
    seed(db_provider, [40, 10])

    with patch.object(purge_events, "get_config", return_value=config), \
            patch.object(purge_events, "init_db", return_value=db_provider), \
            patch.object(purge_events, "close_db"):
        assert purge_events.main(["--days", "5"]) == 0

    assert remaining(db_provider) == 0


def test_main_rejects_non_positive_days(config):
    with patch.object(purge_events, "get_config", return_value=config):
        with pytest.raises(SystemExit):
            purge_events.main(["--days", "0"])
