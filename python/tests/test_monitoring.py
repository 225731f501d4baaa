"""
Tests for ingestion metrics and repository operation timing.
"""

import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

from prometheus_client import REGISTRY

from database import monitoring
from database.monitoring import (
    check_health,
    get_operation_stats,
    get_slow_operations,
    query_timer,
    record_ingestion,
    record_list_hits,
    record_purge,
    reset_operation_stats,
    timed_query,
)


@pytest.fixture(autouse=True)
def clean_stats():
    reset_operation_stats()
    yield
    reset_operation_stats()


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestOperationTiming:

    def test_successful_operation_recorded(self):
        before = sample("anpr_db_query_total", operation="lookup_test", status="success")

        with query_timer("lookup_test"):
            pass

        stats = get_operation_stats()["lookup_test"]
        assert stats["count"] == 1
        assert stats["errors"] == 0
        assert sample("anpr_db_query_total", operation="lookup_test", status="success") == before + 1

    def test_failed_operation_reraises_and_counts_error(self):
        with pytest.raises(ValueError):
            with query_timer("failing_test"):
                raise ValueError("boom")

        assert get_operation_stats()["failing_test"]["errors"] == 1

    def test_slow_operation_listed(self):
        with patch.object(monitoring, "SLOW_OPERATION_MS", -1.0):
            with query_timer("slow_test"):
                pass

        assert get_slow_operations() == ["slow_test"]
        assert get_operation_stats()["slow_test"]["slow"] == 1

    def test_decorator_preserves_result_and_name(self):
        @timed_query("decorated_test")
        def find_things(x):
            """Find things."""
            return x * 2

        assert find_things(21) == 42
        assert find_things.__name__ == "find_things"
        assert get_operation_stats()["decorated_test"]["count"] == 1

    def test_reset(self):
        with query_timer("reset_test"):
            pass
        reset_operation_stats()
        assert get_operation_stats() == {}


class TestIngestionCounters:

    def test_record_ingestion(self):
        before = sample("anpr_events_ingested_total", source="hikvision")
        record_ingestion("hikvision")
        assert sample("anpr_events_ingested_total", source="hikvision") == before + 1

    def test_record_list_hits_per_type(self):
        before_white = sample("anpr_list_hits_total", list_type="whitelist")
        before_black = sample("anpr_list_hits_total", list_type="blacklist")

        record_list_hits(["whitelist", "blacklist", "blacklist"])

        assert sample("anpr_list_hits_total", list_type="whitelist") == before_white + 1
        assert sample("anpr_list_hits_total", list_type="blacklist") == before_black + 2

    def test_record_purge_ignores_zero(self):
        before = sample("anpr_events_purged_total")
        record_purge(0)
        record_purge(3)
        assert sample("anpr_events_purged_total") == before + 3


class TestCheckHealth:

    def test_healthy(self, db_provider):
        status = check_health(db_provider.engine, db_provider.session_factory)

        assert status.healthy is True
        data = status.to_dict()
        assert set(data["pool"]) == {"size", "checked_out", "overflow"}
        assert data["error"] is None
        assert datetime.fromisoformat(data["timestamp"]).tzinfo is not None

    def test_failure_reported_not_raised(self, db_provider):
        broken = MagicMock()
        broken.return_value.execute.side_effect = RuntimeError("connection lost")

        status = check_health(db_provider.engine, broken)

        assert status.healthy is False
        assert "connection lost" in status.error
        broken.return_value.close.assert_called_once()
