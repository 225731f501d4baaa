"""
Shared fixtures: an in-memory SQLite database with the schema and default
lists in place.
"""

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import DatabaseSettings, create_test_provider


@pytest.fixture
def engine():
    """Single-connection in-memory SQLite engine usable across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    """Provider bound to the SQLite engine, schema created and lists seeded."""
    provider = create_test_provider(engine=engine, settings=DatabaseSettings(url="sqlite://"))
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def session(db_provider):
    """Database session for a single test."""
    session = db_provider.session_factory()
    yield session
    session.close()


@pytest.fixture
def config(tmp_path, monkeypatch):
    """Configuration loaded from an empty file with no environment overrides."""
    for name in ("CAMERA_MODEL", "CAMERA_HTTP_HOST", "CAMERA_RTSP_URL",
                 "EVENT_RETENTION_DAYS", "LOG_LEVEL", "CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text("camera:\n  model: DS-TCG406-E\n", encoding="utf-8")
    return ConfigManager(str(config_file))
