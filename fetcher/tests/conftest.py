"""
Shared fixtures for fetcher unit tests.
Uses SQLite in-memory for DB tests to avoid requiring a real PostgreSQL connection.

The root conftest.py adds fetcher/ to sys.path so bare imports work.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from factories import FakeClock, utc

CONFIG_ENV_KEYS = (
    "DATABASE_URL", "HAFAS_BASE_URL", "HAFAS_USER_AGENT", "POLL_INTERVAL",
    "STOPS_PER_CYCLE", "INGEST_WORKERS", "DEPARTURE_WINDOW_MINUTES",
    "REQUEST_TIMEOUT", "SEED_STOP_IDS", "BBOX_NORTH", "BBOX_SOUTH",
    "BBOX_EAST", "BBOX_WEST", "LINE_PATTERNS", "RETENTION_DAYS",
    "STATS_INTERVAL", "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_fetcher_env(monkeypatch):
    """Ensure fetcher env vars from the developer's shell don't leak into tests."""
    for key in CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def sqlite_engine():
    """In-memory SQLite engine with all fetcher tables created, shared across threads."""
    from db import Base
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(sqlite_engine):
    from db import Store
    return Store(sqlite_engine)


@pytest.fixture()
def clock():
    return FakeClock(utc("2024-01-01T09:50:00Z"))


@pytest.fixture()
def config():
    from config import load_config
    return load_config(env={
        "DATABASE_URL": "sqlite://",
        "HAFAS_BASE_URL": "https://hafas.example",
        "STOPS_PER_CYCLE": "3",
        "INGEST_WORKERS": "1",
        "POLL_INTERVAL": "10",
    })
