"""
Unit tests for fetcher.py startup wiring.
"""

from unittest.mock import patch

from fetcher import build_scheduler, run_fetcher
from frontier import Frontier
from hafas_client import HafasClient
from trip_ingestor import TripIngestor


def test_build_scheduler_wires_components(config, store):
    scheduler = build_scheduler(config, store)

    assert isinstance(scheduler.frontier, Frontier)
    assert isinstance(scheduler.client, HafasClient)
    assert isinstance(scheduler.ingestor, TripIngestor)
    assert scheduler.ingestor.frontier is scheduler.frontier
    assert scheduler.frontier.seen("460304700")
    assert scheduler.client.session.headers["User-Agent"] == config.user_agent


def test_invalid_config_exits_nonzero():
    with patch("fetcher.load_config", side_effect=ValueError("DATABASE_URL is required")):
        assert run_fetcher() == 1


def test_unreachable_database_exits_nonzero(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://nobody@127.0.0.1:1/none")
    monkeypatch.setenv("HAFAS_BASE_URL", "https://hafas.example")
    with patch("fetcher.get_db_engine", side_effect=RuntimeError("connection refused")):
        assert run_fetcher() == 1
