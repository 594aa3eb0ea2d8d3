"""
Graz Realtime Transit Fetcher

Runs 24/7, discovering stops and ingesting live trip data from a HAFAS
journey-planning endpoint into PostgreSQL:

1. Frontier   - stops known so far, starting from the seed stop(s) and
                growing as trips pass through stops not seen before
2. Scheduler  - every POLL_INTERVAL seconds, polls departures for a batch of
                STOPS_PER_CYCLE stops and ingests each unique trip once
3. Ingestor   - writes lines, trips, vehicle positions, stops and stop
                events (temporal upsert: finalized events are never
                overwritten)

The only fatal condition is an unreachable database at startup.
"""

import logging
import signal
import sys
import threading
from functools import partial

from config import load_config
from db import Store, get_db_engine
from db_maintenance import run_full_maintenance
from frontier import Frontier
from hafas_client import HafasClient
from scheduler import PollingScheduler
from temporal_upsert import TemporalUpserter
from trip_ingestor import TripIngestor

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    # requests/urllib3 connection chatter drowns out per-trip DEBUG lines
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def build_scheduler(config, store: Store) -> PollingScheduler:
    """Wire frontier, client, upserter and ingestor into a scheduler."""
    frontier = Frontier(config.seed_stop_ids)
    client = HafasClient(
        config.hafas_base_url,
        config.user_agent,
        timeout=config.request_timeout_seconds,
        pool_size=max(config.stops_per_cycle, config.ingest_workers),
    )
    upserter = TemporalUpserter(store)
    ingestor = TripIngestor(
        client, store, frontier, upserter,
        bbox=config.bbox,
        line_patterns=config.line_patterns,
    )
    return PollingScheduler(
        client, ingestor, frontier, store, config,
        maintenance=partial(run_full_maintenance, store.engine, config.retention_days),
    )


def run_fetcher() -> int:
    try:
        config = load_config()
    except ValueError as e:
        configure_logging('INFO')
        logger.error(f"Invalid configuration: {e}")
        return 1

    configure_logging(config.log_level)

    logger.info("=" * 60)
    logger.info("GRAZ REALTIME TRANSIT FETCHER")
    logger.info("=" * 60)
    logger.info(f"HAFAS Base: {config.hafas_base_url}")
    logger.info(f"Poll Interval: {config.poll_interval_seconds:g}s")
    logger.info(f"Stops per Cycle: {config.stops_per_cycle}")
    logger.info(f"Ingest Workers: {config.ingest_workers}")
    logger.info(f"Seed Stops: {', '.join(config.seed_stop_ids)}")
    logger.info(f"Monitored Products: {', '.join(sorted(config.line_patterns))}")

    try:
        engine = get_db_engine(
            config.database_url,
            pool_size=config.stops_per_cycle + config.ingest_workers,
        )
        store = Store(engine)
        store.ping()
        logger.info("Database: ✓ connected")
    except Exception as e:
        logger.error(f"Database: ✗ Failed to connect: {e}")
        return 1

    run_full_maintenance(engine, config.retention_days)

    scheduler = build_scheduler(config, store)
    stop_event = threading.Event()

    def _shutdown(signum, frame):
        logger.info("Shutting down after the current cycle...")
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info("Starting fetch loop...")
    scheduler.run(stop_event)
    return 0


if __name__ == '__main__':
    sys.exit(run_fetcher())
