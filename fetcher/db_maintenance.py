"""
Database Maintenance Utilities

- Enforce retention policy for the append-only vehicle_positions table
- Ensure indexes used by downstream queries (latest position per trip,
  events per stop)
"""

import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy import delete, text

from db import VehiclePositionRow, to_utc

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7

INDEXES = [
    "CREATE INDEX IF NOT EXISTS ix_vehicle_positions_trip_ts ON vehicle_positions (trip_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS ix_stop_events_stop_ts ON stop_events (stop_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS ix_stop_events_trip_seq ON stop_events (trip_id, stop_sequence)",
    "CREATE INDEX IF NOT EXISTS ix_trips_line_date ON trips (line_id, service_date)",
]


def enforce_retention_policy(engine, days: int = DEFAULT_RETENTION_DAYS, now: datetime = None) -> int:
    """
    Delete vehicle positions older than ``days``.

    Stop events, trips, lines and stops are history and are kept. Returns the
    number of deleted rows.
    """
    cutoff = to_utc(now or datetime.now(timezone.utc)) - timedelta(days=days)
    with engine.connect() as conn:
        result = conn.execute(delete(VehiclePositionRow).where(VehiclePositionRow.timestamp < cutoff))
        conn.commit()
    if result.rowcount > 0:
        logger.info(f"Retention: deleted {result.rowcount} rows from vehicle_positions (>{days} days)")
    return result.rowcount


def ensure_indexes(engine):
    """Create query indexes if they don't exist."""
    with engine.connect() as conn:
        for idx_sql in INDEXES:
            try:
                conn.execute(text(idx_sql))
            except Exception as e:
                logger.debug(f"Index creation note: {e}")
        conn.commit()
    logger.info(f"Ensured {len(INDEXES)} query indexes")


def run_full_maintenance(engine, retention_days: int = DEFAULT_RETENTION_DAYS):
    """Run all maintenance tasks. Failures are logged, never raised."""
    logger.info("Running database maintenance...")
    try:
        enforce_retention_policy(engine, days=retention_days)
    except Exception as e:
        logger.warning(f"Retention cleanup failed: {e}")
    try:
        ensure_indexes(engine)
    except Exception as e:
        logger.warning(f"Index maintenance failed: {e}")
    logger.info("Database maintenance complete")
