"""
Temporal upsert of stop events.

Repeated observations of the same (trip, stop, event type) converge to the
latest value, except once a stored event is finalized: if its best known
time (actual, else planned) was already in the past when it was written, it
describes something that has happened and later observations are skipped.
A record written ahead of time with only a planned time still receives its
actual time after the fact.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from db import StopEventRecord
from errors import StoreError

logger = logging.getLogger(__name__)

ARRIVAL = 'arrival'
DEPARTURE = 'departure'


class UpsertOutcome(enum.Enum):
    INSERTED = 'inserted'
    UPDATED = 'updated'
    SKIPPED = 'skipped'     # existing event already finalized
    FAILED = 'failed'       # store read/write error, update dropped


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def best_known_time(actual: Optional[datetime], planned: Optional[datetime]) -> Optional[datetime]:
    return actual if actual is not None else planned


def is_finalized(existing: StopEventRecord) -> bool:
    """True if the stored event's time was strictly before the time it was written."""
    existing_time = best_known_time(existing.actual_time, existing.planned_time)
    if existing_time is None or existing.recorded_at is None:
        return False
    return existing_time < existing.recorded_at


class TemporalUpserter:
    """Stop event write path: read the stored event, then insert, overwrite or skip."""

    def __init__(self, store, now: Callable[[], datetime] = utc_now):
        self.store = store
        self.now = now

    def upsert(
        self,
        trip_id: str,
        stop_id: str,
        event_type: str,
        stop_sequence: Optional[int],
        planned_time: Optional[datetime],
        actual_time: Optional[datetime],
        arrival_delay_seconds: Optional[int] = None,
        departure_delay_seconds: Optional[int] = None,
    ) -> UpsertOutcome:
        now = self.now()
        observed_time = best_known_time(actual_time, planned_time) or now
        key = f"{trip_id}/{stop_id}/{event_type}"

        try:
            existing = self.store.get_stop_event(trip_id, stop_id, event_type)
        except StoreError as e:
            logger.error(f"Stop event read failed, dropping update for {key}: {e}")
            return UpsertOutcome.FAILED

        if existing is not None and is_finalized(existing):
            logger.debug(f"Stop event {key} is finalized, skipping")
            return UpsertOutcome.SKIPPED

        record = StopEventRecord(
            trip_id=trip_id,
            stop_id=stop_id,
            event_type=event_type,
            stop_sequence=stop_sequence,
            timestamp=observed_time,
            planned_time=planned_time,
            actual_time=actual_time,
            arrival_delay_seconds=arrival_delay_seconds,
            departure_delay_seconds=departure_delay_seconds,
            recorded_at=now,
        )
        try:
            self.store.write_stop_event(record)
        except StoreError as e:
            logger.error(f"Stop event write failed, dropping update for {key}: {e}")
            return UpsertOutcome.FAILED

        return UpsertOutcome.INSERTED if existing is None else UpsertOutcome.UPDATED
