"""
Trip ingestion: fetch one trip's detail and persist its line, trip, vehicle
position, stops and stop events.

Stops first seen here are handed to the discovery frontier, which is how the
set of polled stops grows beyond the seeds.
"""

import enum
import logging
from datetime import date, datetime, time, timezone
from typing import Callable, Optional

from classifier import extract_line_number, is_inside_region, is_monitored_line
from errors import StoreError, UpstreamDataError, UpstreamError
from models import Stopover, TripDetail, describe_trip_id
from temporal_upsert import ARRIVAL, DEPARTURE, UpsertOutcome, utc_now

logger = logging.getLogger(__name__)


class IngestResult(enum.Enum):
    INGESTED = 'ingested'
    FILTERED = 'filtered'   # no line, or not part of the monitored network
    FAILED = 'failed'       # upstream error, nothing written


def service_date_for(trip: TripDetail, now: datetime) -> date:
    """UTC calendar date of the trip's planned (else actual) departure."""
    instant = trip.planned_departure or trip.departure or now
    return instant.astimezone(timezone.utc).date()


def first_planned_departure(stopovers: list[Stopover]) -> Optional[time]:
    for stopover in stopovers:
        if stopover.planned_departure is not None:
            return stopover.planned_departure.time()
    return None


def ordered_stopovers(stopovers: list[Stopover]) -> list[tuple[int, Stopover]]:
    """Pair each stopover with its stop sequence (upstream value, else 1-based position), ascending."""
    numbered = [
        (s.stop_sequence if s.stop_sequence is not None else index + 1, s)
        for index, s in enumerate(stopovers)
    ]
    return sorted(numbered, key=lambda pair: pair[0])


class TripIngestor:
    """Ingests single trips. Safe to run for different trips concurrently."""

    def __init__(self, client, store, frontier, upserter, bbox, line_patterns,
                 now: Callable[[], datetime] = utc_now,
                 on_event_outcome: Optional[Callable[[UpsertOutcome], None]] = None):
        self.client = client
        self.store = store
        self.frontier = frontier
        self.upserter = upserter
        self.bbox = bbox
        self.line_patterns = line_patterns
        self.now = now
        self.on_event_outcome = on_event_outcome
        self._saved_stops: set[str] = set()

    def ingest_trip(self, trip_id: str) -> IngestResult:
        context = describe_trip_id(trip_id)
        try:
            logger.debug(f"Fetching details for trip: {context}")
            trip = self.client.get_trip_detail(trip_id)
        except UpstreamDataError as e:
            logger.warning(f"Malformed trip detail for {context}: {e}")
            return IngestResult.FAILED
        except UpstreamError as e:
            logger.warning(f"Trip fetch failed for {context}: {e}")
            return IngestResult.FAILED

        if trip.line is None or not is_monitored_line(trip.line, self.line_patterns):
            logger.debug(f"Skipped trip outside monitored network: {context}")
            return IngestResult.FILTERED

        line = trip.line
        logger.debug(f"Processing Line {line.name} -> {trip.direction or 'N/A'}")
        now = self.now()

        line_id = line.id or line.name
        self._guarded(
            f"line {line_id}",
            self.store.upsert_line, line_id, line.name, line.product, extract_line_number(line.name),
        )
        self._guarded(
            f"trip {context}",
            self.store.upsert_trip, trip.id, line_id, trip.direction,
            service_date_for(trip, now), first_planned_departure(trip.stopovers),
        )

        location = trip.current_location
        if location is not None and location.latitude is not None and location.longitude is not None:
            if trip.departure_delay is not None:
                delay = trip.departure_delay
            elif trip.arrival_delay is not None:
                delay = trip.arrival_delay
            else:
                delay = 0
            self._guarded(
                f"vehicle position {context}",
                self.store.insert_vehicle_position, trip.id, now,
                location.latitude, location.longitude, delay,
            )

        for sequence, stopover in ordered_stopovers(trip.stopovers):
            self._ingest_stopover(trip, sequence, stopover)

        return IngestResult.INGESTED

    def _ingest_stopover(self, trip: TripDetail, sequence: int, stopover: Stopover) -> None:
        stop = stopover.stop
        if stop is None:
            return

        if is_inside_region(stop.location, self.bbox):
            if self.frontier.discover(stop.id):
                logger.debug(f"New stop for queue: {stop.name} ({stop.id})")
            if stop.id not in self._saved_stops:
                self._save_stop(stop)
        else:
            logger.debug(f"Out-of-bounds stop found: {stop.name} ({stop.id})")

        if stopover.has_arrival:
            self._record(self.upserter.upsert(
                trip.id, stop.id, ARRIVAL, sequence,
                planned_time=stopover.planned_arrival,
                actual_time=stopover.arrival,
                arrival_delay_seconds=stopover.arrival_delay,
            ))
        if stopover.has_departure:
            self._record(self.upserter.upsert(
                trip.id, stop.id, DEPARTURE, sequence,
                planned_time=stopover.planned_departure,
                actual_time=stopover.departure,
                departure_delay_seconds=stopover.departure_delay,
            ))

    def _save_stop(self, stop) -> None:
        """Write a stop until it has been stored once with a name."""
        try:
            self.store.upsert_stop(stop.id, stop.name, stop.location.latitude, stop.location.longitude)
        except StoreError as e:
            logger.error(f"Store write failed for stop {stop.id}: {e}")
            return
        if stop.name is not None:
            self._saved_stops.add(stop.id)

    def _record(self, outcome: UpsertOutcome) -> None:
        if self.on_event_outcome is not None:
            self.on_event_outcome(outcome)

    @staticmethod
    def _guarded(what: str, fn, *args) -> None:
        try:
            fn(*args)
        except StoreError as e:
            logger.error(f"Store write failed for {what}: {e}")
