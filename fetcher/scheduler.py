"""
Polling scheduler: the fetcher's control loop.

Each cycle takes a batch of stops from the frontier, fetches their
departures concurrently, collects the unique monitored trip ids, and hands
each one to the trip ingestor exactly once.

Cycles run on a fixed period anchored at the first tick. Cycles never
overlap: a tick that fires while a cycle is still running is skipped, not
queued, so a slow upstream cannot build up a backlog.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional

from classifier import is_inside_region, is_monitored_line
from db import TABLES
from errors import StoreError, UpstreamError
from models import Departure
from temporal_upsert import UpsertOutcome
from trip_ingestor import IngestResult

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Counts for one select-fetch-ingest cycle."""
    stops_polled: list[str] = field(default_factory=list)
    stops_failed: int = 0
    departures: int = 0
    trip_ids: list[str] = field(default_factory=list)
    ingested: int = 0
    filtered: int = 0
    failed: int = 0


def schedule_next_tick(previous_tick: float, now: float, period: float) -> tuple[float, int]:
    """
    Next tick after ``previous_tick`` that is not already in the past.

    Returns (next_tick, skipped) where ``skipped`` counts the ticks that
    fired while the last cycle was still running.
    """
    next_tick = previous_tick + period
    skipped = 0
    while next_tick < now:
        next_tick += period
        skipped += 1
    return next_tick, skipped


class PollingScheduler:
    """Owns the frontier between cycles and drives the ingest pipeline."""

    def __init__(
        self,
        client,
        ingestor,
        frontier,
        store,
        config,
        clock: Callable[[], float] = time.monotonic,
        maintenance: Optional[Callable[[], None]] = None,
        maintenance_interval: float = 86400,
    ):
        self.client = client
        self.ingestor = ingestor
        self.frontier = frontier
        self.store = store
        self.config = config
        self.clock = clock
        self.maintenance = maintenance
        self.maintenance_interval = maintenance_interval
        self._stats_lock = threading.Lock()
        self.stats = {
            'cycles_run': 0,
            'cycles_failed': 0,
            'ticks_skipped': 0,
            'stops_polled': 0,
            'stop_fetches_failed': 0,
            'trips_ingested': 0,
            'trips_filtered': 0,
            'trips_failed': 0,
            'events_inserted': 0,
            'events_updated': 0,
            'events_skipped': 0,
            'events_failed': 0,
            'started_at': None,
            'last_cycle_at': None,
        }
        if ingestor is not None:
            ingestor.on_event_outcome = self.count_event

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        report.stops_polled = self.frontier.take_batch(self.config.stops_per_cycle)
        logger.info(
            f"Querying {len(report.stops_polled)} stops. "
            f"Discovered: {self.frontier.discovered_count}. Queue: {self.frontier.pending_count}"
        )
        if not report.stops_polled:
            logger.warning("Frontier returned no stops to poll")
            return report

        departures = self._fetch_departures(report)
        self._save_polled_stops(departures)

        # Fan-in happened above; dedup runs in this thread only
        trip_ids = dict.fromkeys(
            d.trip_id for d in departures if is_monitored_line(d.line, self.config.line_patterns)
        )
        report.trip_ids = list(trip_ids)
        logger.info(f"Found {len(report.trip_ids)} unique trips to process")

        self._ingest_trips(report)

        with self._stats_lock:
            self.stats['stops_polled'] += len(report.stops_polled)
            self.stats['stop_fetches_failed'] += report.stops_failed
            self.stats['trips_ingested'] += report.ingested
            self.stats['trips_filtered'] += report.filtered
            self.stats['trips_failed'] += report.failed

        logger.info(
            f"Cycle complete: {report.ingested} ingested, {report.filtered} filtered, "
            f"{report.failed} failed, {report.stops_failed}/{len(report.stops_polled)} stop fetches failed"
        )
        return report

    def _fetch_departures(self, report: CycleReport) -> list[Departure]:
        departures = []
        with ThreadPoolExecutor(max_workers=self.config.stops_per_cycle) as pool:
            futures = {
                pool.submit(self.client.get_departures, stop_id, self.config.departure_window_minutes): stop_id
                for stop_id in report.stops_polled
            }
            for future in as_completed(futures):
                stop_id = futures[future]
                try:
                    result = future.result()
                except UpstreamError as e:
                    report.stops_failed += 1
                    logger.warning(f"Departures fetch failed for stop {stop_id}: {e}")
                    continue
                logger.debug(f"Stop {stop_id}: {len(result)} departures")
                departures.extend(result)
        report.departures = len(departures)
        return departures

    def _save_polled_stops(self, departures: list[Departure]) -> None:
        """Persist the stops named by departures, so seed stops get a row too."""
        seen = set()
        for departure in departures:
            stop = departure.stop
            if stop is None or stop.id in seen:
                continue
            seen.add(stop.id)
            if not is_inside_region(stop.location, self.config.bbox):
                continue
            try:
                self.store.upsert_stop(stop.id, stop.name, stop.location.latitude, stop.location.longitude)
            except StoreError as e:
                logger.error(f"Store write failed for stop {stop.id}: {e}")

    def _ingest_trips(self, report: CycleReport) -> None:
        if not report.trip_ids:
            return
        with ThreadPoolExecutor(max_workers=self.config.ingest_workers) as pool:
            futures = {pool.submit(self.ingestor.ingest_trip, trip_id): trip_id for trip_id in report.trip_ids}
            for future in as_completed(futures):
                try:
                    result = future.result()
                except Exception:
                    logger.exception(f"Unexpected error ingesting trip {futures[future]}")
                    result = IngestResult.FAILED
                if result is IngestResult.INGESTED:
                    report.ingested += 1
                elif result is IngestResult.FILTERED:
                    report.filtered += 1
                else:
                    report.failed += 1

    def count_event(self, outcome: UpsertOutcome) -> None:
        with self._stats_lock:
            self.stats[f"events_{outcome.value}"] += 1

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self, stop_event: threading.Event) -> None:
        """Run cycles on the configured period until ``stop_event`` is set."""
        period = self.config.poll_interval_seconds
        self.stats['started_at'] = time.time()
        next_tick = self.clock()
        last_stats_time = next_tick
        last_maintenance_time = next_tick

        while not stop_event.is_set():
            self._run_cycle_safely()

            now = self.clock()
            if now - last_stats_time >= self.config.stats_interval_seconds:
                self.log_stats()
                last_stats_time = now
            if self.maintenance is not None and now - last_maintenance_time >= self.maintenance_interval:
                self._run_maintenance()
                last_maintenance_time = now

            now = self.clock()
            next_tick, skipped = schedule_next_tick(next_tick, now, period)
            if skipped:
                self.stats['ticks_skipped'] += skipped
                logger.warning(f"Cycle overran the {period:g}s period, skipped {skipped} tick(s)")
            stop_event.wait(timeout=max(0.0, next_tick - now))

        logger.info("Scheduler stopped")
        self.log_stats()

    def _run_cycle_safely(self) -> Optional[CycleReport]:
        logger.info("--- Starting new fetch cycle ---")
        try:
            report = self.run_cycle()
        except Exception as e:
            self.stats['cycles_failed'] += 1
            logger.exception(f"Error in fetch cycle: {e}")
            return None
        finally:
            self.stats['cycles_run'] += 1
            self.stats['last_cycle_at'] = time.time()
        return report

    def _run_maintenance(self) -> None:
        try:
            self.maintenance()
        except Exception as e:
            logger.warning(f"DB maintenance failed: {e}")

    def log_stats(self) -> None:
        """Log collection statistics."""
        started = self.stats['started_at']
        hours = (time.time() - started) / 3600 if started else 0.0
        requests_made = getattr(self.client, 'request_count', 0)

        logger.info("=" * 50)
        logger.info("FETCHER STATS")
        logger.info(f"  Runtime: {hours:.1f} hours")
        logger.info(f"  Cycles: {self.stats['cycles_run']} run, {self.stats['cycles_failed']} failed, "
                    f"{self.stats['ticks_skipped']} ticks skipped")
        logger.info(f"  Stops polled: {self.stats['stops_polled']} "
                    f"({self.stats['stop_fetches_failed']} failed)")
        logger.info(f"  Stops discovered: {self.frontier.discovered_count}")
        logger.info(f"  Trips: {self.stats['trips_ingested']} ingested, {self.stats['trips_filtered']} filtered, "
                    f"{self.stats['trips_failed']} failed")
        logger.info(f"  Stop events: {self.stats['events_inserted']} inserted, "
                    f"{self.stats['events_updated']} updated, {self.stats['events_skipped']} finalized/skipped, "
                    f"{self.stats['events_failed']} failed")
        logger.info(f"  Upstream requests: {requests_made}")
        logger.info(f"  Rate: {requests_made / max(hours, 0.1):.1f} req/hour")
        try:
            rows = {table: self.store.count_rows(table) for table in TABLES}
        except StoreError as e:
            logger.warning(f"  Stored rows: unavailable ({e})")
        else:
            logger.info("  Stored rows: " + ", ".join(f"{table}={count}" for table, count in rows.items()))
        logger.info("=" * 50)
