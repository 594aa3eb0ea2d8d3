"""
Unit tests for temporal_upsert.py: the finalization rule for stop events.

The clock is injected so each write happens at a chosen wall-clock time.
"""

from unittest.mock import MagicMock

from errors import StoreError
from factories import utc
from temporal_upsert import ARRIVAL, DEPARTURE, TemporalUpserter, UpsertOutcome


def _arrival(upserter, planned=None, actual=None, delay=None):
    return upserter.upsert(
        "T1", "stopX", ARRIVAL, 1,
        planned_time=planned, actual_time=actual, arrival_delay_seconds=delay,
    )


class TestLateCorrectionScenario:
    """Planned-only event recorded ahead of time, corrected once, then frozen."""

    def test_full_sequence(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)

        # Ingested before 10:00 with only a planned time
        clock.set(utc("2024-01-01T09:50:00Z"))
        assert _arrival(upserter, planned=utc("2024-01-01T10:00:00Z")) is UpsertOutcome.INSERTED
        event = store.get_stop_event("T1", "stopX", ARRIVAL)
        assert event.planned_time == utc("2024-01-01T10:00:00Z")
        assert event.actual_time is None

        # After 10:00 the actual time arrives; the stored record was not finalized
        clock.set(utc("2024-01-01T10:02:00Z"))
        outcome = _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"),
                           actual=utc("2024-01-01T10:01:00Z"), delay=60)
        assert outcome is UpsertOutcome.UPDATED
        assert store.get_stop_event("T1", "stopX", ARRIVAL).actual_time == utc("2024-01-01T10:01:00Z")

        # A stale correction after 10:01 became the finalized past is skipped
        clock.set(utc("2024-01-01T10:06:00Z"))
        outcome = _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"),
                           actual=utc("2024-01-01T10:05:00Z"), delay=300)
        assert outcome is UpsertOutcome.SKIPPED
        event = store.get_stop_event("T1", "stopX", ARRIVAL)
        assert event.actual_time == utc("2024-01-01T10:01:00Z")
        assert event.arrival_delay_seconds == 60


class TestFinalization:
    def test_event_already_past_when_first_written_is_frozen(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        clock.set(utc("2024-01-01T12:00:00Z"))
        _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"))

        clock.set(utc("2024-01-01T12:01:00Z"))
        outcome = _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"), actual=utc("2024-01-01T10:03:00Z"))

        assert outcome is UpsertOutcome.SKIPPED
        assert store.get_stop_event("T1", "stopX", ARRIVAL).actual_time is None

    def test_future_event_keeps_converging(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        clock.set(utc("2024-01-01T09:00:00Z"))
        _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"))

        clock.set(utc("2024-01-01T09:30:00Z"))
        outcome = _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"), actual=utc("2024-01-01T10:04:00Z"))

        assert outcome is UpsertOutcome.UPDATED
        assert store.get_stop_event("T1", "stopX", ARRIVAL).actual_time == utc("2024-01-01T10:04:00Z")

    def test_event_time_equal_to_write_time_is_not_finalized(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        clock.set(utc("2024-01-01T10:00:00Z"))
        _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"))

        clock.set(utc("2024-01-01T10:01:00Z"))
        outcome = _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"), actual=utc("2024-01-01T10:00:30Z"))

        assert outcome is UpsertOutcome.UPDATED

    def test_repeated_identical_finalized_write_changes_nothing(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        clock.set(utc("2024-01-01T10:02:00Z"))
        _arrival(upserter, actual=utc("2024-01-01T10:01:00Z"))
        before = store.get_stop_event("T1", "stopX", ARRIVAL)

        clock.set(utc("2024-01-01T10:03:00Z"))
        assert _arrival(upserter, actual=utc("2024-01-01T10:01:00Z")) is UpsertOutcome.SKIPPED

        assert store.get_stop_event("T1", "stopX", ARRIVAL) == before

    def test_arrival_and_departure_are_independent(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        clock.set(utc("2024-01-01T10:02:00Z"))
        _arrival(upserter, actual=utc("2024-01-01T10:01:00Z"))

        outcome = upserter.upsert("T1", "stopX", DEPARTURE, 1,
                                  planned_time=utc("2024-01-01T10:03:00Z"), actual_time=None)

        assert outcome is UpsertOutcome.INSERTED


class TestObservedTime:
    def test_timestamp_prefers_actual_then_planned(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        _arrival(upserter, planned=utc("2024-01-01T10:00:00Z"), actual=utc("2024-01-01T10:02:00Z"))

        assert store.get_stop_event("T1", "stopX", ARRIVAL).timestamp == utc("2024-01-01T10:02:00Z")

    def test_timestamp_falls_back_to_now(self, store, clock):
        upserter = TemporalUpserter(store, now=clock)
        _arrival(upserter)

        event = store.get_stop_event("T1", "stopX", ARRIVAL)
        assert event.timestamp == clock()
        assert event.planned_time is None


class TestStoreFailures:
    def test_read_failure_drops_update(self, clock):
        store = MagicMock()
        store.get_stop_event.side_effect = StoreError("connection reset")
        upserter = TemporalUpserter(store, now=clock)

        assert _arrival(upserter, planned=utc("2024-01-01T10:00:00Z")) is UpsertOutcome.FAILED
        store.write_stop_event.assert_not_called()

    def test_write_failure_drops_update(self, clock):
        store = MagicMock()
        store.get_stop_event.return_value = None
        store.write_stop_event.side_effect = StoreError("disk full")
        upserter = TemporalUpserter(store, now=clock)

        assert _arrival(upserter, planned=utc("2024-01-01T10:00:00Z")) is UpsertOutcome.FAILED
