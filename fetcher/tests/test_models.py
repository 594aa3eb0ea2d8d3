"""
Unit tests for models.py: parsing of raw HAFAS payloads into typed records.
"""

import pytest

from errors import UpstreamDataError
from factories import TRIP_ID, raw_departure, raw_stopover, raw_trip, utc
from models import describe_trip_id, parse_departure, parse_stop, parse_trip


class TestParseTrip:
    def test_parses_line_and_times(self):
        trip = parse_trip(raw_trip(stopovers=[
            raw_stopover("460304700", plannedDeparture="2024-01-01T10:00:00+01:00",
                         departure="2024-01-01T10:01:00+01:00", departureDelay=60),
        ]))

        assert trip.id == TRIP_ID
        assert trip.line.name == "Tram 4"
        assert trip.line.product == "tram"
        assert trip.planned_departure == utc("2024-01-01T09:00:00Z")
        stopover = trip.stopovers[0]
        assert stopover.stop.id == "460304700"
        assert stopover.departure == utc("2024-01-01T09:01:00Z")
        assert stopover.departure_delay == 60
        assert stopover.has_departure
        assert not stopover.has_arrival

    def test_zulu_timestamps(self):
        trip = parse_trip(raw_trip(plannedDeparture="2024-01-01T10:00:00Z"))
        assert trip.planned_departure == utc("2024-01-01T10:00:00Z")

    def test_zero_delay_is_kept(self):
        trip = parse_trip(raw_trip(departureDelay=0, arrivalDelay=None))
        assert trip.departure_delay == 0
        assert trip.arrival_delay is None

    def test_missing_optional_fields_become_none(self):
        trip = parse_trip({"id": "abc"})
        assert trip.line is None
        assert trip.direction is None
        assert trip.current_location is None
        assert trip.stopovers == []

    def test_missing_id_raises(self):
        with pytest.raises(UpstreamDataError):
            parse_trip({"line": {"name": "Tram 4"}})

    def test_invalid_timestamp_raises(self):
        with pytest.raises(UpstreamDataError):
            parse_trip(raw_trip(plannedDeparture="yesterday"))

    def test_stopovers_must_be_a_list(self):
        with pytest.raises(UpstreamDataError):
            parse_trip(raw_trip(stopovers={"stop": "x"}))

    def test_malformed_stopover_is_dropped_siblings_keep_position(self):
        trip = parse_trip(raw_trip(stopovers=[
            raw_stopover("A", plannedArrival="2024-01-01T10:00:00Z"),
            raw_stopover("B", plannedArrival="garbage"),
            raw_stopover("C", plannedArrival="2024-01-01T10:10:00Z"),
        ]))

        assert [s.stop.id for s in trip.stopovers] == ["A", "C"]
        assert [s.stop_sequence for s in trip.stopovers] == [1, 3]

    def test_current_location(self):
        trip = parse_trip(raw_trip(currentLocation={"type": "location", "latitude": 47.07, "longitude": 15.44}))
        assert trip.current_location.latitude == 47.07
        assert trip.current_location.longitude == 15.44


class TestParseDeparture:
    def test_parses(self):
        departure = parse_departure(raw_departure("trip-1"))
        assert departure.trip_id == "trip-1"
        assert departure.line.product == "tram"
        assert departure.stop.id == "460304700"

    def test_missing_trip_id_raises(self):
        with pytest.raises(UpstreamDataError):
            parse_departure({"line": None})

    def test_non_object_raises(self):
        with pytest.raises(UpstreamDataError):
            parse_departure("trip-1")


def test_stop_without_id_is_absent():
    assert parse_stop({"type": "stop", "name": "Nowhere"}) is None


class TestDescribeTripId:
    def test_parses_line_and_times(self):
        assert describe_trip_id(TRIP_ID) == "Line 4 (1000 -> 1040)"

    def test_unknown_parts(self):
        assert describe_trip_id("plain-id") == "Line ? (? -> ?)"
