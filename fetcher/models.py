"""
Typed records for data returned by the journey-planning provider.

Raw JSON from the HAFAS REST endpoint is converted into these dataclasses
exactly once, at the client boundary. Optional fields are explicit ``None``
when absent, so a delay of 0 seconds or a coordinate of 0.0 is never
mistaken for missing data.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from errors import UpstreamDataError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Location:
    latitude: Optional[float]
    longitude: Optional[float]


@dataclass(frozen=True)
class Line:
    id: Optional[str]
    name: Optional[str]
    product: Optional[str]


@dataclass(frozen=True)
class StopRef:
    """A stop as referenced from a departure or stopover."""
    id: str
    name: Optional[str]
    location: Optional[Location]


@dataclass(frozen=True)
class Departure:
    trip_id: str
    line: Optional[Line]
    stop: Optional[StopRef]


@dataclass(frozen=True)
class Stopover:
    """One stop visited by a trip, with planned/actual arrival and departure."""
    stop: Optional[StopRef]
    stop_sequence: Optional[int] = None
    planned_arrival: Optional[datetime] = None
    arrival: Optional[datetime] = None
    arrival_delay: Optional[int] = None
    planned_departure: Optional[datetime] = None
    departure: Optional[datetime] = None
    departure_delay: Optional[int] = None

    @property
    def has_arrival(self) -> bool:
        return self.arrival is not None or self.planned_arrival is not None

    @property
    def has_departure(self) -> bool:
        return self.departure is not None or self.planned_departure is not None


@dataclass(frozen=True)
class TripDetail:
    id: str
    line: Optional[Line]
    direction: Optional[str] = None
    planned_departure: Optional[datetime] = None
    departure: Optional[datetime] = None
    departure_delay: Optional[int] = None
    arrival_delay: Optional[int] = None
    current_location: Optional[Location] = None
    stopovers: list[Stopover] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _parse_time(value: Any, name: str) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise UpstreamDataError(f"{name}: expected ISO timestamp, got {value!r}")
    try:
        # fromisoformat only accepts a trailing 'Z' on Python 3.11+
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as e:
        raise UpstreamDataError(f"{name}: invalid timestamp {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise UpstreamDataError(f"{name}: expected integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise UpstreamDataError(f"{name}: expected integer, got {value!r}") from e


def _parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_location(raw: Any) -> Optional[Location]:
    if not isinstance(raw, dict):
        return None
    return Location(
        latitude=_parse_float(raw.get('latitude')),
        longitude=_parse_float(raw.get('longitude')),
    )


def parse_line(raw: Any) -> Optional[Line]:
    if not isinstance(raw, dict):
        return None
    return Line(
        id=_parse_str(raw.get('id')),
        name=_parse_str(raw.get('name')),
        product=_parse_str(raw.get('product')),
    )


def parse_stop(raw: Any) -> Optional[StopRef]:
    """Parse a stop reference; stops without an id are treated as absent."""
    if not isinstance(raw, dict):
        return None
    stop_id = _parse_str(raw.get('id'))
    if stop_id is None:
        return None
    return StopRef(
        id=stop_id,
        name=_parse_str(raw.get('name')),
        location=parse_location(raw.get('location')),
    )


def parse_departure(raw: Any) -> Departure:
    if not isinstance(raw, dict):
        raise UpstreamDataError(f"departure: expected object, got {type(raw).__name__}")
    trip_id = _parse_str(raw.get('tripId'))
    if trip_id is None:
        raise UpstreamDataError("departure: missing tripId")
    return Departure(
        trip_id=trip_id,
        line=parse_line(raw.get('line')),
        stop=parse_stop(raw.get('stop')),
    )


def parse_stopover(raw: Any) -> Stopover:
    if not isinstance(raw, dict):
        raise UpstreamDataError(f"stopover: expected object, got {type(raw).__name__}")
    return Stopover(
        stop=parse_stop(raw.get('stop')),
        stop_sequence=_parse_int(raw.get('stopSequence'), 'stopSequence'),
        planned_arrival=_parse_time(raw.get('plannedArrival'), 'plannedArrival'),
        arrival=_parse_time(raw.get('arrival'), 'arrival'),
        arrival_delay=_parse_int(raw.get('arrivalDelay'), 'arrivalDelay'),
        planned_departure=_parse_time(raw.get('plannedDeparture'), 'plannedDeparture'),
        departure=_parse_time(raw.get('departure'), 'departure'),
        departure_delay=_parse_int(raw.get('departureDelay'), 'departureDelay'),
    )


def parse_trip(raw: Any) -> TripDetail:
    """
    Parse a trip detail object (hafas-client trip shape).

    Raises UpstreamDataError when the trip id is missing, a trip-level
    timestamp is malformed, or the stopover list is not a list. A malformed
    stopover is logged and dropped; its siblings are kept.
    """
    if not isinstance(raw, dict):
        raise UpstreamDataError(f"trip: expected object, got {type(raw).__name__}")
    trip_id = _parse_str(raw.get('id'))
    if trip_id is None:
        raise UpstreamDataError("trip: missing id")

    raw_stopovers = raw.get('stopovers') or []
    if not isinstance(raw_stopovers, list):
        raise UpstreamDataError("trip: stopovers is not a list")

    return TripDetail(
        id=trip_id,
        line=parse_line(raw.get('line')),
        direction=_parse_str(raw.get('direction')),
        planned_departure=_parse_time(raw.get('plannedDeparture'), 'plannedDeparture'),
        departure=_parse_time(raw.get('departure'), 'departure'),
        departure_delay=_parse_int(raw.get('departureDelay'), 'departureDelay'),
        arrival_delay=_parse_int(raw.get('arrivalDelay'), 'arrivalDelay'),
        current_location=parse_location(raw.get('currentLocation')),
        stopovers=_parse_stopovers(trip_id, raw_stopovers),
    )


def _parse_stopovers(trip_id: str, raw_stopovers: list) -> list[Stopover]:
    stopovers = []
    for index, raw in enumerate(raw_stopovers):
        try:
            stopover = parse_stopover(raw)
        except UpstreamDataError as e:
            logger.warning(f"Skipping malformed stopover #{index + 1} of {describe_trip_id(trip_id)}: {e}")
            continue
        # Missing sequence: 1-based position in the upstream list
        if stopover.stop_sequence is None:
            stopover = replace(stopover, stop_sequence=index + 1)
        stopovers.append(stopover)
    return stopovers


_TRIP_ID_PART = '#{key}#([^#]+)'


def describe_trip_id(trip_id: str) -> str:
    """
    Human-readable log context for a HAFAS trip id.

    HAFAS trip ids embed the line (ZE), first/last stop and their times
    (FR/FT, TO/TT), e.g. ``1|1234|0|81|1012024#ZE#4#FT#1000#TT#1040#``.
    """
    def part(key: str) -> str:
        match = re.search(_TRIP_ID_PART.format(key=key), trip_id or '')
        return match.group(1) if match else '?'

    return f"Line {part('ZE')} ({part('FT')} -> {part('TT')})"
