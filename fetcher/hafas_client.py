"""
HAFAS REST client (hafas-rest-api response shapes).

Two operations are used by the fetcher:

- departures at a stop:  GET /stops/{id}/departures?duration=N
- trip detail:           GET /trips/{id}?stopovers=true

Every request carries a timeout and an identifying User-Agent. Failures are
never retried here; the scheduler picks the stop or trip up again on a later
cycle.
"""

import logging
import threading
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from errors import UpstreamDataError, UpstreamTransportError
from models import Departure, TripDetail, parse_departure, parse_trip

logger = logging.getLogger(__name__)


class HafasClient:
    """Thin wrapper around a HAFAS REST endpoint using requests."""

    def __init__(self, base_url: str, user_agent: str, timeout: float = 15, pool_size: int = 10):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({'User-Agent': user_agent, 'Accept': 'application/json'})
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self.session.mount('https://', adapter)
        self.session.mount('http://', adapter)
        self._count_lock = threading.Lock()
        self.request_count = 0

    def get_departures(self, stop_id: str, window_minutes: int) -> list[Departure]:
        """
        Departures at a stop within the next ``window_minutes``.

        Individual malformed departures are skipped; a malformed envelope
        raises UpstreamDataError.
        """
        data = self._get(
            f"/stops/{quote(stop_id, safe='')}/departures",
            params={'duration': window_minutes, 'remarks': 'false'},
        )
        raw_departures = data.get('departures') if isinstance(data, dict) else data
        if not isinstance(raw_departures, list):
            raise UpstreamDataError(f"Departures for stop {stop_id}: expected a list")

        departures = []
        for raw in raw_departures:
            try:
                departures.append(parse_departure(raw))
            except UpstreamDataError as e:
                logger.debug(f"Skipping malformed departure at stop {stop_id}: {e}")
        return departures

    def get_trip_detail(self, trip_id: str) -> TripDetail:
        data = self._get(
            f"/trips/{quote(trip_id, safe='')}",
            params={'stopovers': 'true', 'remarks': 'false'},
        )
        raw_trip = data.get('trip', data) if isinstance(data, dict) else data
        return parse_trip(raw_trip)

    def _get(self, path: str, params: dict[str, Any] = None) -> Any:
        url = f"{self.base_url}{path}"
        with self._count_lock:
            self.request_count += 1
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamTransportError(f"HAFAS request failed: {e}") from e

        if response.status_code != 200:
            body_text = response.text.strip()[:200]
            detail = f"Status {response.status_code}"
            if body_text:
                detail = f"{detail}, Body: {body_text}"
            raise UpstreamTransportError(f"HAFAS request failed: {detail}")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamTransportError("HAFAS response was not valid JSON") from e
