"""
Fetcher configuration, read from environment variables (and a local .env).

Defaults target the Graz tram/city-bus network. HAFAS_BASE_URL has no default:
it must point at a hafas-rest-api instance backed by the STV (Steirischer
Verkehrsverbund) profile, which the default seed stop and line patterns
belong to.
"""

import os
import re
from dataclasses import dataclass
from typing import Mapping, Pattern

from dotenv import load_dotenv

from classifier import BoundingBox, DEFAULT_LINE_PATTERNS, compile_line_patterns

DEFAULT_USER_AGENT = 'GrazRealtimeTransportMonitor/1.0'
DEFAULT_SEED_STOP_IDS = '460304700'  # Jakominiplatz

# Graz
DEFAULT_BBOX = BoundingBox(north=47.15, south=46.95, east=15.60, west=15.30)


@dataclass(frozen=True)
class FetcherConfig:
    database_url: str
    hafas_base_url: str
    user_agent: str
    poll_interval_seconds: float
    stops_per_cycle: int
    ingest_workers: int
    departure_window_minutes: int
    request_timeout_seconds: float
    seed_stop_ids: tuple[str, ...]
    bbox: BoundingBox
    line_patterns: Mapping[str, Pattern]
    retention_days: int
    stats_interval_seconds: float
    log_level: str


def _env(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(env: Mapping[str, str], key: str, default: int, minimum: int = 1) -> int:
    raw = _env(env, key, str(default))
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _env(env, key, str(default))
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def parse_line_patterns(raw: str) -> dict[str, str]:
    """Parse ``product=regex;product=regex`` into a mapping."""
    patterns = {}
    for item in raw.split(';'):
        item = item.strip()
        if not item:
            continue
        product, sep, pattern = item.partition('=')
        if not sep or not product.strip() or not pattern.strip():
            raise ValueError(f"LINE_PATTERNS entry must look like product=regex, got {item!r}")
        patterns[product.strip()] = pattern.strip()
    if not patterns:
        raise ValueError("LINE_PATTERNS must name at least one product")
    return patterns


def _env_float_signed(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _env(env, key, str(default))
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e


def _bbox(env: Mapping[str, str]) -> BoundingBox:
    bbox = BoundingBox(
        north=_env_float_signed(env, 'BBOX_NORTH', DEFAULT_BBOX.north),
        south=_env_float_signed(env, 'BBOX_SOUTH', DEFAULT_BBOX.south),
        east=_env_float_signed(env, 'BBOX_EAST', DEFAULT_BBOX.east),
        west=_env_float_signed(env, 'BBOX_WEST', DEFAULT_BBOX.west),
    )
    if bbox.south > bbox.north:
        raise ValueError(f"BBOX_SOUTH ({bbox.south}) is north of BBOX_NORTH ({bbox.north})")
    if bbox.west > bbox.east:
        raise ValueError(f"BBOX_WEST ({bbox.west}) is east of BBOX_EAST ({bbox.east})")
    return bbox


def load_config(env: Mapping[str, str] = None) -> FetcherConfig:
    """
    Build the fetcher configuration.

    Reads ``os.environ`` (after loading .env) unless an explicit mapping is
    given. Raises ValueError for missing or invalid values.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    database_url = _env(env, 'DATABASE_URL', '')
    if not database_url:
        raise ValueError("DATABASE_URL is required")
    hafas_base_url = _env(env, 'HAFAS_BASE_URL', '')
    if not hafas_base_url:
        raise ValueError("HAFAS_BASE_URL is required (a hafas-rest-api instance with the STV profile)")

    stops_per_cycle = _env_int(env, 'STOPS_PER_CYCLE', 5)

    seed_stop_ids = tuple(
        s.strip() for s in _env(env, 'SEED_STOP_IDS', DEFAULT_SEED_STOP_IDS).split(',') if s.strip()
    )
    if not seed_stop_ids:
        raise ValueError("SEED_STOP_IDS must contain at least one stop id")

    raw_patterns = env.get('LINE_PATTERNS')
    if raw_patterns and raw_patterns.strip():
        patterns = parse_line_patterns(raw_patterns)
    else:
        patterns = DEFAULT_LINE_PATTERNS
    try:
        line_patterns = compile_line_patterns(patterns)
    except re.error as e:
        raise ValueError(f"LINE_PATTERNS contains an invalid regular expression: {e}") from e

    return FetcherConfig(
        database_url=database_url,
        hafas_base_url=hafas_base_url.rstrip('/'),
        user_agent=_env(env, 'HAFAS_USER_AGENT', DEFAULT_USER_AGENT),
        poll_interval_seconds=_env_float(env, 'POLL_INTERVAL', 45),
        stops_per_cycle=stops_per_cycle,
        ingest_workers=_env_int(env, 'INGEST_WORKERS', stops_per_cycle),
        departure_window_minutes=_env_int(env, 'DEPARTURE_WINDOW_MINUTES', 120),
        request_timeout_seconds=_env_float(env, 'REQUEST_TIMEOUT', 15),
        seed_stop_ids=seed_stop_ids,
        bbox=_bbox(env),
        line_patterns=line_patterns,
        retention_days=_env_int(env, 'RETENTION_DAYS', 7),
        stats_interval_seconds=_env_float(env, 'STATS_INTERVAL', 3600),
        log_level=_env(env, 'LOG_LEVEL', 'INFO').upper(),
    )
