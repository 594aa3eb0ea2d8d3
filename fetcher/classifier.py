"""
Network classifier: decides which lines and stops belong to the monitored
network.

Both predicates gate persistence and frontier growth, so they are pure and
fail closed: anything missing means "not ours".
"""

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Pattern

from models import Line, Location

LINE_NUMBER_TOKEN = re.compile(r'\b\d+[A-Z]?\b')

# Upstream naming differs per deployment region, so these are only defaults.
DEFAULT_LINE_PATTERNS = {
    'tram': r'\d{1,2}',
    'city-bus': r'\d{2}[A-Z]?',
}


@dataclass(frozen=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float


def compile_line_patterns(patterns: Mapping[str, str]) -> dict[str, Pattern]:
    return {product: re.compile(pattern) for product, pattern in patterns.items()}


def extract_line_number(name: Optional[str]) -> Optional[str]:
    """Return the first numeric-plus-letter token of a line name ("Bus 34E" -> "34E")."""
    if not name:
        return None
    match = LINE_NUMBER_TOKEN.search(name)
    return match.group(0) if match else None


def is_monitored_line(line: Optional[Line], line_patterns: Mapping[str, Pattern]) -> bool:
    if line is None or line.name is None or line.product is None:
        return False
    pattern = line_patterns.get(line.product)
    if pattern is None:
        return False
    number = extract_line_number(line.name)
    if number is None:
        return False
    return pattern.fullmatch(number) is not None


def is_inside_region(location: Optional[Location], bbox: BoundingBox) -> bool:
    if location is None or location.latitude is None or location.longitude is None:
        return False
    return (
        bbox.south <= location.latitude <= bbox.north
        and bbox.west <= location.longitude <= bbox.east
    )
