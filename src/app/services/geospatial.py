"""Geospatial and wall-clock helper functions."""

from __future__ import annotations

import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0
AVERAGE_SPEED_KMH = 30.0
STOP_BUFFER_MINUTES = 5


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_drive_minutes(
    distance_km: float,
    *,
    speed_kmh: float = AVERAGE_SPEED_KMH,
    buffer_minutes: int = STOP_BUFFER_MINUTES,
) -> int:
    """Flat-speed drive time plus a fixed per-stop transition buffer.

    Rounds half up so 2.5 minutes of driving becomes 3.
    """

    return int(math.floor(distance_km / speed_kmh * 60 + 0.5)) + buffer_minutes


def time_to_minutes(value: Optional[str]) -> Optional[int]:
    """Convert an "HH:MM" string to minutes past midnight."""

    if not value:
        return None
    parts = str(value).split(":")
    hours = int(parts[0])
    minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return hours * 60 + minutes


def minutes_to_time(total_minutes: int) -> str:
    # Hours wrap modulo 24; the calendar date never rolls forward.
    hours = (total_minutes // 60) % 24
    minutes = total_minutes % 60
    return f"{hours:02d}:{minutes:02d}"


def add_minutes(value: str, minutes: int) -> str:
    """Add minutes to an "HH:MM" string, wrapping past midnight."""

    start = time_to_minutes(value) or 0
    return minutes_to_time(start + minutes)
