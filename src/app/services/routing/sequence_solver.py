"""Nearest-neighbor stop sequencing with a soft delivery-window penalty.

Stops are visited greedily: from the current position the closest unplaced
stop is taken next. A stop whose projected arrival falls after its window end
has a fixed distance-equivalent penalty added to its score, so it is pushed
later in the sequence but is never dropped. Stops without coordinates cannot
be scored and only win when no scored candidate is left.
"""

from __future__ import annotations

import math
from typing import Sequence

from ..geospatial import estimate_drive_minutes, haversine_km, minutes_to_time, time_to_minutes
from .models import SequencedStop, SequenceResult, StopInput

# Penalty in km-equivalent for a stop projected to arrive after its window end.
WINDOW_MISS_PENALTY_KM = 50.0
DEFAULT_START_TIME = "08:00"


def path_distance_km(stops: Sequence[StopInput], start_lat: float, start_lng: float) -> float:
    """Distance of visiting ``stops`` in the given order, skipping stops without coordinates."""

    total = 0.0
    prev_lat, prev_lng = start_lat, start_lng
    for stop in stops:
        if not stop.has_coordinates:
            continue
        total += haversine_km(prev_lat, prev_lng, stop.latitude, stop.longitude)
        prev_lat, prev_lng = stop.latitude, stop.longitude
    return total


def _pick_next(
    remaining: Sequence[StopInput],
    cur_lat: float,
    cur_lng: float,
    clock: int,
    window_penalty_km: float,
) -> tuple[int, bool]:
    best_idx: int | None = None
    best_score = math.inf
    best_penalized = False

    for idx, stop in enumerate(remaining):
        if not stop.has_coordinates:
            if best_idx is None:
                best_idx = idx
            continue

        distance = haversine_km(cur_lat, cur_lng, stop.latitude, stop.longitude)
        score = distance
        penalized = False
        window_end = time_to_minutes(stop.window_end)
        if window_end is not None:
            projected_arrival = clock + estimate_drive_minutes(distance)
            if projected_arrival > window_end:
                score += window_penalty_km
                penalized = True

        if score < best_score:
            best_score = score
            best_idx = idx
            best_penalized = penalized

    return (best_idx if best_idx is not None else 0), best_penalized


def sequence_stops(
    stops: Sequence[StopInput],
    start_lat: float,
    start_lng: float,
    *,
    start_time: str | None = DEFAULT_START_TIME,
    window_penalty_km: float = WINDOW_MISS_PENALTY_KM,
) -> SequenceResult:
    """Order ``stops`` greedily from the start coordinate.

    Returns the stops with their new sequence numbers, distance from the
    previous stop (rounded to 2 dp) and "HH:MM" arrival/departure estimates
    chained from ``start_time``. Zero or one stop is returned unchanged.
    """

    start_time = start_time or DEFAULT_START_TIME
    if len(stops) <= 1:
        return SequenceResult(
            stops=[
                SequencedStop(
                    stop_id=stop.stop_id,
                    sequence=index,
                    distance_from_prev_km=0.0,
                    drive_minutes=0,
                    estimated_arrival=None,
                    estimated_departure=None,
                )
                for index, stop in enumerate(stops, start=1)
            ],
            total_distance_km=0.0,
            total_duration_min=0,
            start_time=start_time,
            changed=False,
        )

    remaining = list(stops)
    start_clock = time_to_minutes(start_time) or 0
    clock = start_clock
    cur_lat, cur_lng = start_lat, start_lng
    total_distance = 0.0
    placed: list[SequencedStop] = []

    while remaining:
        idx, penalized = _pick_next(remaining, cur_lat, cur_lng, clock, window_penalty_km)
        chosen = remaining.pop(idx)

        distance = (
            haversine_km(cur_lat, cur_lng, chosen.latitude, chosen.longitude)
            if chosen.has_coordinates
            else 0.0
        )
        drive_minutes = estimate_drive_minutes(distance)
        arrival = clock + drive_minutes
        departure = arrival + chosen.service_minutes

        placed.append(
            SequencedStop(
                stop_id=chosen.stop_id,
                sequence=len(placed) + 1,
                distance_from_prev_km=round(distance, 2),
                drive_minutes=drive_minutes,
                estimated_arrival=minutes_to_time(arrival),
                estimated_departure=minutes_to_time(departure),
                window_penalized=penalized,
            )
        )

        total_distance += distance
        clock = departure
        if chosen.has_coordinates:
            cur_lat, cur_lng = chosen.latitude, chosen.longitude

    return SequenceResult(
        stops=placed,
        total_distance_km=round(total_distance, 2),
        total_duration_min=clock - start_clock,
        start_time=start_time,
        changed=[s.stop_id for s in placed] != [s.stop_id for s in stops],
    )
