"""Routing orchestration service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from ...config import settings
from ...errors import NotFoundError
from ...models.domain import DeliveryBooking, Route, RouteStatus
from ...persistence.repository import DispatchRepository
from ..dispatch.state_machine import can_transition_route, ensure_route_mutable
from ..geospatial import estimate_drive_minutes
from .models import OptimizationResult, StopInput
from .sequence_solver import path_distance_km, sequence_stops

logger = logging.getLogger(__name__)


def resolve_start(repo: DispatchRepository, route: Route) -> tuple[float, float]:
    """Route start coordinate, falling back per axis to the configured default."""

    lat: Optional[float] = None
    lng: Optional[float] = None
    if route.start_location_id:
        location = repo.get_location(route.start_location_id)
        if location is not None:
            lat, lng = location.latitude, location.longitude
    if lat is None or lng is None:
        logger.warning(f"Route {route.route_number} has no start coordinates; using fallback start")
    return (
        lat if lat is not None else settings.fallback_start_latitude,
        lng if lng is not None else settings.fallback_start_longitude,
    )


def optimize_route(
    repo: DispatchRepository,
    route_id: str,
    *,
    window_penalty_km: Optional[float] = None,
) -> OptimizationResult:
    """Re-sequence a route's stops with the nearest-neighbor heuristic and persist ETAs."""

    penalty = settings.window_penalty_km if window_penalty_km is None else window_penalty_km

    with repo.transaction():
        route = repo.get_route(route_id)
        if route is None:
            raise NotFoundError.for_entity("Route", route_id)
        ensure_route_mutable(route.status, "optimize")

        stops = repo.list_stops(route_id)
        if len(stops) <= 1:
            return OptimizationResult(
                route_id=route_id,
                optimized=True,
                message="Route has 0-1 stops, no optimization needed",
            )

        bookings: dict[str, DeliveryBooking] = {b.id: b for b in repo.list_bookings_for_route(route_id)}
        for stop in stops:
            if stop.booking_id and stop.booking_id not in bookings:
                booking = repo.get_booking(stop.booking_id)
                if booking is not None:
                    bookings[booking.id] = booking

        inputs = [
            StopInput(
                stop_id=stop.id,
                latitude=stop.latitude,
                longitude=stop.longitude,
                window_end=bookings[stop.booking_id].window_end if stop.booking_id in bookings else None,
                service_minutes=stop.estimated_duration_minutes,
            )
            for stop in stops
        ]

        start_lat, start_lng = resolve_start(repo, route)
        start_time = route.start_time or settings.default_route_start_time
        original_distance = path_distance_km(inputs, start_lat, start_lng)
        result = sequence_stops(
            inputs,
            start_lat,
            start_lng,
            start_time=start_time,
            window_penalty_km=penalty,
        )

        now = datetime.now(timezone.utc)
        stops_by_id = {stop.id: stop for stop in stops}
        new_sequence: list[dict] = []
        for placed in result.stops:
            stop = stops_by_id[placed.stop_id]
            stop.sequence_order = placed.sequence
            stop.estimated_arrival = placed.estimated_arrival
            stop.estimated_departure = placed.estimated_departure
            stop.estimated_distance_from_prev_km = placed.distance_from_prev_km
            repo.save_stop(stop)

            booking = bookings.get(stop.booking_id) if stop.booking_id else None
            if booking is not None:
                booking.route_order = placed.sequence
                booking.estimated_arrival = f"{route.route_date.isoformat()} {placed.estimated_arrival}"
                booking.updated_at = now
                repo.save_booking(booking)

            new_sequence.append(
                {
                    "stop_id": stop.id,
                    "sequence": placed.sequence,
                    "address": stop.address,
                    "customer": booking.contact_name if booking else None,
                    "estimated_arrival": placed.estimated_arrival,
                    "estimated_departure": placed.estimated_departure,
                    "distance_from_prev_km": placed.distance_from_prev_km,
                    "window_penalized": placed.window_penalized,
                }
            )

        if can_transition_route(route.status, RouteStatus.OPTIMIZED):
            route.status = RouteStatus.OPTIMIZED
        route.total_distance_km = result.total_distance_km
        route.estimated_duration_minutes = result.total_duration_min
        route.optimized_at = now
        route.updated_at = now
        repo.save_route(route)

    distance_saved = round(original_distance - result.total_distance_km, 2)
    time_saved = estimate_drive_minutes(distance_saved) if distance_saved > 0 else 0

    logger.info(
        f"Optimized route {route.route_number}: {original_distance:.2f} km -> "
        f"{result.total_distance_km:.2f} km over {len(result.stops)} stops"
    )
    return OptimizationResult(
        route_id=route_id,
        optimized=True,
        message="Route optimized",
        original_distance_km=round(original_distance, 2),
        optimized_distance_km=result.total_distance_km,
        distance_saved_km=max(0.0, distance_saved),
        time_saved_minutes=max(0, time_saved),
        estimated_duration_minutes=result.total_duration_min,
        new_sequence=new_sequence,
    )
