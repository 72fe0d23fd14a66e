"""Per-stop status tracking and its side effects on bookings and routes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from ...errors import NotFoundError
from ...models.domain import BookingStatus, Route, RouteStop, StopStatus
from ...persistence.repository import DispatchRepository
from .state_machine import ensure_route_mutable, ensure_stop_transition, parse_stop_status

logger = logging.getLogger(__name__)

BOOKING_STATUS_FOR_STOP = {
    StopStatus.APPROACHING: BookingStatus.EN_ROUTE,
    StopStatus.ARRIVED: BookingStatus.IN_PROGRESS,
    StopStatus.COMPLETED: BookingStatus.DELIVERED,
    StopStatus.FAILED: BookingStatus.FAILED,
}

# Stops in these statuses count towards a route's completed_stops.
CLOSED_STOP_STATUSES = frozenset({StopStatus.COMPLETED, StopStatus.SKIPPED, StopStatus.FAILED})


def _sync_booking(repo: DispatchRepository, stop: RouteStop, now: datetime) -> None:
    booking_status = BOOKING_STATUS_FOR_STOP.get(stop.status)
    if booking_status is None or not stop.booking_id:
        return
    booking = repo.get_booking(stop.booking_id)
    if booking is None:
        logger.warning(f"Stop {stop.id} points at missing booking {stop.booking_id}")
        return
    if booking.route_id != stop.route_id:
        logger.warning(f"Booking {booking.id} has moved off route {stop.route_id}; leaving it untouched")
        return

    booking.status = booking_status
    if stop.status == StopStatus.ARRIVED:
        booking.actual_arrival = now
    elif stop.status == StopStatus.COMPLETED:
        booking.actual_departure = now
        booking.completed_at = now
    booking.updated_at = now
    repo.save_booking(booking)


def _recount_closed_stops(repo: DispatchRepository, route: Route, stop: RouteStop, now: datetime) -> None:
    # Count from the in-hand copy: buffered writes are not visible to reads yet.
    siblings = {sibling.id: sibling for sibling in repo.list_stops(route.id)}
    siblings[stop.id] = stop
    closed = sum(1 for sibling in siblings.values() if sibling.status in CLOSED_STOP_STATUSES)
    route.completed_stops = min(closed, route.total_stops)
    route.updated_at = now
    repo.save_route(route)


def update_stop_status(
    repo: DispatchRepository,
    stop_id: str,
    status: Optional[str],
    notes: Optional[str] = None,
) -> RouteStop:
    target = parse_stop_status(status)

    with repo.transaction():
        stop = repo.get_stop(stop_id)
        if stop is None:
            raise NotFoundError.for_entity("Stop", stop_id)
        route = repo.get_route(stop.route_id)
        if route is None:
            raise NotFoundError.for_entity("Route", stop.route_id)
        # Stops of a cancelled route may point at bookings already regenerated elsewhere.
        ensure_route_mutable(route.status, "update a stop on")
        ensure_stop_transition(stop.status, target)

        now = datetime.now(timezone.utc)
        stop.status = target
        if target == StopStatus.ARRIVED:
            stop.actual_arrival = now
        elif target == StopStatus.COMPLETED:
            stop.actual_departure = now
        if notes:
            stop.notes = notes
        repo.save_stop(stop)

        _sync_booking(repo, stop, now)
        if target in CLOSED_STOP_STATUSES:
            _recount_closed_stops(repo, route, stop, now)

    return stop
