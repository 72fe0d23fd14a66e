"""Route lifecycle: driver assignment, start/complete/cancel and manual reordering."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from ...errors import InvalidInputError, NotFoundError
from ...models.domain import (
    TERMINAL_BOOKING_STATUSES,
    DeliveryBooking,
    DriverStatus,
    Route,
    RouteStatus,
    RouteStop,
)
from ...persistence.repository import DispatchRepository
from .state_machine import can_transition_route, ensure_route_mutable, ensure_route_transition

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StopDetail:
    stop: RouteStop
    booking: Optional[DeliveryBooking] = None


@dataclass(slots=True)
class RouteDetail:
    route: Route
    driver_name: Optional[str] = None
    start_location_name: Optional[str] = None
    stops: list[StopDetail] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_route(repo: DispatchRepository, route_id: str) -> Route:
    route = repo.get_route(route_id)
    if route is None:
        raise NotFoundError.for_entity("Route", route_id)
    return route


def _set_driver_status(repo: DispatchRepository, driver_id: Optional[str], status: DriverStatus) -> None:
    if not driver_id:
        return
    driver = repo.get_driver(driver_id)
    if driver is None:
        logger.warning(f"Driver {driver_id} referenced by a route no longer exists")
        return
    driver.status = status
    repo.save_driver(driver)


def assign_driver(
    repo: DispatchRepository,
    route_id: str,
    driver_id: Optional[str],
    vehicle_id: Optional[str] = None,
) -> Route:
    """Put a driver (and vehicle) on a route and propagate the driver to its bookings.

    The status only advances to ``assigned`` from ``planned`` or ``optimized``;
    reassigning a route that is already under way keeps its status.
    """

    if not driver_id:
        raise InvalidInputError("driver_id is required")

    with repo.transaction():
        route = _require_route(repo, route_id)
        ensure_route_mutable(route.status, "assign a driver to")

        driver = repo.get_driver(driver_id)
        if driver is None or not driver.is_active:
            raise NotFoundError.for_entity("Driver", driver_id)
        if vehicle_id and repo.get_vehicle(vehicle_id) is None:
            raise NotFoundError.for_entity("Vehicle", vehicle_id)

        now = _utcnow()
        if route.driver_id and route.driver_id != driver.id:
            repo.release_driver(route.driver_id, route.route_date)
        route.driver_id = driver.id
        route.vehicle_id = vehicle_id or driver.vehicle_id
        if route.status in (RouteStatus.PLANNED, RouteStatus.OPTIMIZED):
            ensure_route_transition(route.status, RouteStatus.ASSIGNED)
            route.status = RouteStatus.ASSIGNED
        route.updated_at = now
        repo.save_route(route)

        for booking in repo.list_bookings_for_route(route.id):
            if booking.driver_id == driver.id:
                continue
            booking.driver_id = driver.id
            booking.driver_name = driver.name
            booking.updated_at = now
            repo.save_booking(booking)

    logger.info(f"Assigned driver {driver.id} to route {route.route_number}")
    return route


def start_route(repo: DispatchRepository, route_id: str) -> Route:
    with repo.transaction():
        route = repo.get_route(route_id)
        if route is None or not can_transition_route(route.status, RouteStatus.IN_PROGRESS):
            raise NotFoundError("Route not found or cannot be started")

        now = _utcnow()
        route.status = RouteStatus.IN_PROGRESS
        route.started_at = now
        route.updated_at = now
        repo.save_route(route)
        _set_driver_status(repo, route.driver_id, DriverStatus.ON_ROUTE)

    logger.info(f"Route {route.route_number} started")
    return route


def complete_route(repo: DispatchRepository, route_id: str) -> Route:
    with repo.transaction():
        route = repo.get_route(route_id)
        if route is None or route.status != RouteStatus.IN_PROGRESS:
            raise NotFoundError("Route not found or not in progress")
        ensure_route_transition(route.status, RouteStatus.COMPLETED)

        now = _utcnow()
        route.status = RouteStatus.COMPLETED
        route.completed_at = now
        route.updated_at = now
        repo.save_route(route)
        _set_driver_status(repo, route.driver_id, DriverStatus.AVAILABLE)
        if route.driver_id:
            repo.release_driver(route.driver_id, route.route_date)

    logger.info(f"Route {route.route_number} completed ({route.completed_stops}/{route.total_stops} stops closed)")
    return route


def cancel_route(repo: DispatchRepository, route_id: str) -> Route:
    """Cancel a non-terminal route and release its open bookings for regeneration."""

    with repo.transaction():
        route = _require_route(repo, route_id)
        ensure_route_mutable(route.status, "cancel")
        ensure_route_transition(route.status, RouteStatus.CANCELLED)

        was_in_progress = route.status == RouteStatus.IN_PROGRESS
        now = _utcnow()
        route.status = RouteStatus.CANCELLED
        route.cancelled_at = now
        route.updated_at = now
        repo.save_route(route)
        if was_in_progress:
            _set_driver_status(repo, route.driver_id, DriverStatus.AVAILABLE)
        if route.driver_id:
            repo.release_driver(route.driver_id, route.route_date)

        released = 0
        for booking in repo.list_bookings_for_route(route.id):
            if booking.status in TERMINAL_BOOKING_STATUSES:
                continue
            booking.route_id = None
            booking.route_order = None
            booking.estimated_arrival = None
            if route.driver_id and booking.driver_id == route.driver_id:
                booking.driver_id = None
                booking.driver_name = None
            booking.updated_at = now
            repo.save_booking(booking)
            released += 1

    logger.info(f"Route {route.route_number} cancelled; released {released} booking(s)")
    return route


def reorder_stops(repo: DispatchRepository, route_id: str, stop_order: Optional[Sequence[str]]) -> list[RouteStop]:
    """Overwrite stop sequence numbers of a non-terminal route with the given order.

    Estimated arrival/departure times are left as they were; run the
    optimizer to recompute them.
    """

    if not stop_order:
        raise InvalidInputError("stop_order array of stop IDs is required")
    ordered_ids = [str(stop_id) for stop_id in stop_order]

    with repo.transaction():
        route = _require_route(repo, route_id)
        ensure_route_mutable(route.status, "reorder stops on")
        stops = {stop.id: stop for stop in repo.list_stops(route.id)}
        if len(set(ordered_ids)) != len(ordered_ids) or set(ordered_ids) != set(stops):
            raise InvalidInputError("stop_order must list every stop of the route exactly once")

        bookings = {booking.id: booking for booking in repo.list_bookings_for_route(route.id)}
        now = _utcnow()
        for position, stop_id in enumerate(ordered_ids, start=1):
            stop = stops[stop_id]
            stop.sequence_order = position
            repo.save_stop(stop)

            booking = bookings.get(stop.booking_id) if stop.booking_id else None
            if booking is not None:
                booking.route_order = position
                booking.updated_at = now
                repo.save_booking(booking)

        route.updated_at = now
        repo.save_route(route)

    return sorted(stops.values(), key=lambda stop: stop.sequence_order)


def get_route_detail(repo: DispatchRepository, route_id: str) -> RouteDetail:
    route = _require_route(repo, route_id)

    driver = repo.get_driver(route.driver_id) if route.driver_id else None
    location = repo.get_location(route.start_location_id) if route.start_location_id else None
    bookings = {booking.id: booking for booking in repo.list_bookings_for_route(route.id)}

    details = []
    for stop in repo.list_stops(route.id):
        booking = bookings.get(stop.booking_id) if stop.booking_id else None
        if booking is None and stop.booking_id:
            booking = repo.get_booking(stop.booking_id)
        details.append(StopDetail(stop=stop, booking=booking))

    return RouteDetail(
        route=route,
        driver_name=driver.name if driver else None,
        start_location_name=location.name if location else None,
        stops=details,
    )


def list_routes(
    repo: DispatchRepository,
    route_date: Optional[date] = None,
    status: Optional[str] = None,
    driver_id: Optional[str] = None,
) -> list[Route]:
    route_status = None
    if status:
        try:
            route_status = RouteStatus(status)
        except ValueError:
            valid = ", ".join(item.value for item in RouteStatus)
            raise InvalidInputError(f"status must be one of: {valid}") from None
    return repo.list_routes(route_date or date.today(), status=route_status, driver_id=driver_id)
