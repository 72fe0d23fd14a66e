"""Route generation from unassigned delivery bookings."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Deque, Optional, Sequence

from ...config import settings
from ...errors import InvalidInputError, NotFoundError
from ...models.domain import (
    BookingStatus,
    DeliveryBooking,
    Driver,
    Route,
    RouteStatus,
    RouteStop,
    Zone,
)
from ...persistence.repository import DispatchRepository
from ..dispatch.state_machine import is_terminal_route
from .models import GeneratedRouteSummary, GenerationResult

logger = logging.getLogger(__name__)

UNZONED_KEY = "unzoned"
UNZONED_NAME = "Unzoned"


@dataclass(slots=True)
class ZoneGroup:
    key: str
    name: str
    zone: Optional[Zone] = None
    bookings: list[DeliveryBooking] = field(default_factory=list)


def group_by_zone(repo: DispatchRepository, bookings: Sequence[DeliveryBooking]) -> list[ZoneGroup]:
    """Bucket bookings by zone id, preserving input order within each bucket."""

    groups: dict[str, ZoneGroup] = {}
    for booking in bookings:
        key = booking.zone_id or UNZONED_KEY
        group = groups.get(key)
        if group is None:
            zone = repo.get_zone(booking.zone_id) if booking.zone_id else None
            group = ZoneGroup(key=key, name=zone.name if zone and zone.name else UNZONED_NAME, zone=zone)
            groups[key] = group
        group.bookings.append(booking)
    return list(groups.values())


def chunk_bookings(bookings: Sequence[DeliveryBooking], max_stops: int) -> list[list[DeliveryBooking]]:
    if max_stops < 1:
        raise ValueError("max_stops must be >= 1")
    return [list(bookings[i : i + max_stops]) for i in range(0, len(bookings), max_stops)]


def format_route_number(route_date: date, sequence: int) -> str:
    return f"{settings.route_number_prefix}-{route_date.isoformat()}-{sequence:03d}"


def _take_driver(repo: DispatchRepository, pool: Deque[Driver], route_date: date) -> Optional[Driver]:
    while pool:
        driver = pool.popleft()
        if repo.reserve_driver(driver, route_date):
            return driver
        logger.warning(f"Skipping driver {driver.id}: reservation lost to a concurrent writer")
    return None


def _materialize_route(
    repo: DispatchRepository,
    *,
    route_date: date,
    bookings: Sequence[DeliveryBooking],
    driver: Optional[Driver],
    vehicle_id: Optional[str],
    location_id: Optional[str],
    notes: Optional[str],
    zone: Optional[Zone] = None,
) -> Route:
    now = datetime.now(timezone.utc)
    total_weight = sum(booking.weight_kg or 0.0 for booking in bookings)
    route = Route(
        id=uuid.uuid4().hex,
        route_number=format_route_number(route_date, repo.next_route_sequence()),
        route_date=route_date,
        status=RouteStatus.ASSIGNED if driver else RouteStatus.PLANNED,
        driver_id=driver.id if driver else None,
        vehicle_id=vehicle_id,
        start_location_id=location_id,
        start_time=settings.default_route_start_time,
        total_stops=len(bookings),
        total_weight_kg=round(total_weight, 2),
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    repo.add_route(route)

    zone_cache: dict[str, Optional[Zone]] = {zone.id: zone} if zone else {}
    for order, booking in enumerate(bookings, start=1):
        lat, lng = booking.latitude, booking.longitude
        if (lat is None or lng is None) and booking.zone_id:
            if booking.zone_id not in zone_cache:
                zone_cache[booking.zone_id] = repo.get_zone(booking.zone_id)
            booking_zone = zone_cache[booking.zone_id]
            if booking_zone is not None:
                lat = lat if lat is not None else booking_zone.center_lat
                lng = lng if lng is not None else booking_zone.center_lng

        repo.add_stop(
            RouteStop(
                id=uuid.uuid4().hex,
                route_id=route.id,
                sequence_order=order,
                booking_id=booking.id,
                address=booking.delivery_address or "N/A",
                latitude=lat,
                longitude=lng,
                estimated_duration_minutes=settings.default_stop_duration_minutes,
            )
        )

        booking.route_id = route.id
        booking.route_order = order
        if driver is not None:
            booking.driver_id = booking.driver_id or driver.id
            booking.driver_name = booking.driver_name or driver.name
        if booking.status == BookingStatus.PROCESSING:
            booking.status = BookingStatus.SCHEDULED
        booking.updated_at = now
        repo.save_booking(booking)

    return route


def auto_generate(
    repo: DispatchRepository,
    *,
    route_date: Optional[date] = None,
    location_id: Optional[str] = None,
    max_stops_per_route: Optional[int] = None,
) -> GenerationResult:
    """Create routes for every unassigned booking on ``route_date``.

    Bookings are grouped by zone, each zone is split into chunks of at most
    ``max_stops_per_route`` stops, and each chunk becomes one route with the
    next reservable driver (or none when the pool runs dry). Stops keep the
    booking order; run the optimizer afterwards to sequence them.
    """

    if not location_id:
        raise InvalidInputError("location_id (warehouse) is required")
    target_date = route_date or date.today()
    max_stops = max_stops_per_route or settings.max_stops_per_route

    with repo.transaction():
        if repo.get_location(location_id) is None:
            raise NotFoundError.for_entity("Location", location_id)

        bookings = repo.list_unrouted_bookings(target_date)
        if not bookings:
            return GenerationResult(
                routes_created=0,
                deliveries_assigned=0,
                drivers_remaining=len(repo.list_available_drivers(target_date)),
                routes=[],
                message="No unassigned deliveries for this date",
            )

        groups = group_by_zone(repo, bookings)
        pool: Deque[Driver] = deque(repo.list_available_drivers(target_date))
        summaries: list[GeneratedRouteSummary] = []
        assigned = 0

        for group in groups:
            for chunk in chunk_bookings(group.bookings, max_stops):
                driver = _take_driver(repo, pool, target_date)
                route = _materialize_route(
                    repo,
                    route_date=target_date,
                    bookings=chunk,
                    driver=driver,
                    vehicle_id=driver.vehicle_id if driver else None,
                    location_id=location_id,
                    notes=f"Auto-generated for zone: {group.name}",
                    zone=group.zone,
                )
                assigned += len(chunk)
                summaries.append(
                    GeneratedRouteSummary(
                        id=route.id,
                        route_number=route.route_number,
                        zone=group.name,
                        stops=len(chunk),
                        driver=driver.name if driver else None,
                    )
                )

    logger.info(
        f"Generated {len(summaries)} route(s) for {target_date} covering {assigned} deliveries; "
        f"{len(pool)} driver(s) left"
    )
    return GenerationResult(
        routes_created=len(summaries),
        deliveries_assigned=assigned,
        drivers_remaining=len(pool),
        routes=summaries,
    )


def create_route(
    repo: DispatchRepository,
    *,
    route_date: Optional[date],
    driver_id: Optional[str] = None,
    vehicle_id: Optional[str] = None,
    location_id: Optional[str] = None,
    booking_ids: Optional[Sequence[str]] = None,
    notes: Optional[str] = None,
) -> Route:
    """Create a route by hand from an ordered list of bookings."""

    if route_date is None:
        raise InvalidInputError("route_date is required")
    booking_ids = list(booking_ids or [])
    if len(set(booking_ids)) != len(booking_ids):
        raise InvalidInputError("delivery_ids must not contain duplicates")

    with repo.transaction():
        driver = None
        if driver_id:
            driver = repo.get_driver(driver_id)
            if driver is None or not driver.is_active:
                raise NotFoundError.for_entity("Driver", driver_id)
        if vehicle_id and repo.get_vehicle(vehicle_id) is None:
            raise NotFoundError.for_entity("Vehicle", vehicle_id)
        if location_id and repo.get_location(location_id) is None:
            raise NotFoundError.for_entity("Location", location_id)

        bookings: list[DeliveryBooking] = []
        for booking_id in booking_ids:
            booking = repo.get_booking(booking_id)
            if booking is None:
                raise NotFoundError.for_entity("Booking", booking_id)
            if booking.route_id:
                current = repo.get_route(booking.route_id)
                if current is not None and not is_terminal_route(current.status):
                    raise InvalidInputError(
                        f"Booking '{booking_id}' is already on route {current.route_number}"
                    )
            bookings.append(booking)

        route = _materialize_route(
            repo,
            route_date=route_date,
            bookings=bookings,
            driver=driver,
            vehicle_id=vehicle_id or (driver.vehicle_id if driver else None),
            location_id=location_id,
            notes=notes,
        )

    logger.info(f"Created route {route.route_number} with {route.total_stops} stop(s)")
    return route
