"""In-process repository used by tests and single-node deployments."""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import Iterator, Optional

from ..models.domain import (
    TERMINAL_BOOKING_STATUSES,
    DeliveryBooking,
    Driver,
    Location,
    Route,
    RouteStatus,
    RouteStop,
    Vehicle,
    Zone,
)
from .repository import DispatchRepository

logger = logging.getLogger(__name__)

_CLOSED_ROUTE_STATUSES = (RouteStatus.COMPLETED, RouteStatus.CANCELLED)


class InMemoryDispatchRepository(DispatchRepository):
    """Dict-backed store with snapshot rollback.

    Transactions hold a re-entrant lock for their whole duration, so
    concurrent writers are serialized. Only the outermost transaction takes
    and restores a snapshot. The route number sequence is not rolled back,
    mirroring database sequences.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._sequence = 0
        self.locations: dict[str, Location] = {}
        self.zones: dict[str, Zone] = {}
        self.vehicles: dict[str, Vehicle] = {}
        self.drivers: dict[str, Driver] = {}
        self.bookings: dict[str, DeliveryBooking] = {}
        self.routes: dict[str, Route] = {}
        self.stops: dict[str, RouteStop] = {}

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    logger.warning("Rolling back in-memory transaction")
                    self._restore(snapshot)
                raise
            finally:
                self._depth -= 1

    def _snapshot(self) -> dict:
        return copy.deepcopy(
            {
                "drivers": self.drivers,
                "bookings": self.bookings,
                "routes": self.routes,
                "stops": self.stops,
            }
        )

    def _restore(self, snapshot: dict) -> None:
        self.drivers = snapshot["drivers"]
        self.bookings = snapshot["bookings"]
        self.routes = snapshot["routes"]
        self.stops = snapshot["stops"]

    # Seeding helpers for reference data owned by other subsystems
    def add_location(self, location: Location) -> Location:
        self.locations[location.id] = location
        return location

    def add_zone(self, zone: Zone) -> Zone:
        self.zones[zone.id] = zone
        return zone

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self.vehicles[vehicle.id] = vehicle
        return vehicle

    def add_driver(self, driver: Driver) -> Driver:
        with self._lock:
            self.drivers[driver.id] = replace(driver)
        return driver

    def add_booking(self, booking: DeliveryBooking) -> DeliveryBooking:
        with self._lock:
            self.bookings[booking.id] = replace(booking)
        return booking

    # Reference data
    def get_location(self, location_id: str) -> Optional[Location]:
        location = self.locations.get(location_id)
        return replace(location) if location else None

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        zone = self.zones.get(zone_id)
        return replace(zone) if zone else None

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        vehicle = self.vehicles.get(vehicle_id)
        return replace(vehicle) if vehicle else None

    # Drivers
    def _busy_driver_ids(self, route_date: date) -> set[str]:
        return {
            route.driver_id
            for route in self.routes.values()
            if route.route_date == route_date
            and route.driver_id is not None
            and route.status not in _CLOSED_ROUTE_STATUSES
        }

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        with self._lock:
            driver = self.drivers.get(driver_id)
            return replace(driver) if driver else None

    def list_available_drivers(self, route_date: date) -> list[Driver]:
        with self._lock:
            busy = self._busy_driver_ids(route_date)
            drivers = [
                replace(driver)
                for driver in self.drivers.values()
                if driver.is_active and driver.id not in busy
            ]
        return sorted(drivers, key=lambda driver: driver.name)

    def reserve_driver(self, driver: Driver, route_date: date) -> bool:
        with self._lock:
            stored = self.drivers.get(driver.id)
            if stored is None or stored.version != driver.version:
                return False
            if driver.id in self._busy_driver_ids(route_date):
                return False
            stored.version += 1
            driver.version = stored.version
            return True

    def release_driver(self, driver_id: str, route_date: date) -> None:
        # Busy drivers are derived from open routes under the store lock; no claim is kept.
        return None

    def save_driver(self, driver: Driver) -> None:
        with self._lock:
            self.drivers[driver.id] = replace(driver)

    # Bookings
    def get_booking(self, booking_id: str) -> Optional[DeliveryBooking]:
        with self._lock:
            booking = self.bookings.get(booking_id)
            return replace(booking) if booking else None

    def list_unrouted_bookings(self, route_date: date) -> list[DeliveryBooking]:
        with self._lock:
            pending = [
                replace(booking)
                for booking in self.bookings.values()
                if booking.scheduled_date == route_date
                and booking.route_id is None
                and booking.status not in TERMINAL_BOOKING_STATUSES
            ]
        # NULL zones and windows sort last, as in SQL.
        return sorted(
            pending,
            key=lambda b: (
                b.zone_id is None,
                b.zone_id or "",
                b.window_start is None,
                b.window_start or "",
            ),
        )

    def list_bookings_for_route(self, route_id: str) -> list[DeliveryBooking]:
        with self._lock:
            bookings = [replace(b) for b in self.bookings.values() if b.route_id == route_id]
        return sorted(bookings, key=lambda b: (b.route_order is None, b.route_order or 0, b.id))

    def save_booking(self, booking: DeliveryBooking) -> None:
        with self._lock:
            self.bookings[booking.id] = replace(booking)

    # Routes
    def next_route_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def get_route(self, route_id: str) -> Optional[Route]:
        with self._lock:
            route = self.routes.get(route_id)
            return replace(route) if route else None

    def list_routes(
        self,
        route_date: date,
        status: Optional[RouteStatus] = None,
        driver_id: Optional[str] = None,
    ) -> list[Route]:
        with self._lock:
            routes = [
                replace(route)
                for route in self.routes.values()
                if route.route_date == route_date
                and (status is None or route.status == status)
                and (driver_id is None or route.driver_id == driver_id)
            ]
        return sorted(routes, key=lambda route: (route.created_at is None, route.created_at, route.route_number))

    def add_route(self, route: Route) -> None:
        with self._lock:
            if route.id in self.routes:
                raise ValueError(f"Route {route.id} already exists")
            self.routes[route.id] = replace(route)

    def save_route(self, route: Route) -> None:
        with self._lock:
            self.routes[route.id] = replace(route)

    # Stops
    def get_stop(self, stop_id: str) -> Optional[RouteStop]:
        with self._lock:
            stop = self.stops.get(stop_id)
            return replace(stop) if stop else None

    def list_stops(self, route_id: str) -> list[RouteStop]:
        with self._lock:
            stops = [replace(stop) for stop in self.stops.values() if stop.route_id == route_id]
        return sorted(stops, key=lambda stop: stop.sequence_order)

    def add_stop(self, stop: RouteStop) -> None:
        with self._lock:
            if stop.id in self.stops:
                raise ValueError(f"Stop {stop.id} already exists")
            self.stops[stop.id] = replace(stop)

    def save_stop(self, stop: RouteStop) -> None:
        with self._lock:
            self.stops[stop.id] = replace(stop)
