"""Storage contract used by the dispatch services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from typing import Optional, Sequence

from ..models.domain import (
    DeliveryBooking,
    Driver,
    Location,
    Route,
    RouteStatus,
    RouteStop,
    Vehicle,
    Zone,
)


class DispatchRepository(ABC):
    """Records consumed and written by route planning.

    Getters return detached copies; changes are only stored through the
    ``add_*``/``save_*`` methods. Multi-row writes belong inside
    ``transaction()``, which either persists everything or nothing.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        raise NotImplementedError

    # Reference data
    @abstractmethod
    def get_location(self, location_id: str) -> Optional[Location]:
        raise NotImplementedError

    @abstractmethod
    def get_zone(self, zone_id: str) -> Optional[Zone]:
        raise NotImplementedError

    @abstractmethod
    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        raise NotImplementedError

    # Drivers
    @abstractmethod
    def get_driver(self, driver_id: str) -> Optional[Driver]:
        raise NotImplementedError

    @abstractmethod
    def list_available_drivers(self, route_date: date) -> list[Driver]:
        """Active drivers holding no non-terminal route on ``route_date``, ordered by name."""
        raise NotImplementedError

    @abstractmethod
    def reserve_driver(self, driver: Driver, route_date: date) -> bool:
        """Claim ``driver`` if its version is unchanged since it was read.

        Returns False when another writer got there first.
        """
        raise NotImplementedError

    @abstractmethod
    def release_driver(self, driver_id: str, route_date: date) -> None:
        """Drop the claim on a driver whose route for ``route_date`` closed or moved to someone else."""
        raise NotImplementedError

    @abstractmethod
    def save_driver(self, driver: Driver) -> None:
        raise NotImplementedError

    # Bookings
    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[DeliveryBooking]:
        raise NotImplementedError

    @abstractmethod
    def list_unrouted_bookings(self, route_date: date) -> list[DeliveryBooking]:
        """Bookings for the date with no route and a non-terminal status, by zone then window start."""
        raise NotImplementedError

    @abstractmethod
    def list_bookings_for_route(self, route_id: str) -> list[DeliveryBooking]:
        raise NotImplementedError

    @abstractmethod
    def save_booking(self, booking: DeliveryBooking) -> None:
        raise NotImplementedError

    # Routes
    @abstractmethod
    def next_route_sequence(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_route(self, route_id: str) -> Optional[Route]:
        raise NotImplementedError

    @abstractmethod
    def list_routes(
        self,
        route_date: date,
        status: Optional[RouteStatus] = None,
        driver_id: Optional[str] = None,
    ) -> list[Route]:
        raise NotImplementedError

    @abstractmethod
    def add_route(self, route: Route) -> None:
        raise NotImplementedError

    @abstractmethod
    def save_route(self, route: Route) -> None:
        raise NotImplementedError

    # Stops
    @abstractmethod
    def get_stop(self, stop_id: str) -> Optional[RouteStop]:
        raise NotImplementedError

    @abstractmethod
    def list_stops(self, route_id: str) -> list[RouteStop]:
        """Stops of a route ordered by sequence."""
        raise NotImplementedError

    @abstractmethod
    def add_stop(self, stop: RouteStop) -> None:
        raise NotImplementedError

    @abstractmethod
    def save_stop(self, stop: RouteStop) -> None:
        raise NotImplementedError

    def save_stops(self, stops: Sequence[RouteStop]) -> None:
        for stop in stops:
            self.save_stop(stop)
