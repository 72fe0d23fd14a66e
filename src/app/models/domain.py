"""Domain models for bookings, routes, stops and the fleet."""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


class RouteStatus(str, Enum):
    PLANNED = "planned"
    OPTIMIZED = "optimized"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StopStatus(str, Enum):
    PENDING = "pending"
    APPROACHING = "approaching"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class BookingStatus(str, Enum):
    PROCESSING = "processing"
    SCHEDULED = "scheduled"
    DISPATCHED = "dispatched"
    EN_ROUTE = "en_route"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DriverStatus(str, Enum):
    AVAILABLE = "available"
    ON_ROUTE = "on_route"
    OFF_DUTY = "off_duty"


# Bookings in these statuses are never picked up by route generation.
TERMINAL_BOOKING_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.DELIVERED,
        BookingStatus.CANCELLED,
        BookingStatus.FAILED,
    }
)


@dataclass(slots=True)
class Zone:
    """Named geographic grouping with a representative center point."""

    id: str
    name: str
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None


@dataclass(slots=True)
class Location:
    """Warehouse or depot a route starts from."""

    id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(slots=True)
class Vehicle:
    id: str
    name: str
    plate_number: Optional[str] = None
    capacity_weight_kg: Optional[float] = None
    capacity_items: Optional[int] = None


@dataclass(slots=True)
class Driver:
    """Driver record; ``version`` is bumped on every reservation."""

    id: str
    name: str
    is_active: bool = True
    status: DriverStatus = DriverStatus.AVAILABLE
    vehicle_id: Optional[str] = None
    version: int = 0


@dataclass(slots=True)
class DeliveryBooking:
    """An order's delivery request as seen by the dispatch subsystem."""

    id: str
    scheduled_date: date
    delivery_address: str = ""
    order_id: Optional[str] = None
    zone_id: Optional[str] = None
    contact_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    weight_kg: Optional[float] = None
    status: BookingStatus = BookingStatus.PROCESSING
    route_id: Optional[str] = None
    route_order: Optional[int] = None
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    estimated_arrival: Optional[str] = None
    actual_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class Route:
    """One driver's itinerary for one calendar date."""

    id: str
    route_number: str
    route_date: date
    status: RouteStatus = RouteStatus.PLANNED
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    start_location_id: Optional[str] = None
    start_time: Optional[str] = None
    total_stops: int = 0
    completed_stops: int = 0
    total_weight_kg: float = 0.0
    total_distance_km: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    optimized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


@dataclass(slots=True)
class RouteStop:
    """One ordered waypoint on a route, linked to a delivery booking."""

    id: str
    route_id: str
    sequence_order: int
    booking_id: Optional[str] = None
    address: str = "N/A"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    estimated_duration_minutes: int = 15
    estimated_arrival: Optional[str] = None
    estimated_departure: Optional[str] = None
    estimated_distance_from_prev_km: Optional[float] = None
    actual_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    status: StopStatus = StopStatus.PENDING
    notes: Optional[str] = None
