"""Supabase-backed dispatch repository.

Reads go straight to PostgREST. Writes issued inside ``transaction()`` are
buffered per thread and flushed through the ``dispatch_apply_changes``
PostgreSQL function (see ``sql/dispatch_functions.sql``), which applies the
whole batch in a single database transaction. Writes outside a transaction
are sent immediately as a one-change batch.

Drivers are claimed per date through ``reserve_dispatch_driver``, which
locks the driver row and records the claim in ``dispatch_driver_reservations``
right away, so a concurrent generator sees it before the routes are flushed.
Claims taken by a failed transaction are dropped again.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterator, Optional

from ..models.domain import (
    TERMINAL_BOOKING_STATUSES,
    BookingStatus,
    DeliveryBooking,
    Driver,
    DriverStatus,
    Location,
    Route,
    RouteStatus,
    RouteStop,
    StopStatus,
    Vehicle,
    Zone,
)
from .repository import DispatchRepository

logger = logging.getLogger(__name__)

APPLY_CHANGES_FUNCTION = "dispatch_apply_changes"
ROUTE_SEQUENCE_FUNCTION = "next_dispatch_route_number"
RESERVE_DRIVER_FUNCTION = "reserve_dispatch_driver"

BOOKINGS_TABLE = "delivery_bookings"
ROUTES_TABLE = "dispatch_routes"
STOPS_TABLE = "delivery_route_stops"
DRIVERS_TABLE = "drivers"
RESERVATIONS_TABLE = "dispatch_driver_reservations"

_CLOSED_ROUTE_STATUSES = [RouteStatus.COMPLETED.value, RouteStatus.CANCELLED.value]


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _float_or_none(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _int_or_none(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _rpc_scalar(data: Any) -> Any:
    # PostgREST returns scalar function results bare, wrapped in a list, or keyed by function name.
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = next(iter(data.values()), None)
    return data


def _hhmm(value: Any) -> Optional[str]:
    # Postgres TIME columns come back as "HH:MM:SS".
    if value is None:
        return None
    return str(value)[:5]


def _booking_from_row(row: dict) -> DeliveryBooking:
    return DeliveryBooking(
        id=str(row["id"]),
        scheduled_date=_parse_date(row.get("scheduled_date")),
        delivery_address=row.get("delivery_address") or "",
        order_id=_str_or_none(row.get("order_id")),
        zone_id=_str_or_none(row.get("zone_id")),
        contact_name=row.get("contact_name"),
        latitude=_float_or_none(row.get("latitude")),
        longitude=_float_or_none(row.get("longitude")),
        window_start=_hhmm(row.get("scheduled_start")),
        window_end=_hhmm(row.get("scheduled_end")),
        weight_kg=_float_or_none(row.get("weight_kg")),
        status=BookingStatus(row.get("status") or BookingStatus.PROCESSING.value),
        route_id=_str_or_none(row.get("route_id")),
        route_order=_int_or_none(row.get("route_order")),
        driver_id=_str_or_none(row.get("driver_id")),
        driver_name=row.get("driver_name"),
        estimated_arrival=_str_or_none(row.get("estimated_arrival")),
        actual_arrival=_parse_datetime(row.get("actual_arrival")),
        actual_departure=_parse_datetime(row.get("actual_departure")),
        completed_at=_parse_datetime(row.get("completed_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def _booking_to_row(booking: DeliveryBooking) -> dict:
    # Only the columns this subsystem owns; address, contact and window are read-only here.
    return {
        "id": booking.id,
        "status": booking.status.value,
        "route_id": booking.route_id,
        "route_order": booking.route_order,
        "driver_id": booking.driver_id,
        "driver_name": booking.driver_name,
        "estimated_arrival": booking.estimated_arrival,
        "actual_arrival": _serialize(booking.actual_arrival),
        "actual_departure": _serialize(booking.actual_departure),
        "completed_at": _serialize(booking.completed_at),
        "updated_at": _serialize(booking.updated_at),
    }


def _route_from_row(row: dict) -> Route:
    return Route(
        id=str(row["id"]),
        route_number=row["route_number"],
        route_date=_parse_date(row["route_date"]),
        status=RouteStatus(row.get("status") or RouteStatus.PLANNED.value),
        driver_id=_str_or_none(row.get("driver_id")),
        vehicle_id=_str_or_none(row.get("vehicle_id")),
        start_location_id=_str_or_none(row.get("start_location_id")),
        start_time=_hhmm(row.get("start_time")),
        total_stops=int(row.get("total_stops") or 0),
        completed_stops=int(row.get("completed_stops") or 0),
        total_weight_kg=float(row.get("total_weight_kg") or 0.0),
        total_distance_km=_float_or_none(row.get("total_distance_km")),
        estimated_duration_minutes=_int_or_none(row.get("estimated_duration_minutes")),
        notes=row.get("notes"),
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
        started_at=_parse_datetime(row.get("started_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
        optimized_at=_parse_datetime(row.get("optimized_at")),
        cancelled_at=_parse_datetime(row.get("cancelled_at")),
    )


def _route_to_row(route: Route) -> dict:
    return {field.name: _serialize(getattr(route, field.name)) for field in fields(route)}


def _stop_from_row(row: dict) -> RouteStop:
    return RouteStop(
        id=str(row["id"]),
        route_id=str(row["route_id"]),
        sequence_order=int(row["sequence_order"]),
        booking_id=_str_or_none(row.get("delivery_booking_id")),
        address=row.get("address") or "N/A",
        latitude=_float_or_none(row.get("latitude")),
        longitude=_float_or_none(row.get("longitude")),
        estimated_duration_minutes=int(row.get("estimated_duration_minutes") or 15),
        estimated_arrival=_hhmm(row.get("estimated_arrival")),
        estimated_departure=_hhmm(row.get("estimated_departure")),
        estimated_distance_from_prev_km=_float_or_none(row.get("estimated_distance_from_prev_km")),
        actual_arrival=_parse_datetime(row.get("actual_arrival")),
        actual_departure=_parse_datetime(row.get("actual_departure")),
        status=StopStatus(row.get("status") or StopStatus.PENDING.value),
        notes=row.get("notes"),
    )


def _stop_to_row(stop: RouteStop) -> dict:
    row = {field.name: _serialize(getattr(stop, field.name)) for field in fields(stop)}
    row["delivery_booking_id"] = row.pop("booking_id")
    return row


def _driver_from_row(row: dict) -> Driver:
    return Driver(
        id=str(row["id"]),
        name=row.get("name") or "",
        is_active=bool(row.get("is_active", True)),
        status=DriverStatus(row.get("status") or DriverStatus.AVAILABLE.value),
        vehicle_id=_str_or_none(row.get("vehicle_id")),
        version=int(row.get("version") or 0),
    )


class SupabaseDispatchRepository(DispatchRepository):
    """Dispatch repository over a Supabase (PostgREST) client."""

    def __init__(self, client: Any) -> None:
        self.client = client
        self._local = threading.local()

    # Transactions
    def _pending(self) -> Optional[list[dict]]:
        return getattr(self._local, "changes", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._pending() is not None:
            # Nested: the outer transaction flushes.
            yield
            return

        self._local.changes = []
        self._local.claims = []
        self._local.releases = []
        try:
            yield
            changes = self._local.changes
            if changes:
                logger.info(f"Flushing {len(changes)} dispatch change(s) in one database transaction")
                self.client.rpc(APPLY_CHANGES_FUNCTION, {"changes": changes}).execute()
        except BaseException:
            logger.warning(f"Discarding {len(self._local.changes)} buffered dispatch change(s)")
            self._drop_reservations(self._local.claims)
            raise
        else:
            self._drop_reservations(self._local.releases)
        finally:
            self._local.changes = None
            self._local.claims = None
            self._local.releases = None

    def _write(self, table: str, row: dict) -> None:
        change = {"table": table, "row": row}
        pending = self._pending()
        if pending is not None:
            pending.append(change)
            return
        self.client.rpc(APPLY_CHANGES_FUNCTION, {"changes": [change]}).execute()

    def _select_one(self, table: str, record_id: str) -> Optional[dict]:
        response = self.client.table(table).select("*").eq("id", record_id).limit(1).execute()
        return response.data[0] if response.data else None

    # Reference data
    def get_location(self, location_id: str) -> Optional[Location]:
        row = self._select_one("locations", location_id)
        if row is None:
            return None
        return Location(
            id=str(row["id"]),
            name=row.get("name") or "",
            latitude=_float_or_none(row.get("latitude")),
            longitude=_float_or_none(row.get("longitude")),
        )

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        row = self._select_one("delivery_zones", zone_id)
        if row is None:
            return None
        return Zone(
            id=str(row["id"]),
            name=row.get("zone_name") or "",
            center_lat=_float_or_none(row.get("center_lat")),
            center_lng=_float_or_none(row.get("center_lng")),
        )

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        row = self._select_one("vehicles", vehicle_id)
        if row is None:
            return None
        return Vehicle(
            id=str(row["id"]),
            name=row.get("name") or "",
            plate_number=row.get("plate_number"),
            capacity_weight_kg=_float_or_none(row.get("capacity_weight_kg")),
            capacity_items=_int_or_none(row.get("capacity_items")),
        )

    # Drivers
    def get_driver(self, driver_id: str) -> Optional[Driver]:
        row = self._select_one(DRIVERS_TABLE, driver_id)
        return _driver_from_row(row) if row else None

    def _busy_driver_ids(self, route_date: date) -> set[str]:
        response = (
            self.client.table(ROUTES_TABLE)
            .select("driver_id")
            .eq("route_date", route_date.isoformat())
            .not_.in_("status", _CLOSED_ROUTE_STATUSES)
            .execute()
        )
        return {str(row["driver_id"]) for row in (response.data or []) if row.get("driver_id") is not None}

    def list_available_drivers(self, route_date: date) -> list[Driver]:
        busy = self._busy_driver_ids(route_date)
        response = self.client.table(DRIVERS_TABLE).select("*").eq("is_active", True).order("name").execute()
        return [
            driver
            for driver in (_driver_from_row(row) for row in (response.data or []))
            if driver.id not in busy
        ]

    def reserve_driver(self, driver: Driver, route_date: date) -> bool:
        response = self.client.rpc(
            RESERVE_DRIVER_FUNCTION,
            {
                "p_driver_id": driver.id,
                "p_route_date": route_date.isoformat(),
                "p_version": driver.version,
            },
        ).execute()
        if not _rpc_scalar(response.data):
            logger.warning(f"Driver {driver.id} was reserved concurrently for {route_date}")
            return False

        driver.version += 1
        claims = getattr(self._local, "claims", None)
        if claims is not None:
            claims.append((driver.id, route_date))
        return True

    def release_driver(self, driver_id: str, route_date: date) -> None:
        releases = getattr(self._local, "releases", None)
        if releases is not None:
            # Dropped only once the closing writes are committed.
            releases.append((driver_id, route_date))
            return
        self._drop_reservations([(driver_id, route_date)])

    def _drop_reservations(self, reservations: list[tuple[str, date]]) -> None:
        for driver_id, route_date in reservations:
            try:
                (
                    self.client.table(RESERVATIONS_TABLE)
                    .delete()
                    .eq("driver_id", driver_id)
                    .eq("route_date", route_date.isoformat())
                    .execute()
                )
            except Exception:
                # A leftover claim expires inside reserve_dispatch_driver.
                logger.exception(f"Failed to release reservation of driver {driver_id} for {route_date}")

    def save_driver(self, driver: Driver) -> None:
        self._write(
            DRIVERS_TABLE,
            {"id": driver.id, "status": driver.status.value},
        )

    # Bookings
    def get_booking(self, booking_id: str) -> Optional[DeliveryBooking]:
        row = self._select_one(BOOKINGS_TABLE, booking_id)
        return _booking_from_row(row) if row else None

    def list_unrouted_bookings(self, route_date: date) -> list[DeliveryBooking]:
        response = (
            self.client.table(BOOKINGS_TABLE)
            .select("*")
            .eq("scheduled_date", route_date.isoformat())
            .is_("route_id", "null")
            .not_.in_("status", [status.value for status in TERMINAL_BOOKING_STATUSES])
            .order("zone_id", nullsfirst=False)
            .order("scheduled_start", nullsfirst=False)
            .execute()
        )
        return [_booking_from_row(row) for row in (response.data or [])]

    def list_bookings_for_route(self, route_id: str) -> list[DeliveryBooking]:
        response = (
            self.client.table(BOOKINGS_TABLE)
            .select("*")
            .eq("route_id", route_id)
            .order("route_order", nullsfirst=False)
            .execute()
        )
        return [_booking_from_row(row) for row in (response.data or [])]

    def save_booking(self, booking: DeliveryBooking) -> None:
        self._write(BOOKINGS_TABLE, _booking_to_row(booking))

    # Routes
    def next_route_sequence(self) -> int:
        response = self.client.rpc(ROUTE_SEQUENCE_FUNCTION, {}).execute()
        data = _rpc_scalar(response.data)
        if data is None:
            raise RuntimeError("Route number sequence returned no value")
        return int(data)

    def get_route(self, route_id: str) -> Optional[Route]:
        row = self._select_one(ROUTES_TABLE, route_id)
        return _route_from_row(row) if row else None

    def list_routes(
        self,
        route_date: date,
        status: Optional[RouteStatus] = None,
        driver_id: Optional[str] = None,
    ) -> list[Route]:
        query = self.client.table(ROUTES_TABLE).select("*").eq("route_date", route_date.isoformat())
        if status is not None:
            query = query.eq("status", status.value)
        if driver_id is not None:
            query = query.eq("driver_id", driver_id)
        response = query.order("created_at").execute()
        return [_route_from_row(row) for row in (response.data or [])]

    def add_route(self, route: Route) -> None:
        self._write(ROUTES_TABLE, _route_to_row(route))

    def save_route(self, route: Route) -> None:
        self._write(ROUTES_TABLE, _route_to_row(route))

    # Stops
    def get_stop(self, stop_id: str) -> Optional[RouteStop]:
        row = self._select_one(STOPS_TABLE, stop_id)
        return _stop_from_row(row) if row else None

    def list_stops(self, route_id: str) -> list[RouteStop]:
        response = (
            self.client.table(STOPS_TABLE)
            .select("*")
            .eq("route_id", route_id)
            .order("sequence_order")
            .execute()
        )
        return [_stop_from_row(row) for row in (response.data or [])]

    def add_stop(self, stop: RouteStop) -> None:
        self._write(STOPS_TABLE, _stop_to_row(stop))

    def save_stop(self, stop: RouteStop) -> None:
        self._write(STOPS_TABLE, _stop_to_row(stop))
