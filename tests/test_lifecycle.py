from datetime import date

import pytest

from src.app.errors import InvalidInputError, InvalidStateTransitionError, NotFoundError
from src.app.models.domain import BookingStatus, DeliveryBooking, DriverStatus, RouteStatus, StopStatus
from src.app.services.dispatch import lifecycle
from src.app.services.dispatch.state_machine import (
    TERMINAL_ROUTE_STATUSES,
    TERMINAL_STOP_STATUSES,
    can_transition_route,
)
from src.app.services.routing.generator import create_route
from src.app.services.routing.service import optimize_route

ROUTE_DATE = date(2026, 10, 19)


def _route(repo, driver_id: str | None = None):
    repo.add_booking(
        DeliveryBooking(id="A", scheduled_date=ROUTE_DATE, zone_id="Z1", latitude=43.70, longitude=-79.40)
    )
    repo.add_booking(
        DeliveryBooking(id="B", scheduled_date=ROUTE_DATE, zone_id="Z1", latitude=43.66, longitude=-79.39)
    )
    return create_route(
        repo, route_date=ROUTE_DATE, driver_id=driver_id, location_id="WH1", booking_ids=["A", "B"]
    )


def test_transition_tables():
    assert TERMINAL_ROUTE_STATUSES == {RouteStatus.COMPLETED, RouteStatus.CANCELLED}
    assert TERMINAL_STOP_STATUSES == {StopStatus.COMPLETED, StopStatus.SKIPPED, StopStatus.FAILED}
    assert can_transition_route(RouteStatus.PLANNED, RouteStatus.IN_PROGRESS)
    assert not can_transition_route(RouteStatus.ASSIGNED, RouteStatus.OPTIMIZED)
    assert not can_transition_route(RouteStatus.COMPLETED, RouteStatus.CANCELLED)


def test_assign_driver_on_planned_route(repo):
    route = _route(repo)

    updated = lifecycle.assign_driver(repo, route.id, "D1")

    assert updated.status == RouteStatus.ASSIGNED
    assert updated.driver_id == "D1"
    assert updated.vehicle_id == "V1"
    assert {b.driver_name for b in repo.list_bookings_for_route(route.id)} == {"Alice"}


def test_assign_driver_with_explicit_vehicle_keeps_in_progress_status(repo):
    route = _route(repo, driver_id="D1")
    lifecycle.start_route(repo, route.id)

    updated = lifecycle.assign_driver(repo, route.id, "D2", vehicle_id="V1")

    assert updated.status == RouteStatus.IN_PROGRESS
    assert updated.driver_id == "D2"
    assert updated.vehicle_id == "V1"


def test_assign_driver_errors(repo):
    route = _route(repo)

    with pytest.raises(InvalidInputError):
        lifecycle.assign_driver(repo, route.id, None)
    with pytest.raises(NotFoundError):
        lifecycle.assign_driver(repo, "missing", "D1")
    with pytest.raises(NotFoundError):
        lifecycle.assign_driver(repo, route.id, "D3")
    with pytest.raises(NotFoundError):
        lifecycle.assign_driver(repo, route.id, "D1", vehicle_id="V9")

    repo.routes[route.id].status = RouteStatus.CANCELLED
    with pytest.raises(InvalidStateTransitionError):
        lifecycle.assign_driver(repo, route.id, "D1")
    assert repo.get_route(route.id).driver_id is None


def test_start_and_complete_route(repo):
    route = _route(repo, driver_id="D1")

    started = lifecycle.start_route(repo, route.id)
    assert started.status == RouteStatus.IN_PROGRESS
    assert started.started_at is not None
    assert repo.get_driver("D1").status == DriverStatus.ON_ROUTE

    completed = lifecycle.complete_route(repo, route.id)
    assert completed.status == RouteStatus.COMPLETED
    assert completed.completed_at is not None
    assert repo.get_driver("D1").status == DriverStatus.AVAILABLE


def test_start_and_complete_reject_ineligible_routes(repo):
    route = _route(repo)

    with pytest.raises(NotFoundError):
        lifecycle.complete_route(repo, route.id)
    with pytest.raises(NotFoundError):
        lifecycle.start_route(repo, "missing")

    lifecycle.start_route(repo, route.id)
    with pytest.raises(NotFoundError):
        lifecycle.start_route(repo, route.id)

    lifecycle.complete_route(repo, route.id)
    with pytest.raises(NotFoundError):
        lifecycle.complete_route(repo, route.id)


def test_cancel_route_releases_open_bookings(repo):
    route = _route(repo, driver_id="D1")
    lifecycle.start_route(repo, route.id)
    repo.bookings["B"].status = BookingStatus.DELIVERED

    cancelled = lifecycle.cancel_route(repo, route.id)

    assert cancelled.status == RouteStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert repo.get_driver("D1").status == DriverStatus.AVAILABLE
    released = repo.get_booking("A")
    assert released.route_id is None
    assert released.route_order is None
    assert released.driver_id is None
    assert repo.get_booking("B").route_id == route.id

    with pytest.raises(InvalidStateTransitionError):
        lifecycle.cancel_route(repo, route.id)


def test_cancel_completed_route_is_rejected(repo):
    route = _route(repo)
    repo.routes[route.id].status = RouteStatus.COMPLETED

    with pytest.raises(InvalidStateTransitionError):
        lifecycle.cancel_route(repo, route.id)


def test_reorder_stops_keeps_estimated_times(repo):
    route = _route(repo)
    optimize_route(repo, route.id)
    before = {stop.id: stop.estimated_arrival for stop in repo.list_stops(route.id)}
    reversed_ids = [stop.id for stop in reversed(repo.list_stops(route.id))]

    stops = lifecycle.reorder_stops(repo, route.id, reversed_ids)

    assert [stop.id for stop in stops] == reversed_ids
    assert [stop.sequence_order for stop in stops] == [1, 2]
    assert [stop.id for stop in repo.list_stops(route.id)] == reversed_ids
    assert {stop.id: stop.estimated_arrival for stop in repo.list_stops(route.id)} == before
    first_booking = repo.get_booking(stops[0].booking_id)
    assert first_booking.route_order == 1


def test_reorder_stops_validation(repo):
    route = _route(repo)
    stop_ids = [stop.id for stop in repo.list_stops(route.id)]

    with pytest.raises(InvalidInputError):
        lifecycle.reorder_stops(repo, route.id, [])
    with pytest.raises(InvalidInputError):
        lifecycle.reorder_stops(repo, route.id, stop_ids[:1])
    with pytest.raises(InvalidInputError):
        lifecycle.reorder_stops(repo, route.id, [stop_ids[0], stop_ids[0]])
    with pytest.raises(InvalidInputError):
        lifecycle.reorder_stops(repo, route.id, stop_ids + ["other"])
    with pytest.raises(NotFoundError):
        lifecycle.reorder_stops(repo, "missing", stop_ids)

    assert [stop.id for stop in repo.list_stops(route.id)] == stop_ids


def test_route_detail_and_listing(repo):
    route = _route(repo, driver_id="D2")
    create_route(repo, route_date=date(2026, 10, 20))

    detail = lifecycle.get_route_detail(repo, route.id)
    assert detail.driver_name == "Bob"
    assert detail.start_location_name == "Main Warehouse"
    assert [item.booking.id for item in detail.stops] == ["A", "B"]

    assert [r.id for r in lifecycle.list_routes(repo, ROUTE_DATE)] == [route.id]
    assert lifecycle.list_routes(repo, ROUTE_DATE, status="planned") == []
    assert len(lifecycle.list_routes(repo, ROUTE_DATE, status="assigned", driver_id="D2")) == 1
    with pytest.raises(InvalidInputError):
        lifecycle.list_routes(repo, ROUTE_DATE, status="bogus")
    with pytest.raises(NotFoundError):
        lifecycle.get_route_detail(repo, "missing")


@pytest.mark.parametrize("status", [RouteStatus.COMPLETED, RouteStatus.CANCELLED])
def test_reorder_rejects_terminal_routes(repo, status):
    route = _route(repo)
    stop_ids = [stop.id for stop in repo.list_stops(route.id)]
    repo.routes[route.id].status = status

    with pytest.raises(InvalidStateTransitionError):
        lifecycle.reorder_stops(repo, route.id, list(reversed(stop_ids)))

    assert [stop.id for stop in repo.list_stops(route.id)] == stop_ids
