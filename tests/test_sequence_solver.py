import pytest

from src.app.services.routing.models import StopInput
from src.app.services.routing.sequence_solver import path_distance_km, sequence_stops

START = (43.65, -79.38)


def _stop(stop_id: str, lat: float | None, lng: float | None, window_end: str | None = None) -> StopInput:
    return StopInput(stop_id=stop_id, latitude=lat, longitude=lng, window_end=window_end)


def _abc() -> list[StopInput]:
    return [
        _stop("A", 43.70, -79.40),
        _stop("B", 43.66, -79.39),
        _stop("C", 43.80, -79.50),
    ]


def test_nearest_neighbor_order_and_etas():
    result = sequence_stops(_abc(), *START)

    assert [s.stop_id for s in result.stops] == ["B", "A", "C"]
    assert [s.sequence for s in result.stops] == [1, 2, 3]
    assert [s.distance_from_prev_km for s in result.stops] == pytest.approx([1.37, 4.52, 13.72], abs=0.01)
    assert [s.estimated_arrival for s in result.stops] == ["08:08", "08:37", "09:24"]
    assert [s.estimated_departure for s in result.stops] == ["08:23", "08:52", "09:39"]
    assert result.total_distance_km == pytest.approx(19.61, abs=0.01)
    assert result.total_duration_min == 99
    assert result.changed is True
    assert not any(s.window_penalized for s in result.stops)


def test_path_distance_follows_given_order():
    assert path_distance_km(_abc(), *START) == pytest.approx(28.21, abs=0.01)


def test_window_miss_pushes_stop_later_without_dropping_it():
    # N is closest but the drive lands at 08:08, after its 08:05 window end.
    stops = [_stop("N", 43.66, -79.39, window_end="08:05"), _stop("A", 43.70, -79.40)]

    result = sequence_stops(stops, *START)

    assert [s.stop_id for s in result.stops] == ["A", "N"]
    assert result.stops[1].window_penalized is True


def test_window_penalty_can_be_disabled():
    stops = [_stop("N", 43.66, -79.39, window_end="08:05"), _stop("A", 43.70, -79.40)]

    result = sequence_stops(stops, *START, window_penalty_km=0.0)

    assert [s.stop_id for s in result.stops] == ["N", "A"]


def test_start_time_shifts_etas():
    result = sequence_stops(_abc(), *START, start_time="23:50")

    assert result.stops[0].estimated_arrival == "23:58"
    assert result.stops[1].estimated_arrival == "00:27"
    assert result.total_duration_min == 99


def test_stop_without_coordinates_goes_last():
    stops = [_stop("X", None, None), _stop("A", 43.70, -79.40), _stop("B", 43.66, -79.39)]

    result = sequence_stops(stops, *START)

    assert [s.stop_id for s in result.stops] == ["B", "A", "X"]
    last = result.stops[-1]
    assert last.distance_from_prev_km == 0.0
    assert last.drive_minutes == 5


def test_single_stop_is_left_alone():
    result = sequence_stops([_stop("A", 43.70, -79.40)], *START)

    assert result.changed is False
    assert result.total_distance_km == 0.0
    assert result.stops[0].sequence == 1
    assert result.stops[0].estimated_arrival is None


def test_empty_input():
    result = sequence_stops([], *START)

    assert result.stops == []
    assert result.total_duration_min == 0
