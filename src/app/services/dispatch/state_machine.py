"""Transition tables for the route and stop lifecycles."""

from __future__ import annotations

from typing import Mapping

from ...errors import InvalidInputError, InvalidStateTransitionError
from ...models.domain import RouteStatus, StopStatus

ROUTE_TRANSITIONS: Mapping[RouteStatus, frozenset[RouteStatus]] = {
    RouteStatus.PLANNED: frozenset(
        {RouteStatus.OPTIMIZED, RouteStatus.ASSIGNED, RouteStatus.IN_PROGRESS, RouteStatus.CANCELLED}
    ),
    RouteStatus.OPTIMIZED: frozenset({RouteStatus.ASSIGNED, RouteStatus.IN_PROGRESS, RouteStatus.CANCELLED}),
    RouteStatus.ASSIGNED: frozenset({RouteStatus.IN_PROGRESS, RouteStatus.CANCELLED}),
    RouteStatus.IN_PROGRESS: frozenset({RouteStatus.COMPLETED, RouteStatus.CANCELLED}),
    RouteStatus.COMPLETED: frozenset(),
    RouteStatus.CANCELLED: frozenset(),
}

_NON_TERMINAL_STOP_TARGETS = frozenset(StopStatus)

# Non-terminal stop states may be re-applied (notes updates) but never moved backwards.
STOP_TRANSITIONS: Mapping[StopStatus, frozenset[StopStatus]] = {
    StopStatus.PENDING: _NON_TERMINAL_STOP_TARGETS,
    StopStatus.APPROACHING: _NON_TERMINAL_STOP_TARGETS - {StopStatus.PENDING},
    StopStatus.ARRIVED: _NON_TERMINAL_STOP_TARGETS - {StopStatus.PENDING, StopStatus.APPROACHING},
    StopStatus.COMPLETED: frozenset(),
    StopStatus.SKIPPED: frozenset(),
    StopStatus.FAILED: frozenset(),
}

TERMINAL_ROUTE_STATUSES = frozenset(status for status, targets in ROUTE_TRANSITIONS.items() if not targets)
TERMINAL_STOP_STATUSES = frozenset(status for status, targets in STOP_TRANSITIONS.items() if not targets)


def is_terminal_route(status: RouteStatus) -> bool:
    return status in TERMINAL_ROUTE_STATUSES


def can_transition_route(current: RouteStatus, target: RouteStatus) -> bool:
    return target in ROUTE_TRANSITIONS[current]


def ensure_route_transition(current: RouteStatus, target: RouteStatus) -> None:
    if not can_transition_route(current, target):
        raise InvalidStateTransitionError(
            f"Cannot move route from '{current.value}' to '{target.value}'"
        )


def ensure_route_mutable(current: RouteStatus, action: str) -> None:
    """Reject operations on completed or cancelled routes."""
    if is_terminal_route(current):
        raise InvalidStateTransitionError(f"Cannot {action} a {current.value} route")


def parse_stop_status(value: str | None) -> StopStatus:
    try:
        return StopStatus(value)
    except ValueError:
        valid = ", ".join(status.value for status in StopStatus)
        raise InvalidInputError(f"status must be one of: {valid}") from None


def ensure_stop_transition(current: StopStatus, target: StopStatus) -> None:
    if target not in STOP_TRANSITIONS[current]:
        raise InvalidStateTransitionError(
            f"Cannot move stop from '{current.value}' to '{target.value}'"
        )
