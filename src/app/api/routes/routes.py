"""Dispatch route planning endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ...errors import DispatchError
from ...persistence.repository import DispatchRepository
from ...schemas.routing import (
    AssignDriverRequest,
    AutoGenerateRequest,
    AutoGenerateResponse,
    CreateRouteRequest,
    OptimizeResponse,
    ReorderRequest,
    RouteDetailResponse,
    RouteListResponse,
    RouteModel,
    RouteResponse,
    RouteStopModel,
    StopDetailModel,
    StopListResponse,
    StopResponse,
    StopStatusRequest,
)
from ...services.dispatch import lifecycle
from ...services.dispatch.lifecycle import RouteDetail, StopDetail
from ...services.dispatch.stops import update_stop_status
from ...services.routing.generator import auto_generate, create_route
from ...services.routing.service import optimize_route
from ..dependencies import get_repository

router = APIRouter(prefix="/dispatch/routes", tags=["routes"])


def _http_error(exc: Exception, action: str) -> HTTPException:
    """Translate a service failure into an HTTP error; unexpected ones are logged."""
    if isinstance(exc, DispatchError):
        return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
    logging.exception(f"Error trying to {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal_error", "message": f"Failed to {action}"},
    )


def _stop_detail(detail: StopDetail) -> StopDetailModel:
    booking = detail.booking
    return StopDetailModel(
        **RouteStopModel.model_validate(detail.stop).model_dump(),
        contact_name=booking.contact_name if booking else None,
        delivery_address=booking.delivery_address if booking else None,
        window_start=booking.window_start if booking else None,
        window_end=booking.window_end if booking else None,
        booking_status=booking.status if booking else None,
    )


def _detail_response(detail: RouteDetail) -> RouteDetailResponse:
    return RouteDetailResponse(
        route=RouteModel.model_validate(detail.route),
        driver_name=detail.driver_name,
        start_location_name=detail.start_location_name,
        stops=[_stop_detail(item) for item in detail.stops],
    )


@router.post("/auto-generate", response_model=AutoGenerateResponse)
def auto_generate_routes(
    response: Response,
    payload: Optional[AutoGenerateRequest] = None,
    repo: DispatchRepository = Depends(get_repository),
) -> AutoGenerateResponse:
    """Group the day's unassigned deliveries by zone into driver-assigned routes."""
    payload = payload or AutoGenerateRequest()
    try:
        result = auto_generate(repo, route_date=payload.route_date, location_id=payload.location_id)
    except Exception as exc:
        raise _http_error(exc, "auto-generate routes") from exc

    response.status_code = status.HTTP_201_CREATED if result.routes_created else status.HTTP_200_OK
    return AutoGenerateResponse.model_validate(result, from_attributes=True)


@router.get("", response_model=RouteListResponse)
def list_routes(
    route_date: Optional[date] = Query(default=None, alias="date", description="Defaults to today."),
    route_status: Optional[str] = Query(default=None, alias="status"),
    driver_id: Optional[str] = Query(default=None),
    repo: DispatchRepository = Depends(get_repository),
) -> RouteListResponse:
    target_date = route_date or date.today()
    try:
        routes = lifecycle.list_routes(repo, target_date, status=route_status, driver_id=driver_id)
    except Exception as exc:
        raise _http_error(exc, "list routes") from exc
    return RouteListResponse(route_date=target_date, routes=[RouteModel.model_validate(r) for r in routes])


@router.post("", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
def create_manual_route(
    payload: CreateRouteRequest,
    repo: DispatchRepository = Depends(get_repository),
) -> RouteResponse:
    """Create a route from an explicit, ordered list of delivery bookings."""
    try:
        route = create_route(
            repo,
            route_date=payload.route_date,
            driver_id=payload.driver_id,
            vehicle_id=payload.vehicle_id,
            location_id=payload.location_id,
            booking_ids=payload.delivery_ids,
            notes=payload.notes,
        )
    except Exception as exc:
        raise _http_error(exc, "create route") from exc
    return RouteResponse(route=RouteModel.model_validate(route))


@router.put("/stops/{stop_id}/status", response_model=StopResponse)
def set_stop_status(
    stop_id: str,
    payload: Optional[StopStatusRequest] = None,
    repo: DispatchRepository = Depends(get_repository),
) -> StopResponse:
    payload = payload or StopStatusRequest()
    try:
        stop = update_stop_status(repo, stop_id, payload.status, notes=payload.notes)
    except Exception as exc:
        raise _http_error(exc, "update stop status") from exc
    return StopResponse(stop=RouteStopModel.model_validate(stop))


@router.get("/{route_id}", response_model=RouteDetailResponse)
def get_route(route_id: str, repo: DispatchRepository = Depends(get_repository)) -> RouteDetailResponse:
    try:
        return _detail_response(lifecycle.get_route_detail(repo, route_id))
    except Exception as exc:
        raise _http_error(exc, "load route") from exc


@router.get("/{route_id}/stops", response_model=RouteDetailResponse)
def get_route_stops(route_id: str, repo: DispatchRepository = Depends(get_repository)) -> RouteDetailResponse:
    """Route header plus its stops in visiting order."""
    try:
        return _detail_response(lifecycle.get_route_detail(repo, route_id))
    except Exception as exc:
        raise _http_error(exc, "load route stops") from exc


@router.post("/{route_id}/optimize", response_model=OptimizeResponse)
def optimize(route_id: str, repo: DispatchRepository = Depends(get_repository)) -> OptimizeResponse:
    try:
        result = optimize_route(repo, route_id)
    except Exception as exc:
        raise _http_error(exc, "optimize route") from exc
    return OptimizeResponse.model_validate(result, from_attributes=True)


@router.put("/{route_id}/assign-driver", response_model=RouteResponse)
def assign_driver(
    route_id: str,
    payload: Optional[AssignDriverRequest] = None,
    repo: DispatchRepository = Depends(get_repository),
) -> RouteResponse:
    payload = payload or AssignDriverRequest()
    try:
        route = lifecycle.assign_driver(repo, route_id, payload.driver_id, payload.vehicle_id)
    except Exception as exc:
        raise _http_error(exc, "assign driver") from exc
    return RouteResponse(route=RouteModel.model_validate(route))


@router.put("/{route_id}/reorder", response_model=StopListResponse)
def reorder(
    route_id: str,
    payload: Optional[ReorderRequest] = None,
    repo: DispatchRepository = Depends(get_repository),
) -> StopListResponse:
    """Manually set the visiting order. Estimated times are not recomputed."""
    payload = payload or ReorderRequest()
    try:
        stops = lifecycle.reorder_stops(repo, route_id, payload.stop_order)
    except Exception as exc:
        raise _http_error(exc, "reorder stops") from exc
    return StopListResponse(stops=[RouteStopModel.model_validate(stop) for stop in stops])


@router.put("/{route_id}/start", response_model=RouteResponse)
def start(route_id: str, repo: DispatchRepository = Depends(get_repository)) -> RouteResponse:
    try:
        route = lifecycle.start_route(repo, route_id)
    except Exception as exc:
        raise _http_error(exc, "start route") from exc
    return RouteResponse(route=RouteModel.model_validate(route))


@router.put("/{route_id}/complete", response_model=RouteResponse)
def complete(route_id: str, repo: DispatchRepository = Depends(get_repository)) -> RouteResponse:
    try:
        route = lifecycle.complete_route(repo, route_id)
    except Exception as exc:
        raise _http_error(exc, "complete route") from exc
    return RouteResponse(route=RouteModel.model_validate(route))


@router.put("/{route_id}/cancel", response_model=RouteResponse)
def cancel(route_id: str, repo: DispatchRepository = Depends(get_repository)) -> RouteResponse:
    try:
        route = lifecycle.cancel_route(repo, route_id)
    except Exception as exc:
        raise _http_error(exc, "cancel route") from exc
    return RouteResponse(route=RouteModel.model_validate(route))
