"""Routing request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.domain import BookingStatus, RouteStatus, StopStatus


def _coerce_id(value: Any) -> Any:
    # Store ids may be integers; the service layer works with strings.
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class AutoGenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    route_date: Optional[date] = Field(default=None, alias="date", description="Defaults to today.")
    location_id: Optional[str] = Field(default=None, description="Warehouse the routes start from.")

    @field_validator("location_id", mode="before")
    @classmethod
    def _coerce_location_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class AssignDriverRequest(BaseModel):
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None

    @field_validator("driver_id", "vehicle_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)


class ReorderRequest(BaseModel):
    stop_order: Optional[List[str]] = Field(default=None, description="Stop ids in the desired visiting order.")

    @field_validator("stop_order", mode="before")
    @classmethod
    def _coerce_stop_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_coerce_id(item) for item in value]
        return value


class StopStatusRequest(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None


class CreateRouteRequest(BaseModel):
    route_date: Optional[date] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    location_id: Optional[str] = None
    delivery_ids: Optional[List[str]] = None
    notes: Optional[str] = None

    @field_validator("driver_id", "vehicle_id", "location_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("delivery_ids", mode="before")
    @classmethod
    def _coerce_delivery_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_coerce_id(item) for item in value]
        return value


class RouteModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    route_number: str
    route_date: date
    status: RouteStatus
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    start_location_id: Optional[str] = None
    start_time: Optional[str] = None
    total_stops: int
    completed_stops: int
    total_weight_kg: float
    total_distance_km: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    optimized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class RouteStopModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    route_id: str
    sequence_order: int
    booking_id: Optional[str] = None
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    estimated_duration_minutes: int
    estimated_arrival: Optional[str] = None
    estimated_departure: Optional[str] = None
    estimated_distance_from_prev_km: Optional[float] = None
    actual_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    status: StopStatus
    notes: Optional[str] = None


class StopDetailModel(RouteStopModel):
    contact_name: Optional[str] = None
    delivery_address: Optional[str] = None
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    booking_status: Optional[BookingStatus] = None


class GeneratedRouteModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    route_number: str
    zone: str
    stops: int
    driver: Optional[str] = None


class AutoGenerateResponse(BaseModel):
    success: bool = True
    routes_created: int
    deliveries_assigned: int
    drivers_remaining: int
    routes: List[GeneratedRouteModel]
    message: Optional[str] = None


class SequenceEntryModel(BaseModel):
    stop_id: str
    sequence: int
    address: Optional[str] = None
    customer: Optional[str] = None
    estimated_arrival: Optional[str] = None
    estimated_departure: Optional[str] = None
    distance_from_prev_km: Optional[float] = None
    window_penalized: bool = False


class OptimizeResponse(BaseModel):
    success: bool = True
    optimized: bool
    message: str
    original_distance_km: float
    optimized_distance_km: float
    distance_saved_km: float = Field(ge=0)
    time_saved_minutes: int = Field(ge=0)
    estimated_duration_minutes: Optional[int] = None
    new_sequence: List[SequenceEntryModel]


class RouteResponse(BaseModel):
    success: bool = True
    route: RouteModel


class RouteListResponse(BaseModel):
    success: bool = True
    route_date: date = Field(serialization_alias="date")
    routes: List[RouteModel]


class RouteDetailResponse(BaseModel):
    success: bool = True
    route: RouteModel
    driver_name: Optional[str] = None
    start_location_name: Optional[str] = None
    stops: List[StopDetailModel]


class StopListResponse(BaseModel):
    success: bool = True
    stops: List[RouteStopModel]


class StopResponse(BaseModel):
    success: bool = True
    stop: RouteStopModel
