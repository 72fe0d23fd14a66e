"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class StopInput:
    """What the sequencer needs to know about a stop."""

    stop_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    window_end: Optional[str] = None
    service_minutes: int = 15

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class SequencedStop:
    stop_id: str
    sequence: int
    distance_from_prev_km: float
    drive_minutes: int
    estimated_arrival: Optional[str]
    estimated_departure: Optional[str]
    window_penalized: bool = False


@dataclass(slots=True)
class SequenceResult:
    stops: List[SequencedStop]
    total_distance_km: float
    total_duration_min: int
    start_time: str
    changed: bool = True


@dataclass(slots=True)
class OptimizationResult:
    route_id: str
    optimized: bool
    message: str
    original_distance_km: float = 0.0
    optimized_distance_km: float = 0.0
    distance_saved_km: float = 0.0
    time_saved_minutes: int = 0
    estimated_duration_minutes: Optional[int] = None
    new_sequence: List[dict] = field(default_factory=list)


@dataclass(slots=True)
class GeneratedRouteSummary:
    id: str
    route_number: str
    zone: str
    stops: int
    driver: Optional[str]


@dataclass(slots=True)
class GenerationResult:
    routes_created: int
    deliveries_assigned: int
    drivers_remaining: int
    routes: List[GeneratedRouteSummary]
    message: Optional[str] = None
