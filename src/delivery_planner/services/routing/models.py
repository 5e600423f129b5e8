"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from ...models.domain import RouteType


@dataclass(frozen=True, slots=True)
class RouteFingerprint:
    """Cheap summary of the inputs a snapshot was computed from."""

    stop_count: int
    stop_ids_hash: str
    assignment_hash: str


@dataclass(slots=True)
class SequencedStop:
    stop_id: str
    order_id: str
    sequence: int
    latitude: float
    longitude: float
    area_tag: Optional[str]
    distance_from_prev_km: float
    duration_from_prev_min: float
    estimated_arrival: Optional[datetime] = None


@dataclass(slots=True)
class AreaBreakdown:
    area_tag: str
    stop_count: int
    distance_km: float
    duration_min: float


@dataclass(slots=True)
class RouteSnapshot:
    """One persisted optimization result for (delivery_date, route_type, driver_id)."""

    delivery_date: date
    route_type: RouteType
    driver_id: Optional[str]
    stops: List[SequencedStop]
    geometry: Optional[List[tuple[float, float]]]
    total_distance_km: float
    total_duration_min: float
    fingerprint: RouteFingerprint
    computed_at: datetime
    area_breakdown: List[AreaBreakdown] = field(default_factory=list)
    unlocatable_stop_ids: List[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def stop_ids(self) -> list[str]:
        return [stop.stop_id for stop in self.stops]

    @property
    def is_empty(self) -> bool:
        return not self.stops


@dataclass(slots=True)
class DriverSequenceEntry:
    stop_id: str
    order_id: str
    delivery_sequence: int
    packing_sequence: int
    driver_delivery_sequence: Optional[int]
    driver_packing_sequence: Optional[int]


@dataclass(slots=True)
class DriverSequenceResult:
    """Per-driver contiguous delivery order and LIFO packing order."""

    driver_id: Optional[str]
    entries: List[DriverSequenceEntry]

    @property
    def delivery_order(self) -> list[str]:
        return [entry.stop_id for entry in self.entries]

    @property
    def packing_order(self) -> list[str]:
        if self.driver_id is None:
            ranked = sorted(self.entries, key=lambda entry: entry.packing_sequence)
        else:
            ranked = sorted(self.entries, key=lambda entry: entry.driver_packing_sequence or 0)
        return [entry.stop_id for entry in ranked]


@dataclass(slots=True)
class AreaPreview:
    area_tag: str
    stop_count: int
    driver_ids: List[str]

    @property
    def has_drivers(self) -> bool:
        return bool(self.driver_ids)


@dataclass(slots=True)
class AreaAssignmentPlan:
    """Proposed driver for each unassigned stop, grouped by area."""

    areas: List[AreaPreview]
    assignments: dict[str, str] = field(default_factory=dict)

    @property
    def unassignable_stop_count(self) -> int:
        return sum(area.stop_count for area in self.areas if not area.has_drivers)
