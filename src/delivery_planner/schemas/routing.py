"""Routing request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.domain import RouteType
from .orders import OrderModel


class SequencedStopModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stop_id: str
    order_id: str
    sequence: int
    latitude: float
    longitude: float
    area_tag: Optional[str] = None
    distance_from_prev_km: float
    duration_from_prev_min: float
    estimated_arrival: Optional[datetime] = None


class AreaBreakdownModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    area_tag: str
    stop_count: int
    distance_km: float
    duration_min: float


class RouteSnapshotModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delivery_date: date
    route_type: RouteType
    driver_id: Optional[str] = None
    total_distance_km: float
    total_duration_min: float
    computed_at: datetime
    geometry: Optional[List[tuple[float, float]]] = Field(
        default=None,
        description="Street-following path as (lat, lon) pairs; null when the geo router was unavailable.",
    )
    stops: List[SequencedStopModel]
    area_breakdown: List[AreaBreakdownModel]
    unlocatable_stop_ids: List[str]
    metadata: dict


class DeliveryRoutesResponse(BaseModel):
    delivery_date: date
    recomputed: bool
    reason: Optional[str] = None
    routes: List[RouteSnapshotModel]


class PackingGroupModel(BaseModel):
    driver_id: Optional[str] = None
    orders: List[OrderModel]


class PackingRouteResponse(BaseModel):
    delivery_date: date
    route: RouteSnapshotModel
    groups: List[PackingGroupModel]


class RouteStatusResponse(BaseModel):
    delivery_date: date
    packing_stop_count: int
    delivery_stop_count: int
    packing_stale_reason: Optional[str] = None
    delivery_stale_reason: Optional[str] = None
    delivery_snapshot_count: int
    unlocatable_order_ids: List[str]


class AutoAssignRequest(BaseModel):
    driver_areas: Dict[str, List[str]] = Field(
        ..., description="Areas covered by each driver, e.g. {'D1': ['north', 'east']}."
    )
    apply: bool = False
    actor: str = "dispatcher"


class AreaPreviewModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    area_tag: str
    stop_count: int
    driver_ids: List[str]
    has_drivers: bool


class AutoAssignResponse(BaseModel):
    delivery_date: date
    applied: bool
    areas: List[AreaPreviewModel]
    assignments: Dict[str, str]
    unassignable_stop_count: int
