"""Routing endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, status

from ...schemas.orders import OrderModel
from ...schemas.routing import (
    AreaPreviewModel,
    AutoAssignRequest,
    AutoAssignResponse,
    DeliveryRoutesResponse,
    PackingGroupModel,
    PackingRouteResponse,
    RouteSnapshotModel,
    RouteStatusResponse,
)
from ...services.routing.service import RouteSequencingService
from ..dependencies import get_route_service

router = APIRouter(prefix="/routes", tags=["routes"])


def _packing_response(service: RouteSequencingService, delivery_date: date, force: bool) -> PackingRouteResponse:
    snapshot = service.prepare_packing_route(delivery_date, force=force)
    groups = service.packing_groups(delivery_date)
    return PackingRouteResponse(
        delivery_date=delivery_date,
        route=RouteSnapshotModel.model_validate(snapshot),
        groups=[
            PackingGroupModel(
                driver_id=group.driver_id,
                orders=[OrderModel.model_validate(order) for order in group.orders],
            )
            for group in groups
        ],
    )


def _delivery_response(
    service: RouteSequencingService,
    delivery_date: date,
    force: bool,
    reoptimize_per_driver: bool | None,
) -> DeliveryRoutesResponse:
    result = service.ensure_delivery_routes(
        delivery_date, force=force, reoptimize_per_driver=reoptimize_per_driver
    )
    return DeliveryRoutesResponse(
        delivery_date=delivery_date,
        recomputed=result.recomputed,
        reason=result.reason,
        routes=[RouteSnapshotModel.model_validate(snapshot) for snapshot in result.snapshots],
    )


@router.post("/{delivery_date}/packing/optimize", response_model=PackingRouteResponse, status_code=status.HTTP_200_OK)
def optimize_packing(
    delivery_date: date,
    force: bool = Query(default=True, description="Recompute even when the stored route is current."),
    service: RouteSequencingService = Depends(get_route_service),
) -> PackingRouteResponse:
    return _packing_response(service, delivery_date, force)


@router.get("/{delivery_date}/packing", response_model=PackingRouteResponse)
def get_packing(
    delivery_date: date,
    service: RouteSequencingService = Depends(get_route_service),
) -> PackingRouteResponse:
    """Orders grouped by driver in loading order; recomputes only when stale."""
    return _packing_response(service, delivery_date, force=False)


@router.post("/{delivery_date}/delivery/optimize", response_model=DeliveryRoutesResponse)
def optimize_delivery(
    delivery_date: date,
    force: bool = Query(default=False),
    reoptimize_per_driver: bool | None = Query(default=None),
    service: RouteSequencingService = Depends(get_route_service),
) -> DeliveryRoutesResponse:
    return _delivery_response(service, delivery_date, force, reoptimize_per_driver)


@router.get("/{delivery_date}/delivery", response_model=DeliveryRoutesResponse)
def get_delivery(
    delivery_date: date,
    service: RouteSequencingService = Depends(get_route_service),
) -> DeliveryRoutesResponse:
    """Per-driver routes; recomputes only when stale."""
    return _delivery_response(service, delivery_date, force=False, reoptimize_per_driver=None)


@router.get("/{delivery_date}/status", response_model=RouteStatusResponse)
def get_status(
    delivery_date: date,
    service: RouteSequencingService = Depends(get_route_service),
) -> RouteStatusResponse:
    return RouteStatusResponse(**service.route_status(delivery_date))


@router.post("/{delivery_date}/auto-assign", response_model=AutoAssignResponse)
def auto_assign(
    delivery_date: date,
    payload: AutoAssignRequest,
    service: RouteSequencingService = Depends(get_route_service),
) -> AutoAssignResponse:
    plan = service.auto_assign(delivery_date, payload.driver_areas, apply=payload.apply, actor=payload.actor)
    return AutoAssignResponse(
        delivery_date=delivery_date,
        applied=payload.apply,
        areas=[AreaPreviewModel.model_validate(area) for area in plan.areas],
        assignments=plan.assignments,
        unassignable_stop_count=plan.unassignable_stop_count,
    )
