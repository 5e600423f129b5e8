"""Order endpoints: load orders and manage driver assignment."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...persistence.memory import InMemoryOrderStore
from ...schemas.orders import DriverAssignmentRequest, OrderModel, OrderUpsertRequest
from ...services.routing.service import RouteSequencingService
from ..dependencies import get_order_store, get_route_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.put("/{order_id}", response_model=OrderModel, status_code=status.HTTP_200_OK)
def upsert_order(
    order_id: str,
    payload: OrderUpsertRequest,
    orders: InMemoryOrderStore = Depends(get_order_store),
) -> OrderModel:
    """Load or replace an order. Replacing discards packing progress."""
    order = orders.put(payload.to_domain(order_id))
    return OrderModel.model_validate(order)


@router.get("/{order_id}", response_model=OrderModel)
def get_order(order_id: str, orders: InMemoryOrderStore = Depends(get_order_store)) -> OrderModel:
    return OrderModel.model_validate(orders.get(order_id))


@router.put("/{order_id}/driver", response_model=OrderModel)
def assign_driver(
    order_id: str,
    payload: DriverAssignmentRequest,
    service: RouteSequencingService = Depends(get_route_service),
) -> OrderModel:
    order = service.assign_driver(order_id, payload.driver_id, payload.actor)
    return OrderModel.model_validate(order)
