"""Packing endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ...schemas.orders import OrderModel
from ...schemas.packing import (
    ActorRequest,
    IdleSweepRequest,
    IdleSweepResponse,
    ItemPackedRequest,
    NotesRequest,
    PauseRequest,
    PinRequiredResponse,
    QuantityUpdateRequest,
    ReadyRequest,
    ReadyResponse,
    ResetRequest,
    StockWarningModel,
    SweepOutcomeModel,
)
from ...services.packing.monitor import as_utc, sweep_idle_orders
from ...services.packing.state_machine import PackingSessionStateMachine
from ..dependencies import get_packing_machine

router = APIRouter(prefix="/packing", tags=["packing"])


@router.get("/pin-required", response_model=PinRequiredResponse)
def pin_required(machine: PackingSessionStateMachine = Depends(get_packing_machine)) -> PinRequiredResponse:
    return PinRequiredResponse(pin_required=machine.pin_policy.is_pin_required())


@router.get("/orders/{order_id}", response_model=OrderModel)
def get_order(order_id: str, machine: PackingSessionStateMachine = Depends(get_packing_machine)) -> OrderModel:
    return OrderModel.model_validate(machine.get_order(order_id))


@router.post("/orders/{order_id}/start", response_model=OrderModel)
def start_packing(
    order_id: str,
    payload: ActorRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.begin_packing(order_id, payload.actor, payload.expected_version)
    return OrderModel.model_validate(order)


@router.post("/orders/{order_id}/items/{item_id}/packed", response_model=OrderModel)
def mark_item_packed(
    order_id: str,
    item_id: str,
    payload: ItemPackedRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.mark_item_packed(order_id, item_id, payload.packed, payload.actor)
    return OrderModel.model_validate(order)


@router.post("/orders/{order_id}/ready", response_model=ReadyResponse)
def mark_ready(
    order_id: str,
    payload: ReadyRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> ReadyResponse:
    result = machine.mark_order_ready(order_id, payload.actor, payload.notes, payload.expected_version)
    return ReadyResponse(
        order=OrderModel.model_validate(result.order),
        warnings=[StockWarningModel.model_validate(warning) for warning in result.warnings],
    )


@router.post("/orders/{order_id}/pause", response_model=OrderModel)
def pause(
    order_id: str,
    payload: PauseRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.pause_order(order_id, payload.actor, payload.reason, payload.expected_version)
    return OrderModel.model_validate(order)


@router.post("/orders/{order_id}/resume", response_model=OrderModel)
def resume(
    order_id: str,
    payload: ActorRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.resume_order(order_id, payload.actor, payload.expected_version)
    return OrderModel.model_validate(order)


@router.post("/orders/{order_id}/reset", response_model=OrderModel)
def reset(
    order_id: str,
    payload: ResetRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.reset_order(order_id, payload.actor, payload.reason, payload.expected_version)
    return OrderModel.model_validate(order)


@router.post("/orders/{order_id}/items/{item_id}/quantity", response_model=OrderModel)
def update_quantity(
    order_id: str,
    item_id: str,
    payload: QuantityUpdateRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.update_item_quantity(
        order_id,
        item_id,
        payload.quantity,
        payload.actor,
        pin=payload.pin,
        expected_version=payload.expected_version,
    )
    return OrderModel.model_validate(order)


@router.post("/orders/{order_id}/notes", response_model=OrderModel)
def add_notes(
    order_id: str,
    payload: NotesRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> OrderModel:
    order = machine.add_packing_notes(order_id, payload.notes, payload.actor, payload.expected_version)
    return OrderModel.model_validate(order)


@router.post("/idle-sweep", response_model=IdleSweepResponse)
def idle_sweep(
    payload: IdleSweepRequest,
    machine: PackingSessionStateMachine = Depends(get_packing_machine),
) -> IdleSweepResponse:
    """Pause or reset orders idle beyond the timeout. Intended for a periodic caller."""
    now = as_utc(payload.now) if payload.now else datetime.now(timezone.utc)
    outcomes = sweep_idle_orders(machine, now, payload.timeout_minutes)
    return IdleSweepResponse(
        swept_at=now,
        outcomes=[SweepOutcomeModel.model_validate(outcome) for outcome in outcomes],
    )
