"""Packing request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .orders import OrderModel


class ActorRequest(BaseModel):
    actor: str = Field(..., min_length=1, description="User performing the action.")
    expected_version: Optional[int] = Field(
        default=None,
        description="Order version the caller last saw; a mismatch is rejected with ERR_CONFLICT.",
    )


class ItemPackedRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    packed: bool = True


class ReadyRequest(ActorRequest):
    notes: Optional[str] = None


class PauseRequest(ActorRequest):
    reason: Optional[str] = None


class ResetRequest(ActorRequest):
    reason: Optional[str] = None


class QuantityUpdateRequest(ActorRequest):
    quantity: float
    pin: Optional[str] = None


class NotesRequest(ActorRequest):
    notes: str


class StockWarningModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    product_id: str
    message: str
    details: dict


class ReadyResponse(BaseModel):
    order: OrderModel
    warnings: List[StockWarningModel]


class PinRequiredResponse(BaseModel):
    pin_required: bool


class IdleSweepRequest(BaseModel):
    now: Optional[datetime] = Field(default=None, description="Reference time; defaults to the server clock.")
    timeout_minutes: Optional[int] = Field(default=None, ge=1)


class SweepOutcomeModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    action: str
    idle_minutes: float
    detail: Optional[str] = None


class IdleSweepResponse(BaseModel):
    swept_at: datetime
    outcomes: List[SweepOutcomeModel]
