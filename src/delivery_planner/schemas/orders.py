"""Order and stock request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.domain import Order, OrderItem, OrderStatus


class OrderItemModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: str
    quantity: float = Field(..., gt=0)
    product_id: Optional[str] = None
    sku: Optional[str] = None
    unit: str = "unit"
    packed: bool = False


class OrderUpsertRequest(BaseModel):
    order_number: Optional[str] = Field(default=None, description="Human-facing order number; defaults to the id.")
    delivery_date: date
    status: OrderStatus = OrderStatus.CONFIRMED
    items: List[OrderItemModel] = Field(..., min_length=1)
    latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    area_tag: Optional[str] = None
    driver_id: Optional[str] = None

    def to_domain(self, order_id: str) -> Order:
        return Order(
            order_id=order_id,
            order_number=self.order_number or order_id,
            delivery_date=self.delivery_date,
            status=self.status,
            items=[OrderItem(**item.model_dump()) for item in self.items],
            latitude=self.latitude,
            longitude=self.longitude,
            area_tag=self.area_tag,
            driver_id=self.driver_id,
        )


class DriverAssignmentRequest(BaseModel):
    driver_id: Optional[str] = Field(default=None, description="Driver to assign; null unassigns.")
    actor: str = "dispatcher"


class PackingStateModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_paused: bool
    paused_at: Optional[datetime] = None
    paused_by: Optional[str] = None
    pause_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    last_packed_by: Optional[str] = None
    last_packed_at: Optional[datetime] = None
    packed_by: Optional[str] = None
    packed_at: Optional[datetime] = None
    notes: Optional[str] = None
    stock_consumed: bool = False


class SequenceFieldsModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delivery_sequence: Optional[int] = None
    packing_sequence: Optional[int] = None
    driver_delivery_sequence: Optional[int] = None
    driver_packing_sequence: Optional[int] = None
    estimated_arrival: Optional[datetime] = None


class StatusChangeModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    changed_at: datetime
    changed_by: str
    notes: Optional[str] = None


class OrderModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    order_number: str
    delivery_date: date
    status: OrderStatus
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_tag: Optional[str] = None
    driver_id: Optional[str] = None
    version: int
    packed_count: int
    all_items_packed: bool
    items: List[OrderItemModel]
    packing: PackingStateModel
    sequences: SequenceFieldsModel
    packing_sequences: SequenceFieldsModel
    status_history: List[StatusChangeModel]


class StockReceiveRequest(BaseModel):
    quantity: float = Field(..., gt=0)
    expiry_date: Optional[date] = None
    batch_id: Optional[str] = None
    received_at: Optional[datetime] = None


class StockBatchModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    received_at: datetime
    quantity_remaining: float
    expiry_date: Optional[date] = None


class StockLevelModel(BaseModel):
    product_id: str
    available: float
    batches: List[StockBatchModel]
