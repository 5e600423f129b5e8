"""Domain models for orders, delivery stops and packing progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    CONFIRMED = "confirmed"
    PACKING = "packing"
    READY_FOR_DELIVERY = "ready_for_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"


class RouteType(str, Enum):
    PACKING = "packing"
    DELIVERY = "delivery"


# Statuses whose stops take part in each route type.
ROUTE_STATUSES: dict[RouteType, frozenset[OrderStatus]] = {
    RouteType.PACKING: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.PACKING, OrderStatus.READY_FOR_DELIVERY}
    ),
    RouteType.DELIVERY: frozenset({OrderStatus.READY_FOR_DELIVERY}),
}


@dataclass(slots=True)
class Depot:
    """Warehouse every route starts from."""

    code: str
    latitude: float
    longitude: float


@dataclass(slots=True)
class DeliverySequenceFields:
    """Sequence positions written onto an order by the sequencing subsystem."""

    delivery_sequence: Optional[int] = None
    packing_sequence: Optional[int] = None
    driver_delivery_sequence: Optional[int] = None
    driver_packing_sequence: Optional[int] = None
    estimated_arrival: Optional[datetime] = None


@dataclass(slots=True)
class Stop:
    """One delivery location taking part in sequencing."""

    stop_id: str
    order_id: str
    latitude: Optional[float]
    longitude: Optional[float]
    area_tag: Optional[str] = None
    driver_id: Optional[str] = None
    status: OrderStatus = OrderStatus.READY_FOR_DELIVERY
    delivery_sequence: Optional[int] = None
    packing_sequence: Optional[int] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class OrderItem:
    item_id: str
    quantity: float
    product_id: Optional[str] = None
    sku: Optional[str] = None
    unit: str = "unit"
    packed: bool = False

    @property
    def stock_key(self) -> str:
        return self.product_id or self.item_id


@dataclass(slots=True)
class StatusChange:
    status: OrderStatus
    changed_at: datetime
    changed_by: str
    notes: Optional[str] = None


@dataclass(slots=True)
class PackingState:
    """Packing sub-document of an order."""

    is_paused: bool = False
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
    stock_consumed_at: Optional[datetime] = None
    # product_id -> quantity taken from stock when the order was marked ready
    consumed_quantities: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class Order:
    """Represents an order scheduled for delivery on a given day."""

    order_id: str
    order_number: str
    delivery_date: date
    status: OrderStatus
    items: list[OrderItem]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_tag: Optional[str] = None
    driver_id: Optional[str] = None
    packing: PackingState = field(default_factory=PackingState)
    # delivery-type and packing-type runs each own one set
    sequences: DeliverySequenceFields = field(default_factory=DeliverySequenceFields)
    packing_sequences: DeliverySequenceFields = field(default_factory=DeliverySequenceFields)
    status_history: list[StatusChange] = field(default_factory=list)
    version: int = 0

    @property
    def packed_count(self) -> int:
        return sum(1 for item in self.items if item.packed)

    @property
    def all_items_packed(self) -> bool:
        return bool(self.items) and all(item.packed for item in self.items)

    def find_item(self, item_id: str) -> Optional[OrderItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def sequences_for(self, route_type: RouteType) -> DeliverySequenceFields:
        return self.packing_sequences if route_type is RouteType.PACKING else self.sequences

    def to_stop(self, route_type: RouteType = RouteType.DELIVERY) -> Stop:
        sequences = self.sequences_for(route_type)
        return Stop(
            stop_id=self.order_id,
            order_id=self.order_id,
            latitude=self.latitude,
            longitude=self.longitude,
            area_tag=self.area_tag,
            driver_id=self.driver_id,
            status=self.status,
            delivery_sequence=sequences.delivery_sequence,
            packing_sequence=sequences.packing_sequence,
        )
